"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from receipt_processor.modules.documents.models import FileRecord  # noqa: F401
from receipt_processor.modules.receipts.models import ExtractedReceipt  # noqa: F401
