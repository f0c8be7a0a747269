"""add processing status and retry fields

Revision ID: 8d47c2e5b610
Revises: 3b1e6f0a9c21
Create Date: 2026-02-09

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "8d47c2e5b610"
down_revision: Union[str, Sequence[str], None] = "3b1e6f0a9c21"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_STATUSES = ("pending", "processing", "completed", "failed", "queued")


def upgrade() -> None:
    with op.batch_alter_table("documents_file_record") as batch:
        batch.add_column(
            sa.Column(
                "status",
                sa.Enum(
                    *_STATUSES, name="file_status", native_enum=False, create_constraint=True
                ),
                nullable=False,
                server_default="pending",
            )
        )
        batch.add_column(
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0")
        )
        batch.add_column(sa.Column("last_error", sa.Text(), nullable=True))
        batch.add_column(sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True))

    # Rows processed before status existed are already done.
    op.execute(
        "UPDATE documents_file_record SET status = 'completed' WHERE is_processed = true"
    )
    op.create_index("ix_documents_file_record_status", "documents_file_record", ["status"])


def downgrade() -> None:
    op.drop_index("ix_documents_file_record_status", table_name="documents_file_record")
    with op.batch_alter_table("documents_file_record") as batch:
        batch.drop_column("next_retry_at")
        batch.drop_column("last_error")
        batch.drop_column("retry_count")
        batch.drop_column("status")
