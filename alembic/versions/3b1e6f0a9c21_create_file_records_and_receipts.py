"""create file records and receipts

Revision ID: 3b1e6f0a9c21
Revises:
Create Date: 2026-02-02

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3b1e6f0a9c21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "documents_file_record",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False),
        sa.Column("invalid_reason", sa.String(length=255), nullable=True),
        sa.Column("is_processed", sa.Boolean(), nullable=False),
    )
    op.create_index(
        "ix_documents_file_record_file_name", "documents_file_record", ["file_name"]
    )

    op.create_table(
        "receipts_extracted_receipt",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "file_record_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("documents_file_record.id"),
            nullable=True,
        ),
        sa.Column("purchased_at", sa.Date(), nullable=False),
        sa.Column("merchant_name", sa.String(length=255), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("source_file_path", sa.String(length=1024), nullable=True),
        sa.CheckConstraint("total_amount >= 0", name="ck_receipt_total_non_negative"),
        sa.CheckConstraint("tax_amount >= 0", name="ck_receipt_tax_non_negative"),
    )
    op.create_index(
        "ix_receipts_extracted_receipt_file_record_id",
        "receipts_extracted_receipt",
        ["file_record_id"],
    )
    op.create_index(
        "ix_receipts_extracted_receipt_file_path", "receipts_extracted_receipt", ["file_path"]
    )


def downgrade() -> None:
    op.drop_index(
        "ix_receipts_extracted_receipt_file_path", table_name="receipts_extracted_receipt"
    )
    op.drop_index(
        "ix_receipts_extracted_receipt_file_record_id", table_name="receipts_extracted_receipt"
    )
    op.drop_table("receipts_extracted_receipt")
    op.drop_index("ix_documents_file_record_file_name", table_name="documents_file_record")
    op.drop_table("documents_file_record")
