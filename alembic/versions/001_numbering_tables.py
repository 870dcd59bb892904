"""Document numbering tables and audit log

Revision ID: 001_numbering
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_numbering"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Allocated document numbers
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("document_type", sa.String(30), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        # year for yearly numbering, 0 when numbering never resets
        sa.Column("scope_year", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("formatted_number", sa.String(30), nullable=False),
        sa.Column("linked_entity_id", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="issued"),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_type",
            "scope_year",
            "sequence",
            name="uq_document_sequence_type_scope_sequence",
        ),
        sa.UniqueConstraint("formatted_number", name="uq_document_sequence_formatted_number"),
    )
    op.create_index(
        "ix_document_sequences_linked_entity_id",
        "document_sequences",
        ["linked_entity_id"],
        unique=False,
    )

    # Numbering policy per document type
    op.create_table(
        "numbering_policies",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("document_type", sa.String(30), nullable=False),
        sa.Column("start_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("reset_period", sa.String(20), nullable=False, server_default="yearly"),
        sa.Column("current_number_cache", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("cache_year", sa.Integer(), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("maintenance_holder", sa.String(100), nullable=True),
        sa.Column("maintenance_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_numbering_policies_document_type"),
    )

    # Audit trail for numbering maintenance
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity_type", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("numbering_policies")
    op.drop_index("ix_document_sequences_linked_entity_id", table_name="document_sequences")
    op.drop_table("document_sequences")
