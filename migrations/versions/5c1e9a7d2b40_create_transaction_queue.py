"""create transaction queue

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-18 09:12:44.318207

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the relay work queue."""
    op.create_table(
        "transaction_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=True),
        sa.Column("x", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("y", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("energy", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.VARCHAR(length=16), nullable=False, server_default="pending"),
        sa.Column("hash", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", sa.VARCHAR(length=16), nullable=False, server_default="reaction"),
        sa.Column("leased_by", sa.Integer(), nullable=True),
        sa.Column("leased_at", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_transaction_queue_status_timestamp",
        "transaction_queue",
        ["status", "timestamp"],
    )


def downgrade() -> None:
    """Drop the relay work queue."""
    op.drop_index("ix_transaction_queue_status_timestamp", table_name="transaction_queue")
    op.drop_table("transaction_queue")
