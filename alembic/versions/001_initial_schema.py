"""Initial schema: cycle_records (one JSONB row per trading cycle).

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- cycle_records ---
    op.create_table(
        "cycle_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("cycle_number", sa.Integer, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index(
        "idx_cycle_records_recorded_at",
        "cycle_records",
        [sa.text("recorded_at DESC")],
    )
    op.create_index("idx_cycle_records_cycle", "cycle_records", ["cycle_number"])


def downgrade() -> None:
    op.drop_index("idx_cycle_records_cycle", table_name="cycle_records")
    op.drop_index("idx_cycle_records_recorded_at", table_name="cycle_records")
    op.drop_table("cycle_records")
