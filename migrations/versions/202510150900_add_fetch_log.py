"""add fetch log

Revision ID: 202510150900
Revises: 202510010900
Create Date: 2025-10-15 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202510150900"
down_revision = "202510010900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fetch_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family", sa.Enum("billing", "menu", name="fetchfamily"), nullable=False
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        sa.Column("exhausted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint(
            "family", "period_start", name="uq_fetch_log_family_period"
        ),
    )


def downgrade() -> None:
    op.drop_table("fetch_log")
