"""Create parimutuel schema with users, markets, outcomes, bets and platform fees.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "parimutuel"


def upgrade() -> None:
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("payout_address", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("payout_address"),
        schema=SCHEMA,
    )

    op.create_table(
        "markets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("category", sa.Text, nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("close_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("winning_outcome_id", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        schema=SCHEMA,
    )
    op.create_index("ix_markets_status", "markets", ["status"], schema=SCHEMA)

    op.create_table(
        "outcomes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "market_id", sa.Integer,
            sa.ForeignKey(f"{SCHEMA}.markets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("label", sa.Text, nullable=False),
        sa.Column("pool", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("market_id", "label"),
        sa.CheckConstraint("pool >= 0", name="outcome_pool_non_negative"),
        schema=SCHEMA,
    )

    op.create_table(
        "bets",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.users.id"), nullable=False),
        sa.Column("market_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.markets.id"), nullable=False),
        sa.Column("outcome_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.outcomes.id"), nullable=False),
        sa.Column("stake", sa.BigInteger, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.Text, nullable=True),
        sa.Column("payout_amount", sa.BigInteger, nullable=True),
        sa.Column("payout_reference", sa.Text, nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.UniqueConstraint("payment_reference"),
        sa.CheckConstraint("stake > 0", name="bet_stake_positive"),
        schema=SCHEMA,
    )
    op.create_index("ix_bets_market_status", "bets", ["market_id", "status"], schema=SCHEMA)
    op.create_index("ix_bets_user", "bets", ["user_id"], schema=SCHEMA)

    op.create_table(
        "platform_fees",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("market_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.markets.id"), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("market_id"),
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("platform_fees", schema=SCHEMA)
    op.drop_index("ix_bets_user", table_name="bets", schema=SCHEMA)
    op.drop_index("ix_bets_market_status", table_name="bets", schema=SCHEMA)
    op.drop_table("bets", schema=SCHEMA)
    op.drop_table("outcomes", schema=SCHEMA)
    op.drop_index("ix_markets_status", table_name="markets", schema=SCHEMA)
    op.drop_table("markets", schema=SCHEMA)
    op.drop_table("users", schema=SCHEMA)
