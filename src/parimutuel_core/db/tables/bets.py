"""SQLAlchemy ORM models for bets and retained platform fees."""

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from parimutuel_core.db.base import Base
from parimutuel_core.db.tables._schema import SCHEMA


class BetRow(Base):
    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("payment_reference"),
        CheckConstraint("stake > 0", name="bet_stake_positive"),
        Index("ix_bets_market_status", "market_id", "status"),
        Index("ix_bets_user", "user_id"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEMA}.users.id"),
        nullable=False,
    )
    market_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEMA}.markets.id"),
        nullable=False,
    )
    # Legacy yes/no positions are resolved to an outcome before insert
    outcome_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEMA}.outcomes.id"),
        nullable=False,
    )
    stake: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # pending | confirmed | won | lost | refunded
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payout_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    settled_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)


class PlatformFeeRow(Base):
    __tablename__ = "platform_fees"
    __table_args__ = (
        UniqueConstraint("market_id"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEMA}.markets.id"),
        nullable=False,
    )
    # Flat fee plus truncation residue left over after paying winners
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
