"""SQLAlchemy ORM models for markets and their outcomes."""

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from parimutuel_core.db.base import Base
from parimutuel_core.db.tables._schema import SCHEMA


class MarketRow(Base):
    __tablename__ = "markets"
    __table_args__ = (
        Index("ix_markets_status", "status"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    close_time: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    # active | resolved_yes | resolved_no | resolved_outcome:<id> | cancelled
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    # No FK: outcomes reference markets, a cycle would complicate table creation
    winning_outcome_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OutcomeRow(Base):
    __tablename__ = "outcomes"
    __table_args__ = (
        UniqueConstraint("market_id", "label"),
        CheckConstraint("pool >= 0", name="outcome_pool_non_negative"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEMA}.markets.id", ondelete="CASCADE"),
        nullable=False,
    )
    label: Mapped[str] = mapped_column(Text, nullable=False)
    # Sum of confirmed-or-settled stakes; only PoolLedger writes this column
    pool: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
