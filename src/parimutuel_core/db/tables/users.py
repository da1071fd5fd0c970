"""SQLAlchemy ORM model for bettors."""

from sqlalchemy import Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from parimutuel_core.db.base import Base
from parimutuel_core.db.tables._schema import SCHEMA


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("payout_address"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Destination for winnings and refunds
    payout_address: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
