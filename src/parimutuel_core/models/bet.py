"""Bet model and lifecycle states."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BetStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    WON = "won"
    LOST = "lost"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (BetStatus.WON, BetStatus.LOST, BetStatus.REFUNDED)

    @property
    def is_committed(self) -> bool:
        """True when the stake counts towards the outcome pool."""
        return self in (BetStatus.CONFIRMED, BetStatus.WON, BetStatus.LOST)


class Bet(BaseModel):
    """A single wager against one outcome."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    user_id: int
    market_id: int
    outcome_id: int
    stake: int = Field(gt=0)
    status: BetStatus = BetStatus.PENDING
    created_at: datetime
    confirmed_at: datetime | None = None
    payment_reference: str | None = None
    payout_amount: int | None = None
    payout_reference: str | None = None
    settled_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v
