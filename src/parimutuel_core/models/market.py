"""Market, outcome and pool snapshot models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED_YES = "resolved_yes"
    RESOLVED_NO = "resolved_no"
    CANCELLED = "cancelled"

    @staticmethod
    def resolved_outcome(outcome_id: int) -> str:
        """Status value for a resolution identified by outcome id."""
        return f"resolved_outcome:{outcome_id}"

    @staticmethod
    def is_resolved(status: str) -> bool:
        return status.startswith("resolved_")


class Outcome(BaseModel):
    """One selectable resolution option of a market."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    market_id: int
    label: str
    pool: int = 0


class Market(BaseModel):
    """One wagering question and its outcomes."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    category: str
    description: str | None = None
    close_time: datetime
    status: str = MarketStatus.ACTIVE.value
    winning_outcome_id: int | None = None
    outcomes: list[Outcome] = Field(default_factory=list)
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    cancelled_at: datetime | None = None


class PoolSnapshot(BaseModel):
    """Per-outcome committed stake totals of a market at one point in time.

    Derived from the ledger, never persisted. Totals only ever include
    confirmed or settled stakes.
    """

    model_config = ConfigDict(frozen=True)

    market_id: int
    taken_at: datetime
    totals: dict[int, int]
    labels: dict[int, str] = Field(default_factory=dict)

    @property
    def total_pool(self) -> int:
        return sum(self.totals.values())

    def outcome_total(self, outcome_id: int) -> int:
        return self.totals.get(outcome_id, 0)
