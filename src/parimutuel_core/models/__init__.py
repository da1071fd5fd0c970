"""Pydantic domain models."""

from parimutuel_core.models.bet import Bet, BetStatus
from parimutuel_core.models.market import Market, MarketStatus, Outcome, PoolSnapshot
from parimutuel_core.models.stats import LeaderboardEntry, PlatformStats

__all__ = [
    "Bet",
    "BetStatus",
    "LeaderboardEntry",
    "Market",
    "MarketStatus",
    "Outcome",
    "PlatformStats",
    "PoolSnapshot",
]
