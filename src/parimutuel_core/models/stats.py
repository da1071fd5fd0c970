"""Read models aggregated from bets: leaderboard rows and platform totals."""

from __future__ import annotations

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    user_id: int
    payout_address: str
    total_bets: int
    total_wins: int
    total_wagered: int
    total_winnings: int
    win_rate: int  # percent, rounded half-up


class PlatformStats(BaseModel):
    total_bets: int
    total_volume: int
    unique_bettors: int
    total_users: int
    total_paid_out: int
    total_fees: int
    total_markets: int
    resolved_markets: int
