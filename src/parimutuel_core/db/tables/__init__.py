"""Import all table modules so Base.metadata knows about them."""

from parimutuel_core.db.tables.bets import BetRow, PlatformFeeRow
from parimutuel_core.db.tables.markets import MarketRow, OutcomeRow
from parimutuel_core.db.tables.users import UserRow

__all__ = [
    "BetRow",
    "MarketRow",
    "OutcomeRow",
    "PlatformFeeRow",
    "UserRow",
]
