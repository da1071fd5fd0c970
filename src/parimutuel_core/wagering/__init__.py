"""Pari-mutuel wagering engine — pools, odds, bet lifecycle, resolution, payouts."""

from parimutuel_core.wagering.classification import is_binary_market, outcome_for_position
from parimutuel_core.wagering.errors import (
    BetNotPendingError,
    CollaboratorError,
    ConflictError,
    DuplicatePaymentReferenceError,
    InvalidRequestError,
    InvariantViolation,
    LatePaymentError,
    MarketAlreadySettledError,
    MarketNotAcceptingBetsError,
    NotFoundError,
    PaymentSendError,
    ResolutionTooEarlyError,
    WageringError,
)
from parimutuel_core.wagering.events import EventBus
from parimutuel_core.wagering.ledger import PoolLedger
from parimutuel_core.wagering.lifecycle import BetLifecycle, ConfirmResult
from parimutuel_core.wagering.markets import (
    create_market,
    ensure_user,
    get_bet,
    get_market,
    leaderboard,
    list_market_bets,
    list_markets,
    list_user_bets,
    platform_stats,
)
from parimutuel_core.wagering.odds import compute_odds, get_odds
from parimutuel_core.wagering.payout import PLATFORM_FEE_RATE, compute_payout
from parimutuel_core.wagering.resolver import MarketResolver, ResolutionReport, SettlementResult

__all__ = [
    "BetLifecycle",
    "BetNotPendingError",
    "CollaboratorError",
    "ConfirmResult",
    "ConflictError",
    "DuplicatePaymentReferenceError",
    "EventBus",
    "InvalidRequestError",
    "InvariantViolation",
    "LatePaymentError",
    "MarketAlreadySettledError",
    "MarketNotAcceptingBetsError",
    "MarketResolver",
    "NotFoundError",
    "PLATFORM_FEE_RATE",
    "PaymentSendError",
    "PoolLedger",
    "ResolutionReport",
    "ResolutionTooEarlyError",
    "SettlementResult",
    "WageringError",
    "compute_odds",
    "compute_payout",
    "create_market",
    "ensure_user",
    "get_bet",
    "get_market",
    "get_odds",
    "is_binary_market",
    "leaderboard",
    "list_market_bets",
    "list_markets",
    "list_user_bets",
    "outcome_for_position",
    "platform_stats",
]
