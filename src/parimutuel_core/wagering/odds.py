"""Odds — implied percentages derived from a pool snapshot."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from parimutuel_core.models import PoolSnapshot
from parimutuel_core.wagering.ledger import PoolLedger


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_odds(snapshot: PoolSnapshot) -> dict[int, int]:
    """Return outcome id -> percentage (0..100).

    percentage = round(outcome_total / total_pool * 100), half-up, per outcome.
    An empty pool gives every outcome round(100 / n).

    Percentages are rounded independently and deliberately NOT renormalised,
    so they may sum to 99 or 101. Display surfaces depend on this exact
    rounding; pool totals remain authoritative for payouts.
    """
    if not snapshot.totals:
        return {}
    total = snapshot.total_pool
    if total == 0:
        share = _round_half_up(Decimal(100) / Decimal(len(snapshot.totals)))
        return {outcome_id: share for outcome_id in snapshot.totals}
    return {
        outcome_id: _round_half_up(Decimal(amount) * 100 / Decimal(total))
        for outcome_id, amount in snapshot.totals.items()
    }


def get_odds(session: Session, market_id: int) -> dict[str, int]:
    """Best-effort odds for a market keyed by outcome label. Pure read."""
    snapshot = PoolLedger(market_id).snapshot(session)
    odds = compute_odds(snapshot)
    return {snapshot.labels[outcome_id]: pct for outcome_id, pct in odds.items()}
