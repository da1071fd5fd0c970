"""Pari-mutuel payout calculation — pure functions, no DB."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, localcontext

import structlog

from parimutuel_core.wagering.errors import InvalidRequestError, InvariantViolation

log = structlog.get_logger("payout")

# Flat platform fee taken from every resolved pool. Not configurable per market.
PLATFORM_FEE_RATE = Decimal("0.01")


def compute_payout(
    stake: int,
    bettor_outcome_total: int,
    total_pool: int,
    fee_rate: Decimal = PLATFORM_FEE_RATE,
) -> int:
    """Calculate a winning bet's payout in the smallest currency unit.

    net_pool = total_pool * (1 - fee_rate)
    payout   = floor(net_pool * stake / bettor_outcome_total)

    Truncates; the residue across all winners stays with the platform.
    A zero (or smaller than the stake) winning-outcome total cannot happen
    for a won bet and is raised as an invariant violation.
    """
    if stake <= 0:
        raise InvalidRequestError(f"stake must be positive, got {stake}")
    if not Decimal(0) <= fee_rate < Decimal(1):
        raise InvalidRequestError(f"fee_rate must be in [0, 1), got {fee_rate}")
    if bettor_outcome_total <= 0 or stake > bettor_outcome_total or bettor_outcome_total > total_pool:
        log.critical(
            "payout_invariant_violation",
            stake=stake,
            bettor_outcome_total=bettor_outcome_total,
            total_pool=total_pool,
        )
        raise InvariantViolation(
            f"cannot pay stake {stake} against winning total {bettor_outcome_total} "
            f"(pool {total_pool})"
        )

    with localcontext() as ctx:
        ctx.prec = 60
        net_pool = Decimal(total_pool) * (Decimal(1) - Decimal(fee_rate))
        share = net_pool * Decimal(stake) / Decimal(bettor_outcome_total)
        return int(share.to_integral_value(rounding=ROUND_FLOOR))


def net_pool(total_pool: int, fee_rate: Decimal = PLATFORM_FEE_RATE) -> int:
    """Pool left for winners after the platform fee, truncated."""
    with localcontext() as ctx:
        ctx.prec = 60
        amount = Decimal(total_pool) * (Decimal(1) - Decimal(fee_rate))
        return int(amount.to_integral_value(rounding=ROUND_FLOOR))
