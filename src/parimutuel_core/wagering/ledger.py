"""PoolLedger — the single writer of per-outcome pool totals."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from parimutuel_core.db.tables.bets import BetRow
from parimutuel_core.db.tables.markets import MarketRow, OutcomeRow
from parimutuel_core.models import BetStatus, PoolSnapshot
from parimutuel_core.wagering.errors import InvalidRequestError, InvariantViolation, NotFoundError

log = structlog.get_logger("pool_ledger")

COMMITTED_STATUSES = (BetStatus.CONFIRMED.value, BetStatus.WON.value, BetStatus.LOST.value)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidRequestError(f"amount must be a positive integer, got {amount!r}")


class PoolLedger:
    """Authoritative running total per outcome for one market.

    Writes are conditional UPDATEs that join the caller's transaction; the
    caller commits them together with the bet transition that caused them.
    """

    def __init__(self, market_id: int) -> None:
        self.market_id = market_id

    def add_stake(self, session: Session, outcome_id: int, amount: int) -> None:
        """Increase an outcome's total by *amount*."""
        _check_amount(amount)
        result = session.execute(
            update(OutcomeRow)
            .where(OutcomeRow.id == outcome_id, OutcomeRow.market_id == self.market_id)
            .values(pool=OutcomeRow.pool + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("outcome", outcome_id)
        log.debug("stake_added", market_id=self.market_id, outcome_id=outcome_id, amount=amount)

    def remove_stake(self, session: Session, outcome_id: int, amount: int) -> None:
        """Decrease an outcome's total by *amount*.

        Driving a total below zero means the ledger and the bets disagree;
        that is raised as an invariant violation and nothing is written.
        """
        _check_amount(amount)
        result = session.execute(
            update(OutcomeRow)
            .where(
                OutcomeRow.id == outcome_id,
                OutcomeRow.market_id == self.market_id,
                OutcomeRow.pool >= amount,
            )
            .values(pool=OutcomeRow.pool - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            log.debug("stake_removed", market_id=self.market_id, outcome_id=outcome_id, amount=amount)
            return

        current = session.execute(
            select(OutcomeRow.pool).where(
                OutcomeRow.id == outcome_id, OutcomeRow.market_id == self.market_id,
            )
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError("outcome", outcome_id)
        log.critical(
            "negative_pool_total",
            market_id=self.market_id,
            outcome_id=outcome_id,
            pool=current,
            amount=amount,
        )
        raise InvariantViolation(
            f"removing {amount} from outcome {outcome_id} would leave pool {current - amount}"
        )

    def snapshot(self, session: Session) -> PoolSnapshot:
        """Current committed totals per outcome. Read-only."""
        rows = session.execute(
            select(OutcomeRow.id, OutcomeRow.label, OutcomeRow.pool)
            .where(OutcomeRow.market_id == self.market_id)
            .order_by(OutcomeRow.id)
        ).all()
        if not rows and session.get(MarketRow, self.market_id) is None:
            raise NotFoundError("market", self.market_id)
        return PoolSnapshot(
            market_id=self.market_id,
            taken_at=datetime.now(timezone.utc),
            totals={row.id: int(row.pool) for row in rows},
            labels={row.id: row.label for row in rows},
        )

    def verify_conservation(self, session: Session) -> PoolSnapshot:
        """Check every outcome total equals the committed stakes placed on it.

        Returns the snapshot that was verified.
        """
        snapshot = self.snapshot(session)
        committed = dict(
            session.execute(
                select(BetRow.outcome_id, func.sum(BetRow.stake))
                .where(
                    BetRow.market_id == self.market_id,
                    BetRow.status.in_(COMMITTED_STATUSES),
                )
                .group_by(BetRow.outcome_id)
            ).all()
        )
        mismatched = {
            outcome_id: (total, int(committed.get(outcome_id) or 0))
            for outcome_id, total in snapshot.totals.items()
            if total != int(committed.get(outcome_id) or 0)
        }
        stray = set(committed) - set(snapshot.totals)
        if mismatched or stray:
            log.critical(
                "pool_conservation_violated",
                market_id=self.market_id,
                mismatched={str(k): v for k, v in mismatched.items()},
                stray_outcomes=sorted(stray),
            )
            raise InvariantViolation(
                f"pool totals for market {self.market_id} do not match committed stakes"
            )
        return snapshot
