"""MarketResolver — resolution, cancellation and resumable settlement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from parimutuel_core.payments.sender import PaymentSender

from parimutuel_core.db.tables.bets import BetRow, PlatformFeeRow
from parimutuel_core.db.tables.markets import MarketRow
from parimutuel_core.db.tables.users import UserRow
from parimutuel_core.models import BetStatus, MarketStatus
from parimutuel_core.wagering.classification import is_binary_market, normalize_label
from parimutuel_core.wagering.errors import (
    ConflictError,
    MarketAlreadySettledError,
    NotFoundError,
    PaymentSendError,
    ResolutionTooEarlyError,
)
from parimutuel_core.wagering.events import (
    BetSettled,
    EventBus,
    MarketCancelled,
    MarketResolved,
    PayoutFailed,
    PayoutSent,
    StakeRemoved,
)
from parimutuel_core.wagering.ledger import PoolLedger
from parimutuel_core.wagering.markets import as_utc, load_market, load_outcomes
from parimutuel_core.wagering.payout import PLATFORM_FEE_RATE, compute_payout, net_pool

log = structlog.get_logger("market_resolver")

_SETTLED_STATUSES = (BetStatus.WON.value, BetStatus.LOST.value, BetStatus.REFUNDED.value)


@dataclass
class SettlementResult:
    """Final state of one bet after a resolution or cancellation pass."""

    bet_id: int
    user_id: int
    outcome_id: int
    stake: int
    status: str
    payout_amount: int
    payout_reference: str | None = None
    error: str | None = None

    @property
    def awaiting_disbursement(self) -> bool:
        return self.payout_amount > 0 and self.payout_reference is None


@dataclass
class ResolutionReport:
    market_id: int
    status: str
    winning_outcome_id: int | None
    total_pool: int
    net_pool: int
    platform_fee: int
    settlements: list[SettlementResult] = field(default_factory=list)

    @property
    def total_disbursed(self) -> int:
        return sum(s.payout_amount for s in self.settlements if s.payout_reference is not None)

    @property
    def pending_disbursements(self) -> list[SettlementResult]:
        """Bets still owed money; run ``MarketResolver.resume`` to retry them."""
        return [s for s in self.settlements if s.awaiting_disbursement]


def resolved_status(outcomes: dict[int, str], winning_outcome_id: int) -> str:
    """Market status value for a resolution in favour of *winning_outcome_id*."""
    if is_binary_market(outcomes.values()):
        label = normalize_label(outcomes[winning_outcome_id])
        if label == "yes":
            return MarketStatus.RESOLVED_YES.value
        if label == "no":
            return MarketStatus.RESOLVED_NO.value
    return MarketStatus.resolved_outcome(winning_outcome_id)


class MarketResolver:
    """Settles every confirmed bet of a market exactly once.

    The market status change is the single guard against double resolution.
    After it commits, settlement proceeds bet by bet, each in its own
    transaction, so a crash or a failed payment leaves a state that
    ``resume`` can finish without touching bets that were already settled.
    """

    def __init__(
        self,
        payment_sender: "PaymentSender",
        events: EventBus | None = None,
        fee_rate: Decimal = PLATFORM_FEE_RATE,
    ) -> None:
        self.payment_sender = payment_sender
        self.events = events
        self.fee_rate = fee_rate

    def _publish(self, event) -> None:
        if self.events is not None:
            self.events.publish(event)

    # ── Public operations ─────────────────────────────────────

    def resolve(
        self,
        session: Session,
        market_id: int,
        winning_outcome_id: int,
        force: bool = False,
        now: datetime | None = None,
    ) -> ResolutionReport:
        """Resolve an active market in favour of one outcome and settle its bets.

        Rejected when the market is no longer active, or (unless *force*) when
        its close time has not passed yet.
        """
        now = now or datetime.now(timezone.utc)
        market = load_market(session, market_id)
        if market.status != MarketStatus.ACTIVE.value:
            raise MarketAlreadySettledError(market_id, market.status)
        outcomes = load_outcomes(session, market_id)
        if winning_outcome_id not in outcomes:
            raise NotFoundError("outcome", winning_outcome_id)
        if not force and as_utc(now) < as_utc(market.close_time):
            raise ResolutionTooEarlyError(
                f"market {market_id} closes at {as_utc(market.close_time).isoformat()}"
            )

        status = resolved_status(outcomes, winning_outcome_id)
        self._claim(
            session,
            market_id,
            status=status,
            winning_outcome_id=winning_outcome_id,
            resolved_at=now,
        )
        log.info(
            "market_resolved",
            market_id=market_id,
            status=status,
            winning_outcome_id=winning_outcome_id,
            forced=force,
        )
        self._publish(MarketResolved(market_id=market_id, status=status, winning_outcome_id=winning_outcome_id))
        return self._settle(session, market_id, now)

    def cancel(self, session: Session, market_id: int, now: datetime | None = None) -> ResolutionReport:
        """Void an active market: every pending or confirmed bet is refunded."""
        now = now or datetime.now(timezone.utc)
        market = load_market(session, market_id)
        if market.status != MarketStatus.ACTIVE.value:
            raise MarketAlreadySettledError(market_id, market.status)

        self._claim(session, market_id, status=MarketStatus.CANCELLED.value, cancelled_at=now)
        log.info("market_cancelled", market_id=market_id)
        self._publish(MarketCancelled(market_id=market_id))
        return self._refund(session, market_id, now)

    def resume(self, session: Session, market_id: int, now: datetime | None = None) -> ResolutionReport:
        """Finish an interrupted settlement and retry failed disbursements."""
        now = now or datetime.now(timezone.utc)
        market = load_market(session, market_id)
        if MarketStatus.is_resolved(market.status):
            log.info("settlement_resumed", market_id=market_id, status=market.status)
            return self._settle(session, market_id, now)
        if market.status == MarketStatus.CANCELLED.value:
            log.info("refund_resumed", market_id=market_id)
            return self._refund(session, market_id, now)
        raise ConflictError(f"market {market_id} is still {market.status}")

    # ── Market claim ──────────────────────────────────────────

    def _claim(self, session: Session, market_id: int, **values) -> None:
        """Compare-and-set the market out of ``active``; only one caller wins."""
        result = session.execute(
            update(MarketRow)
            .where(MarketRow.id == market_id, MarketRow.status == MarketStatus.ACTIVE.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            current = load_market(session, market_id)
            raise MarketAlreadySettledError(market_id, current.status)
        session.commit()

    # ── Resolution ────────────────────────────────────────────

    def _settle(self, session: Session, market_id: int, now: datetime) -> ResolutionReport:
        market = load_market(session, market_id)
        winning = market.winning_outcome_id
        snapshot = PoolLedger(market_id).verify_conservation(session)
        total_pool = snapshot.total_pool
        winning_total = snapshot.outcome_total(winning)

        confirmed = session.execute(
            select(BetRow)
            .where(BetRow.market_id == market_id, BetRow.status == BetStatus.CONFIRMED.value)
            .order_by(BetRow.id)
        ).scalars().all()
        for bet in confirmed:
            if bet.outcome_id == winning:
                payout = compute_payout(bet.stake, winning_total, total_pool, self.fee_rate)
                self._finalize_bet(session, bet, BetStatus.WON, payout, now)
            else:
                self._finalize_bet(session, bet, BetStatus.LOST, 0, now)

        self._record_platform_fee(session, market_id, total_pool, now)
        errors = self._disburse(session, market_id, BetStatus.WON, kind="payout")
        return self._report(session, market_id, errors)

    def _finalize_bet(
        self,
        session: Session,
        bet: BetRow,
        status: BetStatus,
        payout: int,
        now: datetime,
    ) -> None:
        """Move one confirmed bet to its terminal status in its own transaction."""
        bet_id, market_id, outcome_id, stake = bet.id, bet.market_id, bet.outcome_id, bet.stake
        result = session.execute(
            update(BetRow)
            .where(BetRow.id == bet_id, BetRow.status == BetStatus.CONFIRMED.value)
            .values(status=status.value, payout_amount=payout, settled_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            log.info("bet_already_settled", bet_id=bet_id, market_id=market_id)
            return
        if status is BetStatus.REFUNDED:
            PoolLedger(market_id).remove_stake(session, outcome_id, stake)
        session.commit()

        log.info("bet_settled", bet_id=bet_id, market_id=market_id, status=status.value, payout=payout)
        if status is BetStatus.REFUNDED:
            self._publish(StakeRemoved(market_id=market_id, outcome_id=outcome_id, amount=stake))
        self._publish(BetSettled(bet_id=bet_id, market_id=market_id, status=status.value, payout_amount=payout))

    def _record_platform_fee(self, session: Session, market_id: int, total_pool: int, now: datetime) -> None:
        """Store what the platform keeps: the fee plus truncation residue."""
        unsettled = session.execute(
            select(func.count(BetRow.id)).where(
                BetRow.market_id == market_id, BetRow.status == BetStatus.CONFIRMED.value,
            )
        ).scalar()
        if unsettled:
            return
        existing = session.execute(
            select(PlatformFeeRow.id).where(PlatformFeeRow.market_id == market_id)
        ).scalar_one_or_none()
        if existing is not None:
            return

        paid_out = session.execute(
            select(func.coalesce(func.sum(BetRow.payout_amount), 0)).where(
                BetRow.market_id == market_id, BetRow.status == BetStatus.WON.value,
            )
        ).scalar()
        amount = total_pool - int(paid_out)
        session.add(PlatformFeeRow(market_id=market_id, amount=amount, created_at=now))
        try:
            session.commit()
        except IntegrityError:
            # Recorded by a concurrent resume
            session.rollback()
            return
        log.info("platform_fee_recorded", market_id=market_id, amount=amount, total_pool=total_pool)

    # ── Cancellation ──────────────────────────────────────────

    def _refund(self, session: Session, market_id: int, now: datetime) -> ResolutionReport:
        bets = session.execute(
            select(BetRow)
            .where(
                BetRow.market_id == market_id,
                BetRow.status.in_((BetStatus.PENDING.value, BetStatus.CONFIRMED.value)),
            )
            .order_by(BetRow.id)
        ).scalars().all()
        for bet in bets:
            if bet.status == BetStatus.CONFIRMED.value:
                self._finalize_bet(session, bet, BetStatus.REFUNDED, bet.stake, now)
            else:
                self._expire_pending(session, bet, now)

        errors = self._disburse(session, market_id, BetStatus.REFUNDED, kind="refund")
        return self._report(session, market_id, errors)

    def _expire_pending(self, session: Session, bet: BetRow, now: datetime) -> None:
        bet_id, market_id = bet.id, bet.market_id
        result = session.execute(
            update(BetRow)
            .where(BetRow.id == bet_id, BetRow.status == BetStatus.PENDING.value)
            .values(status=BetStatus.REFUNDED.value, payout_amount=0, settled_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount == 1:
            log.info("pending_bet_voided", bet_id=bet_id, market_id=market_id)

    # ── Disbursement ──────────────────────────────────────────

    def _disburse(self, session: Session, market_id: int, status: BetStatus, kind: str) -> dict[int, str]:
        """Send every owed amount that has no payment reference yet.

        Each bet is paid independently; a failure is recorded against that
        bet and the rest continue. Returns bet id -> error for failures.
        """
        owed = session.execute(
            select(BetRow.id, BetRow.payout_amount, UserRow.payout_address)
            .join(UserRow, UserRow.id == BetRow.user_id)
            .where(
                BetRow.market_id == market_id,
                BetRow.status == status.value,
                BetRow.payout_reference.is_(None),
                BetRow.payout_amount > 0,
            )
            .order_by(BetRow.id)
        ).all()

        errors: dict[int, str] = {}
        for bet_id, amount, address in owed:
            try:
                reference = self.payment_sender.send(address, int(amount), memo=f"{kind}:bet:{bet_id}")
            except PaymentSendError as exc:
                log.error("payout_failed", bet_id=bet_id, market_id=market_id, kind=kind, amount=amount, error=str(exc))
                errors[bet_id] = str(exc)
                self._publish(PayoutFailed(bet_id=bet_id, amount=int(amount), error=str(exc)))
                continue

            result = session.execute(
                update(BetRow)
                .where(BetRow.id == bet_id, BetRow.payout_reference.is_(None))
                .values(payout_reference=reference)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if result.rowcount != 1:
                log.error(
                    "payout_reference_conflict",
                    bet_id=bet_id,
                    market_id=market_id,
                    reference=reference,
                )
                continue
            log.info("payout_recorded", bet_id=bet_id, market_id=market_id, kind=kind, amount=amount, reference=reference)
            self._publish(PayoutSent(bet_id=bet_id, amount=int(amount), payout_reference=reference))
        return errors

    # ── Reporting ─────────────────────────────────────────────

    def _report(self, session: Session, market_id: int, errors: dict[int, str]) -> ResolutionReport:
        market = load_market(session, market_id)
        bets = session.execute(
            select(BetRow)
            .where(BetRow.market_id == market_id, BetRow.status.in_(_SETTLED_STATUSES))
            .order_by(BetRow.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        settlements = [
            SettlementResult(
                bet_id=b.id,
                user_id=b.user_id,
                outcome_id=b.outcome_id,
                stake=b.stake,
                status=b.status,
                payout_amount=int(b.payout_amount or 0),
                payout_reference=b.payout_reference,
                error=errors.get(b.id),
            )
            for b in bets
        ]

        if market.status == MarketStatus.CANCELLED.value:
            total_pool = sum(s.stake for s in settlements if s.payout_amount > 0)
            return ResolutionReport(
                market_id=market_id,
                status=market.status,
                winning_outcome_id=None,
                total_pool=total_pool,
                net_pool=total_pool,
                platform_fee=0,
                settlements=settlements,
            )

        total_pool = PoolLedger(market_id).snapshot(session).total_pool
        fee = session.execute(
            select(PlatformFeeRow.amount).where(PlatformFeeRow.market_id == market_id)
        ).scalar_one_or_none()
        return ResolutionReport(
            market_id=market_id,
            status=market.status,
            winning_outcome_id=market.winning_outcome_id,
            total_pool=total_pool,
            net_pool=net_pool(total_pool, self.fee_rate),
            platform_fee=int(fee or 0),
            settlements=settlements,
        )
