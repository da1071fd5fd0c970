"""BetLifecycle — placing, confirming and expiring bets.

    pending   --payment confirmed-->  confirmed
    pending   --expired/cancelled-->  refunded
    confirmed --market resolved---->  won | lost      (MarketResolver)
    confirmed --market cancelled--->  refunded        (MarketResolver)

A stake enters the pool ledger only when its bet becomes confirmed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parimutuel_core.config.schema import WageringConfig
from parimutuel_core.db.tables.bets import BetRow
from parimutuel_core.db.tables.markets import MarketRow
from parimutuel_core.models import Bet, BetStatus, MarketStatus
from parimutuel_core.wagering.classification import outcome_for_position
from parimutuel_core.wagering.errors import (
    BetNotPendingError,
    DuplicatePaymentReferenceError,
    InvalidRequestError,
    LatePaymentError,
    MarketNotAcceptingBetsError,
    NotFoundError,
)
from parimutuel_core.wagering.events import BetConfirmed, EventBus, StakeCommitted
from parimutuel_core.wagering.ledger import PoolLedger
from parimutuel_core.wagering.markets import as_utc, load_market, load_outcomes, load_user

log = structlog.get_logger("bet_lifecycle")


@dataclass
class ConfirmResult:
    """Outcome of a confirmation call.

    ``already_confirmed`` marks a repeated delivery: nothing was changed.
    """

    bet_id: int
    status: str
    already_confirmed: bool = False
    payment_reference: str | None = None


def _accepting_bets(market: MarketRow, now: datetime) -> bool:
    return market.status == MarketStatus.ACTIVE.value and as_utc(now) < as_utc(market.close_time)


class BetLifecycle:
    """Drives individual bets through their state machine."""

    def __init__(self, config: WageringConfig, events: EventBus | None = None) -> None:
        self.config = config
        self.events = events

    def _publish(self, event) -> None:
        if self.events is not None:
            self.events.publish(event)

    # ── Validation ────────────────────────────────────────────

    def _check_stake(self, stake: int) -> None:
        if isinstance(stake, bool) or not isinstance(stake, int):
            raise InvalidRequestError(f"stake must be an integer amount, got {stake!r}")
        if stake <= 0:
            raise InvalidRequestError(f"stake must be positive, got {stake}")
        if stake < self.config.min_stake or stake > self.config.max_stake:
            raise InvalidRequestError(
                f"stake must be between {self.config.min_stake} and {self.config.max_stake}"
            )

    def _check_reference(self, payment_reference: str) -> str:
        ref = (payment_reference or "").strip()
        if not ref:
            raise InvalidRequestError("payment_reference must not be empty")
        if len(ref) > self.config.max_payment_reference_length:
            raise InvalidRequestError("payment_reference is too long")
        return ref

    @staticmethod
    def _resolve_outcome(
        outcomes: dict[int, str],
        outcome_id: int | None,
        position: str | None,
    ) -> int:
        """Normalise outcome_id / legacy position into a single outcome id."""
        if outcome_id is None and position is None:
            raise InvalidRequestError("either outcome_id or position is required")
        if outcome_id is not None and outcome_id not in outcomes:
            raise NotFoundError("outcome", outcome_id)
        if position is None:
            return outcome_id

        mapped = outcome_for_position(outcomes, position)
        if mapped is None:
            raise InvalidRequestError(f"position {position!r} is not valid for this market")
        if outcome_id is not None and outcome_id != mapped:
            raise InvalidRequestError("outcome_id and position refer to different outcomes")
        return mapped

    # ── Operations ────────────────────────────────────────────

    def place_bet(
        self,
        session: Session,
        user_id: int,
        market_id: int,
        stake: int,
        outcome_id: int | None = None,
        position: str | None = None,
        now: datetime | None = None,
    ) -> Bet:
        """Record a wager as ``pending``. The ledger is not touched."""
        now = now or datetime.now(timezone.utc)
        self._check_stake(stake)
        load_user(session, user_id)
        market = load_market(session, market_id)
        if not _accepting_bets(market, now):
            raise MarketNotAcceptingBetsError(f"market {market_id} is not accepting bets")
        resolved_outcome = self._resolve_outcome(load_outcomes(session, market_id), outcome_id, position)

        row = BetRow(
            user_id=user_id,
            market_id=market_id,
            outcome_id=resolved_outcome,
            stake=stake,
            status=BetStatus.PENDING.value,
            created_at=now,
        )
        session.add(row)
        session.commit()
        session.refresh(row)

        log.info(
            "bet_placed",
            bet_id=row.id,
            user_id=user_id,
            market_id=market_id,
            outcome_id=resolved_outcome,
            stake=stake,
        )
        return Bet.model_validate(row)

    def confirm_bet(
        self,
        session: Session,
        bet_id: int,
        payment_reference: str,
        now: datetime | None = None,
    ) -> ConfirmResult:
        """Confirm payment for a pending bet and commit its stake to the pool.

        Idempotent: a bet that is already confirmed (or settled) is reported
        with ``already_confirmed=True`` whatever reference is offered, and the
        ledger is never credited twice.
        """
        now = now or datetime.now(timezone.utc)
        ref = self._check_reference(payment_reference)

        bet = session.get(BetRow, bet_id, populate_existing=True)
        if bet is None:
            raise NotFoundError("bet", bet_id)
        if BetStatus(bet.status).is_committed:
            return self._already_confirmed(bet, ref)
        if bet.status != BetStatus.PENDING.value:
            raise BetNotPendingError(bet_id, bet.status)

        # Shared lock on the market row: a concurrent resolution waits for us
        session.execute(
            select(MarketRow.id).where(MarketRow.id == bet.market_id).with_for_update(read=True)
        )
        market = load_market(session, bet.market_id)
        if not _accepting_bets(market, now):
            self._record_late_payment(session, bet, market, ref, now)

        clash = session.execute(
            select(BetRow.id).where(BetRow.payment_reference == ref, BetRow.id != bet_id)
        ).scalar_one_or_none()
        if clash is not None:
            session.rollback()
            raise DuplicatePaymentReferenceError(f"payment reference already used by bet {clash}")

        market_active = select(MarketRow.id).where(
            MarketRow.id == bet.market_id,
            MarketRow.status == MarketStatus.ACTIVE.value,
        ).exists()
        try:
            result = session.execute(
                update(BetRow)
                .where(
                    BetRow.id == bet_id,
                    BetRow.status == BetStatus.PENDING.value,
                    market_active,
                )
                .values(
                    status=BetStatus.CONFIRMED.value,
                    confirmed_at=now,
                    payment_reference=ref,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return self._lost_confirmation_race(session, bet_id, ref, now)

            PoolLedger(bet.market_id).add_stake(session, bet.outcome_id, bet.stake)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicatePaymentReferenceError("payment reference already recorded") from exc

        log.info(
            "bet_confirmed",
            bet_id=bet_id,
            market_id=bet.market_id,
            outcome_id=bet.outcome_id,
            stake=bet.stake,
            payment_reference=ref,
        )
        self._publish(BetConfirmed(bet_id=bet_id, market_id=bet.market_id, payment_reference=ref))
        self._publish(StakeCommitted(market_id=bet.market_id, outcome_id=bet.outcome_id, amount=bet.stake))
        return ConfirmResult(
            bet_id=bet_id,
            status=BetStatus.CONFIRMED.value,
            payment_reference=ref,
        )

    def expire_bet(self, session: Session, bet_id: int, now: datetime | None = None) -> Bet:
        """Give up on a pending bet whose payment never arrived.

        No money was received, so nothing is refunded and the ledger is untouched.
        Expiring an already refunded bet is a no-op.
        """
        now = now or datetime.now(timezone.utc)
        result = session.execute(
            update(BetRow)
            .where(BetRow.id == bet_id, BetRow.status == BetStatus.PENDING.value)
            .values(status=BetStatus.REFUNDED.value, payout_amount=0, settled_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        bet = session.get(BetRow, bet_id, populate_existing=True)
        if bet is None:
            raise NotFoundError("bet", bet_id)
        if result.rowcount == 1:
            log.info("bet_expired", bet_id=bet_id, market_id=bet.market_id)
        elif bet.status != BetStatus.REFUNDED.value:
            raise BetNotPendingError(bet_id, bet.status)
        return Bet.model_validate(bet)

    # ── Helpers ───────────────────────────────────────────────

    def _already_confirmed(self, bet: BetRow, ref: str) -> ConfirmResult:
        if bet.payment_reference != ref:
            log.warning(
                "confirmation_reference_mismatch",
                bet_id=bet.id,
                stored_reference=bet.payment_reference,
                offered_reference=ref,
            )
        else:
            log.info("bet_already_confirmed", bet_id=bet.id)
        return ConfirmResult(
            bet_id=bet.id,
            status=bet.status,
            already_confirmed=True,
            payment_reference=bet.payment_reference,
        )

    def _lost_confirmation_race(
        self,
        session: Session,
        bet_id: int,
        ref: str,
        now: datetime,
    ) -> ConfirmResult:
        bet = session.get(BetRow, bet_id, populate_existing=True)
        if BetStatus(bet.status).is_committed:
            return self._already_confirmed(bet, ref)
        if bet.status != BetStatus.PENDING.value:
            raise BetNotPendingError(bet_id, bet.status)
        # Still pending, so the market stopped being active under us
        self._record_late_payment(session, bet, load_market(session, bet.market_id), ref, now)

    def _record_late_payment(
        self,
        session: Session,
        bet: BetRow,
        market: MarketRow,
        ref: str,
        now: datetime,
    ) -> None:
        """Keep the bet pending, note the payment for an operator, and reject."""
        bet.metadata_ = {
            **(bet.metadata_ or {}),
            "late_payment_reference": ref,
            "late_payment_at": as_utc(now).isoformat(),
        }
        session.commit()
        log.warning(
            "late_payment_rejected",
            bet_id=bet.id,
            market_id=market.id,
            market_status=market.status,
            payment_reference=ref,
        )
        raise LatePaymentError(
            f"market {market.id} is {market.status} or closed; bet {bet.id} left pending"
        )
