"""Tests for market resolution, cancellation and resumable settlement."""

from __future__ import annotations

from datetime import timedelta

import pytest

from parimutuel_core.db.tables.bets import PlatformFeeRow
from parimutuel_core.db.tables.markets import OutcomeRow
from parimutuel_core.models import BetStatus, MarketStatus
from parimutuel_core.wagering import (
    ConflictError,
    InvariantViolation,
    MarketAlreadySettledError,
    NotFoundError,
    PoolLedger,
    ResolutionTooEarlyError,
    create_market,
    get_bet,
    get_market,
    list_market_bets,
)
from parimutuel_core.wagering.events import MarketResolved, PayoutFailed, PayoutSent
from parimutuel_core.wagering.resolver import resolved_status


class TestResolvedStatus:
    def test_yes_no(self):
        assert resolved_status({1: "Yes", 2: "No"}, 1) == "resolved_yes"
        assert resolved_status({1: "Yes", 2: "No"}, 2) == "resolved_no"

    def test_up_down_uses_outcome_id(self):
        assert resolved_status({7: "Up", 8: "Down"}, 8) == "resolved_outcome:8"

    def test_multi_outcome(self):
        assert resolved_status({1: "A", 2: "B", 3: "C"}, 3) == "resolved_outcome:3"
        assert MarketStatus.is_resolved("resolved_outcome:3")


class TestResolve:
    def test_pays_winners_and_records_fee(
        self, db_session, resolver, sender, yes_no_market, alice, bob, place_confirmed, outcome, after_close,
    ):
        win = place_confirmed(alice, yes_no_market, "Yes", 1000)
        lose = place_confirmed(bob, yes_no_market, "No", 1000)

        report = resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        assert report.status == "resolved_yes"
        assert report.total_pool == 2000
        assert report.net_pool == 1980
        assert report.platform_fee == 20
        assert report.total_disbursed == 1980
        assert report.pending_disbursements == []
        assert sender.sent == [("ecash:alice", 1980, f"payout:bet:{win}")]

        won = get_bet(db_session, win)
        assert won.status is BetStatus.WON
        assert won.payout_amount == 1980
        assert won.payout_reference == "tx0001"
        lost = get_bet(db_session, lose)
        assert lost.status is BetStatus.LOST
        assert lost.payout_amount == 0
        assert lost.payout_reference is None

        market = get_market(db_session, yes_no_market.id)
        assert market.status == "resolved_yes"
        assert market.winning_outcome_id == outcome(yes_no_market, "Yes")
        assert market.resolved_at is not None

    def test_pools_are_frozen_after_resolution(
        self, db_session, resolver, yes_no_market, alice, bob, place_confirmed, outcome, after_close,
    ):
        place_confirmed(alice, yes_no_market, "Yes", 1000)
        place_confirmed(bob, yes_no_market, "No", 3000)
        resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "No"), now=after_close)
        # Settled stakes stay in the ledger and conservation still holds
        snap = PoolLedger(yes_no_market.id).verify_conservation(db_session)
        assert snap.total_pool == 4000

    def test_second_resolution_rejected(
        self, db_session, resolver, sender, yes_no_market, alice, place_confirmed, outcome, after_close,
    ):
        place_confirmed(alice, yes_no_market, "Yes", 1000)
        resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        with pytest.raises(MarketAlreadySettledError):
            resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "No"), now=after_close)
        with pytest.raises(MarketAlreadySettledError):
            resolver.cancel(db_session, yes_no_market.id, now=after_close)
        assert len(sender.sent) == 1

    def test_too_early_without_force(self, db_session, resolver, yes_no_market, outcome, now):
        with pytest.raises(ResolutionTooEarlyError):
            resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=now)
        assert get_market(db_session, yes_no_market.id).status == "active"

    def test_force_resolves_early(self, db_session, resolver, yes_no_market, outcome, now):
        report = resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "No"), force=True, now=now)
        assert report.status == "resolved_no"
        assert report.total_pool == 0
        assert report.settlements == []

    def test_winning_outcome_must_belong_to_market(
        self, db_session, resolver, yes_no_market, multi_market, outcome, after_close,
    ):
        with pytest.raises(NotFoundError):
            resolver.resolve(db_session, yes_no_market.id, outcome(multi_market, "Other"), now=after_close)

    def test_unknown_market(self, db_session, resolver, after_close):
        with pytest.raises(NotFoundError):
            resolver.resolve(db_session, 404, 1, now=after_close)

    def test_pending_bets_are_not_settled(
        self, db_session, resolver, lifecycle, yes_no_market, alice, bob, place_confirmed, outcome, now, after_close,
    ):
        place_confirmed(alice, yes_no_market, "Yes", 1000)
        pending = lifecycle.place_bet(
            db_session, bob, yes_no_market.id, 5000, outcome_id=outcome(yes_no_market, "Yes"), now=now,
        )
        report = resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        assert pending.id not in {s.bet_id for s in report.settlements}
        assert get_bet(db_session, pending.id).status is BetStatus.PENDING
        assert report.settlements[0].payout_amount == 990

    def test_nobody_backed_the_winner(
        self, db_session, resolver, sender, yes_no_market, alice, bob, place_confirmed, outcome, after_close,
    ):
        place_confirmed(alice, yes_no_market, "No", 1000)
        place_confirmed(bob, yes_no_market, "No", 500)

        report = resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        assert {s.status for s in report.settlements} == {"lost"}
        assert report.platform_fee == 1500
        assert sender.sent == []

    def test_multi_outcome_market(
        self, db_session, resolver, multi_market, alice, bob, carol, place_confirmed, outcome, after_close,
    ):
        a = place_confirmed(alice, multi_market, "Turkey", 1000)
        b = place_confirmed(bob, multi_market, "Switzerland", 2000)
        c = place_confirmed(carol, multi_market, "Turkey", 3000)

        turkey = outcome(multi_market, "Turkey")
        report = resolver.resolve(db_session, multi_market.id, turkey, now=after_close)

        assert report.status == f"resolved_outcome:{turkey}"
        payouts = {s.bet_id: s.payout_amount for s in report.settlements}
        assert payouts == {a: 1485, b: 0, c: 4455}
        assert report.platform_fee == 60

    def test_publishes_events(
        self, db_session, resolver, events, yes_no_market, alice, place_confirmed, outcome, after_close,
    ):
        bet_id = place_confirmed(alice, yes_no_market, "Yes", 1000)
        seen = []
        events.subscribe(seen.append, MarketResolved)
        events.subscribe(seen.append, PayoutSent)

        resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        assert seen == [
            MarketResolved(market_id=yes_no_market.id, status="resolved_yes", winning_outcome_id=outcome(yes_no_market, "Yes")),
            PayoutSent(bet_id=bet_id, amount=990, payout_reference="tx0001"),
        ]

    def test_conservation_failure_halts_settlement(
        self, db_session, resolver, sender, yes_no_market, alice, place_confirmed, outcome, after_close,
    ):
        bet_id = place_confirmed(alice, yes_no_market, "Yes", 1000)
        row = db_session.get(OutcomeRow, outcome(yes_no_market, "Yes"))
        row.pool = 999
        db_session.commit()

        with pytest.raises(InvariantViolation):
            resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)
        assert get_bet(db_session, bet_id).status is BetStatus.CONFIRMED
        assert sender.sent == []


class TestPaymentFailures:
    def test_failed_payout_is_reported_and_resumable(
        self, db_session, resolver, sender, events, yes_no_market, alice, bob, carol, place_confirmed, outcome, after_close,
    ):
        a = place_confirmed(alice, yes_no_market, "Yes", 1000)
        b = place_confirmed(bob, yes_no_market, "Yes", 1000)
        place_confirmed(carol, yes_no_market, "No", 2000)
        failures = []
        events.subscribe(failures.append, PayoutFailed)
        sender.failing.add("ecash:alice")

        report = resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)

        assert [s.bet_id for s in report.pending_disbursements] == [a]
        failed = next(s for s in report.settlements if s.bet_id == a)
        assert failed.status == "won"
        assert "wallet unavailable" in failed.error
        assert [f.bet_id for f in failures] == [a]
        assert sender.sent == [("ecash:bob", 1980, f"payout:bet:{b}")]

        sender.failing.clear()
        resumed = resolver.resume(db_session, yes_no_market.id, now=after_close)

        assert resumed.pending_disbursements == []
        assert resumed.total_disbursed == 3960
        # Bob is not paid twice
        assert [s[0] for s in sender.sent] == ["ecash:bob", "ecash:alice"]

    def test_resume_is_noop_when_complete(
        self, db_session, resolver, sender, yes_no_market, alice, place_confirmed, outcome, after_close,
    ):
        place_confirmed(alice, yes_no_market, "Yes", 1000)
        resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)
        report = resolver.resume(db_session, yes_no_market.id, now=after_close)
        assert len(sender.sent) == 1
        assert report.platform_fee == 10
        assert db_session.query(PlatformFeeRow).count() == 1

    def test_resume_after_crash_between_claim_and_settlement(
        self, db_session, resolver, sender, yes_no_market, alice, bob, place_confirmed, outcome, after_close,
    ):
        win = place_confirmed(alice, yes_no_market, "Yes", 1000)
        lose = place_confirmed(bob, yes_no_market, "No", 1000)
        # Market claimed as resolved, but the process died before any bet was settled
        resolver._claim(
            db_session,
            yes_no_market.id,
            status="resolved_yes",
            winning_outcome_id=outcome(yes_no_market, "Yes"),
            resolved_at=after_close,
        )
        assert get_bet(db_session, win).status is BetStatus.CONFIRMED

        first = resolver.resume(db_session, yes_no_market.id, now=after_close)
        second = resolver.resume(db_session, yes_no_market.id, now=after_close)

        won = get_bet(db_session, win)
        assert won.status is BetStatus.WON
        assert won.payout_amount == 1980
        assert get_bet(db_session, lose).status is BetStatus.LOST
        assert sender.sent == [("ecash:alice", 1980, f"payout:bet:{win}")]
        assert first.pending_disbursements == [] and second.pending_disbursements == []
        assert second.total_disbursed == 1980
        assert db_session.query(PlatformFeeRow).count() == 1

    def test_resume_active_market_rejected(self, db_session, resolver, yes_no_market, after_close):
        with pytest.raises(ConflictError):
            resolver.resume(db_session, yes_no_market.id, now=after_close)


class TestCancel:
    def test_refunds_confirmed_and_voids_pending(
        self, db_session, resolver, sender, lifecycle, yes_no_market, alice, bob, place_confirmed, outcome, now,
    ):
        a = place_confirmed(alice, yes_no_market, "Yes", 1000)
        b = place_confirmed(bob, yes_no_market, "No", 2500)
        pending = lifecycle.place_bet(
            db_session, bob, yes_no_market.id, 700, outcome_id=outcome(yes_no_market, "No"), now=now,
        )

        report = resolver.cancel(db_session, yes_no_market.id, now=now + timedelta(minutes=5))

        assert report.status == "cancelled"
        assert report.winning_outcome_id is None
        assert report.platform_fee == 0
        assert report.total_pool == 3500
        assert sorted(sender.sent) == [
            ("ecash:alice", 1000, f"refund:bet:{a}"),
            ("ecash:bob", 2500, f"refund:bet:{b}"),
        ]
        voided = get_bet(db_session, pending.id)
        assert voided.status is BetStatus.REFUNDED
        assert voided.payout_amount == 0
        assert {bet.status for bet in list_market_bets(db_session, yes_no_market.id)} == {BetStatus.REFUNDED}

        snap = PoolLedger(yes_no_market.id).verify_conservation(db_session)
        assert snap.total_pool == 0

    def test_failed_refund_is_resumable(
        self, db_session, resolver, sender, yes_no_market, alice, place_confirmed, now,
    ):
        a = place_confirmed(alice, yes_no_market, "Yes", 1000)
        sender.failing.add("ecash:alice")

        report = resolver.cancel(db_session, yes_no_market.id, now=now)
        assert [s.bet_id for s in report.pending_disbursements] == [a]

        sender.failing.clear()
        report = resolver.resume(db_session, yes_no_market.id, now=now)
        assert report.pending_disbursements == []
        assert sender.sent == [("ecash:alice", 1000, f"refund:bet:{a}")]

    def test_cancelled_market_cannot_be_resolved(self, db_session, resolver, yes_no_market, outcome, now, after_close):
        resolver.cancel(db_session, yes_no_market.id, now=now)
        with pytest.raises(MarketAlreadySettledError):
            resolver.resolve(db_session, yes_no_market.id, outcome(yes_no_market, "Yes"), now=after_close)


class TestUpDownMarket:
    def test_resolves_by_outcome_id(self, db_session, resolver, lifecycle, alice, now, after_close):
        market = create_market(db_session, "BTC above 100k at noon?", "crypto", now + timedelta(hours=1), ["Up", "Down"], now=now)
        bet = lifecycle.place_bet(db_session, alice, market.id, 1000, position="down", now=now)
        lifecycle.confirm_bet(db_session, bet.id, "tx-down", now=now)

        report = resolver.resolve(db_session, market.id, bet.outcome_id, now=after_close)

        assert report.status == f"resolved_outcome:{bet.outcome_id}"
        assert report.settlements[0].status == "won"
