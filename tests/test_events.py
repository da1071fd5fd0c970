"""Tests for the in-process event bus."""

from __future__ import annotations

from parimutuel_core.wagering.events import BetConfirmed, EventBus, MarketCancelled, StakeCommitted


class TestEventBus:
    def test_type_filtered_and_catch_all(self):
        bus = EventBus()
        stakes, everything = [], []
        bus.subscribe(stakes.append, StakeCommitted)
        bus.subscribe(everything.append)

        bus.publish(StakeCommitted(market_id=1, outcome_id=2, amount=100))
        bus.publish(MarketCancelled(market_id=1))

        assert stakes == [StakeCommitted(market_id=1, outcome_id=2, amount=100)]
        assert len(everything) == 2

    def test_failing_subscriber_does_not_stop_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.publish(BetConfirmed(bet_id=1, market_id=1, payment_reference="tx"))

        assert len(received) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(received.append, MarketCancelled)
        bus.unsubscribe(received.append, MarketCancelled)
        bus.unsubscribe(received.append)
        bus.publish(MarketCancelled(market_id=1))
        assert received == []
