"""Tests for implied odds."""

from __future__ import annotations

from datetime import datetime, timezone

from parimutuel_core.models import PoolSnapshot
from parimutuel_core.wagering.odds import compute_odds, get_odds

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def _snapshot(totals: dict[int, int]) -> PoolSnapshot:
    return PoolSnapshot(market_id=1, taken_at=NOW, totals=totals)


class TestComputeOdds:
    def test_proportional(self):
        assert compute_odds(_snapshot({1: 1000, 2: 2000})) == {1: 33, 2: 67}

    def test_single_sided_pool(self):
        assert compute_odds(_snapshot({1: 500, 2: 0})) == {1: 100, 2: 0}

    def test_rounding_is_not_renormalised(self):
        # 12.5 -> 13 and 87.5 -> 88, summing to 101
        odds = compute_odds(_snapshot({1: 1, 2: 7}))
        assert odds == {1: 13, 2: 88}
        assert sum(odds.values()) == 101

    def test_three_way_can_sum_below_100(self):
        odds = compute_odds(_snapshot({1: 1, 2: 1, 3: 1}))
        assert odds == {1: 33, 2: 33, 3: 33}

    def test_empty_pool_splits_evenly(self):
        assert compute_odds(_snapshot({1: 0, 2: 0})) == {1: 50, 2: 50}
        assert compute_odds(_snapshot({1: 0, 2: 0, 3: 0})) == {1: 33, 2: 33, 3: 33}

    def test_empty_pool_rounds_half_up(self):
        odds = compute_odds(_snapshot({i: 0 for i in range(8)}))
        assert set(odds.values()) == {13}

    def test_no_outcomes(self):
        assert compute_odds(_snapshot({})) == {}


class TestGetOdds:
    def test_keyed_by_label(self, db_session, yes_no_market, alice, place_confirmed):
        place_confirmed(alice, yes_no_market, "Yes", 1000)
        place_confirmed(alice, yes_no_market, "No", 3000)
        assert get_odds(db_session, yes_no_market.id) == {"Yes": 25, "No": 75}

    def test_fresh_market(self, db_session, multi_market):
        assert get_odds(db_session, multi_market.id) == {"Turkey": 33, "Switzerland": 33, "Other": 33}

    def test_pending_bets_do_not_move_odds(self, db_session, yes_no_market, alice, lifecycle, outcome, now):
        lifecycle.place_bet(db_session, alice, yes_no_market.id, 5000, outcome_id=outcome(yes_no_market, "Yes"), now=now)
        assert get_odds(db_session, yes_no_market.id) == {"Yes": 50, "No": 50}
