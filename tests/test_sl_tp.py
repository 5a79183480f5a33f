"""Tests for entry SL/TP placement and the spread-aware fallback."""

import logging

import pytest

from engulftrade.broker.models import Direction
from engulftrade.risk.sl_tp import SpreadAdjuster, entry_levels, price_bound
from engulftrade.risk.stop_policy import AtrStop, NoStop, TrailingStop

POINT = 0.0001


class TestSpreadAdjuster:
    def test_distance_outside_spread(self):
        adjuster = SpreadAdjuster(spread=0.0002, point=POINT)
        assert adjuster.distance(50) == pytest.approx(0.0050)
        assert adjuster.warned is False

    def test_falls_back_to_spread(self):
        adjuster = SpreadAdjuster(spread=0.0003, point=POINT)
        assert adjuster.distance(2) == pytest.approx(0.0003)
        assert adjuster.warned is True

    def test_warns_once_per_instance(self, caplog):
        adjuster = SpreadAdjuster(spread=0.0003, point=POINT)
        with caplog.at_level(logging.WARNING, logger="engulftrade"):
            adjuster.distance(1, "stop loss")
            adjuster.distance(2, "take profit")
        assert sum("inside the spread" in r.message for r in caplog.records) == 1


class TestEntryLevels:
    def test_fixed_points_long(self):
        sl, tp = entry_levels(
            Direction.LONG, 1.1002, 50, 100, NoStop(), SpreadAdjuster(0.0002, POINT),
        )
        assert sl == pytest.approx(1.0952)
        assert tp == pytest.approx(1.1102)

    def test_fixed_points_short(self):
        sl, tp = entry_levels(
            Direction.SHORT, 1.1000, 50, 100, NoStop(), SpreadAdjuster(0.0002, POINT),
        )
        assert sl == pytest.approx(1.1050)
        assert tp == pytest.approx(1.0900)

    def test_no_levels_configured(self):
        assert entry_levels(
            Direction.LONG, 1.1002, 0, 0, NoStop(), SpreadAdjuster(0.0002, POINT),
        ) == (None, None)

    def test_stop_inside_spread_uses_spread(self):
        sl, _ = entry_levels(
            Direction.LONG, 1.1010, 3, 0, NoStop(), SpreadAdjuster(0.0010, POINT),
        )
        assert sl == pytest.approx(1.1000)

    def test_trailing_distance_when_no_fixed_stop(self):
        sl, tp = entry_levels(
            Direction.LONG, 1.1002, 0, 0, TrailingStop(20, 10), SpreadAdjuster(0.0002, POINT),
        )
        assert sl == pytest.approx(1.0982)
        assert tp is None

    def test_fixed_stop_wins_over_trailing(self):
        sl, _ = entry_levels(
            Direction.LONG, 1.1002, 50, 0, TrailingStop(20, 10), SpreadAdjuster(0.0002, POINT),
        )
        assert sl == pytest.approx(1.0952)

    def test_atr_distance(self):
        sl, _ = entry_levels(
            Direction.SHORT, 1.1000, 0, 0, AtrStop(14, 2.0), SpreadAdjuster(0.0002, POINT),
            atr=0.0010,
        )
        assert sl == pytest.approx(1.1020)

    def test_atr_unknown_defers_stop(self):
        sl, _ = entry_levels(
            Direction.LONG, 1.1000, 0, 0, AtrStop(14, 2.0), SpreadAdjuster(0.0002, POINT),
        )
        assert sl is None


class TestPriceBound:
    def test_long_bound_above(self):
        assert price_bound(Direction.LONG, 1.1002, 10, POINT) == pytest.approx(1.1012)

    def test_short_bound_below(self):
        assert price_bound(Direction.SHORT, 1.1000, 10, POINT) == pytest.approx(1.0990)

    def test_zero_slippage_unbounded(self):
        assert price_bound(Direction.LONG, 1.1002, 0, POINT) is None
