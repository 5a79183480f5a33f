"""Tests for stop-loss policy math and the trailing / break-even planners."""

from dataclasses import replace
from types import SimpleNamespace

import pytest

from engulftrade.broker.models import Direction, Position, Quote
from engulftrade.lifecycle import plan_stop_adjustments
from engulftrade.risk.sl_tp import SpreadAdjuster
from engulftrade.risk.stop_policy import (
    AtrStop,
    BreakEvenStop,
    FixedStop,
    NoStop,
    TrailingStop,
    break_even_price,
    initial_stop,
    is_more_favorable,
    policy_from_config,
    profit_points,
    trailing_candidate,
)

from conftest import INSTRUMENT, MAGIC, NOW


def _position(pid="P1", direction=Direction.LONG, open_price=1.1000, volume=1.0, **kw):
    return Position(
        position_id=pid,
        instrument=INSTRUMENT,
        direction=direction,
        open_price=open_price,
        volume=volume,
        open_time=NOW,
        magic=MAGIC,
        **kw,
    )


class TestPolicyFromConfig:
    def _cfg(self, **kw):
        defaults = dict(
            stop_policy="none",
            stop_loss_points=0.0,
            trailing_stop_points=200.0,
            trailing_trigger_points=100.0,
            break_even_fee_per_lot=0.0,
            break_even_trigger_points=100.0,
            atr_period=14,
            atr_multiplier=2.0,
        )
        defaults.update(kw)
        return SimpleNamespace(**defaults)

    def test_variants(self):
        assert policy_from_config(self._cfg()) == NoStop()
        assert policy_from_config(self._cfg(stop_policy="fixed", stop_loss_points=50)) == FixedStop(50)
        assert policy_from_config(self._cfg(stop_policy="trailing")) == TrailingStop(200.0, 100.0)
        assert policy_from_config(self._cfg(stop_policy="break_even")) == BreakEvenStop(0.0, 100.0)
        assert policy_from_config(self._cfg(stop_policy="atr")) == AtrStop(14, 2.0)

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="stop_policy"):
            policy_from_config(self._cfg(stop_policy="chandelier"))


class TestHelpers:
    def test_profit_points_long_uses_bid(self):
        p = _position(open_price=1.1000)
        assert profit_points(p, Quote(1.1015, 1.1017), 0.0001) == pytest.approx(15.0)

    def test_profit_points_short_uses_ask(self):
        p = _position(direction=Direction.SHORT, open_price=1.1000)
        assert profit_points(p, Quote(1.0978, 1.0980), 0.0001) == pytest.approx(20.0)

    def test_is_more_favorable(self):
        assert is_more_favorable(Direction.LONG, 1.1, None)
        assert is_more_favorable(Direction.LONG, 1.1010, 1.1000)
        assert not is_more_favorable(Direction.LONG, 1.1000, 1.1000)
        assert is_more_favorable(Direction.SHORT, 1.0990, 1.1000)
        assert not is_more_favorable(Direction.SHORT, 1.1010, 1.1000)

    def test_initial_stop(self):
        assert initial_stop(Direction.LONG, 1.1000, 0.0050) == pytest.approx(1.0950)
        assert initial_stop(Direction.SHORT, 1.1000, 0.0050) == pytest.approx(1.1050)

    def test_trailing_candidate(self):
        quote = Quote(1.1030, 1.1032)
        assert trailing_candidate(_position(), quote, 0.0020) == pytest.approx(1.1010)
        short = _position(direction=Direction.SHORT)
        assert trailing_candidate(short, quote, 0.0020) == pytest.approx(1.1052)


class TestBreakEvenPrice:
    def test_weighted_entry_plus_fees(self):
        positions = [
            _position("P1", open_price=100.0, volume=1.0),
            _position("P2", open_price=102.0, volume=0.5),
        ]
        assert break_even_price(positions, fee_per_lot=20.0) == pytest.approx(120.6667, abs=1e-4)

    def test_short_subtracts_fees(self):
        positions = [
            _position("P1", Direction.SHORT, open_price=100.0, volume=1.0),
            _position("P2", Direction.SHORT, open_price=102.0, volume=0.5),
        ]
        assert break_even_price(positions, fee_per_lot=20.0) == pytest.approx(80.6667, abs=1e-4)

    def test_no_fee_is_weighted_average(self):
        positions = [_position(open_price=1.1000, volume=2.0), _position("P2", open_price=1.1030)]
        assert break_even_price(positions, 0.0) == pytest.approx(1.1010)

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            break_even_price([], 0.0)

    def test_mixed_directions_raise(self):
        with pytest.raises(ValueError, match="one direction"):
            break_even_price([_position(), _position("P2", Direction.SHORT)], 0.0)

    def test_zero_volume_raises(self):
        with pytest.raises(ValueError, match="volume"):
            break_even_price([_position(volume=0.0)], 0.0)


class TestTrailingAdjustment:
    POLICY = TrailingStop(points=20, profit_trigger=10)
    POINT = 0.0001

    def _tick(self, position, bid):
        quote = Quote(bid, bid + 0.0002)
        adjuster = SpreadAdjuster(quote.spread, self.POINT)
        return plan_stop_adjustments([position], self.POLICY, quote, self.POINT, adjuster)

    def test_below_trigger_does_nothing(self):
        assert self._tick(_position(), 1.1005) == []

    def test_stop_only_ratchets_up_for_long(self):
        position = _position()
        applied = []
        for bid in (1.1015, 1.1030, 1.1020, 1.1012, 1.1040):
            for action in self._tick(position, bid):
                position = replace(position, stop_loss=action.stop_loss)
                applied.append(action.stop_loss)

        assert applied == pytest.approx([1.0995, 1.1010, 1.1020])
        assert applied == sorted(applied)

    def test_short_stop_ratchets_down(self):
        position = _position(direction=Direction.SHORT, stop_loss=1.1010)
        quote = Quote(1.0968, 1.0970)
        actions = plan_stop_adjustments(
            [position], self.POLICY, quote, self.POINT, SpreadAdjuster(quote.spread, self.POINT),
        )
        assert len(actions) == 1
        assert actions[0].stop_loss == pytest.approx(1.0990)
        assert actions[0].reason == "trailing_stop"

    def test_inside_spread_uses_spread(self):
        quote = Quote(1.1050, 1.1080)  # 30-point spread
        actions = plan_stop_adjustments(
            [_position()], self.POLICY, quote, self.POINT, SpreadAdjuster(quote.spread, self.POINT),
        )
        assert actions[0].stop_loss == pytest.approx(1.1050 - 0.0030)


class TestBreakEvenAdjustment:
    def test_group_level_applied_to_qualifying(self):
        policy = BreakEvenStop(fee_per_lot=20.0, profit_trigger=10)
        positions = [
            _position("P1", open_price=100.0, volume=1.0),
            _position("P2", open_price=102.0, volume=0.5),
        ]
        quote = Quote(125.0, 125.5)
        actions = plan_stop_adjustments(positions, policy, quote, 1.0, SpreadAdjuster(0.5, 1.0))
        assert [a.position_id for a in actions] == ["P1", "P2"]
        assert all(a.stop_loss == pytest.approx(120.6667, abs=1e-4) for a in actions)
        assert all(a.reason == "break_even" for a in actions)

    def test_only_triggered_positions_move(self):
        policy = BreakEvenStop(fee_per_lot=0.0, profit_trigger=10)
        positions = [
            _position("P1", open_price=100.0),
            _position("P2", open_price=108.0),
        ]
        quote = Quote(112.0, 112.5)
        actions = plan_stop_adjustments(positions, policy, quote, 1.0, SpreadAdjuster(0.5, 1.0))
        assert [a.position_id for a in actions] == ["P1"]
        assert actions[0].stop_loss == pytest.approx(104.0)

    def test_existing_tighter_stop_kept(self):
        policy = BreakEvenStop(fee_per_lot=0.0, profit_trigger=10)
        positions = [_position(open_price=100.0, stop_loss=105.0)]
        actions = plan_stop_adjustments(
            positions, policy, Quote(130.0, 130.5), 1.0, SpreadAdjuster(0.5, 1.0),
        )
        assert actions == []

    def test_no_stop_policy_plans_nothing(self):
        actions = plan_stop_adjustments(
            [_position()], NoStop(), Quote(1.2, 1.2002), 0.0001, SpreadAdjuster(0.0002, 0.0001),
        )
        assert actions == []
