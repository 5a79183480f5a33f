"""Tests for the per-bar signal state machine."""

from datetime import datetime, timedelta, timezone

from engulftrade.strategy.models import (
    NO_PATTERN,
    CloseSignal,
    OpenSignal,
    PatternKind,
    PatternResult,
)
from engulftrade.strategy.signal_state import SignalPhase, SignalState, bar_open_time

BULLISH = PatternResult(PatternKind.BULLISH_ENGULFING, OpenSignal.BUY, "down")


class TestBarCadence:
    def test_bar_open_time_floors_to_period(self):
        now = datetime(2025, 1, 10, 12, 47, 13, tzinfo=timezone.utc)
        assert bar_open_time(now, 3600) == datetime(2025, 1, 10, 12, tzinfo=timezone.utc)
        assert bar_open_time(now, 900) == datetime(2025, 1, 10, 12, 45, tzinfo=timezone.utc)

    def test_first_tick_is_new_bar(self):
        assert SignalState().is_new_bar(datetime(2025, 1, 10, tzinfo=timezone.utc))

    def test_once_per_bar(self):
        state = SignalState()
        now = datetime(2025, 1, 10, 12, 5, tzinfo=timezone.utc)
        state.mark_evaluated(now, 3600)
        assert state.next_bar_open == datetime(2025, 1, 10, 13, tzinfo=timezone.utc)
        assert not state.is_new_bar(now + timedelta(minutes=54))
        assert state.is_new_bar(datetime(2025, 1, 10, 13, tzinfo=timezone.utc))


class TestTransitions:
    def test_found_pattern_waits_for_confirmation(self):
        state = SignalState()
        state.record_pattern(BULLISH)
        assert state.phase is SignalPhase.PATTERN_PENDING
        assert state.open_signal is OpenSignal.NONE
        assert state.last_pattern is BULLISH

        state.apply(BULLISH, confirmed=True, close=CloseSignal.NONE)
        assert state.phase is SignalPhase.CONFIRMED

    def test_no_pattern_leaves_phase(self):
        state = SignalState()
        state.record_pattern(NO_PATTERN)
        assert state.phase is SignalPhase.IDLE
        assert state.last_pattern is NO_PATTERN

    def test_confirmed_pattern_sets_open_signal(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=True, close=CloseSignal.NONE)
        assert state.phase is SignalPhase.CONFIRMED
        assert state.open_signal is OpenSignal.BUY

    def test_vetoed_pattern_returns_to_idle(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=False, close=CloseSignal.CLOSE_SHORT)
        assert state.phase is SignalPhase.IDLE
        assert state.open_signal is OpenSignal.NONE
        assert state.close_signal is CloseSignal.CLOSE_SHORT

    def test_open_signal_suppresses_close_signal(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=True, close=CloseSignal.CLOSE_LONG)
        assert state.close_signal is CloseSignal.NONE

    def test_next_bar_supersedes_unconsumed_signal(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=True, close=CloseSignal.NONE)
        state.apply(NO_PATTERN, confirmed=True, close=CloseSignal.NONE)
        assert state.open_signal is OpenSignal.NONE
        assert state.phase is SignalPhase.IDLE

    def test_consume(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=True, close=CloseSignal.NONE)
        state.consume_open()
        assert state.phase is SignalPhase.SIGNAL_CONSUMED
        assert state.open_signal is OpenSignal.NONE

        state.apply(NO_PATTERN, confirmed=True, close=CloseSignal.CLOSE_LONG)
        state.consume_close()
        assert state.close_signal is CloseSignal.NONE

    def test_snapshot(self):
        state = SignalState()
        state.apply(BULLISH, confirmed=True, close=CloseSignal.NONE)
        snap = state.snapshot()
        assert snap["phase"] == "confirmed"
        assert snap["open_signal"] == "buy"
        assert snap["last_pattern"] == "bullish_engulfing"
        assert snap["next_bar_open"] is None
