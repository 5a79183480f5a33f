"""Per-bar signal state machine.

One instance lives inside each engine.  Signals are derived at most once per
bar boundary; the boundary is tracked as the open time of the next bar.
Nothing here touches the broker, so the whole object can be rebuilt from
scratch after a restart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from engulftrade.strategy.models import CloseSignal, OpenSignal, PatternResult

logger = logging.getLogger("engulftrade")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SignalPhase(str, Enum):
    IDLE = "idle"
    PATTERN_PENDING = "pattern_pending"
    CONFIRMED = "confirmed"
    SIGNAL_CONSUMED = "signal_consumed"


def bar_open_time(now: datetime, period_seconds: int) -> datetime:
    """Open time of the bar containing *now* (UTC-aligned periods)."""
    elapsed = int((now - _EPOCH).total_seconds())
    return _EPOCH + timedelta(seconds=elapsed - elapsed % period_seconds)


class SignalState:
    """Holds the live open-signal and close-signal."""

    def __init__(self) -> None:
        self.phase: SignalPhase = SignalPhase.IDLE
        self.open_signal: OpenSignal = OpenSignal.NONE
        self.close_signal: CloseSignal = CloseSignal.NONE
        self.next_bar_open: Optional[datetime] = None
        self.last_pattern: Optional[PatternResult] = None

    # ── Cadence ──────────────────────────────────────────────────────────

    def is_new_bar(self, now: datetime) -> bool:
        """``True`` until the first evaluation, then once per bar boundary."""
        return self.next_bar_open is None or now >= self.next_bar_open

    def mark_evaluated(self, now: datetime, period_seconds: int) -> None:
        """Record a successful evaluation; the next one is due at the next bar."""
        self.next_bar_open = bar_open_time(now, period_seconds) + timedelta(
            seconds=period_seconds
        )

    # ── Transitions ──────────────────────────────────────────────────────

    def record_pattern(self, pattern: PatternResult) -> None:
        """Note this bar's pattern; a found one waits for confirmation."""
        self.last_pattern = pattern
        if pattern.found:
            self.phase = SignalPhase.PATTERN_PENDING

    def apply(
        self,
        pattern: PatternResult,
        confirmed: bool,
        close: CloseSignal,
    ) -> None:
        """Apply one bar's evaluation.

        PatternPending → Confirmed, or back to Idle when vetoed.
        A live open-signal suppresses the close-signal for this bar.
        """
        self.last_pattern = pattern
        if not pattern.found:
            self.phase = SignalPhase.IDLE
            self.open_signal = OpenSignal.NONE
        elif confirmed:
            self.phase = SignalPhase.CONFIRMED
            self.open_signal = pattern.signal
        else:
            logger.info("Pattern %s not confirmed by oscillator", pattern.kind.value)
            self.phase = SignalPhase.IDLE
            self.open_signal = OpenSignal.NONE

        self.close_signal = (
            CloseSignal.NONE if self.open_signal is not OpenSignal.NONE else close
        )

    def consume_open(self) -> None:
        """The entry was placed (or already exists)."""
        self.open_signal = OpenSignal.NONE
        self.phase = SignalPhase.SIGNAL_CONSUMED

    def consume_close(self) -> None:
        """No position matching the close-signal remains."""
        self.close_signal = CloseSignal.NONE

    def snapshot(self) -> dict:
        return {
            "phase": self.phase.value,
            "open_signal": self.open_signal.value,
            "close_signal": self.close_signal.value,
            "last_pattern": (
                self.last_pattern.kind.value if self.last_pattern else None
            ),
            "next_bar_open": (
                self.next_bar_open.isoformat() if self.next_bar_open else None
            ),
        }
