"""Oscillator confirmation and oscillator-only exit signals.

Both rules read the stochastic-RSI K and D lines.  Comparisons are strict:
K exactly on a threshold neither confirms nor counts as crossed.
"""

from typing import Optional

from engulftrade.broker.protocols import IndicatorService
from engulftrade.errors import DataUnavailable
from engulftrade.strategy.models import (
    LINE_D,
    LINE_K,
    SERIES_STOCH_RSI,
    CloseSignal,
    OscillatorReading,
    PatternKind,
    PatternResult,
)

OVERBOUGHT = 80.0
OVERSOLD = 20.0


def read_oscillator(indicators: IndicatorService, offset: int) -> OscillatorReading:
    """K and D at *offset*; missing lines stay ``None``."""
    return OscillatorReading(
        k=indicators.value(SERIES_STOCH_RSI, LINE_K, offset),
        d=indicators.value(SERIES_STOCH_RSI, LINE_D, offset),
    )


def confirm(
    pattern: PatternResult,
    reading: OscillatorReading,
    overbought: float = OVERBOUGHT,
    oversold: float = OVERSOLD,
) -> bool:
    """Return ``True`` when the oscillator agrees with *pattern*.

    *reading* is the oscillator on the pattern bar (offset 1).
    Bullish needs K and D below *oversold*; bearish needs both above
    *overbought*.  No pattern is trivially confirmed.

    Raises:
        DataUnavailable: a pattern was found but K(1) or D(1) is missing.
    """
    if pattern.kind is PatternKind.NONE:
        return True
    if reading.k is None:
        raise DataUnavailable("oscillator K", 1)
    if reading.d is None:
        raise DataUnavailable("oscillator D", 1)

    if pattern.kind is PatternKind.BULLISH_ENGULFING:
        return reading.k < oversold and reading.d < oversold
    return reading.k > overbought and reading.d > overbought


def _crossed_down(k2: float, k1: float, level: float) -> bool:
    return k2 > level and k1 < level


def _crossed_up(k2: float, k1: float, level: float) -> bool:
    return k2 < level and k1 > level


def close_signal(
    k1: Optional[float],
    k2: Optional[float],
    overbought: float = OVERBOUGHT,
    oversold: float = OVERSOLD,
) -> CloseSignal:
    """Exit signal from K crossing either threshold between offsets 2 and 1.

    A downward cross of either level closes longs, an upward cross of
    either level closes shorts.

    Raises:
        DataUnavailable: K(1) or K(2) is missing.
    """
    if k1 is None:
        raise DataUnavailable("oscillator K", 1)
    if k2 is None:
        raise DataUnavailable("oscillator K", 2)

    levels = (overbought, oversold)
    if any(_crossed_down(k2, k1, level) for level in levels):
        return CloseSignal.CLOSE_LONG
    if any(_crossed_up(k2, k1, level) for level in levels):
        return CloseSignal.CLOSE_SHORT
    return CloseSignal.NONE
