"""Engulfing pattern detection on the two most recently closed bars.

Offset 1 is the most recently closed bar (the engulfing candle), offset 2
the bar before it.  Detection needs every price point it touches; a missing
one raises ``DataUnavailable`` so the caller can tell "no data" apart from
"no pattern".
"""

from __future__ import annotations

import logging

from engulftrade.broker.protocols import IndicatorService, PriceFeed
from engulftrade.errors import DataUnavailable
from engulftrade.strategy.indicators import average_body
from engulftrade.strategy.models import (
    SERIES_TREND_MA,
    Bar,
    OpenSignal,
    PatternKind,
    PatternResult,
)

logger = logging.getLogger("engulftrade")


def is_bearish_engulfing(prev: Bar, curr: Bar, avg_body: float, trend_ma: float) -> bool:
    """All five bearish conditions, checked together."""
    midpoint = (prev.open + prev.close) / 2.0
    return (
        prev.is_bullish  # offset-2 bullish
        and (curr.open - curr.close) > avg_body  # long bearish body
        and curr.close < prev.open  # closes below prior open
        and midpoint > trend_ma  # preceding uptrend
        and curr.open > prev.close  # opens above prior close
    )


def is_bullish_engulfing(prev: Bar, curr: Bar, avg_body: float, trend_ma: float) -> bool:
    """Mirror of :func:`is_bearish_engulfing`."""
    midpoint = (prev.open + prev.close) / 2.0
    return (
        prev.is_bearish  # offset-2 bearish
        and (curr.close - curr.open) > avg_body  # long bullish body
        and curr.close > prev.open  # closes above prior open
        and midpoint < trend_ma  # preceding downtrend
        and curr.open < prev.close  # opens below prior close
    )


def classify(
    prev: Bar,
    curr: Bar,
    avg_body: float,
    trend_ma: float,
) -> PatternResult:
    """Pure classification of an (offset-2, offset-1) bar pair."""
    midpoint = (prev.open + prev.close) / 2.0
    if midpoint > trend_ma:
        trend = "up"
    elif midpoint < trend_ma:
        trend = "down"
    else:
        trend = "flat"

    if is_bearish_engulfing(prev, curr, avg_body, trend_ma):
        return PatternResult(PatternKind.BEARISH_ENGULFING, OpenSignal.SELL, trend)
    if is_bullish_engulfing(prev, curr, avg_body, trend_ma):
        return PatternResult(PatternKind.BULLISH_ENGULFING, OpenSignal.BUY, trend)
    return PatternResult(PatternKind.NONE, OpenSignal.NONE, trend)


class EngulfingDetector:
    """Reads bars and the trend average, then classifies the last two bars.

    Args:
        feed: Price feed supplying bars by offset.
        indicators: Indicator service supplying the trend moving average.
        body_window: Number of bars, starting at offset 1, averaged for the
                     body-size threshold.
    """

    def __init__(
        self,
        feed: PriceFeed,
        indicators: IndicatorService,
        body_window: int = 12,
    ) -> None:
        if body_window < 1:
            raise ValueError(f"body_window must be positive, got {body_window}")
        self._feed = feed
        self._indicators = indicators
        self._body_window = body_window

    def _bar(self, offset: int) -> Bar:
        bar = self._feed.bar(offset)
        if bar is None:
            raise DataUnavailable("bar", offset)
        return bar

    def detect(self) -> PatternResult:
        """Return the pattern on offsets 1 and 2.

        Raises:
            DataUnavailable: a bar in the body window, offset 2, or the
                             trend average at offset 2 is missing.
        """
        window = [self._bar(offset) for offset in range(1, self._body_window + 1)]
        curr = window[0]
        prev = window[1] if self._body_window >= 2 else self._bar(2)

        trend_ma = self._indicators.value(SERIES_TREND_MA, 0, 2)
        if trend_ma is None:
            raise DataUnavailable(SERIES_TREND_MA, 2)

        result = classify(prev, curr, average_body(window, self._body_window), trend_ma)
        if result.found:
            logger.info(
                "Pattern %s on bar %s (trend %s)",
                result.kind.value, curr.time.isoformat(), result.trend,
            )
        return result
