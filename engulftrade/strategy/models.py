"""Strategy data models — bars, signals, and pattern results."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from engulftrade.broker.models import Direction


@dataclass(frozen=True)
class Bar:
    """One completed period. Immutable once closed."""

    open: float
    high: float
    low: float
    close: float
    time: datetime

    @property
    def body(self) -> float:
        return abs(self.open - self.close)

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


class OpenSignal(str, Enum):
    NONE = "none"
    BUY = "buy"
    SELL = "sell"

    @property
    def direction(self) -> Optional[Direction]:
        if self is OpenSignal.BUY:
            return Direction.LONG
        if self is OpenSignal.SELL:
            return Direction.SHORT
        return None


class CloseSignal(str, Enum):
    NONE = "none"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"

    @property
    def direction(self) -> Optional[Direction]:
        if self is CloseSignal.CLOSE_LONG:
            return Direction.LONG
        if self is CloseSignal.CLOSE_SHORT:
            return Direction.SHORT
        return None


class PatternKind(str, Enum):
    NONE = "none"
    BULLISH_ENGULFING = "bullish_engulfing"
    BEARISH_ENGULFING = "bearish_engulfing"


@dataclass(frozen=True)
class PatternResult:
    """Output of the engulfing detector.

    ``trend`` is the micro-trend preceding the pattern bar: ``"up"`` when
    the offset-2 body midpoint sits above the trend average, ``"down"``
    when below, ``"flat"`` otherwise.
    """

    kind: PatternKind
    signal: OpenSignal
    trend: str = "flat"

    @property
    def found(self) -> bool:
        return self.kind is not PatternKind.NONE


NO_PATTERN = PatternResult(kind=PatternKind.NONE, signal=OpenSignal.NONE)


@dataclass(frozen=True)
class OscillatorReading:
    """K and D line values at one offset. ``None`` means unavailable."""

    k: Optional[float]
    d: Optional[float]


# ── Indicator series identifiers ─────────────────────────────────────────

SERIES_STOCH_RSI = "stoch_rsi"  # line 0 = K, line 1 = D
SERIES_TREND_MA = "trend_ma"
SERIES_ATR = "atr"

LINE_K = 0
LINE_D = 1


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_POINTS: dict[str, float] = {
    "EUR_USD": 0.00001,
    "GBP_USD": 0.00001,
    "USD_JPY": 0.001,
    "USD_CHF": 0.00001,
    "AUD_USD": 0.00001,
    "NZD_USD": 0.00001,
    "USD_CAD": 0.00001,
    "EUR_JPY": 0.001,
    "XAU_USD": 0.01,
    "XAG_USD": 0.001,
}
