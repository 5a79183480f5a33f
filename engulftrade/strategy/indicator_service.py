"""Indicator service computed locally from the price feed's candles.

Series are recomputed whenever the candle snapshot changes and served by
offset, using the same anchoring as the feed (1 = newest complete candle).
"""

import math
from typing import Optional

from engulftrade.broker.models import candle_index
from engulftrade.config import Config
from engulftrade.strategy.indicators import (
    applied_price,
    calculate_atr,
    calculate_sma,
    calculate_stoch_rsi,
)
from engulftrade.strategy.models import (
    LINE_D,
    LINE_K,
    SERIES_ATR,
    SERIES_STOCH_RSI,
    SERIES_TREND_MA,
)


class CandleIndicatorService:
    """Serves ``stoch_rsi`` (K/D), ``trend_ma`` and ``atr`` by offset.

    Args:
        feed: Anything exposing a ``candles`` list, oldest first.
        config: Indicator periods and the applied price.
    """

    def __init__(self, feed, config: Config) -> None:
        self._feed = feed
        self._config = config
        self._key: Optional[tuple] = None
        self._series: dict[tuple[str, int], list[float]] = {}

    def _recompute(self) -> None:
        candles = self._feed.candles
        key = (
            (len(candles), candles[-1].time, candles[-1].close, candles[-1].complete)
            if candles else None
        )
        if self._series and key == self._key:
            return

        cfg = self._config
        prices = [applied_price(c, cfg.applied_price) for c in candles]
        k, d = calculate_stoch_rsi(
            prices,
            rsi_period=cfg.rsi_period,
            stoch_period=cfg.stoch_period,
            k_smoothing=cfg.k_smoothing,
            d_smoothing=cfg.d_smoothing,
        )
        self._series = {
            (SERIES_STOCH_RSI, LINE_K): k,
            (SERIES_STOCH_RSI, LINE_D): d,
            (SERIES_TREND_MA, 0): calculate_sma([c.close for c in candles], cfg.trend_ma_period),
            (SERIES_ATR, 0): calculate_atr(candles, cfg.atr_period),
        }
        self._key = key

    def value(self, series: str, line: int, offset: int) -> Optional[float]:
        self._recompute()
        values = self._series.get((series, line))
        if values is None:
            raise KeyError(f"Unknown indicator series '{series}' line {line}")
        index = candle_index(self._feed.candles, offset)
        if index is None:
            return None
        v = values[index]
        return None if math.isnan(v) else v
