"""Technical indicators — SMA, RSI, stochastic RSI, ATR. Pure functions, no I/O.

Every series function returns a list the same length as its input, with
``float('nan')`` wherever the indicator is not yet defined.  Inputs are any
objects with ``open``/``high``/``low``/``close`` attributes (broker
``Candle`` or strategy ``Bar``).
"""

import math
from typing import Sequence

APPLIED_PRICES = ("close", "open", "high", "low", "median", "typical", "weighted")


def applied_price(candle, mode: str = "close") -> float:
    """Return the price of *candle* selected by *mode*.

    ``median`` = (H+L)/2, ``typical`` = (H+L+C)/3, ``weighted`` = (H+L+2C)/4.
    """
    if mode == "close":
        return candle.close
    if mode == "open":
        return candle.open
    if mode == "high":
        return candle.high
    if mode == "low":
        return candle.low
    if mode == "median":
        return (candle.high + candle.low) / 2.0
    if mode == "typical":
        return (candle.high + candle.low + candle.close) / 3.0
    if mode == "weighted":
        return (candle.high + candle.low + 2.0 * candle.close) / 4.0
    raise ValueError(
        f"applied price must be one of {', '.join(APPLIED_PRICES)}, got '{mode}'"
    )


def calculate_sma(values: Sequence[float], period: int) -> list[float]:
    """Simple moving average over *period* values.

    A window containing any ``nan`` yields ``nan``.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")

    sma: list[float] = [float("nan")] * len(values)
    for i in range(period - 1, len(values)):
        window = values[i - period + 1 : i + 1]
        if any(math.isnan(v) for v in window):
            continue
        sma[i] = sum(window) / period
    return sma


def average_body(candles: Sequence, period: int) -> float:
    """Mean of ``|open - close|`` over *candles* (expects exactly *period*)."""
    if len(candles) < period or period <= 0:
        raise ValueError(
            f"Need {period} candles for average body, got {len(candles)}"
        )
    return sum(abs(c.open - c.close) for c in candles[:period]) / period


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index over a price series.

    Algorithm (Wilder-smoothed):
        1. delta = value[i] - value[i-1]
        2. Seed average gain/loss = SMA of first *period* deltas.
        3. Subsequent: avg = (prev_avg × (period-1) + current) / period
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Short input is not an error here: the result is simply all ``nan``.
    """
    rsi: list[float] = [float("nan")] * len(values)
    if len(values) < period + 1:
        return rsi

    deltas = [values[i] - values[i - 1] for i in range(1, len(values))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + ag / al)

    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # deltas are offset by one against values
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


def calculate_stoch_rsi(
    values: Sequence[float],
    rsi_period: int = 14,
    stoch_period: int = 14,
    k_smoothing: int = 3,
    d_smoothing: int = 3,
) -> tuple[list[float], list[float]]:
    """Stochastic oscillator applied to RSI.

    raw = 100 × (RSI − min RSI) / (max RSI − min RSI) over *stoch_period*;
    a flat window reads 50.  K = SMA(raw, k_smoothing), D = SMA(K, d_smoothing).

    Returns ``(k_series, d_series)``.
    """
    rsi = calculate_rsi(values, rsi_period)
    raw: list[float] = [float("nan")] * len(values)

    for i in range(stoch_period - 1, len(rsi)):
        window = rsi[i - stoch_period + 1 : i + 1]
        if any(math.isnan(v) for v in window):
            continue
        lowest, highest = min(window), max(window)
        rng = highest - lowest
        raw[i] = 50.0 if rng == 0 else (rsi[i] - lowest) / rng * 100.0

    k = calculate_sma(raw, k_smoothing)
    d = calculate_sma(k, d_smoothing)
    return k, d


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(candles: Sequence, period: int = 14) -> list[float]:
    """Average True Range series (simple average of true ranges).

        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Index 0 has no previous close and is ``nan``.
    """
    if not candles:
        return []

    true_ranges: list[float] = [float("nan")]
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        true_ranges.append(
            max(high - low, abs(high - prev_close), abs(low - prev_close))
        )
    return calculate_sma(true_ranges, period)
