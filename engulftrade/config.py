"""EngulfTrade — application configuration.

Loads .env variables into a typed config object.
Validates required variables and enumerated options on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from engulftrade.risk.stop_policy import STOP_POLICY_NAMES
from engulftrade.strategy.indicators import APPLIED_PRICES
from engulftrade.strategy.models import INSTRUMENT_POINTS

_REQUIRED_VARS = [
    "OANDA_ACCOUNT_ID",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
]

_GRANULARITY_SECONDS: dict[str, int] = {
    "M1": 60,
    "M5": 300,
    "M15": 900,
    "M30": 1800,
    "H1": 3600,
    "H4": 14400,
    "D": 86400,
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration for one (instrument, strategy identity) engine."""

    oanda_account_id: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    instrument: str = "EUR_USD"
    granularity: str = "H1"
    magic_number: int = 20240101
    lot_size: float = 1000.0

    # Pattern + trend
    body_window: int = 12
    trend_ma_period: int = 5

    # Stochastic RSI
    k_smoothing: int = 3
    d_smoothing: int = 3
    rsi_period: int = 14
    stoch_period: int = 14
    applied_price: str = "close"
    overbought: float = 80.0
    oversold: float = 20.0

    # Exits
    holding_bars: int = 0
    stop_loss_points: float = 0.0
    take_profit_points: float = 0.0
    slippage_points: float = 10.0
    profit_target_points: float = 0.0
    point_value: float = 0.0  # 0 → lot_size × point

    # Stop policy
    stop_policy: str = "none"
    trailing_enabled: bool = False
    trailing_stop_points: float = 200.0
    trailing_trigger_points: float = 100.0
    break_even_fee_per_lot: float = 0.0
    break_even_trigger_points: float = 100.0
    atr_period: int = 14
    atr_multiplier: float = 2.0

    # Risk guard
    minimum_equity: float = 0.0
    max_loss_pct: float = 20.0

    # Runtime
    poll_interval_seconds: int = 5
    log_level: str = "INFO"
    health_port: int = 8080

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"

    @property
    def point(self) -> float:
        """Smallest quoted price increment for the instrument."""
        return INSTRUMENT_POINTS.get(self.instrument, 0.00001)

    @property
    def period_seconds(self) -> int:
        return _GRANULARITY_SECONDS[self.granularity]

    @property
    def candle_count(self) -> int:
        """Candles needed to warm up every indicator, with headroom."""
        oscillator = self.rsi_period + self.stoch_period + self.k_smoothing + self.d_smoothing
        return max(
            self.body_window + 2,
            self.trend_ma_period + 2,
            oscillator + 2,
            self.atr_period + 2,
        ) * 2 + self.holding_bars


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in _TRUTHY


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the option when an enumerated
    value is not recognised.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    trailing_enabled = _flag("TRAILING_ENABLED")
    stop_policy = os.environ.get(
        "STOP_POLICY", "trailing" if trailing_enabled else "none"
    ).strip().lower()
    if stop_policy not in STOP_POLICY_NAMES:
        raise ValueError(
            f"STOP_POLICY must be one of {', '.join(STOP_POLICY_NAMES)}, got '{stop_policy}'"
        )

    granularity = os.environ.get("GRANULARITY", "H1")
    if granularity not in _GRANULARITY_SECONDS:
        raise ValueError(
            f"GRANULARITY must be one of {', '.join(_GRANULARITY_SECONDS)}, got '{granularity}'"
        )

    applied_price = os.environ.get("APPLIED_PRICE", "close").strip().lower()
    if applied_price not in APPLIED_PRICES:
        raise ValueError(
            f"APPLIED_PRICE must be one of {', '.join(APPLIED_PRICES)}, got '{applied_price}'"
        )

    lot_size = float(os.environ.get("LOT_SIZE", "1000"))
    if lot_size < 1 or not lot_size.is_integer():
        raise ValueError(
            f"LOT_SIZE must be a whole number of units >= 1, got '{lot_size:g}'"
        )

    return Config(
        oanda_account_id=os.environ["OANDA_ACCOUNT_ID"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        instrument=os.environ.get("TRADE_INSTRUMENT", "EUR_USD"),
        granularity=granularity,
        magic_number=int(os.environ.get("MAGIC_NUMBER", "20240101")),
        lot_size=lot_size,
        body_window=int(os.environ.get("BODY_WINDOW", "12")),
        trend_ma_period=int(os.environ.get("TREND_MA_PERIOD", "5")),
        k_smoothing=int(os.environ.get("STOCH_K_SMOOTHING", "3")),
        d_smoothing=int(os.environ.get("STOCH_D_SMOOTHING", "3")),
        rsi_period=int(os.environ.get("RSI_PERIOD", "14")),
        stoch_period=int(os.environ.get("STOCH_PERIOD", "14")),
        applied_price=applied_price,
        overbought=float(os.environ.get("OVERBOUGHT", "80")),
        oversold=float(os.environ.get("OVERSOLD", "20")),
        holding_bars=int(os.environ.get("HOLDING_BARS", "0")),
        stop_loss_points=float(os.environ.get("STOP_LOSS_POINTS", "0")),
        take_profit_points=float(os.environ.get("TAKE_PROFIT_POINTS", "0")),
        slippage_points=float(os.environ.get("SLIPPAGE_POINTS", "10")),
        profit_target_points=float(os.environ.get("PROFIT_TARGET_POINTS", "0")),
        point_value=float(os.environ.get("POINT_VALUE", "0")),
        stop_policy=stop_policy,
        trailing_enabled=trailing_enabled,
        trailing_stop_points=float(os.environ.get("TRAILING_STOP_POINTS", "200")),
        trailing_trigger_points=float(os.environ.get("TRAILING_TRIGGER_POINTS", "100")),
        break_even_fee_per_lot=float(os.environ.get("BREAK_EVEN_FEE_PER_LOT", "0")),
        break_even_trigger_points=float(os.environ.get("BREAK_EVEN_TRIGGER_POINTS", "100")),
        atr_period=int(os.environ.get("ATR_PERIOD", "14")),
        atr_multiplier=float(os.environ.get("ATR_MULTIPLIER", "2.0")),
        minimum_equity=float(os.environ.get("MINIMUM_EQUITY", "0")),
        max_loss_pct=float(os.environ.get("MAX_LOSS_PCT", "20")),
        poll_interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "5")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
