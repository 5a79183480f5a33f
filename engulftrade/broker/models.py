"""Broker data models — typed representations of account and trade state."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Direction(str, Enum):
    """Side of a position."""

    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        """``+1`` for long, ``-1`` for short."""
        return 1 if self is Direction.LONG else -1


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar as returned by the broker."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int
    complete: bool


def candle_index(candles: list[Candle], offset: int) -> Optional[int]:
    """List index of the candle at bar *offset*, or ``None``.

    Offsets are anchored on the newest complete candle, which is always
    offset 1.  Offset 0 is the forming candle after it, and only exists when
    the snapshot ends with an incomplete candle.
    """
    if offset < 0 or not candles:
        return None
    forming = len(candles) if candles[-1].complete else len(candles) - 1
    index = forming - offset
    if index < 0 or index >= len(candles):
        return None
    return index


@dataclass(frozen=True)
class Quote:
    """Current top-of-book prices."""

    bid: float
    ask: float

    @property
    def spread(self) -> float:
        return self.ask - self.bid


@dataclass(frozen=True)
class AccountSummary:
    """Summary of a trading account."""

    account_id: str
    balance: float
    equity: float
    open_position_count: int
    currency: str


@dataclass(frozen=True)
class Position:
    """An open position owned by the broker.

    The controller never mutates these; it re-reads them every tick.
    """

    position_id: str
    instrument: str
    direction: Direction
    open_price: float
    volume: float
    open_time: datetime
    magic: int
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    profit: float = 0.0  # unrealized, account currency


@dataclass(frozen=True)
class OrderRequest:
    """A market order request payload."""

    instrument: str
    units: float  # positive=buy, negative=sell
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    price_bound: Optional[float] = None
    tag: str = ""


@dataclass(frozen=True)
class OrderResponse:
    """Response from placing an order."""

    order_id: str
    trade_id: str
    instrument: str
    units: float
    price: float
    time: str


@dataclass(frozen=True)
class OrderResult:
    """Outcome of any broker request.

    ``position_id`` is set on a successful entry.
    """

    ok: bool
    position_id: Optional[str] = None
    reason: str = ""

    @classmethod
    def success(cls, position_id: Optional[str] = None) -> "OrderResult":
        return cls(ok=True, position_id=position_id)

    @classmethod
    def failure(cls, reason: str) -> "OrderResult":
        return cls(ok=False, reason=reason)
