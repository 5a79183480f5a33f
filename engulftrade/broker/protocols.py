"""Collaborator interfaces consumed by the controller core.

Price and indicator lookups are synchronous reads of the current snapshot
and return ``None`` for "not yet available".  Broker and account calls are
async.  Order requests never raise into the core: failures come back as an
``OrderResult`` with ``ok=False``.  Failed reads (position and order lists,
account) raise ``DataUnavailable``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from engulftrade.broker.models import (
    AccountSummary,
    Direction,
    OrderResult,
    Position,
    Quote,
)
from engulftrade.strategy.models import Bar


@runtime_checkable
class PriceFeed(Protocol):
    """Bar OHLC by offset (1 = most recently closed) plus live quote."""

    point: float
    period_seconds: int

    def bar(self, offset: int) -> Optional[Bar]:
        ...

    def quote(self) -> Quote:
        """Raise ``DataUnavailable`` when no quote is known."""
        ...

    def bars_between(self, start: datetime, end: datetime) -> Optional[int]:
        ...


@runtime_checkable
class IndicatorService(Protocol):
    """Named indicator series by (series, line, offset)."""

    def value(self, series: str, line: int, offset: int) -> Optional[float]:
        ...


@runtime_checkable
class Broker(Protocol):
    """Order execution scoped to one instrument and strategy identity."""

    async def open_market(
        self,
        direction: Direction,
        volume: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
        price_bound: Optional[float] = None,
    ) -> OrderResult:
        ...

    async def modify_stop(
        self,
        position_id: str,
        new_stop: float,
        take_profit: Optional[float],
    ) -> OrderResult:
        ...

    async def close(self, position_id: str) -> OrderResult:
        ...

    async def cancel_pending_order(self, order_id: str) -> OrderResult:
        ...

    async def list_positions(self, magic: int, instrument: str) -> list[Position]:
        ...

    async def list_pending_orders(self, magic: int, instrument: str) -> list[str]:
        ...


@runtime_checkable
class Account(Protocol):
    """Balance and equity of the trading account."""

    async def get_account_summary(self) -> AccountSummary:
        ...
