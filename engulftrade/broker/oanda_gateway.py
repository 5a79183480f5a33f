"""OANDA-backed collaborators for the engine.

``OandaPriceFeed`` holds a per-tick snapshot of candles and the live quote,
refreshed by the run loop before each tick.  ``OandaBroker`` and
``OandaAccount`` translate client calls into the result-returning
interfaces the core expects: order failures become ``OrderResult`` values
and failed reads become ``DataUnavailable``.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from engulftrade.broker.models import (
    AccountSummary,
    Candle,
    Direction,
    OrderRequest,
    OrderResult,
    Position,
    Quote,
    candle_index,
)
from engulftrade.broker.oanda_client import OandaClient
from engulftrade.config import Config
from engulftrade.errors import DataUnavailable, OrderRejected
from engulftrade.strategy.models import Bar

logger = logging.getLogger("engulftrade")


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            message = exc.response.json().get("errorMessage")
        except ValueError:
            message = None
        if message:
            return f"{exc.response.status_code}: {message}"
    return str(exc)


class OandaPriceFeed:
    """Candle and quote snapshot for one instrument.

    Offset 1 is the newest complete candle, offset 2 the one before it, and
    so on.  Offset 0 is the forming candle, when OANDA has started one.
    """

    def __init__(self, client: OandaClient, config: Config) -> None:
        self._client = client
        self._instrument = config.instrument
        self._granularity = config.granularity
        self._count = config.candle_count
        self.point = config.point
        self.period_seconds = config.period_seconds
        self._candles: list[Candle] = []
        self._quote: Optional[Quote] = None

    @property
    def candles(self) -> list[Candle]:
        """Snapshot candles, oldest first."""
        return self._candles

    async def refresh(self) -> None:
        """Re-read candles and quote.

        Raises:
            DataUnavailable: either request failed; the previous snapshot is
                             dropped so stale data is never used.
        """
        try:
            self._candles = await self._client.fetch_candles(
                self._instrument, self._granularity, count=self._count,
            )
            self._quote = await self._client.fetch_quote(self._instrument)
        except (httpx.HTTPError, KeyError, IndexError) as exc:
            self._candles = []
            self._quote = None
            raise DataUnavailable(f"market data ({exc})") from exc

    def bar(self, offset: int) -> Optional[Bar]:
        index = candle_index(self._candles, offset)
        if index is None:
            return None
        c = self._candles[index]
        if offset >= 1 and not c.complete:
            return None
        return Bar(open=c.open, high=c.high, low=c.low, close=c.close, time=c.time)

    def quote(self) -> Quote:
        if self._quote is None:
            raise DataUnavailable("quote")
        return self._quote

    def bars_between(self, start: datetime, end: datetime) -> Optional[int]:
        """Candles opened in ``(start, end]``; ``None`` if *start* predates the snapshot."""
        if not self._candles or start < self._candles[0].time:
            return None
        return sum(1 for c in self._candles if start < c.time <= end)


class OandaBroker:
    """Order execution for one instrument, tagged with the magic number."""

    def __init__(self, client: OandaClient, config: Config) -> None:
        self._client = client
        self._instrument = config.instrument
        self._tag = str(config.magic_number)

    async def open_market(
        self,
        direction: Direction,
        volume: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
        price_bound: Optional[float] = None,
    ) -> OrderResult:
        order = OrderRequest(
            instrument=self._instrument,
            units=volume * direction.sign,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            price_bound=price_bound,
            tag=self._tag,
        )
        try:
            resp = await self._client.place_order(order)
        except OrderRejected as exc:
            return OrderResult.failure(exc.reason)
        except httpx.HTTPError as exc:
            return OrderResult.failure(_failure_reason(exc))
        return OrderResult.success(resp.trade_id or resp.order_id)

    async def modify_stop(
        self,
        position_id: str,
        new_stop: float,
        take_profit: Optional[float],
    ) -> OrderResult:
        try:
            await self._client.modify_trade_stops(
                position_id, new_stop, take_profit, self._instrument,
            )
        except httpx.HTTPError as exc:
            return OrderResult.failure(_failure_reason(exc))
        return OrderResult.success(position_id)

    async def close(self, position_id: str) -> OrderResult:
        try:
            await self._client.close_trade(position_id)
        except httpx.HTTPError as exc:
            return OrderResult.failure(_failure_reason(exc))
        return OrderResult.success(position_id)

    async def cancel_pending_order(self, order_id: str) -> OrderResult:
        try:
            await self._client.cancel_order(order_id)
        except httpx.HTTPError as exc:
            return OrderResult.failure(_failure_reason(exc))
        return OrderResult.success()

    async def list_positions(self, magic: int, instrument: str) -> list[Position]:
        try:
            trades = await self._client.list_open_trades(instrument)
        except httpx.HTTPError as exc:
            raise DataUnavailable(f"open trades ({_failure_reason(exc)})") from exc
        return [p for p in trades if p.magic == magic]

    async def list_pending_orders(self, magic: int, instrument: str) -> list[str]:
        try:
            orders = await self._client.list_pending_orders(instrument)
        except httpx.HTTPError as exc:
            raise DataUnavailable(f"pending orders ({_failure_reason(exc)})") from exc
        tag = str(magic)
        return [
            o["id"] for o in orders
            if o.get("clientExtensions", {}).get("tag") == tag
        ]


class OandaAccount:
    """Account reads; failures surface as ``DataUnavailable``."""

    def __init__(self, client: OandaClient) -> None:
        self._client = client

    async def get_account_summary(self) -> AccountSummary:
        try:
            return await self._client.get_account_summary()
        except httpx.HTTPError as exc:
            raise DataUnavailable(f"account ({_failure_reason(exc)})") from exc
