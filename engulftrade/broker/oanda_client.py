"""OANDA v20 REST API async client.

Handles all communication with OANDA: candles, pricing, account queries,
order placement, and trade management.  Errors surface as ``httpx``
exceptions; the gateway adapters turn them into results.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from engulftrade.broker.models import (
    AccountSummary,
    Candle,
    Direction,
    OrderRequest,
    OrderResponse,
    Position,
    Quote,
)
from engulftrade.config import Config
from engulftrade.errors import OrderRejected

logger = logging.getLogger("engulftrade")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_ENTRY_ORDER_TYPES = {"LIMIT", "STOP", "MARKET_IF_TOUCHED"}


def parse_oanda_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp with nanosecond precision into UTC."""
    value = value.rstrip("Z")
    if "." in value:
        head, frac = value.split(".", 1)
        value = f"{head}.{frac[:6]}"
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _price_precision(instrument: str) -> int:
    if "JPY" in instrument or "XAG" in instrument:
        return 3
    if "XAU" in instrument:
        return 2
    return 5


def _parse_tag(extensions: Optional[dict]) -> int:
    tag = (extensions or {}).get("tag", "")
    return int(tag) if tag.isdigit() else -1


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.oanda_base_url
        self._account_id = config.oanda_account_id
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    @property
    def _account_url(self) -> str:
        return f"{self._base_url}/v3/accounts/{self._account_id}"

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "OANDA %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "OANDA %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted, raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Market data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        instrument: str,
        granularity: str,
        count: int = 50,
    ) -> list[Candle]:
        """Fetch UTC-aligned mid candles, oldest first.

        The last candle is normally the one still forming.
        """
        url = f"{self._base_url}/v3/instruments/{instrument}/candles"
        params = {
            "granularity": granularity,
            "count": count,
            "price": "M",
            "dailyAlignment": 0,
            "alignmentTimezone": "UTC",
        }

        resp = await self._request_with_retry("get", url, params=params)

        candles: list[Candle] = []
        for c in resp.json().get("candles", []):
            mid = c["mid"]
            candles.append(
                Candle(
                    time=parse_oanda_time(c["time"]),
                    open=float(mid["o"]),
                    high=float(mid["h"]),
                    low=float(mid["l"]),
                    close=float(mid["c"]),
                    volume=int(c["volume"]),
                    complete=bool(c["complete"]),
                )
            )
        return candles

    async def fetch_quote(self, instrument: str) -> Quote:
        """Current best bid/ask for *instrument*."""
        url = f"{self._account_url}/pricing"

        resp = await self._request_with_retry(
            "get", url, params={"instruments": instrument},
        )

        price = resp.json()["prices"][0]
        return Quote(
            bid=float(price["bids"][0]["price"]),
            ask=float(price["asks"][0]["price"]),
        )

    # ── Account ──────────────────────────────────────────────────────────

    async def get_account_summary(self) -> AccountSummary:
        """Query OANDA for account balance, equity, and open position count."""
        resp = await self._request_with_retry("get", f"{self._account_url}/summary")

        acct = resp.json()["account"]
        return AccountSummary(
            account_id=acct["id"],
            balance=float(acct["balance"]),
            equity=float(acct["NAV"]),
            open_position_count=int(acct["openPositionCount"]),
            currency=acct["currency"],
        )

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(self, order: OrderRequest) -> OrderResponse:
        """Place a market order, optionally with SL/TP and a price bound.

        Raises:
            OrderRejected: OANDA accepted the request but cancelled the order.
            ValueError: *order* carries zero or fractional units.
        """
        if order.units == 0 or not float(order.units).is_integer():
            raise ValueError(f"OANDA units must be a non-zero whole number, got {order.units}")
        prec = _price_precision(order.instrument)
        body: dict = {
            "type": "MARKET",
            "instrument": order.instrument,
            "units": str(int(order.units)),
            "timeInForce": "FOK",
        }
        if order.stop_loss_price is not None:
            body["stopLossOnFill"] = {"price": f"{order.stop_loss_price:.{prec}f}"}
        if order.take_profit_price is not None:
            body["takeProfitOnFill"] = {"price": f"{order.take_profit_price:.{prec}f}"}
        if order.price_bound is not None:
            body["priceBound"] = f"{order.price_bound:.{prec}f}"
        if order.tag:
            body["clientExtensions"] = {"tag": order.tag}
            body["tradeClientExtensions"] = {"tag": order.tag}

        resp = await self._request_with_retry(
            "post", f"{self._account_url}/orders", json={"order": body},
        )

        data = resp.json()
        fill = data.get("orderFillTransaction")
        if fill is None:
            reason = data.get("orderCancelTransaction", {}).get("reason", "UNKNOWN")
            raise OrderRejected("place_order", reason)
        return OrderResponse(
            order_id=fill["id"],
            trade_id=fill.get("tradeOpened", {}).get("tradeID", ""),
            instrument=fill["instrument"],
            units=float(fill["units"]),
            price=float(fill["price"]),
            time=fill["time"],
        )

    async def list_pending_orders(self, instrument: str) -> list[dict]:
        """Raw pending entry orders for *instrument* (attached SL/TP excluded)."""
        resp = await self._request_with_retry("get", f"{self._account_url}/pendingOrders")
        return [
            o for o in resp.json().get("orders", [])
            if o.get("instrument") == instrument and o.get("type") in _ENTRY_ORDER_TYPES
        ]

    async def cancel_order(self, order_id: str) -> dict:
        resp = await self._request_with_retry(
            "put", f"{self._account_url}/orders/{order_id}/cancel",
        )
        return resp.json()

    # ── Trades ───────────────────────────────────────────────────────────

    async def list_open_trades(self, instrument: str) -> list[Position]:
        """Open trades on *instrument* as ``Position`` objects."""
        resp = await self._request_with_retry("get", f"{self._account_url}/openTrades")

        positions: list[Position] = []
        for t in resp.json().get("trades", []):
            if t["instrument"] != instrument:
                continue
            units = float(t["currentUnits"])
            sl_price = None
            tp_price = None
            if "stopLossOrder" in t:
                sl_price = float(t["stopLossOrder"]["price"])
            if "takeProfitOrder" in t:
                tp_price = float(t["takeProfitOrder"]["price"])
            positions.append(
                Position(
                    position_id=t["id"],
                    instrument=t["instrument"],
                    direction=Direction.LONG if units > 0 else Direction.SHORT,
                    open_price=float(t["price"]),
                    volume=abs(units),
                    open_time=parse_oanda_time(t["openTime"]),
                    magic=_parse_tag(t.get("clientExtensions")),
                    stop_loss=sl_price,
                    take_profit=tp_price,
                    profit=float(t.get("unrealizedPL", "0")),
                )
            )
        return positions

    async def modify_trade_stops(
        self,
        trade_id: str,
        stop_loss: float,
        take_profit: Optional[float],
        instrument: str,
    ) -> dict:
        """Replace the stop-loss (and take-profit, if given) on an open trade."""
        prec = _price_precision(instrument)
        body: dict = {"stopLoss": {"price": f"{stop_loss:.{prec}f}"}}
        if take_profit is not None:
            body["takeProfit"] = {"price": f"{take_profit:.{prec}f}"}

        resp = await self._request_with_retry(
            "put", f"{self._account_url}/trades/{trade_id}/orders", json=body,
        )
        return resp.json()

    async def close_trade(self, trade_id: str) -> dict:
        """Close all units of one trade."""
        resp = await self._request_with_retry(
            "put", f"{self._account_url}/trades/{trade_id}/close", json={"units": "ALL"},
        )
        return resp.json()
