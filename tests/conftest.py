"""Shared in-memory collaborators for engine, lifecycle, and risk tests."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from engulftrade.api.routers import reset_state
from engulftrade.broker.models import (
    AccountSummary,
    Direction,
    OrderResult,
    Position,
    Quote,
)
from engulftrade.config import Config
from engulftrade.errors import DataUnavailable
from engulftrade.strategy.models import Bar
from engulftrade.strategy.signal_state import bar_open_time

NOW = datetime(2025, 1, 10, 12, 30, tzinfo=timezone.utc)
MAGIC = 777
INSTRUMENT = "EUR_USD"


class FakeFeed:
    """Bars by offset plus a settable quote; H1 periods by default."""

    def __init__(
        self,
        bars: Optional[dict[int, Bar]] = None,
        bid: float = 1.1000,
        ask: float = 1.1002,
        point: float = 0.0001,
        period_seconds: int = 3600,
    ) -> None:
        self.bars = bars or {}
        self._quote: Optional[Quote] = Quote(bid, ask)
        self.point = point
        self.period_seconds = period_seconds
        self.counts_available = True

    def bar(self, offset: int) -> Optional[Bar]:
        return self.bars.get(offset)

    def quote(self) -> Quote:
        if self._quote is None:
            raise DataUnavailable("quote")
        return self._quote

    def set_quote(self, bid: Optional[float], ask: Optional[float] = None) -> None:
        self._quote = None if bid is None else Quote(bid, ask if ask is not None else bid)

    def bars_between(self, start: datetime, end: datetime) -> Optional[int]:
        if not self.counts_available:
            return None
        delta = bar_open_time(end, self.period_seconds) - bar_open_time(start, self.period_seconds)
        return int(delta.total_seconds() // self.period_seconds)


class FakeIndicators:
    """Values keyed by ``(series, line, offset)``; missing keys are unavailable."""

    def __init__(self, values: Optional[dict] = None) -> None:
        self.values = values or {}

    def value(self, series: str, line: int, offset: int) -> Optional[float]:
        return self.values.get((series, line, offset))


class FakeBroker:
    """Authoritative position store that records every request."""

    def __init__(self, fill_price: float = 1.1002) -> None:
        self.positions: dict[str, Position] = {}
        self.pending_orders: list[str] = []
        self.calls: list[tuple] = []
        self.reject: set[str] = set()  # operation names to refuse
        self.reject_ids: set[str] = set()  # position/order ids to refuse
        self.fill_price = fill_price
        self.now = NOW
        self._next_id = 1

    def add_position(self, **fields) -> Position:
        pid = fields.pop("position_id", None) or f"P{self._next_id}"
        self._next_id += 1
        defaults = dict(
            position_id=pid,
            instrument=INSTRUMENT,
            direction=Direction.LONG,
            open_price=1.1000,
            volume=1000.0,
            open_time=self.now,
            magic=MAGIC,
        )
        defaults.update(fields)
        position = Position(**defaults)
        self.positions[pid] = position
        return position

    def count(self, operation: str) -> int:
        return sum(1 for c in self.calls if c[0] == operation)

    def _refused(self, operation: str, ident: Optional[str] = None) -> bool:
        return operation in self.reject or (ident is not None and ident in self.reject_ids)

    async def open_market(self, direction, volume, stop_loss, take_profit, price_bound=None):
        self.calls.append(("open", direction, volume, stop_loss, take_profit, price_bound))
        if self._refused("open"):
            return OrderResult.failure("MARKET_HALTED")
        position = self.add_position(
            direction=direction,
            open_price=self.fill_price,
            volume=volume,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        return OrderResult.success(position.position_id)

    async def modify_stop(self, position_id, new_stop, take_profit):
        self.calls.append(("modify", position_id, new_stop, take_profit))
        if self._refused("modify", position_id) or position_id not in self.positions:
            return OrderResult.failure("INVALID_STOP")
        self.positions[position_id] = replace(
            self.positions[position_id], stop_loss=new_stop, take_profit=take_profit,
        )
        return OrderResult.success(position_id)

    async def close(self, position_id):
        self.calls.append(("close", position_id))
        if self._refused("close", position_id) or position_id not in self.positions:
            return OrderResult.failure("CLOSEOUT_REJECT")
        del self.positions[position_id]
        return OrderResult.success(position_id)

    async def cancel_pending_order(self, order_id):
        self.calls.append(("cancel", order_id))
        if self._refused("cancel", order_id):
            return OrderResult.failure("ORDER_DOESNT_EXIST")
        self.pending_orders.remove(order_id)
        return OrderResult.success()

    async def list_positions(self, magic, instrument):
        if self._refused("list"):
            raise DataUnavailable("open trades")
        return [
            p for p in self.positions.values()
            if p.magic == magic and p.instrument == instrument
        ]

    async def list_pending_orders(self, magic, instrument):
        return list(self.pending_orders)


class FakeAccount:
    def __init__(self, balance: float = 1000.0, equity: float = 1000.0) -> None:
        self.balance = balance
        self.equity = equity
        self.available = True

    async def get_account_summary(self) -> AccountSummary:
        if not self.available:
            raise DataUnavailable("account")
        return AccountSummary(
            account_id="101-001-TEST-001",
            balance=self.balance,
            equity=self.equity,
            open_position_count=0,
            currency="USD",
        )


def make_bar(open_: float, close: float, hours_ago: int = 1) -> Bar:
    return Bar(
        open=open_,
        high=max(open_, close) + 0.0005,
        low=min(open_, close) - 0.0005,
        close=close,
        time=bar_open_time(NOW, 3600) - timedelta(hours=hours_ago),
    )


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_api_state():
    reset_state()
    yield
    reset_state()


@pytest.fixture
def make_config():
    """Factory for a ``Config`` with test defaults."""

    def _make(**overrides) -> Config:
        defaults = dict(
            oanda_account_id="101-001-XXXXX-001",
            oanda_api_token="test_token",
            oanda_environment="practice",
            instrument=INSTRUMENT,
            magic_number=MAGIC,
            lot_size=1000.0,
            body_window=3,
            slippage_points=0.0,
            max_loss_pct=20.0,
            log_level="WARNING",
        )
        defaults.update(overrides)
        return Config(**defaults)

    return _make


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def indicators():
    return FakeIndicators()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def account():
    return FakeAccount()
