"""Position lifecycle — entries, exits, and protective-stop management.

Position truth is re-read from the broker every tick; nothing here caches
it.  Exit and stop decisions are produced by the pure :func:`reconcile`
from a :class:`Snapshot` of that truth and then executed one by one.  A
failed request is logged and simply re-planned on the next tick.

Per-tick order inside :func:`reconcile`:
    1. initial stop placement (fixed / ATR policies, unset stops only)
    2. profit-target closes
    3. time-based closes
    4. trailing / break-even adjustment
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence, Union

from engulftrade.broker.models import Direction, OrderResult, Position, Quote
from engulftrade.broker.protocols import Broker, IndicatorService, PriceFeed
from engulftrade.config import Config
from engulftrade.risk.sl_tp import SpreadAdjuster, entry_levels, price_bound
from engulftrade.risk.stop_policy import (
    AtrStop,
    BreakEvenStop,
    FixedStop,
    StopLossPolicy,
    TrailingStop,
    break_even_price,
    initial_stop,
    is_more_favorable,
    profit_points,
    trailing_candidate,
)
from engulftrade.strategy.models import SERIES_ATR
from engulftrade.strategy.signal_state import SignalState, bar_open_time

logger = logging.getLogger("engulftrade")


# ── Actions ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClosePosition:
    position_id: str
    direction: Direction
    reason: str


@dataclass(frozen=True)
class ModifyStop:
    position_id: str
    stop_loss: float
    take_profit: Optional[float]
    reason: str


Action = Union[ClosePosition, ModifyStop]


@dataclass(frozen=True)
class Snapshot:
    """Everything :func:`reconcile` needs, read once per tick."""

    positions: tuple[Position, ...]
    quote: Quote
    now: datetime
    atr: Optional[float] = None


# ── Pure planners ────────────────────────────────────────────────────────


def bars_elapsed(
    open_time: datetime,
    now: datetime,
    period_seconds: int,
    bars_between: Callable[[datetime, datetime], Optional[int]],
) -> Optional[int]:
    """Completed bars since *open_time*; 0 while still inside the opening bar."""
    if bar_open_time(open_time, period_seconds) == bar_open_time(now, period_seconds):
        return 0
    return bars_between(open_time, now)


def plan_initial_stops(
    positions: Iterable[Position],
    policy: StopLossPolicy,
    adjuster: SpreadAdjuster,
    atr: Optional[float] = None,
) -> list[ModifyStop]:
    """Place a stop on positions that have none (fixed and ATR policies)."""
    if isinstance(policy, FixedStop):
        if policy.points <= 0:
            return []
        distance = adjuster.distance(policy.points, "fixed stop")
    elif isinstance(policy, AtrStop):
        if atr is None:
            return []
        distance = atr * policy.multiplier
    else:
        return []

    return [
        ModifyStop(
            position_id=p.position_id,
            stop_loss=initial_stop(p.direction, p.open_price, distance),
            take_profit=p.take_profit,
            reason="initial_stop",
        )
        for p in positions
        if p.stop_loss is None
    ]


def plan_profit_target_closes(
    positions: Iterable[Position],
    target_points: float,
    point_value: float,
) -> list[ClosePosition]:
    """Close a whole direction once its aggregate profit reaches the target.

    Threshold per direction = ``count × target_points × point_value``.
    """
    if target_points <= 0:
        return []

    actions: list[ClosePosition] = []
    positions = list(positions)
    for direction in (Direction.LONG, Direction.SHORT):
        group = [p for p in positions if p.direction is direction]
        if not group:
            continue
        threshold = len(group) * target_points * point_value
        aggregate = sum(p.profit for p in group)
        if aggregate >= threshold:
            logger.info(
                "%s profit %.2f reached target %.2f across %d position(s)",
                direction.value, aggregate, threshold, len(group),
            )
            actions.extend(
                ClosePosition(p.position_id, direction, "profit_target") for p in group
            )
    return actions


def plan_time_exits(
    positions: Iterable[Position],
    holding_bars: int,
    now: datetime,
    period_seconds: int,
    bars_between: Callable[[datetime, datetime], Optional[int]],
) -> list[ClosePosition]:
    """Close positions held for ``holding_bars`` completed bars or more.

    An unknown bar count counts as expired.
    """
    if holding_bars <= 0:
        return []

    actions: list[ClosePosition] = []
    for p in positions:
        elapsed = bars_elapsed(p.open_time, now, period_seconds, bars_between)
        if elapsed is None:
            logger.warning(
                "Bar count unavailable for %s — treating as expired", p.position_id
            )
        elif elapsed < holding_bars:
            continue
        actions.append(ClosePosition(p.position_id, p.direction, "time_exit"))
    return actions


def plan_stop_adjustments(
    positions: Sequence[Position],
    policy: StopLossPolicy,
    quote: Quote,
    point: float,
    adjuster: SpreadAdjuster,
) -> list[ModifyStop]:
    """Trailing or break-even moves that strictly tighten existing stops."""
    actions: list[ModifyStop] = []

    if isinstance(policy, TrailingStop):
        distance = adjuster.distance(policy.points, "trailing stop")
        for p in positions:
            if profit_points(p, quote, point) < policy.profit_trigger:
                continue
            candidate = trailing_candidate(p, quote, distance)
            if is_more_favorable(p.direction, candidate, p.stop_loss):
                actions.append(
                    ModifyStop(p.position_id, candidate, p.take_profit, "trailing_stop")
                )

    elif isinstance(policy, BreakEvenStop):
        for direction in (Direction.LONG, Direction.SHORT):
            group = [p for p in positions if p.direction is direction]
            if not group:
                continue
            qualifying = [
                p for p in group
                if profit_points(p, quote, point) >= policy.profit_trigger
            ]
            if not qualifying:
                continue
            level = break_even_price(group, policy.fee_per_lot)
            for p in qualifying:
                if is_more_favorable(direction, level, p.stop_loss):
                    actions.append(
                        ModifyStop(p.position_id, level, p.take_profit, "break_even")
                    )

    return actions


def reconcile(
    snapshot: Snapshot,
    policy: StopLossPolicy,
    config: Config,
    feed: PriceFeed,
    adjuster: Optional[SpreadAdjuster] = None,
) -> list[Action]:
    """Decide every exit and stop change for this tick.

    Positions scheduled to close receive no stop modification.
    """
    if adjuster is None:
        adjuster = SpreadAdjuster(snapshot.quote.spread, feed.point)
    point_value = config.point_value or config.lot_size * feed.point

    positions = list(snapshot.positions)
    actions: list[Action] = list(
        plan_initial_stops(positions, policy, adjuster, snapshot.atr)
    )

    closing: set[str] = set()
    for close in plan_profit_target_closes(
        positions, config.profit_target_points, point_value,
    ) + plan_time_exits(
        positions, config.holding_bars, snapshot.now,
        feed.period_seconds, feed.bars_between,
    ):
        if close.position_id in closing:
            continue
        closing.add(close.position_id)
        actions.append(close)

    if closing:
        actions = [
            a for a in actions
            if isinstance(a, ClosePosition) or a.position_id not in closing
        ]

    remaining = [p for p in positions if p.position_id not in closing]
    actions.extend(
        plan_stop_adjustments(remaining, policy, snapshot.quote, feed.point, adjuster)
    )

    return actions


# ── Controller ───────────────────────────────────────────────────────────


class LifecycleController:
    """Executes lifecycle decisions for one instrument and strategy identity.

    Args:
        config: Engine configuration.
        broker: Order execution collaborator.
        feed: Price feed (quote, point, bar counting).
        indicators: Indicator service (ATR for the ATR policy).
        policy: The active stop-loss policy.
    """

    def __init__(
        self,
        config: Config,
        broker: Broker,
        feed: PriceFeed,
        indicators: IndicatorService,
        policy: StopLossPolicy,
    ) -> None:
        self._config = config
        self._broker = broker
        self._feed = feed
        self._indicators = indicators
        self._policy = policy

    @property
    def policy(self) -> StopLossPolicy:
        return self._policy

    async def positions(self) -> list[Position]:
        """Live positions for this identity and instrument, re-read every call."""
        positions = await self._broker.list_positions(
            self._config.magic_number, self._config.instrument,
        )
        return [
            p for p in positions
            if p.magic == self._config.magic_number
            and p.instrument == self._config.instrument
        ]

    def _atr(self) -> Optional[float]:
        if not isinstance(self._policy, AtrStop):
            return None
        return self._indicators.value(SERIES_ATR, 0, 1)

    # ── Entries ──────────────────────────────────────────────────────────

    async def open_if_signaled(
        self,
        state: SignalState,
        positions: Sequence[Position],
        quote: Quote,
        adjuster: Optional[SpreadAdjuster] = None,
    ) -> Optional[OrderResult]:
        """Open a market position for a live open-signal.

        Does nothing when a same-direction position already exists (the
        signal is consumed instead).  A rejected entry leaves the signal live.
        """
        direction = state.open_signal.direction
        if direction is None:
            return None

        if any(p.direction is direction for p in positions):
            logger.info("%s position already open — signal consumed", direction.value)
            state.consume_open()
            return None

        if adjuster is None:
            adjuster = SpreadAdjuster(quote.spread, self._feed.point)
        entry = quote.ask if direction is Direction.LONG else quote.bid
        stop_loss, take_profit = entry_levels(
            direction,
            entry,
            self._config.stop_loss_points,
            self._config.take_profit_points,
            self._policy,
            adjuster,
            atr=self._atr(),
        )
        bound = price_bound(
            direction, entry, self._config.slippage_points, self._feed.point,
        )

        result = await self._broker.open_market(
            direction, self._config.lot_size, stop_loss, take_profit, bound,
        )
        if result.ok:
            logger.info(
                "Opened %s %s @ ~%.5f (SL=%s, TP=%s) id=%s",
                direction.value, self._config.instrument, entry,
                stop_loss, take_profit, result.position_id,
            )
            state.consume_open()
        else:
            logger.warning(
                "Entry %s %s rejected: %s — will retry",
                direction.value, self._config.instrument, result.reason,
            )
        return result

    # ── Exits ────────────────────────────────────────────────────────────

    async def close_if_signaled(
        self,
        state: SignalState,
        positions: Sequence[Position],
    ) -> list[OrderResult]:
        """Close every position matching the live close-signal.

        The close-signal clears once no matching position remains.
        """
        direction = state.close_signal.direction
        if direction is None:
            return []

        matching = [p for p in positions if p.direction is direction]
        results = [
            await self.execute(ClosePosition(p.position_id, direction, "close_signal"))
            for p in matching
        ]
        if all(r.ok for r in results):
            state.consume_close()
        return results

    async def close_expired_by_time(
        self,
        positions: Sequence[Position],
        now: datetime,
    ) -> list[OrderResult]:
        actions = plan_time_exits(
            positions, self._config.holding_bars, now,
            self._feed.period_seconds, self._feed.bars_between,
        )
        return [await self.execute(a) for a in actions]

    async def close_by_profit_target(
        self,
        positions: Sequence[Position],
    ) -> list[OrderResult]:
        point_value = self._config.point_value or self._config.lot_size * self._feed.point
        actions = plan_profit_target_closes(
            positions, self._config.profit_target_points, point_value,
        )
        return [await self.execute(a) for a in actions]

    # ── Stop management ──────────────────────────────────────────────────

    async def manage(
        self,
        positions: Sequence[Position],
        quote: Quote,
        now: datetime,
        adjuster: Optional[SpreadAdjuster] = None,
    ) -> list[tuple[Action, OrderResult]]:
        """Run :func:`reconcile` for this tick and execute its actions."""
        atr = self._atr()
        if isinstance(self._policy, AtrStop) and atr is None:
            logger.warning("ATR unavailable — initial stops deferred")

        snapshot = Snapshot(positions=tuple(positions), quote=quote, now=now, atr=atr)
        actions = reconcile(snapshot, self._policy, self._config, self._feed, adjuster)
        return [(action, await self.execute(action)) for action in actions]

    async def execute(self, action: Action) -> OrderResult:
        """Send one action to the broker and log the outcome."""
        if isinstance(action, ClosePosition):
            result = await self._broker.close(action.position_id)
            if result.ok:
                logger.info(
                    "Closed %s position %s (%s)",
                    action.direction.value, action.position_id, action.reason,
                )
            else:
                logger.warning(
                    "Close of %s (%s) rejected: %s",
                    action.position_id, action.reason, result.reason,
                )
            return result

        result = await self._broker.modify_stop(
            action.position_id, action.stop_loss, action.take_profit,
        )
        if result.ok:
            logger.info(
                "Stop on %s moved to %.5f (%s)",
                action.position_id, action.stop_loss, action.reason,
            )
        else:
            logger.warning(
                "Stop modify on %s (%s) rejected: %s",
                action.position_id, action.reason, result.reason,
            )
        return result
