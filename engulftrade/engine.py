"""EngulfTrade — Trading engine (orchestration loop).

Connects signal evaluation, the risk guard, and the lifecycle controller
into a single polling loop for one (instrument, strategy identity) pair.

Each tick:
    1. Risk guard — liquidate and halt on breach.
    2. New bar? → detect pattern, confirm, derive open/close signals.
    3. Close by signal, then open by signal.
    4. Re-read positions → initial stops, profit target, time exit,
       trailing / break-even.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from engulftrade.api.routers import record_action, update_bot_status
from engulftrade.broker.protocols import Account, Broker, IndicatorService, PriceFeed
from engulftrade.config import Config
from engulftrade.errors import DataUnavailable, RiskBreach
from engulftrade.lifecycle import ClosePosition, LifecycleController
from engulftrade.risk.risk_guard import RiskGuard
from engulftrade.risk.sl_tp import SpreadAdjuster
from engulftrade.risk.stop_policy import StopLossPolicy, policy_from_config
from engulftrade.strategy.confirmation import close_signal, confirm, read_oscillator
from engulftrade.strategy.models import CloseSignal, OpenSignal
from engulftrade.strategy.pattern import EngulfingDetector
from engulftrade.strategy.signal_state import SignalState

logger = logging.getLogger("engulftrade")


class TradingEngine:
    """Orchestrates one evaluation-and-execution cycle per call.

    Args:
        config: Engine configuration.
        broker: Order execution collaborator (``OandaBroker`` or a fake).
        account: Account collaborator.
        feed: Price feed.  If it has an async ``refresh()`` the run loop
              calls it before every tick.
        indicators: Indicator service.
        policy: Stop-loss policy.  Defaults to the one in *config*.
    """

    def __init__(
        self,
        config: Config,
        broker: Broker,
        account: Account,
        feed: PriceFeed,
        indicators: IndicatorService,
        policy: Optional[StopLossPolicy] = None,
    ) -> None:
        self._config = config
        self._broker = broker
        self._account = account
        self._feed = feed
        self._indicators = indicators
        self._policy = policy if policy is not None else policy_from_config(config)
        self._state = SignalState()
        self._detector = EngulfingDetector(feed, indicators, config.body_window)
        self._lifecycle = LifecycleController(
            config, broker, feed, indicators, self._policy,
        )
        self._guard: Optional[RiskGuard] = None
        self._running: bool = False
        self._cycle_count: int = 0

    @property
    def stream_name(self) -> str:
        return f"{self._config.instrument}-{self._config.magic_number}"

    @property
    def state(self) -> SignalState:
        return self._state

    @property
    def guard(self) -> Optional[RiskGuard]:
        return self._guard

    @property
    def halted(self) -> bool:
        return self._guard is not None and self._guard.halted

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Capture the starting balance and arm the risk guard.

        Raises:
            DataUnavailable: the account could not be read.
        """
        summary = await self._account.get_account_summary()
        self._guard = RiskGuard(
            starting_balance=summary.balance,
            minimum_equity=self._config.minimum_equity,
            max_loss_pct=self._config.max_loss_pct,
        )
        logger.info(
            "Stream '%s' armed: start balance %.2f, floor %.2f, max loss %.1f%%, policy %s",
            self.stream_name, summary.balance, self._config.minimum_equity,
            self._config.max_loss_pct, type(self._policy).__name__,
        )
        update_bot_status(
            stream_name=self.stream_name,
            running=True,
            instrument=self._config.instrument,
            magic_number=self._config.magic_number,
            stop_policy=self._config.stop_policy,
            equity=summary.equity,
            balance=summary.balance,
            starting_balance=summary.balance,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        self._running = True

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the trading loop until stopped or halted.

        Args:
            poll_interval: Seconds between ticks. Defaults to config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.poll_interval_seconds
        if self._guard is None:
            await self.initialize()
        self._running = True

        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            refresh = getattr(self._feed, "refresh", None)
            if refresh is not None:
                try:
                    await refresh()
                except DataUnavailable as exc:
                    # risk checks still run against the account
                    logger.warning("Cycle %d market data refresh failed: %s", cycle, exc)
            try:
                result = await self.run_once()
            except DataUnavailable as exc:
                logger.warning("Cycle %d skipped: %s", cycle, exc)
                result = {"action": "skipped", "reason": "data_unavailable"}
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                result = {"action": "error", "reason": str(exc)}
            results.append(result)
            logger.debug("Cycle %d: %s", cycle, result.get("action", "unknown"))

            if self.halted and (self._guard is None or self._guard.liquidated):
                logger.critical("Stream '%s' halted — operator restart required", self.stream_name)
                break
            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep: checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        update_bot_status(stream_name=self.stream_name, running=False)
        return results

    # ── Signal evaluation ────────────────────────────────────────────────

    def evaluate_signals(self, utc_now: datetime) -> None:
        """Derive this bar's open/close signals.

        Every lookup happens before the signals are touched, so a
        ``DataUnavailable`` leaves the previous signals intact.  A pattern
        whose oscillator cannot be read stays in ``PATTERN_PENDING`` until
        a later tick confirms or vetoes it.
        """
        cfg = self._config
        pattern = self._detector.detect()
        self._state.record_pattern(pattern)
        current = read_oscillator(self._indicators, 1)
        confirmed = confirm(pattern, current, cfg.overbought, cfg.oversold)

        exit_signal = CloseSignal.NONE
        if not (pattern.found and confirmed):
            previous = read_oscillator(self._indicators, 2)
            exit_signal = close_signal(current.k, previous.k, cfg.overbought, cfg.oversold)

        self._state.apply(pattern, confirmed, exit_signal)
        self._state.mark_evaluated(utc_now, self._feed.period_seconds)
        if (
            self._state.open_signal is not OpenSignal.NONE
            or self._state.close_signal is not CloseSignal.NONE
        ):
            logger.info(
                "Stream '%s' new bar: open=%s close=%s",
                self.stream_name,
                self._state.open_signal.value,
                self._state.close_signal.value,
            )

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one tick.

        Returns a dict describing what happened:

        - ``{"action": "halted", "reason": "risk_breach"}``
        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "managed", "opened": ..., "closed": [...], "modified": [...]}``

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        if self._guard is None:
            await self.initialize()
        self._cycle_count += 1
        cfg = self._config

        # 1 ── Risk guard
        if self._guard.halted:
            if not self._guard.liquidated:
                await self._guard.liquidate(self._broker, cfg.magic_number, cfg.instrument)
            return {"action": "halted", "reason": "risk_breach"}

        try:
            summary = await self._guard.check_and_enforce(
                self._account, self._broker, cfg.magic_number, cfg.instrument,
            )
        except RiskBreach as exc:
            update_bot_status(
                stream_name=self.stream_name,
                halted=True,
                equity=exc.equity,
                last_cycle_at=utc_now.isoformat(),
                last_result="risk_breach",
            )
            record_action(self.stream_name, {"type": "liquidate", "reason": str(exc)})
            return {"action": "halted", "reason": "risk_breach"}
        except DataUnavailable as exc:
            logger.warning("Risk check skipped tick: %s", exc)
            return {"action": "skipped", "reason": "account_unavailable"}

        # 2 ── Signal evaluation (once per bar)
        evaluated = False
        if self._state.is_new_bar(utc_now):
            try:
                self.evaluate_signals(utc_now)
                evaluated = True
            except DataUnavailable as exc:
                logger.warning("Signal evaluation aborted, retry next tick: %s", exc)

        # 3 ── Signal-driven closes and entries
        try:
            quote = self._feed.quote()
            positions = await self._lifecycle.positions()
        except DataUnavailable as exc:
            logger.warning("Position management skipped: %s", exc)
            return {"action": "skipped", "reason": "market_data_unavailable"}

        adjuster = SpreadAdjuster(quote.spread, self._feed.point)
        result: dict = {
            "action": "managed",
            "signal_evaluated": evaluated,
            "opened": None,
            "closed": [],
            "modified": [],
        }

        touched = False
        if self._state.close_signal is not CloseSignal.NONE:
            direction = self._state.close_signal.direction
            matching = [p.position_id for p in positions if p.direction is direction]
            closes = await self._lifecycle.close_if_signaled(self._state, positions)
            for position_id, outcome in zip(matching, closes):
                if outcome.ok:
                    result["closed"].append(position_id)
                    self._record("close", position_id=position_id, reason="close_signal")
            touched = touched or bool(closes)

        if self._state.open_signal is not OpenSignal.NONE:
            if touched:
                positions = await self._lifecycle.positions()
            direction = self._state.open_signal.direction
            opened = await self._lifecycle.open_if_signaled(
                self._state, positions, quote, adjuster,
            )
            if opened is not None:
                touched = True
                if opened.ok:
                    result["opened"] = opened.position_id
                    self._record("open", position_id=opened.position_id, direction=direction.value)

        # 4 ── Stop management, profit target, time exit
        if touched:
            positions = await self._lifecycle.positions()
        for action, outcome in await self._lifecycle.manage(positions, quote, utc_now, adjuster):
            if not outcome.ok:
                continue
            if isinstance(action, ClosePosition):
                result["closed"].append(action.position_id)
                self._record("close", position_id=action.position_id, reason=action.reason)
            else:
                result["modified"].append(action.position_id)
                self._record(
                    "modify_stop", position_id=action.position_id,
                    stop_loss=action.stop_loss, reason=action.reason,
                )

        update_bot_status(
            stream_name=self.stream_name,
            cycle_count=self._cycle_count,
            last_cycle_at=utc_now.isoformat(),
            equity=summary.equity,
            balance=summary.balance,
            open_positions=len(positions),
            signal=self._state.snapshot(),
            last_result=result["action"],
            **({"last_signal_eval_at": utc_now.isoformat()} if evaluated else {}),
        )
        return result

    def _record(self, kind: str, **fields) -> None:
        record_action(self.stream_name, {"type": kind, **fields})
