"""Account-level risk guard — equity floor and drawdown limit.

The starting balance is captured once when the engine starts.  A breach
liquidates everything tagged with this strategy identity and halts trading
for the rest of the run.
"""

import logging
from typing import Optional

from engulftrade.broker.models import AccountSummary
from engulftrade.broker.protocols import Account, Broker
from engulftrade.errors import DataUnavailable, RiskBreach

logger = logging.getLogger("engulftrade")


class RiskGuard:
    """Tracks the risk limits and enforces them.

    Args:
        starting_balance: Account balance at strategy start.
        minimum_equity: Absolute equity floor; equity at or below it breaches.
                        The default 0 still catches a wiped-out account.
        max_loss_pct: Maximum loss from the starting balance, as a
                      percentage (e.g. 20.0).  0 disables.
    """

    def __init__(
        self,
        starting_balance: float,
        minimum_equity: float = 0.0,
        max_loss_pct: float = 0.0,
    ) -> None:
        if max_loss_pct < 0 or max_loss_pct > 100:
            raise ValueError(f"max_loss_pct must be within 0-100, got {max_loss_pct}")
        if minimum_equity < 0:
            raise ValueError(f"minimum_equity must not be negative, got {minimum_equity}")
        self.starting_balance = starting_balance
        self.minimum_equity = minimum_equity
        self.max_loss_pct = max_loss_pct
        self._halted = False
        self._liquidated = False

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def liquidated(self) -> bool:
        """``True`` once a liquidation pass closed and cancelled everything."""
        return self._liquidated

    @property
    def drawdown_limit(self) -> Optional[float]:
        """Equity at which the max-loss limit trips, or ``None`` if disabled."""
        if self.max_loss_pct <= 0:
            return None
        return self.starting_balance * (1 - self.max_loss_pct / 100.0)

    def breach_limit(self, equity: float) -> Optional[float]:
        """The highest limit *equity* is at or below, or ``None``."""
        limits = []
        if equity <= self.minimum_equity:
            limits.append(self.minimum_equity)
        dd_limit = self.drawdown_limit
        if dd_limit is not None and equity <= dd_limit:
            limits.append(dd_limit)
        return max(limits) if limits else None

    def is_breached(self, equity: float) -> bool:
        return self.breach_limit(equity) is not None

    # ── Enforcement ──────────────────────────────────────────────────────

    async def check_and_enforce(
        self,
        account: Account,
        broker: Broker,
        magic: int,
        instrument: str,
    ) -> AccountSummary:
        """Read equity and liquidate on breach.

        Returns the account summary when within limits.

        Raises:
            RiskBreach: a limit was breached; liquidation has been attempted
                        and the guard is now halted.
            DataUnavailable: the account could not be read.
        """
        summary = await account.get_account_summary()
        limit = self.breach_limit(summary.equity)
        if limit is None:
            return summary

        logger.critical(
            "RISK BREACH — equity %.2f at or below %.2f (start balance %.2f). Liquidating.",
            summary.equity, limit, self.starting_balance,
        )
        self._halted = True
        await self.liquidate(broker, magic, instrument)
        raise RiskBreach(summary.equity, limit)

    async def liquidate(self, broker: Broker, magic: int, instrument: str) -> int:
        """Close every position and cancel every pending order, best-effort.

        Each request is attempted independently.  Returns the number of
        failed requests; ``liquidated`` becomes ``True`` only when none
        failed.
        """
        failures = 0

        try:
            positions = await broker.list_positions(magic, instrument)
        except DataUnavailable as exc:
            logger.error("Liquidation could not list positions: %s", exc)
            positions = []
            failures += 1
        for position in positions:
            result = await broker.close(position.position_id)
            if not result.ok:
                failures += 1
                logger.error(
                    "Liquidation close of %s failed: %s",
                    position.position_id, result.reason,
                )

        try:
            order_ids = await broker.list_pending_orders(magic, instrument)
        except DataUnavailable as exc:
            logger.error("Liquidation could not list pending orders: %s", exc)
            order_ids = []
            failures += 1
        for order_id in order_ids:
            result = await broker.cancel_pending_order(order_id)
            if not result.ok:
                failures += 1
                logger.error(
                    "Liquidation cancel of order %s failed: %s",
                    order_id, result.reason,
                )

        self._liquidated = failures == 0
        if self._liquidated:
            logger.critical(
                "Liquidation complete: %d position(s) closed, %d order(s) cancelled",
                len(positions), len(order_ids),
            )
        return failures
