"""Entry stop-loss / take-profit placement with spread-aware fallback.

A configured distance smaller than the live spread cannot be honoured by
the broker, so the spread itself is used instead and a warning is logged
(once per tick, per ``SpreadAdjuster`` instance).
"""

import logging
from typing import Optional

from engulftrade.broker.models import Direction
from engulftrade.risk.stop_policy import AtrStop, StopLossPolicy, TrailingStop

logger = logging.getLogger("engulftrade")


class SpreadAdjuster:
    """Converts point distances to price distances, floored at the spread.

    Args:
        spread: Current ask − bid.
        point: Smallest quoted price increment.
    """

    def __init__(self, spread: float, point: float) -> None:
        self.spread = spread
        self.point = point
        self.warned = False

    def distance(self, points: float, label: str = "distance") -> float:
        """Price distance for *points*, or the spread if that is larger."""
        distance = points * self.point
        if distance < self.spread:
            if not self.warned:
                logger.warning(
                    "%s of %.1f points is inside the spread (%.1f points) — using spread",
                    label, points, self.spread / self.point,
                )
                self.warned = True
            return self.spread
        return distance


def entry_levels(
    direction: Direction,
    entry_price: float,
    stop_loss_points: float,
    take_profit_points: float,
    policy: StopLossPolicy,
    adjuster: SpreadAdjuster,
    atr: Optional[float] = None,
) -> tuple[Optional[float], Optional[float]]:
    """Return ``(stop_loss, take_profit)`` prices for a new market entry.

    Stop loss, in order of preference:
        1. ``stop_loss_points`` when positive.
        2. Trailing policy → trailing distance.
        3. ATR policy with a known ATR → ``ATR × multiplier``.
        4. Otherwise no stop at entry (``None``).

    Take profit is ``take_profit_points`` away when positive, else ``None``.
    """
    sign = direction.sign
    stop_loss: Optional[float] = None

    if stop_loss_points > 0:
        stop_loss = entry_price - adjuster.distance(stop_loss_points, "stop loss") * sign
    elif isinstance(policy, TrailingStop) and policy.points > 0:
        stop_loss = entry_price - adjuster.distance(policy.points, "trailing stop") * sign
    elif isinstance(policy, AtrStop) and atr is not None:
        stop_loss = entry_price - atr * policy.multiplier * sign

    take_profit: Optional[float] = None
    if take_profit_points > 0:
        take_profit = entry_price + adjuster.distance(take_profit_points, "take profit") * sign

    return stop_loss, take_profit


def price_bound(
    direction: Direction,
    price: float,
    slippage_points: float,
    point: float,
) -> Optional[float]:
    """Worst acceptable fill price, or ``None`` when slippage is unbounded."""
    if slippage_points <= 0:
        return None
    return price + slippage_points * point * direction.sign
