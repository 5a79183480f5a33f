"""Stop-loss policies — pure math, no I/O.

Exactly one policy is active per engine:

  - ``NoStop``        — protective stops are left alone.
  - ``FixedStop``     — placed once, ``points`` away from the open price.
  - ``AtrStop``       — placed once, ``ATR × multiplier`` away.
  - ``TrailingStop``  — follows price ``points`` behind once ``profit_trigger``
                        points of profit are reached.
  - ``BreakEvenStop`` — moves to the fee-adjusted volume-weighted entry of
                        all same-direction positions once triggered.

Trailing and break-even stops only ever tighten.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from engulftrade.broker.models import Direction, Position, Quote


@dataclass(frozen=True)
class NoStop:
    pass


@dataclass(frozen=True)
class FixedStop:
    points: float


@dataclass(frozen=True)
class AtrStop:
    period: int
    multiplier: float


@dataclass(frozen=True)
class TrailingStop:
    points: float
    profit_trigger: float


@dataclass(frozen=True)
class BreakEvenStop:
    fee_per_lot: float
    profit_trigger: float


StopLossPolicy = Union[NoStop, FixedStop, AtrStop, TrailingStop, BreakEvenStop]

STOP_POLICY_NAMES = ("none", "fixed", "trailing", "break_even", "atr")


def policy_from_config(config) -> StopLossPolicy:
    """Build the configured policy variant.

    Raises ``ValueError`` for an unknown ``stop_policy`` name.
    """
    name = config.stop_policy
    if name == "none":
        return NoStop()
    if name == "fixed":
        return FixedStop(points=config.stop_loss_points)
    if name == "trailing":
        return TrailingStop(
            points=config.trailing_stop_points,
            profit_trigger=config.trailing_trigger_points,
        )
    if name == "break_even":
        return BreakEvenStop(
            fee_per_lot=config.break_even_fee_per_lot,
            profit_trigger=config.break_even_trigger_points,
        )
    if name == "atr":
        return AtrStop(period=config.atr_period, multiplier=config.atr_multiplier)
    raise ValueError(
        f"stop_policy must be one of {', '.join(STOP_POLICY_NAMES)}, got '{name}'"
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def exit_price(direction: Direction, quote: Quote) -> float:
    """Price a position would close at: bid for longs, ask for shorts."""
    return quote.bid if direction is Direction.LONG else quote.ask


def profit_points(position: Position, quote: Quote, point: float) -> float:
    """Unrealized profit in points, direction-aware."""
    current = exit_price(position.direction, quote)
    return (current - position.open_price) * position.direction.sign / point


def is_more_favorable(
    direction: Direction,
    candidate: float,
    existing: Optional[float],
) -> bool:
    """``True`` if *candidate* tightens *existing* (strictly)."""
    if existing is None:
        return True
    if direction is Direction.LONG:
        return candidate > existing
    return candidate < existing


def initial_stop(direction: Direction, open_price: float, distance: float) -> float:
    """Stop ``distance`` (price units) on the losing side of *open_price*."""
    return open_price - distance * direction.sign


def trailing_candidate(
    position: Position,
    quote: Quote,
    distance: float,
) -> float:
    """Stop ``distance`` (price units) behind the current exit price."""
    return exit_price(position.direction, quote) - distance * position.direction.sign


def break_even_price(positions: Iterable[Position], fee_per_lot: float) -> float:
    """Fee-adjusted volume-weighted entry of same-direction *positions*.

    Formula::

        weighted = Σ(open_price × volume) / Σ volume
        fees     = Σ(fee_per_lot × volume) / Σ volume
        long     → weighted + fees
        short    → weighted − fees

    Raises:
        ValueError: *positions* is empty, mixes directions, or has no volume.
    """
    positions = list(positions)
    if not positions:
        raise ValueError("break_even_price needs at least one position")
    directions = {p.direction for p in positions}
    if len(directions) != 1:
        raise ValueError("break_even_price needs positions of one direction")

    total_volume = sum(p.volume for p in positions)
    if total_volume <= 0:
        raise ValueError(f"total volume must be positive, got {total_volume}")

    weighted = sum(p.open_price * p.volume for p in positions) / total_volume
    fees = sum(fee_per_lot * p.volume for p in positions) / total_volume
    return weighted + fees * positions[0].direction.sign
