"""EngulfTrade — error taxonomy.

Only ``RiskBreach`` is terminal.  Everything else is recoverable on the
next tick.
"""


class EngulfTradeError(Exception):
    """Base class for controller errors."""


class DataUnavailable(EngulfTradeError):
    """A price or indicator lookup returned no value."""

    def __init__(self, what: str, offset: int | None = None) -> None:
        self.what = what
        self.offset = offset
        where = f" at offset {offset}" if offset is not None else ""
        super().__init__(f"{what} unavailable{where}")


class OrderRejected(EngulfTradeError):
    """The broker refused an open/modify/close/cancel request."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} rejected: {reason}")


class RiskBreach(EngulfTradeError):
    """Equity floor or drawdown limit violated — trading halts for the run."""

    def __init__(self, equity: float, limit: float) -> None:
        self.equity = equity
        self.limit = limit
        super().__init__(
            f"Risk breach: equity {equity:.2f} at or below limit {limit:.2f}"
        )
