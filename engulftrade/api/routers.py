"""Internal API routers — /status and /actions endpoints.

No business logic.  The engine pushes its state here after every tick.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

logger = logging.getLogger("engulftrade")
router = APIRouter()

# ── Shared state (updated by the engine) ─────────────────────────────────

_DEFAULT_STREAM_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "halted": False,
    "instrument": None,
    "magic_number": None,
    "stop_policy": None,
    "equity": None,
    "balance": None,
    "starting_balance": None,
    "open_positions": 0,
    "signal": None,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
    "last_signal_eval_at": None,
    "last_result": None,
}

# Keyed by stream name → status dict
_stream_statuses: dict[str, dict] = {}
_action_log: list[dict] = []  # most recent last, max _ACTION_LOG_SIZE
_ACTION_LOG_SIZE = 100


def update_bot_status(stream_name: str = "default", **fields) -> None:
    """Update individual fields of a stream's status dict."""
    if stream_name not in _stream_statuses:
        _stream_statuses[stream_name] = {
            **_DEFAULT_STREAM_STATUS,
            "stream_name": stream_name,
        }
    _stream_statuses[stream_name].update(fields)


def record_action(stream_name: str, action: dict) -> None:
    """Append a broker action (open/close/modify) to the ring buffer."""
    _action_log.append({
        "stream_name": stream_name,
        "recorded_at": datetime.now(timezone.utc).isoformat(),
        **action,
    })
    del _action_log[:-_ACTION_LOG_SIZE]


def reset_state() -> None:
    """Forget every stream and action (used between tests)."""
    _stream_statuses.clear()
    _action_log.clear()


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(stream: Optional[str] = Query(default=None)):
    """Return every stream's status, or one stream's when ``stream`` is given."""
    if stream is None:
        return {"streams": list(_stream_statuses.values())}
    if stream not in _stream_statuses:
        raise HTTPException(status_code=404, detail=f"Unknown stream '{stream}'")
    return _stream_statuses[stream]


@router.get("/actions")
async def get_actions(limit: int = Query(default=20, ge=1, le=_ACTION_LOG_SIZE)):
    """Most recent broker actions, newest first."""
    return {"actions": list(reversed(_action_log[-limit:]))}
