"""Connection pool observability for the review store engine."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event


@dataclass
class PoolTelemetryState:
    dialect: str
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    last_emit: float = 0.0

    def counters(self) -> Dict[str, int]:
        return {
            "connects": self.connects,
            "checkouts": self.checkouts,
            "checkins": self.checkins,
        }


_STATE_BY_ENGINE: Dict[int, PoolTelemetryState] = {}
_TELEMETRY_INTERVAL = float(os.getenv("STUDYCORE_DB_TELEMETRY_INTERVAL", "30"))


def instrument_engine(engine: Engine) -> None:
    """Attach pool listeners that emit ``db_pool_status`` snapshots at most once per interval."""
    key = id(engine)
    if key in _STATE_BY_ENGINE:
        return

    state = PoolTelemetryState(dialect=engine.dialect.name)
    _STATE_BY_ENGINE[key] = state

    def snapshot(event_name: str) -> None:
        now = time.time()
        if _TELEMETRY_INTERVAL > 0 and (now - state.last_emit) < _TELEMETRY_INTERVAL:
            return
        state.last_emit = now
        emit_event(
            "db_pool_status",
            event=event_name,
            dialect=state.dialect,
            status=_safe_pool_status(engine),
            **state.counters(),
        )

    @event.listens_for(engine, "connect", retval=False)
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.connects += 1
        snapshot("db_pool_connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        state.checkouts += 1
        snapshot("db_pool_checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.checkins += 1
        snapshot("db_pool_checkin")


def forget_engine(engine: Engine) -> None:
    """Drop counters for a disposed engine so a reused id starts clean."""
    _STATE_BY_ENGINE.pop(id(engine), None)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    """Return the latest counters and pool status for the provided engine."""
    state = _STATE_BY_ENGINE.get(id(engine))
    counters = state.counters() if state else {"connects": 0, "checkouts": 0, "checkins": 0}
    return {
        "dialect": engine.dialect.name,
        "status": _safe_pool_status(engine),
        **counters,
    }


def _safe_pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover - pool without status support
        return f"unavailable: {exc}"


__all__ = [
    "forget_engine",
    "get_pool_snapshot",
    "instrument_engine",
]
