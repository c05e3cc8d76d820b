"""Structured telemetry events for the scheduling core.

Events are plain names plus JSON-safe fields. They are handed to in-process
listeners (tests, the audit trail, exporters) and written to the
``study_core.telemetry`` logger as ``TELEMETRY {json}`` lines.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List

logger = logging.getLogger("study_core.telemetry")

TelemetryListener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]


class TelemetryHub:
    def __init__(self) -> None:
        self._listeners: List[TelemetryListener] = []
        self._lock = RLock()

    def register(self, listener: TelemetryListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unregister() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unregister

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def emit(self, name: str, fields: Dict[str, Any]) -> TelemetryEvent:
        event = TelemetryEvent(name=name, payload={key: _json_safe(value) for key, value in fields.items()})
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Telemetry listener failed for %s", name)
        if logger.isEnabledFor(logging.INFO):
            logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))
        return event


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    return value


_hub = TelemetryHub()


def register_listener(listener: TelemetryListener) -> Callable[[], None]:
    """Register an in-process listener; returns a callable that removes it."""
    return _hub.register(listener)


def clear_listeners() -> None:
    _hub.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Emit a structured telemetry event and fan it out to listeners."""
    _hub.emit(name, fields)


__all__ = [
    "TelemetryEvent",
    "TelemetryHub",
    "TelemetryListener",
    "clear_listeners",
    "emit_event",
    "register_listener",
]
