from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from study_core.telemetry import TelemetryEvent, clear_listeners, emit_event, register_listener


def test_emit_event_serializes_dates_for_listeners(telemetry_events) -> None:
    emit_event(
        "review_item_completed",
        owner_id="learner-42",
        completed_at=datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc),
        plan_day=date(2024, 3, 14),
    )
    assert len(telemetry_events) == 1
    event = telemetry_events[0]
    assert event.name == "review_item_completed"
    assert event.payload == {
        "owner_id": "learner-42",
        "completed_at": "2024-03-14T09:30:00+00:00",
        "plan_day": "2024-03-14",
    }


def test_listener_failure_is_logged_not_raised(caplog) -> None:
    seen: list[TelemetryEvent] = []

    def broken(_event: TelemetryEvent) -> None:
        raise RuntimeError("listener bug")

    register_listener(broken)
    register_listener(seen.append)
    with caplog.at_level(logging.INFO, logger="study_core.telemetry"):
        emit_event("planner_sync_completed", owner_id="learner-42")
    assert [event.name for event in seen] == ["planner_sync_completed"]
    assert "Telemetry listener failed" in caplog.text
    assert 'TELEMETRY {"event": "planner_sync_completed"' in caplog.text


def test_clear_listeners_stops_delivery() -> None:
    seen: list[TelemetryEvent] = []
    register_listener(seen.append)
    clear_listeners()
    emit_event("review_item_created", owner_id="learner-42")
    assert seen == []


def test_register_listener_returns_unsubscribe() -> None:
    seen: list[TelemetryEvent] = []
    unsubscribe = register_listener(seen.append)
    emit_event("review_item_created", owner_id="learner-42")
    unsubscribe()
    emit_event("review_item_created", owner_id="learner-42")
    assert len(seen) == 1


def test_nested_and_duration_fields_are_json_safe(telemetry_events) -> None:
    emit_event(
        "planner_sync_completed",
        elapsed=timedelta(seconds=1, milliseconds=500),
        offsets=(1, 7, 30),
        window={"start": date(2024, 3, 11)},
    )
    payload = telemetry_events[0].payload
    assert payload == {"elapsed": 1.5, "offsets": [1, 7, 30], "window": {"start": "2024-03-11"}}
