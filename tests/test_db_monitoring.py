from __future__ import annotations

from sqlalchemy import create_engine, text

from study_core.db import monitoring


def test_instrument_engine_emits_pool_status(monkeypatch) -> None:
    emitted: list[tuple[str, dict[str, object]]] = []

    def record(event_name: str, **payload: object) -> None:
        emitted.append((event_name, payload))

    monkeypatch.setattr(monitoring, "_TELEMETRY_INTERVAL", 0)
    monkeypatch.setattr(monitoring, "emit_event", record)

    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        monitoring.instrument_engine(engine)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        names = [payload["event"] for _, payload in emitted]
        assert {name for name, _ in emitted} == {"db_pool_status"}
        assert names[:2] == ["db_pool_connect", "db_pool_checkout"]
        assert "db_pool_checkin" in names
        assert emitted[-1][1]["checkins"] == 1
    finally:
        monitoring.forget_engine(engine)
        engine.dispose()


def test_emission_is_throttled(monkeypatch) -> None:
    emitted: list[str] = []
    monkeypatch.setattr(monitoring, "_TELEMETRY_INTERVAL", 3600)
    monkeypatch.setattr(monitoring, "emit_event", lambda name, **_: emitted.append(name))

    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        monitoring.instrument_engine(engine)
        for _ in range(3):
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        assert emitted == ["db_pool_status"]
        snapshot = monitoring.get_pool_snapshot(engine)
        assert snapshot["checkouts"] == 3
        assert snapshot["checkins"] == 3
    finally:
        monitoring.forget_engine(engine)
        engine.dispose()


def test_snapshot_for_unknown_engine_has_zero_counters() -> None:
    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        snapshot = monitoring.get_pool_snapshot(engine)
        assert snapshot["dialect"] == "sqlite"
        assert (snapshot["connects"], snapshot["checkouts"], snapshot["checkins"]) == (0, 0, 0)
    finally:
        engine.dispose()
