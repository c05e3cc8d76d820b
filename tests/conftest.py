from __future__ import annotations

from typing import Iterator, List

import pytest

from study_core.config import get_settings
from study_core.db.base import Base
from study_core.db import models  # noqa: F401
from study_core.db.session import dispose_engine, get_engine
from study_core.progress import progress_cache
from study_core.telemetry import TelemetryEvent, clear_listeners, register_listener


@pytest.fixture(autouse=True)
def review_database(tmp_path, monkeypatch) -> Iterator[None]:
    """Point every test at a fresh SQLite file and reset process-wide state."""
    db_path = tmp_path / "reviews.sqlite"
    monkeypatch.setenv("STUDYCORE_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("STUDYCORE_TIMEZONE", "UTC")
    get_settings.cache_clear()
    dispose_engine()
    Base.metadata.create_all(get_engine())
    progress_cache.clear()
    clear_listeners()
    yield
    clear_listeners()
    progress_cache.clear()
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def telemetry_events() -> List[TelemetryEvent]:
    captured: List[TelemetryEvent] = []

    def record(event: TelemetryEvent) -> None:
        if event.name != "db_pool_status":
            captured.append(event)

    register_listener(record)
    return captured
