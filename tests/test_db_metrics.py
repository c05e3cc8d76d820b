from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from scripts import db_metrics
from study_core.db.session import get_engine
from study_core.review_items import NewReviewItem, review_store

NOW = datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc)


def test_collect_table_counts() -> None:
    for item_id, due in (("due", NOW - timedelta(hours=1)), ("later", NOW + timedelta(days=1)), ("done", NOW)):
        review_store.create(NewReviewItem(owner_id="learner-42", id=item_id, next_review_at=due), now=NOW)
    review_store.mark_completed("learner-42", "done")
    review_store.record_sync("learner-42", NOW, created=0, failed=0)

    with get_engine().connect() as connection:
        counts = db_metrics.collect_table_counts(connection, now=NOW)

    assert counts == {
        "review_items": 3,
        "open_items": 2,
        "due_items": 1,
        "synced_owners": 1,
        "audit_events": 5,
    }


def test_main_prints_pool_and_table_snapshot(capsys) -> None:
    assert db_metrics.main() == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["pool"]["dialect"] == "sqlite"
    assert payload["tables"]["review_items"] == 0
