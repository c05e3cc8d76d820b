"""Print a JSON snapshot of pool state and review table volumes."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from study_core.db.models import PlannerSyncRunModel, ReviewAuditEventModel, ReviewItemModel
from study_core.db.monitoring import get_pool_snapshot
from study_core.db.session import get_engine

LOGGER = logging.getLogger("study_core.db_metrics")


def collect_table_counts(connection: Connection, *, now: datetime) -> Dict[str, int]:
    def scalar(statement) -> int:  # type: ignore[no-untyped-def]
        return int(connection.execute(statement).scalar_one())

    open_items = ReviewItemModel.completed.is_(False)
    return {
        "review_items": scalar(select(func.count()).select_from(ReviewItemModel)),
        "open_items": scalar(select(func.count()).select_from(ReviewItemModel).where(open_items)),
        "due_items": scalar(
            select(func.count())
            .select_from(ReviewItemModel)
            .where(open_items, ReviewItemModel.next_review_at <= now)
        ),
        "synced_owners": scalar(select(func.count()).select_from(PlannerSyncRunModel)),
        "audit_events": scalar(select(func.count()).select_from(ReviewAuditEventModel)),
    }


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    now = datetime.now(timezone.utc)
    try:
        engine = get_engine()
        with engine.connect() as connection:
            counts = collect_table_counts(connection, now=now)
        print(json.dumps({"timestamp": now.isoformat(), "pool": get_pool_snapshot(engine), "tables": counts}))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to collect database metrics: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
