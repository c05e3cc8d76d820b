"""Mirror externally planned study tasks into review items.

Each planned task becomes an *anchor* item on the task's date plus follow-up
reviews one day, one week and one month later. Items are keyed by
``(source_task_id, follow_up_days)``, so a run can be repeated, or resumed
after an interruption, without duplicating anything.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, List, Literal, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError

from .config import Settings, get_settings
from .errors import PersistenceFailure
from .review_items import (
    NewReviewItem,
    ReviewItemStore,
    ensure_utc,
    normalize_owner_id,
    resolve_timezone,
    review_store,
)
from .review_stage import ReviewPriority
from .telemetry import emit_event

logger = logging.getLogger(__name__)

FOLLOW_UP_OFFSETS: Tuple[Tuple[int, str], ...] = (
    (1, "24h Review"),
    (7, "7d Review"),
    (30, "30d Review"),
)

EnsureResult = Literal["created", "existing", "failed"]


class PlannedTask(BaseModel):
    """A task from an imported study plan. Naive dates are learner-local."""

    source_task_id: str = Field(..., min_length=1)
    subject: str = ""
    title: str = ""
    date: datetime
    priority: Optional[ReviewPriority] = None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_calendar_day(cls, value: Any) -> Any:
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.min)
        if isinstance(value, str) and len(value.strip()) == 10:
            return datetime.combine(date.fromisoformat(value.strip()), time.min)
        return value


class SyncReport(BaseModel):
    created_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    last_sync_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)


def derive_priority(subject: str, settings: Optional[Settings] = None) -> ReviewPriority:
    """Map a subject onto a priority using the configured weak/medium subject lists."""
    config = settings or get_settings()
    lowered = subject.lower()
    if any(entry.lower() in lowered for entry in config.high_priority_subjects if entry.strip()):
        return "high"
    if any(entry.lower() in lowered for entry in config.medium_priority_subjects if entry.strip()):
        return "medium"
    return "low"


def anchor_instant(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz).astimezone(timezone.utc)
    return ensure_utc(value)


class SyncReconciler:
    def __init__(self, store: ReviewItemStore = review_store, *, settings: Optional[Settings] = None) -> None:
        self._store = store
        self._settings = settings

    def last_sync_at(self, owner_id: str) -> Optional[datetime]:
        return self._store.last_sync_at(owner_id)

    def reconcile(
        self,
        owner_id: str,
        tasks: Sequence[PlannedTask],
        *,
        now: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> SyncReport:
        owner = normalize_owner_id(owner_id)
        moment = ensure_utc(now) if now else datetime.now(timezone.utc)
        zone = tz or resolve_timezone()
        report = SyncReport()
        seen: Set[str] = set()

        for task in tasks:
            source_id = task.source_task_id.strip()
            if not source_id or source_id in seen:
                continue
            seen.add(source_id)

            anchor_at = anchor_instant(task.date, zone)
            priority = task.priority or derive_priority(task.subject, self._settings)
            anchor = NewReviewItem(
                owner_id=owner,
                subject_label=task.subject,
                topic_label=task.title,
                kind="planned_task",
                next_review_at=anchor_at,
                origin="sync",
                source_task_id=source_id,
                follow_up_days=0,
                priority=priority,
            )
            if self._ensure(anchor, moment, report) == "failed":
                # follow-ups are retried together with their anchor on the next run
                continue

            for offset_days, label in FOLLOW_UP_OFFSETS:
                review_at = anchor_at + timedelta(days=offset_days)
                if review_at <= moment:
                    report.skipped_count += 1
                    continue
                follow_up = NewReviewItem(
                    owner_id=owner,
                    subject_label=task.subject,
                    topic_label=f"{task.title} - {label}",
                    kind="planned_review",
                    next_review_at=review_at,
                    origin="sync",
                    source_task_id=source_id,
                    follow_up_days=offset_days,
                    priority=priority,
                )
                self._ensure(follow_up, moment, report)

        if report.failed_count == 0:
            try:
                report.last_sync_at = self._store.record_sync(
                    owner,
                    moment,
                    created=report.created_count,
                    failed=report.failed_count,
                )
            except PersistenceFailure as exc:
                logger.warning("Could not record planner sync time for owner=%s: %s", owner, exc)
                report.errors.append(str(exc))
        else:
            logger.warning(
                "Planner sync for owner=%s finished with %d failures (%d created)",
                owner,
                report.failed_count,
                report.created_count,
            )

        emit_event(
            "planner_sync_completed",
            owner_id=owner,
            task_count=len(seen),
            created_count=report.created_count,
            failed_count=report.failed_count,
            skipped_count=report.skipped_count,
            last_sync_at=report.last_sync_at,
        )
        return report

    def _ensure(self, draft: NewReviewItem, moment: datetime, report: SyncReport) -> EnsureResult:
        try:
            _, created = self._store.create_if_absent(draft, now=moment)
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError) and self._exists(draft):
                # another worker inserted the same planned item first
                return "existing"
            logger.warning(
                "Failed to persist planned item %s(+%dd) for owner=%s: %s",
                draft.source_task_id,
                draft.follow_up_days,
                draft.owner_id,
                exc,
            )
            report.failed_count += 1
            report.errors.append(f"{draft.source_task_id}+{draft.follow_up_days}d: {exc}")
            return "failed"
        if not created:
            return "existing"
        report.created_count += 1
        return "created"

    def _exists(self, draft: NewReviewItem) -> bool:
        if draft.owner_id is None or draft.source_task_id is None:
            return False
        try:
            return self._store.find_derived(draft.owner_id, draft.source_task_id, draft.follow_up_days) is not None
        except PersistenceFailure:
            return False


sync_reconciler = SyncReconciler()

__all__ = [
    "FOLLOW_UP_OFFSETS",
    "PlannedTask",
    "SyncReconciler",
    "SyncReport",
    "anchor_instant",
    "derive_priority",
    "sync_reconciler",
]
