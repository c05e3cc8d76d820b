"""Read-only progress statistics derived from an owner's review items."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .cache import ProgressCache
from .config import get_settings
from .errors import ValidationError
from .review_items import (
    ReviewItem,
    ReviewItemChange,
    ReviewItemStore,
    ensure_utc,
    resolve_timezone,
    review_store,
)

logger = logging.getLogger(__name__)

Granularity = Literal["day", "week", "month"]
DueStatus = Literal["completed", "overdue", "today", "tomorrow", "upcoming"]

_GRANULARITIES: Tuple[str, ...] = ("day", "week", "month")


class CompletionStats(BaseModel):
    total_scheduled: int = Field(default=0, ge=0)
    total_completed: int = Field(default=0, ge=0)
    pending_count: int = Field(default=0, ge=0)
    progress_percentage: int = Field(default=0, ge=0, le=100)


class CompletionBucket(BaseModel):
    bucket_start: date
    scheduled: int = Field(ge=1)
    completed: int = Field(ge=0)
    completion_rate: float = Field(ge=0.0, le=100.0)


class SubjectProgress(BaseModel):
    subject_label: str
    total: int = Field(ge=0)
    completed: int = Field(ge=0)
    completion_rate: int = Field(ge=0, le=100)


class LeaderboardEntry(BaseModel):
    owner_id: str
    score: float = 0.0


class PercentileRank(BaseModel):
    rank: int = Field(ge=1)
    total: int = Field(ge=1)
    percentile: int = Field(ge=0, le=100)
    users_below: int = Field(ge=0)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (``round`` would bank it)."""
    return int(math.floor(value + 0.5))


def bucket_start(moment: datetime, granularity: str, tz: tzinfo) -> date:
    local_day = ensure_utc(moment).astimezone(tz).date()
    if granularity == "day":
        return local_day
    if granularity == "week":
        return local_day - timedelta(days=local_day.weekday())
    if granularity == "month":
        return local_day.replace(day=1)
    raise ValidationError(f"Unsupported granularity: {granularity}")


def due_status(
    item: ReviewItem,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> DueStatus:
    """Badge label for an item relative to ``now`` in the learner's timezone."""
    if item.completed:
        return "completed"
    zone = tz or resolve_timezone()
    moment = ensure_utc(now) if now else datetime.now(zone)
    if item.next_review_at < moment:
        return "overdue"
    today = moment.astimezone(zone).date()
    due_day = item.next_review_at.astimezone(zone).date()
    if due_day == today:
        return "today"
    if due_day == today + timedelta(days=1):
        return "tomorrow"
    return "upcoming"


class ProgressAggregator:
    """Recomputes summary statistics from the store on demand.

    Only owner-level snapshots that do not depend on the evaluation instant
    are memoized in the injected cache; the store's change notification
    evicts an owner's entries as soon as one of their items changes.
    """

    def __init__(self, store: ReviewItemStore, cache: Optional[ProgressCache] = None) -> None:
        self._store = store
        self._cache = cache
        self._unsubscribe: Optional[Callable[[], None]] = None
        if cache is not None:
            self._unsubscribe = store.subscribe(self._on_change)

    def _on_change(self, change: ReviewItemChange) -> None:
        if self._cache is not None:
            self._cache.invalidate(change.owner_id)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _cached(self, owner_id: str, metric: str, compute: Callable[[], object]):  # type: ignore[no-untyped-def]
        if self._cache is None:
            return compute()
        hit = self._cache.get(owner_id, metric)
        if hit is not None:
            return hit
        generation = self._cache.generation(owner_id)
        value = compute()
        if not self._cache.set(owner_id, metric, value, generation=generation):
            logger.debug("Discarded %s snapshot for %s; items changed while computing", metric, owner_id)
        return value

    def completion_stats(self, owner_id: str) -> CompletionStats:
        def compute() -> CompletionStats:
            items = self._store.list_items(owner_id)
            total = len(items)
            completed = sum(1 for item in items if item.completed)
            percentage = round_half_up(100 * completed / total) if total else 0
            return CompletionStats(
                total_scheduled=total,
                total_completed=completed,
                pending_count=total - completed,
                progress_percentage=percentage,
            )

        return self._cached(owner_id, "completion_stats", compute)

    def overdue_count(self, owner_id: str, as_of: Optional[datetime] = None) -> int:
        return len(self._store.list_due(owner_id, as_of))

    def bucketed_completion(
        self,
        owner_id: str,
        granularity: str = "day",
        *,
        tz: Optional[tzinfo] = None,
    ) -> List[CompletionBucket]:
        if granularity not in _GRANULARITIES:
            raise ValidationError(
                f"Unsupported granularity '{granularity}'; expected one of {', '.join(_GRANULARITIES)}."
            )
        zone = tz or resolve_timezone()
        scheduled: Dict[date, int] = defaultdict(int)
        completed: Dict[date, int] = defaultdict(int)
        for item in self._store.list_items(owner_id):
            if item.completed:
                anchor = item.last_reviewed_at or item.next_review_at
            else:
                anchor = item.next_review_at
            key = bucket_start(anchor, granularity, zone)
            scheduled[key] += 1
            if item.completed:
                completed[key] += 1

        buckets: List[CompletionBucket] = []
        for key in sorted(scheduled):
            total = scheduled[key]
            if total <= 0:
                continue
            rate = min(100.0, max(0.0, completed[key] / total * 100))
            buckets.append(
                CompletionBucket(
                    bucket_start=key,
                    scheduled=total,
                    completed=completed[key],
                    completion_rate=round(rate, 2),
                )
            )
        return buckets

    def subject_breakdown(self, owner_id: str) -> List[SubjectProgress]:
        def compute() -> List[SubjectProgress]:
            totals: Dict[str, List[int]] = {}
            for item in self._store.list_items(owner_id):
                label = item.subject_label or "Uncategorized"
                counts = totals.setdefault(label, [0, 0])
                counts[0] += 1
                if item.completed:
                    counts[1] += 1
            return [
                SubjectProgress(
                    subject_label=label,
                    total=counts[0],
                    completed=counts[1],
                    completion_rate=round_half_up(100 * counts[1] / counts[0]),
                )
                for label, counts in sorted(totals.items(), key=lambda pair: pair[0].lower())
            ]

        return self._cached(owner_id, "subject_breakdown", compute)

    @staticmethod
    def percentile_rank(
        owner_id: str,
        scores_descending: Sequence[LeaderboardEntry],
    ) -> Optional[PercentileRank]:
        """Position of ``owner_id`` in a leaderboard already sorted best-first."""
        owner = owner_id.strip() if isinstance(owner_id, str) else ""
        total = len(scores_descending)
        if not owner or total == 0:
            return None
        rank = next(
            (index for index, entry in enumerate(scores_descending, start=1) if entry.owner_id == owner),
            None,
        )
        if rank is None:
            logger.debug("Owner %s absent from leaderboard of %d entries", owner, total)
            return None
        users_below = total - rank
        return PercentileRank(
            rank=rank,
            total=total,
            percentile=round_half_up(100 * users_below / total),
            users_below=users_below,
        )


progress_cache = ProgressCache(get_settings().progress_cache_ttl_seconds)
progress_aggregator = ProgressAggregator(review_store, progress_cache)

__all__ = [
    "CompletionBucket",
    "CompletionStats",
    "DueStatus",
    "Granularity",
    "LeaderboardEntry",
    "PercentileRank",
    "ProgressAggregator",
    "SubjectProgress",
    "bucket_start",
    "due_status",
    "progress_aggregator",
    "progress_cache",
    "round_half_up",
]
