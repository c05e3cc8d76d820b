"""Learner-chosen review times that bypass outcome-based progression.

Two families of overrides exist and they treat the stage differently:

* quick actions (``quick_today``, ``quick_tomorrow``) mean "show me this
  again soon" and restart the curve at stage 0;
* reschedule options (``tomorrow``, ``in_7_days``, ``in_30_days``,
  ``custom``) only move the date and keep the item's stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Literal, Optional

from .errors import ValidationError
from .review_items import ReviewItem, ReviewItemStore, ensure_utc, resolve_timezone, review_store
from .review_stage import PRIORITY_INTERVALS, ReviewStageModel

logger = logging.getLogger(__name__)

OverrideOption = Literal[
    "quick_today",
    "quick_tomorrow",
    "tomorrow",
    "in_7_days",
    "in_30_days",
    "custom",
]

QUICK_OPTIONS = frozenset({"quick_today", "quick_tomorrow"})
RESCHEDULE_OFFSETS: Dict[str, timedelta] = {
    "tomorrow": timedelta(hours=24),
    "in_7_days": timedelta(days=7),
    "in_30_days": timedelta(days=30),
}
QUICK_TOMORROW_TIME = time(hour=12)
QueueOrder = Literal["due", "priority"]

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class OverrideDecision:
    option: str
    next_review_at: datetime
    reset_stage: bool


def end_of_day(moment: datetime, tz: tzinfo) -> datetime:
    local = ensure_utc(moment).astimezone(tz)
    closing = local.replace(hour=23, minute=59, second=59, microsecond=999999)
    return closing.astimezone(timezone.utc)


def noon_next_day(moment: datetime, tz: tzinfo) -> datetime:
    local_day = ensure_utc(moment).astimezone(tz).date()
    target = datetime.combine(local_day + timedelta(days=1), QUICK_TOMORROW_TIME, tzinfo=tz)
    return target.astimezone(timezone.utc)


def resolve_override(
    option: str,
    *,
    now: Optional[datetime] = None,
    custom_date: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> OverrideDecision:
    """Compute the target instant for an override without touching storage."""
    moment = ensure_utc(now) if now else datetime.now(timezone.utc)
    zone = tz or resolve_timezone()

    if option in QUICK_OPTIONS:
        target = end_of_day(moment, zone) if option == "quick_today" else noon_next_day(moment, zone)
        return OverrideDecision(option, target, reset_stage=True)
    if option in RESCHEDULE_OFFSETS:
        return OverrideDecision(option, moment + RESCHEDULE_OFFSETS[option], reset_stage=False)
    if option == "custom":
        if custom_date is None:
            raise ValidationError("A custom reschedule requires a target date.")
        target = ensure_utc(custom_date)
        if target <= moment:
            raise ValidationError("Custom review date must be in the future.")
        return OverrideDecision(option, target, reset_stage=False)
    raise ValidationError(f"Unsupported schedule option: {option}")


def sort_by_priority(items: Iterable[ReviewItem]) -> List[ReviewItem]:
    """Flagged items first (high, medium, low), then earliest due, then id."""
    return sorted(
        items,
        key=lambda item: (
            -_PRIORITY_ORDER.get(item.priority or "", 0),
            item.next_review_at,
            item.id,
        ),
    )


def order_queue(items: Iterable[ReviewItem], order: str = "due") -> List[ReviewItem]:
    if order == "priority":
        return sort_by_priority(items)
    if order == "due":
        return list(items)
    raise ValidationError(f"Unsupported queue order: {order}")


class ManualScheduleOverride:
    def __init__(self, store: ReviewItemStore = review_store) -> None:
        self._store = store

    def apply(
        self,
        owner_id: str,
        item_id: str,
        option: str,
        *,
        custom_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> ReviewItem:
        decision = resolve_override(option, now=now, custom_date=custom_date, tz=tz)
        logger.debug(
            "Applying %s override to %s/%s (reset_stage=%s)",
            option,
            owner_id,
            item_id,
            decision.reset_stage,
        )
        return self._store.apply_schedule(
            owner_id,
            item_id,
            decision.next_review_at,
            reset_stage=decision.reset_stage,
            reason=option,
        )

    def prioritize(
        self,
        owner_id: str,
        item_id: str,
        priority: str,
        *,
        now: Optional[datetime] = None,
    ) -> ReviewItem:
        if priority not in PRIORITY_INTERVALS:
            raise ValidationError(f"Unsupported review priority: {priority}")
        moment = ensure_utc(now) if now else datetime.now(timezone.utc)
        target = ReviewStageModel.priority_review_date(priority, moment)
        return self._store.apply_schedule(
            owner_id,
            item_id,
            target,
            reset_stage=False,
            priority=priority,  # type: ignore[arg-type]
            reason=f"priority_{priority}",
        )


schedule_override = ManualScheduleOverride()

__all__ = [
    "ManualScheduleOverride",
    "OverrideDecision",
    "OverrideOption",
    "QueueOrder",
    "QUICK_OPTIONS",
    "RESCHEDULE_OFFSETS",
    "end_of_day",
    "noon_next_day",
    "order_queue",
    "resolve_override",
    "schedule_override",
    "sort_by_priority",
]
