"""Review scheduling REST endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from .errors import NotFoundError, PersistenceFailure, StudyCoreError, ValidationError
from .payloads import (
    BucketedCompletionPayload,
    CreateReviewItemRequest,
    OutcomeRequest,
    OverrideRequest,
    PercentilePayload,
    PercentileRequest,
    PriorityRequest,
    ProgressPayload,
    ReviewItemPayload,
    ReviewQueuePayload,
    SyncReportPayload,
    SyncRequest,
    SyncStatusPayload,
)
from .progress import ProgressAggregator, due_status, progress_aggregator
from .review_items import NewReviewItem, ReviewItem, ensure_utc, normalize_owner_id, resolve_timezone, review_store
from .schedule_override import QueueOrder, order_queue, schedule_override
from .sync_reconciler import sync_reconciler
from .telemetry import emit_event


router = APIRouter(prefix="/api/reviews", tags=["reviews"])
logger = logging.getLogger(__name__)


def _http_error(exc: StudyCoreError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, PersistenceFailure):
        logger.warning("Review storage unavailable: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Review storage is unavailable. Try again shortly.",
        )
    logger.exception("Unhandled review error", exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _now(as_of: Optional[datetime] = None) -> datetime:
    return ensure_utc(as_of) if as_of is not None else datetime.now(timezone.utc)


def _item_payload(item: ReviewItem, moment: datetime, tz_name: Optional[str] = None) -> ReviewItemPayload:
    return ReviewItemPayload(
        id=item.id,
        owner_id=item.owner_id,
        subject_label=item.subject_label,
        topic_label=item.topic_label,
        kind=item.kind,
        stage=item.stage,
        next_review_at=item.next_review_at,
        last_reviewed_at=item.last_reviewed_at,
        completed=item.completed,
        origin=item.origin,
        source_task_id=item.source_task_id,
        follow_up_days=item.follow_up_days,
        priority=item.priority,
        interval_days=review_store.model.interval_days(item.stage),
        due_status=due_status(item, moment, resolve_timezone(tz_name)),
    )


def _queue_payload(
    owner_id: str,
    items: List[ReviewItem],
    moment: datetime,
    tz_name: Optional[str],
    order: QueueOrder,
) -> ReviewQueuePayload:
    return ReviewQueuePayload(
        owner_id=owner_id,
        as_of=moment,
        order=order,
        items=[_item_payload(item, moment, tz_name) for item in order_queue(items, order)],
    )


@router.post(
    "/{owner_id}/items",
    response_model=ReviewItemPayload,
    status_code=status.HTTP_201_CREATED,
)
def create_review_item(owner_id: str, payload: CreateReviewItemRequest) -> ReviewItemPayload:
    moment = _now()
    draft = NewReviewItem(
        owner_id=owner_id,
        id=payload.id,
        subject_label=payload.subject_label,
        topic_label=payload.topic_label,
        kind=payload.kind,
        next_review_at=payload.next_review_at,
        priority=payload.priority,
    )
    try:
        item = review_store.create(draft, now=moment)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _item_payload(item, moment)


@router.get("/{owner_id}/due", response_model=ReviewQueuePayload, status_code=status.HTTP_200_OK)
def list_due_items(
    owner_id: str,
    as_of: Optional[datetime] = Query(default=None, description="Evaluation instant; defaults to now."),
    timezone_name: Optional[str] = Query(default=None, alias="timezone", max_length=64),
    order: QueueOrder = Query(default="due", description="\"priority\" lists flagged items first."),
) -> ReviewQueuePayload:
    moment = _now(as_of)
    try:
        items = review_store.list_due(owner_id, moment)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _queue_payload(owner_id.strip(), items, moment, timezone_name, order)


@router.get("/{owner_id}/upcoming", response_model=ReviewQueuePayload, status_code=status.HTTP_200_OK)
def list_upcoming_items(
    owner_id: str,
    as_of: Optional[datetime] = Query(default=None, description="Evaluation instant; defaults to now."),
    timezone_name: Optional[str] = Query(default=None, alias="timezone", max_length=64),
    order: QueueOrder = Query(default="due", description="\"priority\" lists flagged items first."),
) -> ReviewQueuePayload:
    moment = _now(as_of)
    try:
        items = review_store.list_upcoming(owner_id, moment)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _queue_payload(owner_id.strip(), items, moment, timezone_name, order)


@router.post(
    "/{owner_id}/items/{item_id}/outcome",
    response_model=ReviewItemPayload,
    status_code=status.HTTP_200_OK,
)
def record_review_outcome(owner_id: str, item_id: str, payload: OutcomeRequest) -> ReviewItemPayload:
    moment = _now()
    try:
        item = review_store.record_outcome(owner_id, item_id, payload.was_correct, now=moment)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _item_payload(item, moment)


@router.post(
    "/{owner_id}/items/{item_id}/complete",
    response_model=ReviewItemPayload,
    status_code=status.HTTP_200_OK,
)
def complete_review_item(owner_id: str, item_id: str) -> ReviewItemPayload:
    try:
        item = review_store.mark_completed(owner_id, item_id)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _item_payload(item, _now())


@router.post(
    "/{owner_id}/items/{item_id}/override",
    response_model=ReviewItemPayload,
    status_code=status.HTTP_200_OK,
)
def override_review_schedule(owner_id: str, item_id: str, payload: OverrideRequest) -> ReviewItemPayload:
    moment = _now()
    try:
        item = schedule_override.apply(
            owner_id,
            item_id,
            payload.option,
            custom_date=payload.custom_date,
            now=moment,
            tz=resolve_timezone(payload.timezone),
        )
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _item_payload(item, moment, payload.timezone)


@router.post(
    "/{owner_id}/items/{item_id}/priority",
    response_model=ReviewItemPayload,
    status_code=status.HTTP_200_OK,
)
def prioritize_review_item(owner_id: str, item_id: str, payload: PriorityRequest) -> ReviewItemPayload:
    moment = _now()
    try:
        item = schedule_override.prioritize(owner_id, item_id, payload.priority, now=moment)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return _item_payload(item, moment)


@router.get("/{owner_id}/progress", response_model=ProgressPayload, status_code=status.HTTP_200_OK)
def get_progress(
    owner_id: str,
    as_of: Optional[datetime] = Query(default=None, description="Instant used for the overdue count."),
) -> ProgressPayload:
    moment = _now(as_of)
    try:
        owner = normalize_owner_id(owner_id)
        stats = progress_aggregator.completion_stats(owner)
        overdue = progress_aggregator.overdue_count(owner, moment)
        subjects = progress_aggregator.subject_breakdown(owner)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return ProgressPayload(
        owner_id=owner,
        as_of=moment,
        stats=stats,
        overdue_count=overdue,
        subjects=subjects,
    )


@router.get(
    "/{owner_id}/progress/buckets",
    response_model=BucketedCompletionPayload,
    status_code=status.HTTP_200_OK,
)
def get_bucketed_completion(
    owner_id: str,
    granularity: str = Query(default="day", description="One of day, week or month."),
    timezone_name: Optional[str] = Query(default=None, alias="timezone", max_length=64),
) -> BucketedCompletionPayload:
    try:
        owner = normalize_owner_id(owner_id)
        buckets = progress_aggregator.bucketed_completion(
            owner,
            granularity,
            tz=resolve_timezone(timezone_name),
        )
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return BucketedCompletionPayload(owner_id=owner, granularity=granularity, buckets=buckets)  # type: ignore[arg-type]


@router.post("/{owner_id}/percentile", response_model=PercentilePayload, status_code=status.HTTP_200_OK)
def get_percentile_rank(owner_id: str, payload: PercentileRequest) -> PercentilePayload:
    ranked = sorted(payload.scores, key=lambda entry: entry.score, reverse=True)
    rank = ProgressAggregator.percentile_rank(owner_id, ranked)
    return PercentilePayload(owner_id=owner_id.strip(), rank=rank)


@router.post("/{owner_id}/sync", response_model=SyncReportPayload, status_code=status.HTTP_200_OK)
def sync_planned_tasks(owner_id: str, payload: SyncRequest) -> SyncReportPayload:
    started_at = perf_counter()
    try:
        owner = normalize_owner_id(owner_id)
        report = sync_reconciler.reconcile(owner, payload.tasks, tz=resolve_timezone(payload.timezone))
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    emit_event(
        "planner_sync_request",
        owner_id=owner,
        task_count=len(payload.tasks),
        status="partial" if report.failed_count else "success",
        duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
    )
    return SyncReportPayload(owner_id=owner, **report.model_dump())


@router.get("/{owner_id}/sync", response_model=SyncStatusPayload, status_code=status.HTTP_200_OK)
def get_sync_status(owner_id: str) -> SyncStatusPayload:
    try:
        owner = normalize_owner_id(owner_id)
        last_sync = sync_reconciler.last_sync_at(owner)
    except StudyCoreError as exc:
        raise _http_error(exc) from exc
    return SyncStatusPayload(owner_id=owner, last_sync_at=last_sync)


__all__ = ["router"]
