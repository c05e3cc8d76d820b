"""Review item models and the store that owns every schedule mutation."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_settings
from .db.session import session_scope
from .errors import NotFoundError, ValidationError
from .review_stage import ReviewPriority, ReviewStageModel, stage_model
from .telemetry import emit_event

logger = logging.getLogger(__name__)

ReviewItemKind = Literal[
    "flashcard",
    "test_review",
    "daily_challenge",
    "topic",
    "planned_task",
    "planned_review",
]
ReviewOrigin = Literal["manual", "sync"]
ChangeKind = Literal["created", "outcome", "completed", "rescheduled"]


if TYPE_CHECKING:
    from .repositories.review_items import ReviewItemRepository


def _repo() -> "ReviewItemRepository":
    from .repositories.review_items import review_items as repository

    return repository


def _now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """Resolve a display timezone, falling back to the configured default and then UTC."""
    candidate = (name or get_settings().default_timezone or "UTC").strip()
    if candidate.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; falling back to UTC", candidate)
        return timezone.utc


def normalize_owner_id(owner_id: Optional[str]) -> str:
    normalized = owner_id.strip() if isinstance(owner_id, str) else ""
    if not normalized:
        raise ValidationError("Review items require an owner id.")
    return normalized


class NewReviewItem(BaseModel):
    """Caller-supplied fields for a review item entering the schedule."""

    owner_id: Optional[str] = None
    id: Optional[str] = None
    subject_label: str = ""
    topic_label: str = ""
    kind: ReviewItemKind = "flashcard"
    next_review_at: Optional[datetime] = None
    origin: ReviewOrigin = "manual"
    source_task_id: Optional[str] = None
    follow_up_days: int = Field(default=0, ge=0)
    priority: Optional[ReviewPriority] = None


class ReviewItem(BaseModel):
    id: str
    owner_id: str
    subject_label: str = ""
    topic_label: str = ""
    kind: ReviewItemKind = "flashcard"
    stage: int = Field(default=0, ge=0)
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None
    completed: bool = False
    origin: ReviewOrigin = "manual"
    source_task_id: Optional[str] = None
    follow_up_days: int = Field(default=0, ge=0)
    priority: Optional[ReviewPriority] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("next_review_at", "last_reviewed_at", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @property
    def is_anchor(self) -> bool:
        return self.origin == "sync" and self.follow_up_days == 0


@dataclass(frozen=True)
class ReviewItemChange:
    owner_id: str
    item_id: str
    change: ChangeKind
    item: ReviewItem


ChangeListener = Callable[[ReviewItemChange], None]


class _OwnerLocks:
    """One re-entrant lock per owner; unrelated owners never contend."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, owner_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(owner_id, threading.RLock())
        with lock:
            yield


class ReviewItemStore:
    """Authoritative holder of review items.

    Every mutation for an owner runs under that owner's lock and inside a
    single transaction, so a stage/date pair is never half-written and two
    outcomes for the same item cannot interleave. Subscribers are notified
    only after the transaction commits.
    """

    def __init__(self, model: ReviewStageModel = stage_model) -> None:
        self._model = model
        self._locks = _OwnerLocks()
        self._listeners: List[ChangeListener] = []
        self._listener_lock = threading.RLock()

    @property
    def model(self) -> ReviewStageModel:
        return self._model

    # -- change notification -------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        with self._listener_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._listener_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, change: ChangeKind, item: ReviewItem) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        event = ReviewItemChange(owner_id=item.owner_id, item_id=item.id, change=change, item=item)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Review change listener failed for owner=%s item=%s", item.owner_id, item.id)

    # -- reads ---------------------------------------------------------------

    def get(self, owner_id: str, item_id: str) -> Optional[ReviewItem]:
        owner = normalize_owner_id(owner_id)
        with session_scope(commit=False) as session:
            return _repo().get(session, owner, item_id)

    def require(self, owner_id: str, item_id: str) -> ReviewItem:
        item = self.get(owner_id, item_id)
        if item is None:
            raise NotFoundError(f"Review item '{item_id}' was not found for owner '{owner_id}'.")
        return item

    def list_items(self, owner_id: str) -> List[ReviewItem]:
        owner = normalize_owner_id(owner_id)
        with session_scope(commit=False) as session:
            return _repo().list_for_owner(session, owner)

    def list_due(self, owner_id: str, as_of: Optional[datetime] = None) -> List[ReviewItem]:
        owner = normalize_owner_id(owner_id)
        cutoff = ensure_utc(as_of) if as_of else _now()
        with session_scope(commit=False) as session:
            return _repo().list_for_owner(session, owner, due_at_or_before=cutoff, include_completed=False)

    def list_upcoming(self, owner_id: str, as_of: Optional[datetime] = None) -> List[ReviewItem]:
        owner = normalize_owner_id(owner_id)
        cutoff = ensure_utc(as_of) if as_of else _now()
        with session_scope(commit=False) as session:
            return _repo().list_for_owner(session, owner, due_after=cutoff, include_completed=False)

    def find_derived(self, owner_id: str, source_task_id: str, follow_up_days: int) -> Optional[ReviewItem]:
        owner = normalize_owner_id(owner_id)
        with session_scope(commit=False) as session:
            return _repo().find_derived(session, owner, source_task_id, follow_up_days)

    def last_sync_at(self, owner_id: str) -> Optional[datetime]:
        owner = normalize_owner_id(owner_id)
        with session_scope(commit=False) as session:
            return _repo().last_sync_at(session, owner)

    # -- mutations -----------------------------------------------------------

    def _candidate(self, item: NewReviewItem, moment: datetime) -> ReviewItem:
        if item.next_review_at is None:
            raise ValidationError("Review items require an initial next_review_at.")
        return ReviewItem(
            id=(item.id or "").strip() or uuid.uuid4().hex,
            owner_id=normalize_owner_id(item.owner_id),
            subject_label=item.subject_label.strip(),
            topic_label=item.topic_label.strip(),
            kind=item.kind,
            stage=0,
            next_review_at=item.next_review_at,
            origin=item.origin,
            source_task_id=item.source_task_id,
            follow_up_days=item.follow_up_days,
            priority=item.priority,
            created_at=moment,
            updated_at=moment,
        )

    def _announce_created(self, stored: ReviewItem) -> None:
        self._notify("created", stored)
        emit_event(
            "review_item_created",
            owner_id=stored.owner_id,
            item_id=stored.id,
            kind=stored.kind,
            origin=stored.origin,
            next_review_at=stored.next_review_at,
        )

    def create(self, item: NewReviewItem, *, now: Optional[datetime] = None) -> ReviewItem:
        candidate = self._candidate(item, ensure_utc(now) if now else _now())
        owner = candidate.owner_id
        with self._locks.hold(owner):
            with session_scope() as session:
                repo = _repo()
                if repo.get(session, owner, candidate.id) is not None:
                    raise ValidationError(f"Review item '{candidate.id}' already exists for owner '{owner}'.")
                stored = repo.add(session, candidate)
        self._announce_created(stored)
        return stored

    def create_if_absent(self, item: NewReviewItem, *, now: Optional[datetime] = None) -> Tuple[ReviewItem, bool]:
        """Create a synced item unless one already exists for its ``(source_task_id, follow_up_days)``.

        The lookup and the insert share the owner's lock and one transaction.
        Returns the stored item and whether it was created by this call.
        """
        if item.source_task_id is None:
            raise ValidationError("Only items derived from a planned task can be created idempotently.")
        candidate = self._candidate(item, ensure_utc(now) if now else _now())
        owner = candidate.owner_id
        with self._locks.hold(owner):
            with session_scope() as session:
                repo = _repo()
                existing = repo.find_derived(session, owner, item.source_task_id, item.follow_up_days)
                if existing is not None:
                    return existing, False
                stored = repo.add(session, candidate)
        self._announce_created(stored)
        return stored, True

    def record_outcome(
        self,
        owner_id: str,
        item_id: str,
        was_correct: bool,
        *,
        now: Optional[datetime] = None,
    ) -> ReviewItem:
        owner = normalize_owner_id(owner_id)
        moment = ensure_utc(now) if now else _now()
        with self._locks.hold(owner):
            with session_scope() as session:
                repo = _repo()
                current = repo.get(session, owner, item_id, for_update=True)
                if current is None:
                    raise NotFoundError(f"Review item '{item_id}' was not found for owner '{owner}'.")
                transition = self._model.record_outcome(current.stage, was_correct, now=moment)
                stored = repo.apply_outcome(session, owner, item_id, transition, reviewed_at=moment)
        self._notify("outcome", stored)
        emit_event(
            "review_outcome_recorded",
            owner_id=owner,
            item_id=item_id,
            was_correct=was_correct,
            previous_stage=current.stage,
            stage=stored.stage,
            next_review_at=stored.next_review_at,
        )
        return stored

    def mark_completed(self, owner_id: str, item_id: str) -> ReviewItem:
        owner = normalize_owner_id(owner_id)
        with self._locks.hold(owner):
            with session_scope() as session:
                repo = _repo()
                current = repo.get(session, owner, item_id, for_update=True)
                if current is None:
                    raise NotFoundError(f"Review item '{item_id}' was not found for owner '{owner}'.")
                if current.completed:
                    return current
                stored = repo.mark_completed(session, owner, item_id)
        self._notify("completed", stored)
        emit_event("review_item_completed", owner_id=owner, item_id=item_id, stage=stored.stage)
        return stored

    def apply_schedule(
        self,
        owner_id: str,
        item_id: str,
        next_review_at: datetime,
        *,
        reset_stage: bool = False,
        priority: Optional[ReviewPriority] = None,
        reason: str = "manual",
    ) -> ReviewItem:
        """Move an item's next review without recording a recall outcome."""
        owner = normalize_owner_id(owner_id)
        with self._locks.hold(owner):
            with session_scope() as session:
                repo = _repo()
                current = repo.get(session, owner, item_id, for_update=True)
                if current is None:
                    raise NotFoundError(f"Review item '{item_id}' was not found for owner '{owner}'.")
                stored = repo.apply_schedule(
                    session,
                    owner,
                    item_id,
                    ensure_utc(next_review_at),
                    reset_stage=reset_stage,
                    priority=priority,
                    reason=reason,
                )
        self._notify("rescheduled", stored)
        emit_event(
            "review_schedule_overridden",
            owner_id=owner,
            item_id=item_id,
            reason=reason,
            previous_stage=current.stage,
            stage=stored.stage,
            next_review_at=stored.next_review_at,
        )
        return stored

    def record_sync(self, owner_id: str, at: datetime, *, created: int, failed: int) -> datetime:
        owner = normalize_owner_id(owner_id)
        with self._locks.hold(owner):
            with session_scope() as session:
                return _repo().record_sync(session, owner, ensure_utc(at), created=created, failed=failed)


review_store = ReviewItemStore()

__all__ = [
    "ChangeListener",
    "NewReviewItem",
    "ReviewItem",
    "ReviewItemChange",
    "ReviewItemKind",
    "ReviewItemStore",
    "ReviewOrigin",
    "ensure_utc",
    "normalize_owner_id",
    "resolve_timezone",
    "review_store",
]
