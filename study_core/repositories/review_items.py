"""Database-backed review item repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import PlannerSyncRunModel, ReviewAuditEventModel, ReviewItemModel
from ..errors import NotFoundError
from ..review_items import ReviewItem, ensure_utc
from ..review_stage import StageTransition


class ReviewItemRepository:
    """Session-scoped persistence helpers; callers own the transaction."""

    def get(
        self,
        session: Session,
        owner_id: str,
        item_id: str,
        *,
        for_update: bool = False,
    ) -> ReviewItem | None:
        model = self._load(session, owner_id, item_id, for_update=for_update)
        return self._to_domain(model) if model else None

    def list_for_owner(
        self,
        session: Session,
        owner_id: str,
        *,
        due_at_or_before: Optional[datetime] = None,
        due_after: Optional[datetime] = None,
        include_completed: bool = True,
    ) -> List[ReviewItem]:
        stmt = select(ReviewItemModel).where(ReviewItemModel.owner_id == owner_id)
        if not include_completed:
            stmt = stmt.where(ReviewItemModel.completed.is_(False))
        if due_at_or_before is not None:
            stmt = stmt.where(ReviewItemModel.next_review_at <= ensure_utc(due_at_or_before))
        if due_after is not None:
            stmt = stmt.where(ReviewItemModel.next_review_at > ensure_utc(due_after))
        stmt = stmt.order_by(ReviewItemModel.next_review_at.asc(), ReviewItemModel.id.asc())
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def find_derived(
        self,
        session: Session,
        owner_id: str,
        source_task_id: str,
        follow_up_days: int,
    ) -> ReviewItem | None:
        stmt = select(ReviewItemModel).where(
            ReviewItemModel.owner_id == owner_id,
            ReviewItemModel.source_task_id == source_task_id,
            ReviewItemModel.follow_up_days == follow_up_days,
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._to_domain(model) if model else None

    def add(self, session: Session, item: ReviewItem) -> ReviewItem:
        model = ReviewItemModel(
            owner_id=item.owner_id,
            id=item.id,
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
            created_at=item.created_at,
            updated_at=item.updated_at,
        )
        session.add(model)
        session.flush()
        self._record_audit(
            session,
            model.owner_id,
            model.id,
            "item_created",
            {"kind": model.kind, "origin": model.origin, "source_task_id": model.source_task_id},
        )
        return self._to_domain(model)

    def apply_outcome(
        self,
        session: Session,
        owner_id: str,
        item_id: str,
        transition: StageTransition,
        *,
        reviewed_at: datetime,
    ) -> ReviewItem:
        model = self._require_model(session, owner_id, item_id)
        previous_stage = model.stage
        model.stage = transition.new_stage
        model.next_review_at = ensure_utc(transition.next_review_at)
        model.last_reviewed_at = ensure_utc(reviewed_at)
        model.priority = None
        session.flush()
        self._record_audit(
            session,
            owner_id,
            item_id,
            "outcome_recorded",
            {"from_stage": previous_stage, "to_stage": model.stage},
        )
        return self._to_domain(model)

    def mark_completed(self, session: Session, owner_id: str, item_id: str) -> ReviewItem:
        model = self._require_model(session, owner_id, item_id)
        if not model.completed:
            model.completed = True
            session.flush()
            self._record_audit(session, owner_id, item_id, "item_completed", {"stage": model.stage})
        return self._to_domain(model)

    def apply_schedule(
        self,
        session: Session,
        owner_id: str,
        item_id: str,
        next_review_at: datetime,
        *,
        reset_stage: bool,
        priority: Optional[str],
        reason: str,
    ) -> ReviewItem:
        model = self._require_model(session, owner_id, item_id)
        previous_stage = model.stage
        model.next_review_at = ensure_utc(next_review_at)
        if reset_stage:
            model.stage = 0
        model.priority = priority
        session.flush()
        self._record_audit(
            session,
            owner_id,
            item_id,
            "schedule_overridden",
            {"reason": reason, "from_stage": previous_stage, "to_stage": model.stage},
        )
        return self._to_domain(model)

    def record_sync(
        self,
        session: Session,
        owner_id: str,
        at: datetime,
        *,
        created: int,
        failed: int,
    ) -> datetime:
        model = session.get(PlannerSyncRunModel, owner_id)
        if model is None:
            model = PlannerSyncRunModel(owner_id=owner_id, last_sync_at=at)
            session.add(model)
        model.last_sync_at = at
        model.created_count = created
        model.failed_count = failed
        session.flush()
        self._record_audit(session, owner_id, None, "planner_synced", {"created": created, "failed": failed})
        return ensure_utc(model.last_sync_at)

    def last_sync_at(self, session: Session, owner_id: str) -> datetime | None:
        model = session.get(PlannerSyncRunModel, owner_id)
        return ensure_utc(model.last_sync_at) if model else None

    def _load(
        self,
        session: Session,
        owner_id: str,
        item_id: str,
        *,
        for_update: bool = False,
    ) -> ReviewItemModel | None:
        stmt = select(ReviewItemModel).where(
            ReviewItemModel.owner_id == owner_id,
            ReviewItemModel.id == item_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def _require_model(self, session: Session, owner_id: str, item_id: str) -> ReviewItemModel:
        model = self._load(session, owner_id, item_id)
        if model is None:
            raise NotFoundError(f"Review item '{item_id}' was not found for owner '{owner_id}'.")
        return model

    def _record_audit(
        self,
        session: Session,
        owner_id: str,
        item_id: Optional[str],
        event_type: str,
        payload: Dict[str, Any],
    ) -> None:
        session.add(
            ReviewAuditEventModel(
                owner_id=owner_id,
                item_id=item_id,
                event_type=event_type,
                payload=payload,
                created_at=datetime.now(timezone.utc),
            )
        )

    def _to_domain(self, model: ReviewItemModel) -> ReviewItem:
        return ReviewItem(
            id=model.id,
            owner_id=model.owner_id,
            subject_label=model.subject_label or "",
            topic_label=model.topic_label or "",
            kind=model.kind,  # type: ignore[arg-type]
            stage=max(0, model.stage or 0),
            next_review_at=model.next_review_at,
            last_reviewed_at=model.last_reviewed_at,
            completed=bool(model.completed),
            origin=model.origin,  # type: ignore[arg-type]
            source_task_id=model.source_task_id,
            follow_up_days=model.follow_up_days or 0,
            priority=model.priority,  # type: ignore[arg-type]
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


review_items = ReviewItemRepository()

__all__ = ["ReviewItemRepository", "review_items"]
