"""ORM models backing the review scheduling persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class ReviewItemModel(TimestampMixin, Base):
    __tablename__ = "review_items"
    __table_args__ = (
        Index("ix_review_items_owner_due", "owner_id", "completed", "next_review_at"),
        UniqueConstraint(
            "owner_id",
            "source_task_id",
            "follow_up_days",
            name="uq_review_items_source_offset",
        ),
    )

    owner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_label: Mapped[str] = mapped_column(Text, default="", nullable=False)
    topic_label: Mapped[str] = mapped_column(Text, default="", nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    stage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_review_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    origin: Mapped[str] = mapped_column(String(16), default="manual", nullable=False)
    source_task_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    follow_up_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    priority: Mapped[str | None] = mapped_column(String(16), nullable=True)


class PlannerSyncRunModel(Base):
    __tablename__ = "planner_sync_runs"

    owner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_sync_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    created_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ReviewAuditEventModel(Base):
    __tablename__ = "review_audit_events"
    __table_args__ = (Index("ix_review_audit_events_owner", "owner_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "PlannerSyncRunModel",
    "ReviewAuditEventModel",
    "ReviewItemModel",
]
