"""Pydantic request and response payloads for the review HTTP adapter."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .progress import CompletionBucket, CompletionStats, LeaderboardEntry, PercentileRank, SubjectProgress
from .review_items import ReviewItemKind
from .review_stage import ReviewPriority
from .schedule_override import OverrideOption, QueueOrder
from .sync_reconciler import PlannedTask


class ReviewItemPayload(BaseModel):
    id: str
    owner_id: str
    subject_label: str
    topic_label: str
    kind: str
    stage: int
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None
    completed: bool = False
    origin: str = "manual"
    source_task_id: Optional[str] = None
    follow_up_days: int = 0
    priority: Optional[str] = None
    interval_days: int = Field(default=1, description="Interval the current stage maps to.")
    due_status: str = "upcoming"


class ReviewQueuePayload(BaseModel):
    owner_id: str
    as_of: datetime
    order: QueueOrder = "due"
    items: List[ReviewItemPayload] = Field(default_factory=list)


class CreateReviewItemRequest(BaseModel):
    id: Optional[str] = Field(default=None, max_length=64)
    subject_label: str = ""
    topic_label: str = ""
    kind: ReviewItemKind = "flashcard"
    next_review_at: Optional[datetime] = None
    priority: Optional[ReviewPriority] = None


class OutcomeRequest(BaseModel):
    was_correct: bool


class OverrideRequest(BaseModel):
    option: OverrideOption
    custom_date: Optional[datetime] = None
    timezone: Optional[str] = Field(default=None, max_length=64)


class PriorityRequest(BaseModel):
    priority: ReviewPriority


class ProgressPayload(BaseModel):
    owner_id: str
    as_of: datetime
    stats: CompletionStats
    overdue_count: int = 0
    subjects: List[SubjectProgress] = Field(default_factory=list)


class BucketedCompletionPayload(BaseModel):
    owner_id: str
    granularity: Literal["day", "week", "month"]
    buckets: List[CompletionBucket] = Field(default_factory=list)


class PercentileRequest(BaseModel):
    scores: List[LeaderboardEntry] = Field(default_factory=list)


class PercentilePayload(BaseModel):
    owner_id: str
    rank: Optional[PercentileRank] = None


class SyncRequest(BaseModel):
    tasks: List[PlannedTask] = Field(default_factory=list)
    timezone: Optional[str] = Field(default=None, max_length=64)


class SyncReportPayload(BaseModel):
    owner_id: str
    created_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    last_sync_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)


class SyncStatusPayload(BaseModel):
    owner_id: str
    last_sync_at: Optional[datetime] = None


__all__ = [
    "BucketedCompletionPayload",
    "CreateReviewItemRequest",
    "OutcomeRequest",
    "OverrideRequest",
    "PercentilePayload",
    "PercentileRequest",
    "PriorityRequest",
    "ProgressPayload",
    "ReviewItemPayload",
    "ReviewQueuePayload",
    "SyncReportPayload",
    "SyncRequest",
    "SyncStatusPayload",
]
