"""Forgetting-curve stage model.

A review item sits at an integer *stage*. Each stage maps to the number of
days until the item should be seen again: a correct recall advances the
stage and a miss demotes it, never below zero. Everything here is pure; the
store decides when to call it and persists the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Literal, Optional, Sequence, Tuple

REVIEW_INTERVAL_DAYS: Tuple[int, ...] = (1, 7, 16, 35)

ReviewPriority = Literal["low", "medium", "high"]

PRIORITY_INTERVALS: Dict[str, timedelta] = {
    "high": timedelta(hours=8),
    "medium": timedelta(days=1),
    "low": timedelta(days=3),
}


@dataclass(frozen=True)
class StageTransition:
    new_stage: int
    next_review_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewStageModel:
    """Maps stages to review intervals and applies recall outcomes."""

    def __init__(self, intervals: Sequence[int] = REVIEW_INTERVAL_DAYS) -> None:
        if not intervals:
            raise ValueError("At least one review interval is required.")
        self._intervals: Tuple[int, ...] = tuple(int(days) for days in intervals)

    @property
    def intervals(self) -> Tuple[int, ...]:
        return self._intervals

    @staticmethod
    def clamp(stage: int) -> int:
        return max(0, int(stage))

    def advance(self, stage: int) -> int:
        return self.clamp(stage) + 1

    def regress(self, stage: int) -> int:
        return max(0, self.clamp(stage) - 1)

    def interval_days(self, stage: int) -> int:
        """Days until the next review for an item that has just entered ``stage``.

        Stages past the end of the table all share the last interval doubled
        once; the interval does not keep growing per extra stage.
        """
        stage = self.clamp(stage)
        if stage < len(self._intervals):
            return self._intervals[stage]
        return self._intervals[-1] * 2

    def next_review_date(self, stage: int, from_instant: datetime) -> datetime:
        return from_instant + timedelta(days=self.interval_days(stage))

    def record_outcome(
        self,
        stage: int,
        was_correct: bool,
        now: Optional[datetime] = None,
    ) -> StageTransition:
        moment = now or _utcnow()
        new_stage = self.advance(stage) if was_correct else self.regress(stage)
        return StageTransition(
            new_stage=new_stage,
            next_review_at=self.next_review_date(new_stage, moment),
        )

    @staticmethod
    def priority_review_date(priority: str, from_instant: datetime) -> datetime:
        """Short fixed delay for flagged items; independent of the stage."""
        try:
            interval = PRIORITY_INTERVALS[priority]
        except KeyError as exc:
            raise ValueError(f"Unsupported review priority: {priority}") from exc
        return from_instant + interval


stage_model = ReviewStageModel()

__all__ = [
    "PRIORITY_INTERVALS",
    "REVIEW_INTERVAL_DAYS",
    "ReviewPriority",
    "ReviewStageModel",
    "StageTransition",
    "stage_model",
]
