from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from study_core.db.models import ReviewAuditEventModel
from study_core.db.session import session_scope
from study_core.errors import NotFoundError, PersistenceFailure, ValidationError
from study_core.repositories.review_items import review_items as repository
from study_core.review_items import NewReviewItem, ReviewItemChange, ReviewItemStore, review_store

T0 = datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc)
OWNER = "learner-42"


def _draft(item_id: str, due: datetime, **overrides: object) -> NewReviewItem:
    fields = {
        "owner_id": OWNER,
        "id": item_id,
        "subject_label": "Anatomy",
        "topic_label": "Brachial plexus",
        "next_review_at": due,
    }
    fields.update(overrides)
    return NewReviewItem(**fields)  # type: ignore[arg-type]


def _audit_types() -> List[str]:
    with session_scope(commit=False) as session:
        return list(
            session.execute(
                select(ReviewAuditEventModel.event_type).where(ReviewAuditEventModel.owner_id == OWNER)
            ).scalars()
        )


def _disk_error(*_args: object, **_kwargs: object) -> None:
    raise OperationalError("INSERT", {}, Exception("disk I/O error"))


def test_create_forces_stage_zero_and_normalizes_owner() -> None:
    item = review_store.create(_draft("card-1", T0, owner_id="  learner-42 "), now=T0)
    assert item.stage == 0
    assert item.owner_id == OWNER
    assert item.completed is False
    assert review_store.require(OWNER, "card-1").next_review_at == T0


def test_create_generates_id_when_missing() -> None:
    item = review_store.create(_draft("", T0), now=T0)
    assert len(item.id) == 32


@pytest.mark.parametrize("owner", [None, "", "   "])
def test_create_requires_owner(owner: object) -> None:
    with pytest.raises(ValidationError):
        review_store.create(_draft("card-1", T0, owner_id=owner), now=T0)


def test_create_requires_next_review_at() -> None:
    with pytest.raises(ValidationError):
        review_store.create(_draft("card-1", None), now=T0)  # type: ignore[arg-type]


def test_create_rejects_duplicate_id_for_owner() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    with pytest.raises(ValidationError):
        review_store.create(_draft("card-1", T0 + timedelta(days=1)), now=T0)
    # same id under another owner is a different item
    other = review_store.create(_draft("card-1", T0, owner_id="learner-7"), now=T0)
    assert other.owner_id == "learner-7"


def test_naive_datetimes_are_read_back_as_utc() -> None:
    review_store.create(_draft("card-1", datetime(2024, 3, 14, 8, 0)), now=T0)
    stored = review_store.require(OWNER, "card-1")
    assert stored.next_review_at == datetime(2024, 3, 14, 8, 0, tzinfo=timezone.utc)
    assert stored.next_review_at.tzinfo is not None


def test_record_outcome_correct_advances_stage() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    review_store.record_outcome(OWNER, "card-1", True, now=T0)
    second = review_store.record_outcome(OWNER, "card-1", True, now=T0 + timedelta(days=1))
    assert second.stage == 2
    assert second.next_review_at == T0 + timedelta(days=1 + 16)
    assert second.last_reviewed_at == T0 + timedelta(days=1)


def test_record_outcome_incorrect_never_goes_below_zero() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    item = review_store.record_outcome(OWNER, "card-1", False, now=T0)
    assert item.stage == 0
    assert item.next_review_at == T0 + timedelta(days=1)


def test_record_outcome_clears_priority_flag() -> None:
    review_store.create(_draft("card-1", T0, priority="high"), now=T0)
    item = review_store.record_outcome(OWNER, "card-1", True, now=T0)
    assert item.priority is None


def test_record_outcome_unknown_item_raises_not_found() -> None:
    with pytest.raises(NotFoundError):
        review_store.record_outcome(OWNER, "missing", True, now=T0)


def test_mark_completed_is_idempotent() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    first = review_store.mark_completed(OWNER, "card-1")
    second = review_store.mark_completed(OWNER, "card-1")
    assert first.completed and second.completed
    assert _audit_types().count("item_completed") == 1


def test_mark_completed_unknown_item_raises_not_found() -> None:
    with pytest.raises(NotFoundError):
        review_store.mark_completed(OWNER, "missing")


def test_list_due_orders_by_due_time_and_excludes_future_and_completed() -> None:
    review_store.create(_draft("later", T0 + timedelta(hours=1)), now=T0)
    review_store.create(_draft("b-recent", T0 - timedelta(hours=1)), now=T0)
    review_store.create(_draft("a-oldest", T0 - timedelta(hours=2)), now=T0)
    review_store.create(_draft("done", T0 - timedelta(hours=3)), now=T0)
    review_store.mark_completed(OWNER, "done")

    due = review_store.list_due(OWNER, T0)
    assert [item.id for item in due] == ["a-oldest", "b-recent"]

    upcoming = review_store.list_upcoming(OWNER, T0)
    assert [item.id for item in upcoming] == ["later"]


def test_list_due_breaks_ties_by_id() -> None:
    review_store.create(_draft("zeta", T0 - timedelta(hours=1)), now=T0)
    review_store.create(_draft("alpha", T0 - timedelta(hours=1)), now=T0)
    assert [item.id for item in review_store.list_due(OWNER, T0)] == ["alpha", "zeta"]


def test_item_due_exactly_now_is_due() -> None:
    review_store.create(_draft("edge", T0), now=T0)
    assert [item.id for item in review_store.list_due(OWNER, T0)] == ["edge"]
    assert review_store.list_upcoming(OWNER, T0) == []


def test_list_due_for_unknown_owner_is_empty() -> None:
    assert review_store.list_due("nobody", T0) == []


def test_apply_schedule_can_reset_stage_and_set_priority() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    review_store.record_outcome(OWNER, "card-1", True, now=T0)
    moved = review_store.apply_schedule(
        OWNER,
        "card-1",
        T0 + timedelta(days=3),
        reset_stage=True,
        priority="low",
        reason="test",
    )
    assert moved.stage == 0
    assert moved.priority == "low"
    assert moved.next_review_at == T0 + timedelta(days=3)


def test_failed_write_surfaces_persistence_failure(monkeypatch) -> None:
    with monkeypatch.context() as patch:
        patch.setattr(repository, "add", _disk_error)
        with pytest.raises(PersistenceFailure) as excinfo:
            review_store.create(_draft("card-1", T0), now=T0)
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert review_store.get(OWNER, "card-1") is None


def test_failed_audit_write_rolls_back_outcome(monkeypatch) -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    review_store.record_outcome(OWNER, "card-1", True, now=T0)

    with monkeypatch.context() as patch:
        patch.setattr(repository, "_record_audit", _disk_error)
        with pytest.raises(PersistenceFailure):
            review_store.record_outcome(OWNER, "card-1", True, now=T0 + timedelta(days=7))

    stored = review_store.require(OWNER, "card-1")
    assert stored.stage == 1
    assert stored.next_review_at == T0 + timedelta(days=7)


def test_mutations_write_audit_rows() -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    review_store.record_outcome(OWNER, "card-1", True, now=T0)
    assert sorted(_audit_types()) == ["item_created", "outcome_recorded"]


def test_subscribers_receive_committed_changes() -> None:
    store = ReviewItemStore()
    changes: List[ReviewItemChange] = []
    unsubscribe = store.subscribe(changes.append)

    store.create(_draft("card-1", T0), now=T0)
    store.record_outcome(OWNER, "card-1", True, now=T0)
    store.mark_completed(OWNER, "card-1")
    unsubscribe()
    store.mark_completed(OWNER, "card-1")

    assert [change.change for change in changes] == ["created", "outcome", "completed"]
    assert all(change.owner_id == OWNER for change in changes)
    assert changes[1].item.stage == 1


def test_failing_subscriber_does_not_break_mutation() -> None:
    store = ReviewItemStore()

    def explode(_change: ReviewItemChange) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(explode)
    item = store.create(_draft("card-1", T0), now=T0)
    assert item.id == "card-1"


def test_no_notification_when_write_fails(monkeypatch) -> None:
    store = ReviewItemStore()
    changes: List[ReviewItemChange] = []
    store.subscribe(changes.append)
    monkeypatch.setattr(repository, "add", _disk_error)
    with pytest.raises(PersistenceFailure):
        store.create(_draft("card-1", T0), now=T0)
    assert changes == []


def test_outcome_emits_telemetry(telemetry_events) -> None:
    review_store.create(_draft("card-1", T0), now=T0)
    review_store.record_outcome(OWNER, "card-1", False, now=T0)
    names = [event.name for event in telemetry_events]
    assert names == ["review_item_created", "review_outcome_recorded"]
    payload = telemetry_events[-1].payload
    assert payload["was_correct"] is False
    assert payload["stage"] == 0


def test_record_sync_tracks_last_sync_time() -> None:
    assert review_store.last_sync_at(OWNER) is None
    review_store.record_sync(OWNER, T0, created=4, failed=0)
    review_store.record_sync(OWNER, T0 + timedelta(hours=2), created=0, failed=0)
    assert review_store.last_sync_at(OWNER) == T0 + timedelta(hours=2)


def _run_concurrently(count: int, action) -> List[BaseException]:  # type: ignore[no-untyped-def]
    start = threading.Barrier(count)
    errors: List[BaseException] = []

    def worker() -> None:
        start.wait()
        try:
            action()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


def test_concurrent_outcomes_on_one_item_are_serialized() -> None:
    review_store.create(_draft("card-1", T0), now=T0)

    errors = _run_concurrently(6, lambda: review_store.record_outcome(OWNER, "card-1", True, now=T0))

    assert errors == []
    item = review_store.require(OWNER, "card-1")
    assert item.stage == 6
    assert item.next_review_at == T0 + timedelta(days=review_store.model.interval_days(6))
    assert _audit_types().count("outcome_recorded") == 6


def test_concurrent_outcomes_and_overrides_keep_every_update() -> None:
    review_store.create(_draft("card-1", T0), now=T0)

    def outcome_then_reschedule() -> None:
        review_store.record_outcome(OWNER, "card-1", True, now=T0)
        review_store.apply_schedule(OWNER, "card-1", T0 + timedelta(days=3), reason="tomorrow")

    errors = _run_concurrently(4, outcome_then_reschedule)

    assert errors == []
    assert review_store.require(OWNER, "card-1").stage == 4
    types = _audit_types()
    assert types.count("outcome_recorded") == 4
    assert types.count("schedule_overridden") == 4


def test_create_if_absent_returns_existing_derived_item() -> None:
    draft = _draft("", T0, origin="sync", source_task_id="plan-1", follow_up_days=7, id=None)
    first, created = review_store.create_if_absent(draft, now=T0)
    second, created_again = review_store.create_if_absent(draft, now=T0 + timedelta(minutes=1))

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert len(review_store.list_items(OWNER)) == 1
    assert _audit_types().count("item_created") == 1


def test_create_if_absent_requires_source_task() -> None:
    with pytest.raises(ValidationError):
        review_store.create_if_absent(_draft("card-1", T0), now=T0)
