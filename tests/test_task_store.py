# tests/test_task_store.py

from __future__ import annotations

import threading

import pytest

from cafe_portal.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from cafe_portal.tasks.task_models import ASSIGNED_STATUSES, TaskPriority, TaskStatus, WorkerRef
from cafe_portal.tasks.task_store import TaskStore

ALICE = WorkerRef(actor_id="alice", hostname="PC-01")
BOB = WorkerRef(actor_id="bob", hostname="PC-02")


def _assert_assignee_invariant(task) -> None:
    assert (task.assignee is not None) == (task.status in ASSIGNED_STATUSES)


def test_create_starts_available_without_assignee(task_store: TaskStore) -> None:
    t = task_store.create(title="  Print flyers ", price=50, priority="HIGH", now_ts=100.0)

    assert t.id.startswith("task-")
    assert t.title == "Print flyers"
    assert t.status == TaskStatus.AVAILABLE
    assert t.assignee is None
    assert t.priority == TaskPriority.HIGH
    assert task_store.get(t.id) == t
    assert task_store.count_tasks() == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"title": ""},
        {"title": "   "},
        {"title": "x", "price": -1},
        {"title": "x", "price": float("nan")},
        {"title": "x", "price": "cheap"},
        {"title": "x", "priority": "whenever"},
        {"title": "x", "due_at": "tomorrow"},
        {"title": "x", "due_at": float("inf")},
        {"title": "x", "due_at": True},
    ],
)
def test_create_rejects_bad_input(task_store: TaskStore, kwargs) -> None:
    with pytest.raises(ValidationError):
        task_store.create(**kwargs)
    assert task_store.count_tasks() == 0


def test_get_unknown_raises_not_found(task_store: TaskStore) -> None:
    assert task_store.find("task-missing") is None
    with pytest.raises(NotFoundError):
        task_store.get("task-missing")
    with pytest.raises(NotFoundError):
        task_store.transition("task-missing", ALICE, TaskStatus.ASSIGNED)


def test_full_lifecycle_keeps_assignee_invariant(task_store: TaskStore) -> None:
    t = task_store.create(title="Scan", price=20, now_ts=100.0)
    _assert_assignee_invariant(t)

    t = task_store.transition(t.id, ALICE, TaskStatus.ASSIGNED, now_ts=101.0)
    assert t.assignee == ALICE and t.assigned_at == 101.0
    _assert_assignee_invariant(t)

    t = task_store.transition(t.id, ALICE, "in_progress", now_ts=102.0)
    assert t.status == TaskStatus.IN_PROGRESS and t.started_at == 102.0
    _assert_assignee_invariant(t)

    t = task_store.transition(t.id, ALICE, TaskStatus.COMPLETED, now_ts=103.0)
    assert t.status == TaskStatus.COMPLETED and t.completed_at == 103.0
    _assert_assignee_invariant(t)

    stored = task_store.get(t.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.assignee is not None and stored.assignee.hostname == "PC-01"
    assert stored.version == 3


def test_claim_of_claimed_task_conflicts_without_mutation(task_store: TaskStore) -> None:
    t = task_store.create(title="CV")
    task_store.transition(t.id, ALICE, TaskStatus.ASSIGNED)
    before = task_store.get(t.id)

    with pytest.raises(ConflictError):
        task_store.transition(t.id, BOB, TaskStatus.ASSIGNED)

    assert task_store.get(t.id) == before


def test_only_assignee_may_advance(task_store: TaskStore) -> None:
    t = task_store.create(title="Typing")
    task_store.transition(t.id, ALICE, TaskStatus.ASSIGNED)

    with pytest.raises(ConflictError):
        task_store.transition(t.id, BOB, TaskStatus.IN_PROGRESS)
    with pytest.raises(ConflictError):
        task_store.transition(t.id, BOB, TaskStatus.COMPLETED)

    assert task_store.get(t.id).status == TaskStatus.ASSIGNED


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ([], TaskStatus.IN_PROGRESS),
        ([], TaskStatus.COMPLETED),
        ([TaskStatus.ASSIGNED, TaskStatus.COMPLETED], TaskStatus.IN_PROGRESS),
        ([TaskStatus.ASSIGNED, TaskStatus.COMPLETED], TaskStatus.CANCELLED),
        ([TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS], TaskStatus.AVAILABLE),
    ],
)
def test_invalid_transitions_are_rejected(task_store: TaskStore, path, target) -> None:
    t = task_store.create(title="Email setup")
    for step in path:
        task_store.transition(t.id, ALICE, step)
    before = task_store.get(t.id)

    with pytest.raises(InvalidTransitionError):
        task_store.transition(t.id, ALICE, target)

    assert task_store.get(t.id) == before


def test_cancel_clears_assignee(task_store: TaskStore) -> None:
    t = task_store.create(title="Color print")
    task_store.transition(t.id, ALICE, TaskStatus.ASSIGNED)
    task_store.transition(t.id, ALICE, TaskStatus.IN_PROGRESS)

    t = task_store.transition(t.id, ALICE, TaskStatus.CANCELLED)

    assert t.status == TaskStatus.CANCELLED
    assert t.assignee is None
    _assert_assignee_invariant(task_store.get(t.id))
    assert task_store.get(t.id).cancelled_assignee_id == "alice"
    assert [x.id for x in task_store.list(cancelled_assignee_id="alice")] == [t.id]


def test_cancel_unassigned_task_needs_privilege(task_store: TaskStore) -> None:
    t = task_store.create(title="Photocopy")

    with pytest.raises(ConflictError):
        task_store.transition(t.id, ALICE, TaskStatus.CANCELLED)

    t = task_store.transition(t.id, WorkerRef("admin"), TaskStatus.CANCELLED, enforce_assignee=False)
    assert t.status == TaskStatus.CANCELLED


def test_stale_version_loses_compare_and_swap(task_store: TaskStore, monkeypatch) -> None:
    t = task_store.create(title="Browse")
    stale = task_store.get(t.id)
    task_store.transition(t.id, ALICE, TaskStatus.ASSIGNED)

    # Bob read the row before Alice's write landed.
    monkeypatch.setattr(task_store, "get", lambda task_id: stale)

    with pytest.raises(ConflictError):
        task_store.transition(t.id, BOB, TaskStatus.ASSIGNED)

    monkeypatch.undo()
    assert task_store.get(t.id).assignee == ALICE


def test_concurrent_claims_have_exactly_one_winner(task_store: TaskStore) -> None:
    t = task_store.create(title="Hot task")
    workers = [WorkerRef(actor_id=f"w{i}") for i in range(8)]
    barrier = threading.Barrier(len(workers))
    wins: list[str] = []
    conflicts: list[str] = []
    lock = threading.Lock()

    def claim(w: WorkerRef) -> None:
        barrier.wait()
        try:
            task_store.transition(t.id, w, TaskStatus.ASSIGNED)
        except ConflictError:
            with lock:
                conflicts.append(w.actor_id)
        else:
            with lock:
                wins.append(w.actor_id)

    threads = [threading.Thread(target=claim, args=(w,)) for w in workers]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=30)

    assert len(wins) == 1
    assert len(conflicts) == len(workers) - 1
    assert task_store.get(t.id).assignee_id == wins[0]


def test_list_filters_and_orders_newest_first(task_store: TaskStore) -> None:
    a = task_store.create(title="a", now_ts=100.0)
    b = task_store.create(title="b", now_ts=200.0)
    c = task_store.create(title="c", now_ts=300.0)
    task_store.transition(b.id, ALICE, TaskStatus.ASSIGNED)

    assert [t.id for t in task_store.list()] == [c.id, b.id, a.id]
    assert [t.id for t in task_store.list(status="available")] == [c.id, a.id]
    assert [t.id for t in task_store.list(assignee_id="alice")] == [b.id]
    assert [t.id for t in task_store.list(since_ts=150.0)] == [c.id, b.id]
    pc = WorkerRef(actor_id="carol", client_id="client-7")
    task_store.transition(c.id, pc, TaskStatus.ASSIGNED)
    assert [t.id for t in task_store.list(client_id="client-7")] == [c.id]
    assert task_store.list(client_id="client-8") == []
    assert len(task_store.list(limit=1)) == 1

    with pytest.raises(ValidationError):
        task_store.list(status="lost")


def test_schema_is_reopened_without_loss(tmp_path) -> None:
    path = tmp_path / "tasks.sqlite3"
    t = TaskStore(path).create(title="persisted", price=5)

    again = TaskStore(path)
    assert again.get(t.id).title == "persisted"


def test_revert_completion_restores_prior_status(task_store: TaskStore) -> None:
    started = task_store.create(title="Laminate")
    task_store.transition(started.id, ALICE, TaskStatus.ASSIGNED)
    task_store.transition(started.id, ALICE, TaskStatus.IN_PROGRESS)
    done = task_store.transition(started.id, ALICE, TaskStatus.COMPLETED)

    back = task_store.revert_completion(done)

    assert back.status == TaskStatus.IN_PROGRESS
    assert back.completed_at is None
    assert back.version == done.version + 1
    assert task_store.get(started.id) == back
    _assert_assignee_invariant(back)

    # The stale completed snapshot cannot be reverted twice.
    with pytest.raises(ConflictError):
        task_store.revert_completion(done)
    with pytest.raises(InvalidTransitionError):
        task_store.revert_completion(back)

    quick = task_store.create(title="Staple")
    task_store.transition(quick.id, BOB, TaskStatus.ASSIGNED)
    done = task_store.transition(quick.id, BOB, TaskStatus.COMPLETED)
    assert task_store.revert_completion(done).status == TaskStatus.ASSIGNED
