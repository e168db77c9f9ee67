# tests/test_api.py

from __future__ import annotations

import pytest

from cafe_portal import api
from cafe_portal.core.errors import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from cafe_portal.ledger.ledger_models import KIND_SESSION, KIND_TASK_COMPLETION, Breakdown
from cafe_portal.sessions.session_models import SessionType
from cafe_portal.tasks.task_models import TaskStatus

from .fakes import RecordingSink


@pytest.fixture()
def admin_token(state) -> str:
    return state.sessions.issue("admin", SessionType.ADMIN, role="Super Admin").token


@pytest.fixture()
def alice_token(state) -> str:
    return state.sessions.issue("alice").token


@pytest.fixture()
def bob_token(state) -> str:
    return state.sessions.issue("bob").token


def test_every_call_validates_the_token(state) -> None:
    with pytest.raises(NotFoundError):
        api.list_tasks(state, "bogus")

    expired = state.sessions.issue("carol", ttl_seconds=-1).token
    with pytest.raises(ExpiredError):
        api.claim_task(state, expired, "task-x")


def test_admin_only_operations(state, alice_token) -> None:
    with pytest.raises(ForbiddenError):
        api.create_task(state, alice_token, title="x")
    with pytest.raises(ForbiddenError):
        api.assign_task(state, alice_token, "task-x", "alice")
    with pytest.raises(ForbiddenError):
        api.transaction_summary(state, alice_token)
    with pytest.raises(ForbiddenError):
        api.record_session_charge(state, alice_token, actor_id="alice", amount=10)


def test_claim_and_complete_flow(state, admin_token, alice_token, bob_token) -> None:
    t = api.create_task(state, admin_token, title="Print 20 pages", service_id="svc-2")
    assert t.created_by == "admin"

    claimed = api.claim_task(state, alice_token, t.id, hostname="PC-04")
    assert claimed.assignee_id == "alice"

    with pytest.raises(ConflictError):
        api.claim_task(state, bob_token, t.id)

    api.advance_task(state, alice_token, t.id, "in-progress")
    done = api.advance_task(
        state, alice_token, t.id, TaskStatus.COMPLETED, breakdown={"usage": 0, "printBW": 10}
    )
    assert done.status == TaskStatus.COMPLETED

    txns = api.list_transactions(state, alice_token)
    assert len(txns) == 1
    assert txns[0].kind == KIND_TASK_COMPLETION
    assert txns[0].amount == 10
    assert txns[0].hostname == "PC-04"
    assert txns[0].breakdown.print_bw == 10
    assert api.balance(state, alice_token) == 10


def test_portal_users_see_available_and_own_tasks(state, admin_token, alice_token, bob_token) -> None:
    open_task = api.create_task(state, admin_token, title="open", price=1)
    mine = api.create_task(state, admin_token, title="mine", price=1, assign_to="alice")
    theirs = api.create_task(state, admin_token, title="theirs", price=1, assign_to="bob")

    ids = {t.id for t in api.list_tasks(state, alice_token)}
    assert ids == {open_task.id, mine.id}
    assert {t.id for t in api.list_tasks(state, alice_token, status="assigned")} == {mine.id}
    assert {t.id for t in api.list_tasks(state, admin_token)} == {open_task.id, mine.id, theirs.id}

    assert api.list_tasks(state, admin_token, client_id="nowhere") == []
    assert api.get_task(state, alice_token, open_task.id).id == open_task.id
    with pytest.raises(ForbiddenError):
        api.get_task(state, alice_token, theirs.id)
    with pytest.raises(ForbiddenError):
        api.list_tasks(state, alice_token, assignee_id="bob")
    with pytest.raises(ValidationError):
        api.list_tasks(state, alice_token, status="lost")


def test_admin_can_force_cancel_but_worker_cannot(state, admin_token, alice_token, bob_token) -> None:
    t = api.create_task(state, admin_token, title="x", price=1, assign_to="alice")

    with pytest.raises(ConflictError):
        api.cancel_task(state, bob_token, t.id)

    cancelled = api.cancel_task(state, admin_token, t.id)
    assert cancelled.status == TaskStatus.CANCELLED
    assert cancelled.assignee is None

    # The previous assignee keeps sight of the task; other workers do not.
    assert api.get_task(state, alice_token, t.id).cancelled_assignee_id == "alice"
    assert [x.id for x in api.list_tasks(state, alice_token, status="cancelled")] == [t.id]
    assert t.id in {x.id for x in api.list_tasks(state, alice_token)}
    assert api.list_tasks(state, bob_token, status="cancelled") == []
    with pytest.raises(ForbiddenError):
        api.get_task(state, bob_token, t.id)


def test_balance_and_transactions_are_scoped(state, admin_token, alice_token) -> None:
    api.record_session_charge(
        state,
        admin_token,
        actor_id="bob",
        amount=300,
        session_id="sess-9",
        breakdown=Breakdown(usage=200, print_bw=100),
    )

    with pytest.raises(ForbiddenError):
        api.balance(state, alice_token, "bob")
    with pytest.raises(ForbiddenError):
        api.list_transactions(state, alice_token, actor_id="bob")

    assert api.balance(state, admin_token, "bob") == 300
    assert api.list_transactions(state, alice_token) == []
    charges = api.list_transactions(state, admin_token, kind=KIND_SESSION)
    assert [c.session_id for c in charges] == ["sess-9"]

    summary = api.transaction_summary(state, admin_token)
    assert summary.today.count == 1
    assert summary.today.by_kind == {KIND_SESSION: 300}


def test_breakdown_parsing() -> None:
    assert api.parse_breakdown(None) is None
    assert api.parse_breakdown({"print_color": "2.5"}) == Breakdown(print_color=2.5)
    with pytest.raises(ValidationError):
        api.parse_breakdown({"usage": "lots"})
    with pytest.raises(ValidationError):
        api.parse_breakdown(["usage", 1])


def test_subscribe_requires_live_session(state, alice_token) -> None:
    sink = RecordingSink()
    sub = api.subscribe(state, alice_token, sink)
    assert sub in state.fanout.subscriptions()

    with pytest.raises(NotFoundError):
        api.subscribe(state, "bogus", RecordingSink())

    assert api.unsubscribe(state, alice_token, sub) is True
