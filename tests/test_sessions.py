# tests/test_sessions.py

from __future__ import annotations

import pytest

from cafe_portal.core.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from cafe_portal.sessions.auth import ADMIN_ROLE, request_otp, verify_otp
from cafe_portal.sessions.session_models import CodeType, Session, SessionType
from cafe_portal.sessions.session_store import SessionDirectory
from cafe_portal.sessions.verification import VerificationCodeStore, generate_otp


def test_issue_and_validate(sessions: SessionDirectory) -> None:
    s = sessions.issue("alice", SessionType.PORTAL, now_ts=1_000.0)

    assert len(s.token) == 64
    assert s.expires_at == 1_000.0 + 3600
    assert sessions.validate(s.token, now_ts=1_500.0) == s
    assert sessions.count_sessions() == 1


def test_unknown_token_is_not_found(sessions: SessionDirectory) -> None:
    with pytest.raises(NotFoundError):
        sessions.validate("nope")
    with pytest.raises(NotFoundError):
        sessions.validate("")
    assert sessions.lookup("nope") is None


def test_expiry_is_enforced_without_sweep(sessions: SessionDirectory) -> None:
    s = sessions.issue("alice", ttl_seconds=10, now_ts=1_000.0)

    assert sessions.lookup(s.token, now_ts=1_009.0) is not None
    assert sessions.lookup(s.token, now_ts=1_010.0) is None
    with pytest.raises(ExpiredError):
        sessions.validate(s.token, now_ts=1_010.0)

    # The failed validate removed the row lazily.
    with pytest.raises(NotFoundError):
        sessions.validate(s.token, now_ts=1_010.0)


def test_store_external_session(sessions: SessionDirectory) -> None:
    external = Session(
        token="t" * 64,
        username="root",
        session_type=SessionType.ADMIN,
        expires_at=5_000.0,
        created_at=1_000.0,
        role="Super Admin",
        email="root@example.com",
    )
    sessions.store(external)

    got = sessions.validate(external.token, now_ts=2_000.0)
    assert got.is_admin
    assert got.email == "root@example.com"

    with pytest.raises(ValidationError):
        sessions.store(Session(token="x", username=" ", session_type=SessionType.PORTAL, expires_at=1, created_at=0))
    with pytest.raises(ValidationError):
        sessions.issue("bob", "guest")


def test_sweep_and_list_active(sessions: SessionDirectory) -> None:
    old = sessions.issue("old", ttl_seconds=10, now_ts=1_000.0)
    live = sessions.issue("live", ttl_seconds=10_000, now_ts=1_000.0)

    assert [s.token for s in sessions.list_active(now_ts=2_000.0)] == [live.token]
    assert sessions.sweep_expired(now_ts=2_000.0) == 1
    assert sessions.lookup(old.token, now_ts=0.0) is None
    assert sessions.count_sessions() == 1


def test_verification_code_replace_consume_and_expire(tmp_path) -> None:
    codes = VerificationCodeStore(tmp_path / "sessions.sqlite3")

    codes.issue(CodeType.USER_OTP, "alice", "111111", ttl_seconds=300, now_ts=1_000.0)
    codes.issue(CodeType.USER_OTP, "alice", "222222", ttl_seconds=300, now_ts=1_010.0)
    assert codes.get(CodeType.USER_OTP, "alice", now_ts=1_020.0).value == "222222"

    with pytest.raises(ValidationError):
        codes.consume(CodeType.USER_OTP, "alice", "111111", now_ts=1_020.0)

    codes.consume(CodeType.USER_OTP, "alice", "222222", now_ts=1_020.0)
    with pytest.raises(NotFoundError):
        codes.consume(CodeType.USER_OTP, "alice", "222222", now_ts=1_020.0)

    codes.issue("admin_temp_token", "root", "tok", ttl_seconds=5, now_ts=1_000.0)
    with pytest.raises(ExpiredError):
        codes.get(CodeType.ADMIN_TEMP_TOKEN, "root", now_ts=1_005.0)
    with pytest.raises(ValidationError):
        codes.issue("bogus_type", "k", "v")


def test_wrong_guesses_burn_the_code(tmp_path) -> None:
    codes = VerificationCodeStore(tmp_path / "sessions.sqlite3", max_attempts=3)
    codes.issue(CodeType.USER_OTP, "alice", "424242", now_ts=1_000.0)

    for _ in range(2):
        with pytest.raises(ValidationError):
            codes.consume(CodeType.USER_OTP, "alice", "000000", now_ts=1_001.0)
    assert codes.get(CodeType.USER_OTP, "alice", now_ts=1_001.0).attempts == 2

    with pytest.raises(ExpiredError):
        codes.consume(CodeType.USER_OTP, "alice", "000000", now_ts=1_001.0)

    # Burned: even the right value is gone now.
    with pytest.raises(NotFoundError):
        codes.consume(CodeType.USER_OTP, "alice", "424242", now_ts=1_001.0)

    # A fresh code starts with a clean count.
    codes.issue(CodeType.USER_OTP, "alice", "515151", now_ts=1_002.0)
    assert codes.get(CodeType.USER_OTP, "alice", now_ts=1_002.0).attempts == 0


def test_concurrent_consume_loser_gets_conflict(tmp_path, monkeypatch) -> None:
    codes = VerificationCodeStore(tmp_path / "sessions.sqlite3")
    code = codes.issue(CodeType.USER_OTP, "alice", "123456", now_ts=1_000.0)

    codes.consume(CodeType.USER_OTP, "alice", "123456", now_ts=1_001.0)

    # A second caller that read the code before the first delete.
    monkeypatch.setattr(codes, "get", lambda *a, **kw: code)
    with pytest.raises(ConflictError):
        codes.consume(CodeType.USER_OTP, "alice", "123456", now_ts=1_001.0)


def test_generate_otp_is_six_digits() -> None:
    for _ in range(50):
        otp = generate_otp()
        assert len(otp) == 6 and otp.isdigit()


def test_otp_login_flow_for_portal_user(state, otp_delivery) -> None:
    code_type = request_otp(state, " alice ")
    assert code_type == CodeType.USER_OTP

    otp = otp_delivery.last_for("alice")
    session = verify_otp(state, "alice", otp)

    assert session.session_type == SessionType.PORTAL
    assert session.role is None
    assert state.sessions.validate(session.token).username == "alice"

    # Single use.
    with pytest.raises(NotFoundError):
        verify_otp(state, "alice", otp)


def test_otp_login_flow_for_admin(state, otp_delivery) -> None:
    assert request_otp(state, "admin") == CodeType.ADMIN_OTP

    session = verify_otp(state, "admin", otp_delivery.last_for("admin"))

    assert session.is_admin
    assert session.role == ADMIN_ROLE


def test_wrong_otp_is_rejected(state, otp_delivery) -> None:
    request_otp(state, "bob")
    good = otp_delivery.last_for("bob")
    bad = "000000" if good != "000000" else "111111"

    with pytest.raises(ValidationError):
        verify_otp(state, "bob", bad)
    with pytest.raises(ValidationError):
        request_otp(state, "   ")

    assert verify_otp(state, "bob", good).username == "bob"


def test_otp_login_locks_out_after_max_attempts(state, otp_delivery) -> None:
    request_otp(state, "bob")
    good = otp_delivery.last_for("bob")
    bad = "000000" if good != "000000" else "111111"

    # conftest allows three attempts.
    for _ in range(2):
        with pytest.raises(ValidationError):
            verify_otp(state, "bob", bad)
    with pytest.raises(ExpiredError):
        verify_otp(state, "bob", bad)

    with pytest.raises(NotFoundError):
        verify_otp(state, "bob", good)
    assert state.sessions.list_active() == []
