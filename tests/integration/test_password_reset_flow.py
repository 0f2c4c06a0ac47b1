import threading
from datetime import timedelta
from fastapi import BackgroundTasks, HTTPException
from models.refresh_tokens import RefreshToken, TokenPurpose
from models.users import User
from services.password_service import PasswordResetService
from services.token_service import RefreshTokenStore, TokenStatus
from tests.conftest import create_user, TestingSessionLocal
from utils.hashing import verify_password
from utils.tokens import hash_token
import pytest


def test_request_reset_for_unknown_email(session):
    bg = BackgroundTasks()

    assert PasswordResetService.request_reset(session, "nobody@example.com", bg) is None
    assert bg.tasks == []
    assert session.query(RefreshToken).count() == 0


def test_request_reset_issues_token_and_queues_email(session):
    user = create_user(session, "reset@example.com")
    bg = BackgroundTasks()

    assert PasswordResetService.request_reset(session, "Reset@Example.com ", bg).id == user.id

    assert len(bg.tasks) == 1
    assert bg.tasks[0].kwargs["to_email"] == "reset@example.com"
    assert "/reset-password?token=" in bg.tasks[0].kwargs["body"]

    record = session.query(RefreshToken).one()
    assert record.purpose == TokenPurpose.PASSWORD_RESET
    assert record.remember_me is False


def test_reset_password_replaces_hash_and_revokes_everything(session):
    user = create_user(session, "reset@example.com")
    sessions = [RefreshTokenStore.issue(session, user.id) for _ in range(3)]
    token = PasswordResetService.issue_token(session, user.id)

    assert PasswordResetService.reset_password(session, token, "BrandNewPass123") == user.id

    refreshed = session.query(User).filter(User.id == user.id).one()
    assert verify_password("BrandNewPass123", refreshed.password_hash)
    for secret in sessions:
        assert RefreshTokenStore.validate(session, secret).status == TokenStatus.REUSED
    assert RefreshTokenStore.active_records(session, user.id) == []


def test_reset_token_is_single_use(session):
    user = create_user(session, "reset@example.com")
    token = PasswordResetService.issue_token(session, user.id)
    PasswordResetService.reset_password(session, token, "BrandNewPass123")

    with pytest.raises(HTTPException) as exc_info:
        PasswordResetService.reset_password(session, token, "AnotherPass123")

    assert exc_info.value.status_code == 400


def test_expired_reset_token_rejected(session):
    user = create_user(session, "reset@example.com")
    token = RefreshTokenStore.issue(
        session, user.id, expires_delta=timedelta(seconds=-1), purpose=TokenPurpose.PASSWORD_RESET
    )

    with pytest.raises(HTTPException) as exc_info:
        PasswordResetService.reset_password(session, token, "BrandNewPass123")

    assert exc_info.value.status_code == 400


def test_session_token_cannot_reset_password(session):
    user = create_user(session, "reset@example.com")
    secret = RefreshTokenStore.issue(session, user.id)

    with pytest.raises(HTTPException):
        PasswordResetService.reset_password(session, secret, "BrandNewPass123")

    assert RefreshTokenStore.validate(session, secret).is_valid


def test_reset_token_cannot_refresh_session(session):
    user = create_user(session, "reset@example.com")
    token = PasswordResetService.issue_token(session, user.id)

    assert RefreshTokenStore.validate(session, token).status == TokenStatus.INVALID
    record = session.query(RefreshToken).filter(RefreshToken.token_hash == hash_token(token)).one()
    assert record.revoked_at is None


def test_concurrent_resets_with_one_token_only_one_wins(session, monkeypatch):
    user = create_user(session, "reset@example.com")
    user_id = user.id
    token = PasswordResetService.issue_token(session, user_id)
    barrier = threading.Barrier(2, timeout=5)
    validate = PasswordResetService.validate_token
    results = {}

    def validate_then_wait(db, value):
        record = validate(db, value)
        barrier.wait()
        return record

    monkeypatch.setattr(PasswordResetService, "validate_token", staticmethod(validate_then_wait))

    def reset(new_password):
        db = TestingSessionLocal()
        try:
            results[new_password] = PasswordResetService.reset_password(db, token, new_password)
        except HTTPException as e:
            results[new_password] = e
        finally:
            db.close()

    threads = [threading.Thread(target=reset, args=(p,)) for p in ("FirstNewPass123", "SecondNewPass123")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    winners = [p for p, r in results.items() if r == user_id]
    losers = [r for r in results.values() if isinstance(r, HTTPException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].status_code == 400

    session.expire_all()
    refreshed = session.query(User).filter(User.id == user_id).one()
    assert verify_password(winners[0], refreshed.password_hash)
