from datetime import timedelta
from fastapi import HTTPException
from models.refresh_tokens import TokenPurpose
from schemas.auth_schemas import ClientContext
from services.session_service import SessionRegistry
from services.token_service import RefreshTokenStore
from tests.conftest import create_user
from utils.tokens import hash_token
import pytest

CHROME = ClientContext(
    user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
               "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    ip_address="192.168.1.10"
)
FIREFOX = ClientContext(
    user_agent="Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    ip_address="192.168.1.11"
)


def test_list_sessions_excludes_reset_tokens(session):
    user = create_user(session, "sessions@example.com")
    RefreshTokenStore.issue(session, user.id, CHROME)
    RefreshTokenStore.issue(session, user.id, FIREFOX)
    RefreshTokenStore.issue(
        session, user.id, expires_delta=timedelta(hours=1), purpose=TokenPurpose.PASSWORD_RESET
    )

    sessions = SessionRegistry.list_sessions(session, user.id)

    assert len(sessions) == 2
    assert {s.device for s in sessions} == {"Chrome on Windows 10", "Firefox on Linux"}


def test_exactly_one_current_session(session):
    user = create_user(session, "sessions@example.com")
    current = RefreshTokenStore.issue(session, user.id, CHROME)
    RefreshTokenStore.issue(session, user.id, FIREFOX)
    RefreshTokenStore.issue(session, user.id, FIREFOX)

    sessions = SessionRegistry.list_sessions(session, user.id, hash_token(current))

    assert len(sessions) == 3
    assert sum(1 for s in sessions if s.current) == 1
    assert next(s for s in sessions if s.current).browser == "Chrome"


def test_no_current_session_without_hash(session):
    user = create_user(session, "sessions@example.com")
    RefreshTokenStore.issue(session, user.id, CHROME)

    sessions = SessionRegistry.list_sessions(session, user.id)

    assert all(not s.current for s in sessions)


def test_revoked_and_expired_sessions_not_listed(session):
    user = create_user(session, "sessions@example.com")
    revoked = RefreshTokenStore.issue(session, user.id, CHROME)
    RefreshTokenStore.revoke(session, revoked, user.id)
    RefreshTokenStore.issue(session, user.id, CHROME, expires_delta=timedelta(seconds=-1))
    RefreshTokenStore.issue(session, user.id, FIREFOX)

    sessions = SessionRegistry.list_sessions(session, user.id)

    assert len(sessions) == 1
    assert sessions[0].browser == "Firefox"
    assert sessions[0].ip == "192.168.1.11"


def test_terminate_session(session):
    user = create_user(session, "sessions@example.com")
    secret = RefreshTokenStore.issue(session, user.id, CHROME)
    session_id = SessionRegistry.list_sessions(session, user.id)[0].id

    SessionRegistry.terminate_session(session, session_id, user.id)

    assert SessionRegistry.list_sessions(session, user.id) == []
    assert not RefreshTokenStore.validate(session, secret).is_valid


def test_terminate_other_users_session_refused(session):
    user = create_user(session, "sessions@example.com")
    other = create_user(session, "other@example.com")
    RefreshTokenStore.issue(session, user.id, CHROME)
    session_id = SessionRegistry.list_sessions(session, user.id)[0].id

    with pytest.raises(HTTPException) as exc_info:
        SessionRegistry.terminate_session(session, session_id, other.id)

    assert exc_info.value.status_code == 403
    assert len(SessionRegistry.list_sessions(session, user.id)) == 1


def test_terminate_already_terminated_session_refused(session):
    user = create_user(session, "sessions@example.com")
    RefreshTokenStore.issue(session, user.id, CHROME)
    session_id = SessionRegistry.list_sessions(session, user.id)[0].id
    SessionRegistry.terminate_session(session, session_id, user.id)

    with pytest.raises(HTTPException) as exc_info:
        SessionRegistry.terminate_session(session, session_id, user.id)

    assert exc_info.value.status_code == 403


def test_terminate_all_keeps_current_and_reset_tokens(session):
    user = create_user(session, "sessions@example.com")
    current = RefreshTokenStore.issue(session, user.id, CHROME)
    RefreshTokenStore.issue(session, user.id, FIREFOX)
    RefreshTokenStore.issue(session, user.id, FIREFOX)
    reset_secret = RefreshTokenStore.issue(
        session, user.id, expires_delta=timedelta(hours=1), purpose=TokenPurpose.PASSWORD_RESET
    )

    count = SessionRegistry.terminate_all_sessions(session, user.id, except_hash=hash_token(current))

    assert count == 2
    remaining = SessionRegistry.list_sessions(session, user.id, hash_token(current))
    assert len(remaining) == 1
    assert remaining[0].current is True
    assert RefreshTokenStore.validate(session, reset_secret, TokenPurpose.PASSWORD_RESET).is_valid


def test_terminate_all_without_exception(session):
    user = create_user(session, "sessions@example.com")
    RefreshTokenStore.issue(session, user.id, CHROME)
    RefreshTokenStore.issue(session, user.id, FIREFOX)

    assert SessionRegistry.terminate_all_sessions(session, user.id) == 2
    assert SessionRegistry.list_sessions(session, user.id) == []
