from middleware.rate_limiter import limiter, get_user_id
from core.config import settings
from services.access_tokens import AccessTokenIssuer
from starlette.requests import Request
from tests.conftest import login


def _request(headers: dict) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("203.0.113.7", 1234),
    })


def test_rate_limiter_disabled_in_testing():
    """Verify rate limiter is disabled during tests."""

    assert settings.ENV == "testing"
    assert limiter.enabled is False


def test_rate_limit_key_uses_user_id():
    token = AccessTokenIssuer.issue(user_id=7, email="user@example.com")

    assert get_user_id(_request({"Authorization": f"Bearer {token}"})) == "user:7"


def test_rate_limit_key_falls_back_to_address():
    assert get_user_id(_request({})) == "203.0.113.7"
    assert get_user_id(_request({"Authorization": "Bearer garbage"})) == "203.0.113.7"


async def test_can_make_multiple_requests_in_tests(client, verified_user):
    """Verify rate limiting doesn't interfere with tests."""
    # Login is normally limited to 5/minute
    for _ in range(10):
        response = await login(client, verified_user.email)
        assert response.status_code == 200
