from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from core.config import settings
from services.access_tokens import AccessTokenIssuer


def get_user_id(request: Request):
    """Rate-limit key: the authenticated user id, else the client address."""
    header = request.headers.get("Authorization")
    if header and header.startswith("Bearer "):
        payload = AccessTokenIssuer.decode(header[len("Bearer "):])
        if payload:
            return f"user:{payload.user_id}"

    return get_remote_address(request)

limiter = Limiter(
    key_func=get_user_id,
    default_limits=["200/hour"],
    enabled=settings.ENV != "testing"
)
