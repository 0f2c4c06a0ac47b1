import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from core.config import settings


@dataclass(frozen=True)
class AccessTokenPayload:
    user_id: int
    email: str
    issued_at: int
    expires_at: int


def _is_canonical_b64url(segment: str) -> bool:
    # Trailing bits of the last base64 character are ignored by decoders,
    # so two different strings can carry the same signature bytes.
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (ValueError, TypeError):
        return False
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == segment


class AccessTokenIssuer:
    """
    Mints and verifies short-lived, stateless access tokens.

    Tokens are HS256 JWTs (header.payload.signature, each segment base64url)
    carrying the subject id, email, issued-at and expiry. There is no
    revocation: a leaked token is only bounded by its lifetime.
    """

    @staticmethod
    def issue(user_id: int, email: str, expires_delta: timedelta | None = None) -> str:
        """
        Creates a signed access token.

        Args:
            user_id: Subject id
            email: Subject email
            expires_delta: Token lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

        Returns:
            Encoded token string
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + expires_delta).timestamp())
        }

        return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode(token: str | None) -> AccessTokenPayload | None:
        """
        Verifies signature and expiry.

        Returns None for anything that is not a valid, unexpired access token;
        callers treat that exactly like a missing token.
        """
        if not token:
            return None

        parts = token.split(".")
        if len(parts) != 3 or not _is_canonical_b64url(parts[2]):
            return None

        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None

        if payload.get("type") != "access":
            return None

        try:
            return AccessTokenPayload(
                user_id=int(payload["sub"]),
                email=payload["email"],
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"])
            )
        except (KeyError, TypeError, ValueError):
            return None

    @staticmethod
    def expires_in_seconds() -> int:
        return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
