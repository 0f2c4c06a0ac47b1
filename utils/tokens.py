import hashlib
import secrets
from datetime import datetime, timezone

# Excludes look-alike characters: 0, O, I, 1
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def generate_opaque_token(num_bytes: int = 64) -> str:
    return secrets.token_hex(num_bytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_fingerprint(user_agent: str | None, ip_address: str | None) -> str:
    return hash_token(f"{user_agent or 'unknown'}|{ip_address or 'unknown'}")


def generate_backup_codes(count: int, length: int = 8) -> list[str]:
    codes: list[str] = []
    while len(codes) < count:
        code = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        if code not in codes:
            codes.append(code)
    return codes
