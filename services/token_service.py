import enum
from dataclasses import dataclass
from datetime import timedelta
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from models.refresh_tokens import RefreshToken, TokenPurpose, PASSWORD_RESET_SENTINEL
from schemas.auth_schemas import ClientContext
from core.config import settings
from utils.user_agent import parse_browser
from utils.logger import get_logger
from utils.tokens import utcnow, as_utc, generate_opaque_token, hash_token, generate_fingerprint

logger = get_logger(__name__)


class TokenStatus(str, enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    REUSED = "reused"


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Result of looking up a presented secret.

    ``REUSED`` is the security-relevant branch: the secret matched a record
    that was already revoked (typically rotated), so someone is replaying it.
    The record is attached for VALID and REUSED so callers know the owner.
    """
    status: TokenStatus
    record: RefreshToken | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == TokenStatus.VALID


class RefreshTokenStore:
    """
    Single source of truth for session validity.

    Every write to ``refresh_tokens`` goes through here: issuance, validation,
    rotation with reuse detection, revocation, last-used tracking and the
    expired-row sweep.
    """

    @staticmethod
    def refresh_ttl(remember_me: bool) -> timedelta:
        if remember_me:
            return timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS_LONG)
        return timedelta(hours=settings.REFRESH_TOKEN_EXPIRE_HOURS_SHORT)

    @staticmethod
    def _build_record(user_id: int, client: ClientContext | None, expires_delta: timedelta,
                      remember_me: bool, purpose: TokenPurpose) -> tuple[str, RefreshToken]:
        client = client or ClientContext()
        now = utcnow()

        if purpose == TokenPurpose.PASSWORD_RESET:
            secret = generate_opaque_token(32)
            record = RefreshToken(
                user_id=user_id,
                token_hash=hash_token(secret),
                expires_at=now + expires_delta,
                device_info=PASSWORD_RESET_SENTINEL,
                remember_me=False,
                created_at=now
            )
            return secret, record

        secret = generate_opaque_token(64)
        record = RefreshToken(
            user_id=user_id,
            token_hash=hash_token(secret),
            expires_at=now + expires_delta,
            device_info=client.user_agent,
            browser=parse_browser(client.user_agent),
            ip_address=client.ip_address,
            fingerprint=generate_fingerprint(client.user_agent, client.ip_address),
            remember_me=remember_me,
            created_at=now,
            last_used_at=now
        )
        return secret, record

    @staticmethod
    def issue(db: Session, user_id: int, client: ClientContext | None = None,
              expires_delta: timedelta | None = None, remember_me: bool = False,
              purpose: TokenPurpose = TokenPurpose.SESSION) -> str:
        """
        Stores a new token record and returns the secret.

        The secret itself is never persisted, only its sha256.

        Args:
            db: Database session
            user_id: Owner of the token
            client: Device metadata (user agent, ip)
            expires_delta: Lifetime (default depends on remember_me)
            remember_me: Long-lived session flag, inherited on rotation
            purpose: SESSION or PASSWORD_RESET

        Returns:
            The opaque secret to hand to the client
        """
        if expires_delta is None:
            expires_delta = RefreshTokenStore.refresh_ttl(remember_me)

        secret, record = RefreshTokenStore._build_record(user_id, client, expires_delta, remember_me, purpose)
        db.add(record)
        db.commit()

        logger.debug(
            "Token issued",
            extra={"user_id": user_id, "purpose": purpose.value, "token_id": record.id}
        )
        return secret

    @staticmethod
    def validate(db: Session, secret: str, purpose: TokenPurpose = TokenPurpose.SESSION) -> ValidationOutcome:
        """
        Classifies a presented secret.

        - unknown hash, or a token of the other purpose -> INVALID
        - past expires_at (revoked or not) -> EXPIRED
        - revoked -> REUSED
        - otherwise -> VALID
        """
        if not secret:
            return ValidationOutcome(TokenStatus.INVALID)

        record = db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(secret)
        ).first()

        if record is None or record.purpose != purpose:
            return ValidationOutcome(TokenStatus.INVALID)

        if as_utc(record.expires_at) <= utcnow():
            return ValidationOutcome(TokenStatus.EXPIRED, record)

        if record.revoked_at is not None:
            return ValidationOutcome(TokenStatus.REUSED, record)

        return ValidationOutcome(TokenStatus.VALID, record)

    @staticmethod
    def rotate(db: Session, record: RefreshToken, client: ClientContext | None = None) -> str | None:
        """
        Revokes ``record`` and issues its replacement in one transaction.

        The revoke is a conditional update (only while still active) and its
        row count picks the single winner among concurrent rotations of the
        same token. The loser rolls back and gets None; its next attempt with
        that secret validates as REUSED. The replacement inherits owner and
        remember_me, and is committed together with the revocation so there
        is never a moment with neither token usable.
        """
        user_id, token_id, remember_me = record.user_id, record.id, bool(record.remember_me)
        now = utcnow()
        result = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == token_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            db.rollback()
            logger.warning(
                "Concurrent rotation lost the race",
                extra={"user_id": user_id, "token_id": token_id}
            )
            return None

        if client is None:
            client = ClientContext(user_agent=record.device_info, ip_address=record.ip_address)

        secret, new_record = RefreshTokenStore._build_record(
            user_id,
            client,
            RefreshTokenStore.refresh_ttl(remember_me),
            remember_me,
            TokenPurpose.SESSION
        )
        db.add(new_record)
        db.commit()

        logger.debug(
            "Refresh token rotated",
            extra={"user_id": user_id, "old_token_id": token_id, "new_token_id": new_record.id}
        )
        return secret

    @staticmethod
    def revoke(db: Session, secret: str, owner_id: int) -> bool:
        """Revokes the token matching ``secret`` if ``owner_id`` owns it (logout)."""
        count = db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(secret),
            RefreshToken.user_id == owner_id,
            RefreshToken.revoked_at.is_(None)
        ).update({"revoked_at": utcnow()}, synchronize_session=False)
        db.commit()
        return count > 0

    @staticmethod
    def revoke_by_hash(db: Session, token_hash: str) -> bool:
        count = db.query(RefreshToken).filter(
            RefreshToken.token_hash == token_hash,
            RefreshToken.revoked_at.is_(None)
        ).update({"revoked_at": utcnow()}, synchronize_session=False)
        db.commit()
        return count > 0

    @staticmethod
    def revoke_one(db: Session, token_id: int, owner_id: int,
                   purpose: TokenPurpose | None = TokenPurpose.SESSION) -> bool:
        """
        Revokes a single still-valid record owned by ``owner_id``.

        Returns False when the record does not exist, belongs to someone
        else, or is already revoked/expired.
        """
        now = utcnow()
        query = db.query(RefreshToken).filter(
            RefreshToken.id == token_id,
            RefreshToken.user_id == owner_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now
        )
        if purpose is not None:
            query = query.filter(RefreshToken.purpose_filter(purpose))

        count = query.update({"revoked_at": now}, synchronize_session=False)
        db.commit()
        return count > 0

    @staticmethod
    def revoke_all(db: Session, user_id: int, purpose: TokenPurpose | None = None,
                   except_hash: str | None = None) -> int:
        """
        Revokes every currently-valid token of a user.

        With no ``purpose`` this covers sessions and reset tokens alike; it is
        the response to detected reuse and to a completed password reset.
        Calling it twice leaves the same end state.

        Returns:
            Number of records revoked by this call
        """
        now = utcnow()
        query = db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now
        )
        if purpose is not None:
            query = query.filter(RefreshToken.purpose_filter(purpose))
        if except_hash:
            query = query.filter(RefreshToken.token_hash != except_hash)

        count = query.update({"revoked_at": now}, synchronize_session=False)
        db.commit()
        return count

    @staticmethod
    def active_records(db: Session, user_id: int, purpose: TokenPurpose = TokenPurpose.SESSION) -> list[RefreshToken]:
        return db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > utcnow(),
            RefreshToken.purpose_filter(purpose)
        ).order_by(RefreshToken.last_used_at.desc(), RefreshToken.id.desc()).all()

    @staticmethod
    def touch(db: Session, token_hash: str, owner_id: int) -> bool:
        """
        Updates last_used_at of a live session owned by ``owner_id``.
        Best effort: failures are logged, never raised.

        Returns:
            True if a session was touched
        """
        now = utcnow()
        try:
            count = db.query(RefreshToken).filter(
                RefreshToken.token_hash == token_hash,
                RefreshToken.user_id == owner_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
                RefreshToken.purpose_filter(TokenPurpose.SESSION)
            ).update({"last_used_at": now}, synchronize_session=False)
            db.commit()
            return count > 0
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(
                f"Failed to update token last_used_at: {str(e)}",
                extra={"error_type": type(e).__name__}
            )
            return False

    @staticmethod
    def delete_expired(db: Session) -> int:
        """
        Deletes rows whose expires_at has passed, revoked or not.

        Revoked rows that have not expired yet are kept: they are what makes
        a replayed token detectable as reuse.
        """
        count = db.query(RefreshToken).filter(
            RefreshToken.expires_at <= utcnow()
        ).delete(synchronize_session=False)
        db.commit()
        return count
