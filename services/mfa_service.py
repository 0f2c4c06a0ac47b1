import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
import pyotp
from sqlalchemy import update
from sqlalchemy.orm import Session
from core.config import settings
from models.backup_codes import UserBackupCode
from models.users import User
from schemas.auth_schemas import ClientContext, MfaSetupResponse
from services.audit_service import AuditService
from services.user_service import UserService
from utils.errors import (
    InvalidOrExpiredToken, MfaLockedOut, MfaInvalidCode,
    MfaNotConfigured, MfaAlreadyEnabled, InvalidVerificationCode
)
from utils.hashing import get_password_hash, verify_password
from utils.logger import get_logger
from utils.tokens import utcnow, generate_opaque_token, generate_backup_codes

logger = get_logger(__name__)


@dataclass
class MfaChallenge:
    """A password-verified login waiting for its second factor."""
    user_id: int
    email: str
    issued_at: datetime
    remember_me: bool


@dataclass
class _AttemptRecord:
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_failure_at: datetime | None = None


@dataclass
class MfaVerification:
    user: User
    remember_me: bool
    backup_codes_remaining: int | None = None


class MfaStateStore:
    """
    In-process MFA state: pending challenges keyed by temp token and failed
    attempt counters keyed by user id.

    All access goes through one lock. Expired entries are evicted lazily on
    lookup and in bulk by ``prune()``. State does not survive a restart.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow,
                 challenge_ttl: timedelta | None = None,
                 max_attempts: int | None = None,
                 lockout: timedelta | None = None):
        self.clock = clock
        self.challenge_ttl = challenge_ttl or timedelta(seconds=settings.MFA_TEMP_TOKEN_EXPIRE_SECONDS)
        self.max_attempts = max_attempts or settings.MFA_MAX_ATTEMPTS
        self.lockout = lockout or timedelta(seconds=settings.MFA_LOCKOUT_SECONDS)
        self._lock = threading.Lock()
        self._challenges: dict[str, MfaChallenge] = {}
        self._attempts: dict[int, _AttemptRecord] = {}

    def _challenge_expired(self, challenge: MfaChallenge, now: datetime) -> bool:
        return now - challenge.issued_at > self.challenge_ttl

    def _attempts_stale(self, record: _AttemptRecord, now: datetime) -> bool:
        if record.locked_until is not None:
            return now >= record.locked_until
        return record.last_failure_at is None or now - record.last_failure_at >= self.lockout

    def issue_challenge(self, user_id: int, email: str, remember_me: bool = False) -> str:
        token = generate_opaque_token(32)
        with self._lock:
            self._challenges[token] = MfaChallenge(
                user_id=user_id,
                email=email,
                issued_at=self.clock(),
                remember_me=remember_me
            )
        return token

    def get_challenge(self, token: str) -> MfaChallenge | None:
        with self._lock:
            challenge = self._challenges.get(token)
            if challenge is None:
                return None
            if self._challenge_expired(challenge, self.clock()):
                del self._challenges[token]
                return None
            return challenge

    def consume_challenge(self, token: str) -> MfaChallenge | None:
        with self._lock:
            challenge = self._challenges.pop(token, None)
            if challenge is None or self._challenge_expired(challenge, self.clock()):
                return None
            return challenge

    def is_locked_out(self, user_id: int) -> bool:
        with self._lock:
            record = self._attempts.get(user_id)
            if record is None or record.locked_until is None:
                return False
            if self.clock() >= record.locked_until:
                # Lockout over: start again from a clean counter
                del self._attempts[user_id]
                return False
            return True

    def remaining_attempts(self, user_id: int) -> int:
        with self._lock:
            record = self._attempts.get(user_id)
            failed = record.failed_attempts if record else 0
            return max(self.max_attempts - failed, 0)

    def failed_attempts(self, user_id: int) -> int:
        with self._lock:
            record = self._attempts.get(user_id)
            return record.failed_attempts if record else 0

    def record_failure(self, user_id: int) -> int:
        """
        Counts one failed code. Reaching ``max_attempts`` starts the lockout.

        Returns:
            Attempts left before lockout (0 means now locked)
        """
        with self._lock:
            record = self._attempts.setdefault(user_id, _AttemptRecord())
            record.failed_attempts += 1
            record.last_failure_at = self.clock()
            remaining = max(self.max_attempts - record.failed_attempts, 0)
            if remaining == 0:
                record.locked_until = self.clock() + self.lockout
            return remaining

    def clear_attempts(self, user_id: int) -> None:
        with self._lock:
            self._attempts.pop(user_id, None)

    def prune(self) -> int:
        """
        Drops expired challenges, finished lockouts and failure counters that
        stayed below the limit with no new failure for a lockout period.
        Returns how many entries went.
        """
        with self._lock:
            now = self.clock()
            expired_tokens = [
                token for token, challenge in self._challenges.items()
                if self._challenge_expired(challenge, now)
            ]
            for token in expired_tokens:
                del self._challenges[token]

            finished = [
                user_id for user_id, record in self._attempts.items()
                if self._attempts_stale(record, now)
            ]
            for user_id in finished:
                del self._attempts[user_id]

            return len(expired_tokens) + len(finished)


class MfaService:
    """
    Second-factor step of login plus TOTP enrolment.

    A wrong code counts against the user, not the temp token, so issuing a
    fresh challenge does not reset the counter. While locked out every code
    is refused, including a correct one.
    """

    def __init__(self, store: MfaStateStore, audit: AuditService):
        self.store = store
        self.audit = audit

    def issue_challenge(self, user: User, remember_me: bool = False) -> str:
        return self.store.issue_challenge(user.id, user.email, remember_me)

    def is_locked_out(self, user_id: int) -> bool:
        return self.store.is_locked_out(user_id)

    def remaining_attempts(self, user_id: int) -> int:
        return self.store.remaining_attempts(user_id)

    @staticmethod
    def verify_totp(secret: str, code: str) -> bool:
        return pyotp.TOTP(secret).verify(code, valid_window=1)

    def _open_challenge(self, db: Session, temp_token: str) -> tuple[MfaChallenge, User]:
        challenge = self.store.get_challenge(temp_token)
        if challenge is None:
            logger.warning("MFA verification with invalid or expired temp token")
            raise InvalidOrExpiredToken("Invalid or expired MFA session. Please login again.")

        if self.store.is_locked_out(challenge.user_id):
            logger.warning(
                "MFA verification refused - user locked out",
                extra={"user_id": challenge.user_id}
            )
            raise MfaLockedOut()

        user = UserService.find_by_id(db, challenge.user_id)
        if user is None or not user.mfa_enabled or not user.mfa_secret:
            self.store.consume_challenge(temp_token)
            raise MfaNotConfigured()

        return challenge, user

    def _fail(self, user_id: int, kind: str, client: ClientContext | None):
        remaining = self.store.record_failure(user_id)

        self.audit.log(
            "MFA_VERIFY_FAILED",
            user_id=user_id,
            details={"method": kind, "remaining_attempts": remaining},
            client=client
        )

        if remaining == 0:
            logger.warning(
                "MFA lockout triggered",
                extra={"user_id": user_id, "lockout_seconds": int(self.store.lockout.total_seconds())}
            )
            raise MfaLockedOut()

        logger.warning(
            f"Invalid {kind}",
            extra={"user_id": user_id, "remaining_attempts": remaining}
        )
        raise MfaInvalidCode(remaining, kind=kind)

    def _claim_challenge(self, temp_token: str) -> MfaChallenge:
        """Takes the challenge out of the store. Only one caller per temp token gets it."""
        challenge = self.store.consume_challenge(temp_token)
        if challenge is None:
            logger.warning("MFA temp token already used or expired")
            raise InvalidOrExpiredToken("Invalid or expired MFA session. Please login again.")
        return challenge

    def _succeed(self, challenge: MfaChallenge, method: str, client: ClientContext | None):
        self.store.clear_attempts(challenge.user_id)

        self.audit.log(
            "MFA_VERIFY_SUCCESS",
            user_id=challenge.user_id,
            details={"method": method},
            client=client
        )

    def verify_login(self, db: Session, temp_token: str, code: str,
                     client: ClientContext | None = None) -> MfaVerification:
        """
        Checks a 6-digit TOTP code against a pending challenge.

        Raises:
            InvalidOrExpiredToken: temp token unknown or older than its TTL
            MfaLockedOut: user is locked out, or this failure locked them out
            MfaInvalidCode: wrong code, with the attempts left
        """
        challenge, user = self._open_challenge(db, temp_token)

        if not self.verify_totp(user.mfa_secret, code):
            self._fail(user.id, "MFA code", client)

        challenge = self._claim_challenge(temp_token)
        self._succeed(challenge, "totp", client)
        return MfaVerification(user=user, remember_me=challenge.remember_me)

    def verify_backup_code_login(self, db: Session, temp_token: str, backup_code: str,
                                 client: ClientContext | None = None) -> MfaVerification:
        """
        Same as ``verify_login`` but spends one single-use backup code.

        Returns:
            MfaVerification with ``backup_codes_remaining`` set
        """
        challenge, user = self._open_challenge(db, temp_token)
        normalized = backup_code.strip().upper()

        unused = db.query(UserBackupCode).filter(
            UserBackupCode.user_id == user.id,
            UserBackupCode.used.is_(False)
        ).all()

        match = next((c for c in unused if verify_password(normalized, c.code_hash)), None)
        if match is None:
            self._fail(user.id, "backup code", client)

        challenge = self._claim_challenge(temp_token)

        spent = db.execute(
            update(UserBackupCode)
            .where(UserBackupCode.id == match.id, UserBackupCode.used.is_(False))
            .values(used=True, used_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        if spent != 1:
            # Spent by a concurrent login between lookup and update
            db.rollback()
            self._fail(user.id, "backup code", client)
        db.commit()

        remaining = db.query(UserBackupCode).filter(
            UserBackupCode.user_id == user.id,
            UserBackupCode.used.is_(False)
        ).count()
        if remaining <= 2:
            logger.warning(
                "User is running low on backup codes",
                extra={"user_id": user.id, "backup_codes_remaining": remaining}
            )

        self._succeed(challenge, "backup_code", client)
        return MfaVerification(user=user, remember_me=challenge.remember_me,
                               backup_codes_remaining=remaining)

    def setup(self, db: Session, user: User, client: ClientContext | None = None) -> MfaSetupResponse:
        """
        Starts enrolment: new TOTP secret and a fresh set of backup codes.

        MFA stays disabled until ``verify_setup`` confirms the authenticator
        works. The plain backup codes are only ever returned here.
        """
        if user.mfa_enabled:
            raise MfaAlreadyEnabled()

        secret = pyotp.random_base32(32)
        qr_code_url = pyotp.TOTP(secret).provisioning_uri(
            name=user.email,
            issuer_name=settings.MFA_ISSUER
        )
        codes = generate_backup_codes(settings.MFA_BACKUP_CODE_COUNT)

        db.query(UserBackupCode).filter(
            UserBackupCode.user_id == user.id
        ).delete(synchronize_session=False)

        user.mfa_secret = secret
        db.add(user)
        db.add_all([
            UserBackupCode(user_id=user.id, code_hash=get_password_hash(code))
            for code in codes
        ])
        db.commit()

        self.audit.log("MFA_SETUP_STARTED", user_id=user.id, client=client)
        logger.info("MFA setup started", extra={"user_id": user.id})

        return MfaSetupResponse(secret=secret, qr_code_url=qr_code_url, backup_codes=codes)

    def verify_setup(self, db: Session, user: User, code: str,
                     client: ClientContext | None = None) -> None:
        if user.mfa_enabled:
            raise MfaAlreadyEnabled()
        if not user.mfa_secret:
            raise MfaNotConfigured("MFA setup has not been started")

        if not self.verify_totp(user.mfa_secret, code):
            logger.warning("MFA setup verification failed", extra={"user_id": user.id})
            raise InvalidVerificationCode()

        user.mfa_enabled = True
        db.add(user)
        db.commit()

        self.audit.log("MFA_ENABLED", user_id=user.id, client=client)
        logger.info("MFA enabled", extra={"user_id": user.id})
