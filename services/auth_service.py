from fastapi import BackgroundTasks
from sqlalchemy.orm import Session
from models.users import User, UserStatus
from schemas.auth_schemas import (
    ClientContext, AuthResponse, MfaRequiredResponse, TokenResponse, UserResponse, SessionItem
)
from services.access_tokens import AccessTokenIssuer
from services.audit_service import AuditService
from services.mfa_service import MfaService
from services.password_service import PasswordResetService
from services.session_service import SessionRegistry
from services.token_service import RefreshTokenStore, TokenStatus
from services.user_service import UserService
from utils.errors import (
    InvalidCredentials, AccountNotActive, EmailNotVerified,
    InvalidOrExpiredToken, SecurityViolation, MfaLockedOut
)
from utils.hashing import verify_password
from utils.logger import get_logger

logger = get_logger(__name__)


class AuthService:
    """
    Composes credential checks, token issuance, rotation with reuse
    detection, the MFA step, sessions and password reset into the public
    authentication flows. Every security-relevant outcome is audited.
    """

    def __init__(self, mfa: MfaService, audit: AuditService):
        self.mfa = mfa
        self.audit = audit

    def authenticate_user(self, db: Session, email: str, password: str,
                          client: ClientContext | None = None) -> User:
        user = UserService.find_by_email(db, email)

        if not user:
            logger.warning(
                "Login failed - user not found",
                extra={"email": email}
            )
            self.audit.log("USER_LOGIN_FAILED", details={"email": email, "reason": "unknown_email"}, client=client)
            raise InvalidCredentials()

        if user.status == UserStatus.PENDING:
            logger.warning(
                "Login attempt with unverified email",
                extra={"user_id": user.id, "email": email}
            )
            self.audit.log("USER_LOGIN_FAILED", user_id=user.id, details={"reason": "email_not_verified"}, client=client)
            raise EmailNotVerified()

        if not user.is_active:
            logger.warning(
                "Login failed - inactive account",
                extra={"user_id": user.id, "email": email}
            )
            self.audit.log("USER_LOGIN_FAILED", user_id=user.id, details={"reason": "inactive"}, client=client)
            raise AccountNotActive()

        if not verify_password(password, user.password_hash):
            logger.warning(
                "Login failed - invalid password",
                extra={"user_id": user.id, "email": email}
            )
            self.audit.log("USER_LOGIN_FAILED", user_id=user.id, details={"reason": "invalid_password"}, client=client)
            raise InvalidCredentials()

        logger.debug(
            "User authenticated successfully",
            extra={"user_id": user.id, "email": email}
        )
        return user

    def _issue_tokens(self, db: Session, user: User, remember_me: bool,
                      client: ClientContext | None) -> TokenResponse:
        refresh_token = RefreshTokenStore.issue(db, user.id, client, remember_me=remember_me)
        return TokenResponse(
            access_token=AccessTokenIssuer.issue(user.id, user.email),
            refresh_token=refresh_token,
            expires_in=AccessTokenIssuer.expires_in_seconds()
        )

    def _complete_login(self, db: Session, user: User, remember_me: bool,
                        client: ClientContext | None, message: str | None = None) -> AuthResponse:
        tokens = self._issue_tokens(db, user, remember_me, client)
        UserService.update_last_login(db, user)

        self.audit.log(
            "USER_LOGIN",
            user_id=user.id,
            details={"remember_me": remember_me, "mfa": user.mfa_enabled},
            client=client
        )
        logger.info(
            "User logged in successfully",
            extra={"user_id": user.id, "email": user.email, "remember_me": remember_me}
        )

        return AuthResponse(
            **tokens.model_dump(),
            user=UserResponse.model_validate(user),
            message=message
        )

    def login(self, db: Session, email: str, password: str, remember_me: bool = False,
              client: ClientContext | None = None) -> AuthResponse | MfaRequiredResponse:
        """
        Password login.

        Users with MFA enabled get a short-lived temp token instead of
        tokens; no refresh token exists until the second factor succeeds.
        """
        user = self.authenticate_user(db, email, password, client)

        if user.mfa_enabled and user.mfa_secret:
            if self.mfa.is_locked_out(user.id):
                logger.warning("Login refused - MFA lockout active", extra={"user_id": user.id})
                raise MfaLockedOut()

            temp_token = self.mfa.issue_challenge(user, remember_me)
            self.audit.log("MFA_CHALLENGE_ISSUED", user_id=user.id, client=client)
            logger.info("MFA challenge issued", extra={"user_id": user.id})
            return MfaRequiredResponse(temp_token=temp_token)

        return self._complete_login(db, user, remember_me, client)

    def complete_mfa(self, db: Session, temp_token: str, code: str | None = None,
                     backup_code: str | None = None,
                     client: ClientContext | None = None) -> AuthResponse:
        if backup_code:
            result = self.mfa.verify_backup_code_login(db, temp_token, backup_code, client)
            message = f"Login successful. {result.backup_codes_remaining} backup codes remaining."
        else:
            result = self.mfa.verify_login(db, temp_token, code or "", client)
            message = None

        return self._complete_login(db, result.user, result.remember_me, client, message)

    def refresh(self, db: Session, refresh_token: str,
                client: ClientContext | None = None) -> TokenResponse:
        """
        Rotates a refresh token.

        A secret that was already revoked means it leaked or was replayed:
        every token the owner holds is revoked before the request fails.

        Raises:
            SecurityViolation: reuse detected, all sessions revoked
            InvalidOrExpiredToken: unknown, expired, or lost a concurrent rotation
            AccountNotActive: owner is no longer active
        """
        outcome = RefreshTokenStore.validate(db, refresh_token)

        if outcome.status == TokenStatus.REUSED:
            user_id = outcome.record.user_id
            revoked = RefreshTokenStore.revoke_all(db, user_id)

            self.audit.log(
                "TOKEN_REUSE_DETECTED",
                user_id=user_id,
                details={"token_id": outcome.record.id, "revoked_tokens": revoked},
                client=client
            )
            logger.warning(
                "Refresh token reuse detected - all sessions revoked",
                extra={"user_id": user_id, "revoked_tokens": revoked}
            )
            raise SecurityViolation()

        if not outcome.is_valid:
            logger.warning(
                "Refresh failed - invalid or expired token",
                extra={"outcome": outcome.status.value}
            )
            raise InvalidOrExpiredToken("Invalid or expired refresh token")

        user = UserService.find_by_id(db, outcome.record.user_id)
        if user is None or not user.is_active:
            logger.warning(
                "Refresh failed - inactive account",
                extra={"user_id": outcome.record.user_id}
            )
            raise AccountNotActive()

        new_refresh_token = RefreshTokenStore.rotate(db, outcome.record, client)
        if new_refresh_token is None:
            raise InvalidOrExpiredToken("Invalid or expired refresh token")

        self.audit.log("TOKEN_REFRESHED", user_id=user.id, client=client)
        logger.info("Access token refreshed", extra={"user_id": user.id})

        return TokenResponse(
            access_token=AccessTokenIssuer.issue(user.id, user.email),
            refresh_token=new_refresh_token,
            expires_in=AccessTokenIssuer.expires_in_seconds()
        )

    def logout(self, db: Session, refresh_token: str, user_id: int,
               client: ClientContext | None = None) -> None:
        """Revokes the caller's refresh token. Unknown or foreign tokens are ignored."""
        revoked = RefreshTokenStore.revoke(db, refresh_token, user_id)

        self.audit.log("USER_LOGOUT", user_id=user_id, details={"revoked": revoked}, client=client)
        logger.info("User logged out", extra={"user_id": user_id, "revoked": revoked})

    def list_sessions(self, db: Session, user_id: int, current_hash: str | None = None) -> list[SessionItem]:
        return SessionRegistry.list_sessions(db, user_id, current_hash)

    def terminate_session(self, db: Session, session_id: int, user_id: int,
                          client: ClientContext | None = None) -> None:
        SessionRegistry.terminate_session(db, session_id, user_id)
        self.audit.log("SESSION_TERMINATED", user_id=user_id, details={"session_id": session_id}, client=client)

    def terminate_all_sessions(self, db: Session, user_id: int, except_hash: str | None = None,
                               client: ClientContext | None = None) -> int:
        count = SessionRegistry.terminate_all_sessions(db, user_id, except_hash)
        self.audit.log(
            "ALL_SESSIONS_TERMINATED",
            user_id=user_id,
            details={"count": count, "kept_current": bool(except_hash)},
            client=client
        )
        return count

    def invalidate_user_tokens(self, db: Session, user_id: int,
                               client: ClientContext | None = None) -> int:
        """Revokes every token of a user, e.g. after a role or status change."""
        count = RefreshTokenStore.revoke_all(db, user_id)
        self.audit.log("USER_TOKENS_INVALIDATED", user_id=user_id, details={"count": count}, client=client)
        logger.info("User tokens invalidated", extra={"user_id": user_id, "revoked_tokens": count})
        return count

    def request_password_reset(self, db: Session, email: str, bg: BackgroundTasks | None = None,
                               client: ClientContext | None = None) -> None:
        user = PasswordResetService.request_reset(db, email, bg)
        if user is not None:
            self.audit.log("PASSWORD_RESET_REQUESTED", user_id=user.id, client=client)

    def reset_password(self, db: Session, token: str, new_password: str,
                       client: ClientContext | None = None) -> None:
        user_id = PasswordResetService.reset_password(db, token, new_password)
        self.audit.log("PASSWORD_RESET_COMPLETED", user_id=user_id, client=client)
