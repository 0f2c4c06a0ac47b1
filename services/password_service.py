from datetime import timedelta
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session
from starlette import status
from core.config import settings
from models.refresh_tokens import TokenPurpose, RefreshToken
from models.users import User
from services.email_service import send_email_safely, build_password_reset_email
from services.token_service import RefreshTokenStore, TokenStatus
from services.user_service import UserService
from utils.errors import InvalidOrExpiredToken
from utils.logger import get_logger
from utils.tokens import hash_token

logger = get_logger(__name__)

# Same text whether or not the account exists
RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link has been sent."
RESET_COMPLETED_MESSAGE = "Password has been reset successfully. Please login again."


class PasswordResetService:
    """
    Single-use password reset tokens.

    Reset tokens share the refresh token table (purpose PASSWORD_RESET), have
    a fixed lifetime independent of remember-me, and are only ever accepted
    by the reset flow; a session refresh with one fails as invalid.
    """

    @staticmethod
    def issue_token(db: Session, user_id: int) -> str:
        return RefreshTokenStore.issue(
            db,
            user_id,
            expires_delta=timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
            remember_me=False,
            purpose=TokenPurpose.PASSWORD_RESET
        )

    @staticmethod
    def validate_token(db: Session, token: str) -> RefreshToken:
        outcome = RefreshTokenStore.validate(db, token, TokenPurpose.PASSWORD_RESET)
        if outcome.status != TokenStatus.VALID:
            logger.warning(
                "Password reset failed - invalid or expired token",
                extra={"outcome": outcome.status.value}
            )
            raise InvalidOrExpiredToken(
                "Invalid or expired reset token",
                status_code=status.HTTP_400_BAD_REQUEST
            )
        return outcome.record

    @staticmethod
    def request_reset(db: Session, email: str, bg: BackgroundTasks | None = None) -> User | None:
        """
        Issues a reset token and queues the email, only if the account exists.

        The caller always answers with RESET_REQUESTED_MESSAGE so responses
        never reveal whether the email is registered.

        Returns:
            The user the token was issued for, or None
        """
        user = UserService.find_by_email(db, email)

        if not user:
            logger.info(
                "Password reset requested for non-existent email",
                extra={"email": email}
            )
            return None

        reset_token = PasswordResetService.issue_token(db, user.id)
        reset_url = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"
        subject, body = build_password_reset_email(
            user.name or user.email.split("@")[0],
            reset_url,
            settings.PASSWORD_RESET_EXPIRE_MINUTES
        )

        if bg is not None:
            bg.add_task(send_email_safely, to_email=user.email, subject=subject, body=body)
        else:
            send_email_safely(to_email=user.email, subject=subject, body=body)

        logger.info(
            "Password reset email queued",
            extra={"user_id": user.id, "email": user.email}
        )
        if settings.ENV == "development":
            logger.debug("Password reset token (DEV ONLY)", extra={"reset_url": reset_url})

        return user

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> int:
        """
        Replaces the password, burns the reset token and revokes every
        token the user holds, forcing a fresh login everywhere.

        Returns:
            The id of the user whose password changed
        """
        record = PasswordResetService.validate_token(db, token)
        user_id = record.user_id

        user = UserService.find_by_id(db, user_id)
        if user is None:
            raise InvalidOrExpiredToken(
                "Invalid or expired reset token",
                status_code=status.HTTP_400_BAD_REQUEST
            )

        # Burn the token first; only the request that revokes it may change the password
        if not RefreshTokenStore.revoke_by_hash(db, hash_token(token)):
            logger.warning(
                "Password reset failed - token already used",
                extra={"user_id": user_id}
            )
            raise InvalidOrExpiredToken(
                "Invalid or expired reset token",
                status_code=status.HTTP_400_BAD_REQUEST
            )

        UserService.update_password(db, user, new_password)
        revoked = RefreshTokenStore.revoke_all(db, user_id)

        logger.info(
            "Password reset completed",
            extra={"user_id": user_id, "revoked_tokens": revoked}
        )
        return user_id
