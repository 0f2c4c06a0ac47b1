from sqlalchemy.orm import Session
from models.refresh_tokens import TokenPurpose
from schemas.auth_schemas import SessionItem
from services.token_service import RefreshTokenStore
from utils.errors import SessionNotFound
from utils.logger import get_logger
from utils.tokens import as_utc
from utils.user_agent import parse_browser, parse_device

logger = get_logger(__name__)


class SessionRegistry:
    """
    The user's view of their login sessions.

    A session is an active refresh token record; password reset tokens live
    in the same table but are never listed or bulk-terminated here.
    """

    @staticmethod
    def list_sessions(db: Session, user_id: int, current_hash: str | None = None) -> list[SessionItem]:
        records = RefreshTokenStore.active_records(db, user_id, TokenPurpose.SESSION)

        return [
            SessionItem(
                id=record.id,
                device=parse_device(record.device_info),
                browser=record.browser or parse_browser(record.device_info),
                ip=record.ip_address or "Unknown",
                location=record.location,
                last_activity=as_utc(record.last_used_at or record.created_at),
                created_at=as_utc(record.created_at),
                current=bool(current_hash) and record.token_hash == current_hash
            )
            for record in records
        ]

    @staticmethod
    def terminate_session(db: Session, session_id: int, user_id: int) -> None:
        """
        Revokes one session owned by ``user_id``.

        Raises:
            SessionNotFound: unknown id, someone else's session, or already invalid
        """
        if not RefreshTokenStore.revoke_one(db, session_id, user_id, TokenPurpose.SESSION):
            logger.warning(
                "Session termination refused",
                extra={"user_id": user_id, "session_id": session_id}
            )
            raise SessionNotFound()

        logger.info(
            "Session terminated",
            extra={"user_id": user_id, "session_id": session_id}
        )

    @staticmethod
    def terminate_all_sessions(db: Session, user_id: int, except_hash: str | None = None) -> int:
        """
        Revokes every session of the user except the one with ``except_hash``.

        Returns:
            Number of sessions terminated
        """
        count = RefreshTokenStore.revoke_all(
            db, user_id, purpose=TokenPurpose.SESSION, except_hash=except_hash
        )

        logger.info(
            f"All sessions ({count}) terminated",
            extra={"user_id": user_id, "preserved_current": bool(except_hash)}
        )
        return count
