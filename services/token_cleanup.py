from datetime import timedelta
from typing import Callable
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.config import settings
from services.mfa_service import MfaStateStore
from services.token_service import RefreshTokenStore
from utils.logger import get_logger
from utils.tokens import utcnow

logger = get_logger(__name__)

CLEANUP_JOB_ID = "token_cleanup"


class TokenCleanupScheduler:
    """
    Periodically deletes expired refresh/reset token rows and evicts
    expired MFA state.

    Runs on an APScheduler background thread with its own database session
    per run. Not started when ENV is "testing"; ``run_cleanup`` can always
    be triggered by hand.
    """

    def __init__(self, session_factory: Callable[[], Session],
                 mfa_store: MfaStateStore | None = None,
                 interval_seconds: int | None = None,
                 initial_delay_seconds: int | None = None):
        self.session_factory = session_factory
        self.mfa_store = mfa_store
        self.interval_seconds = interval_seconds or settings.TOKEN_CLEANUP_INTERVAL_SECONDS
        self.initial_delay_seconds = (
            settings.TOKEN_CLEANUP_INITIAL_DELAY_SECONDS
            if initial_delay_seconds is None else initial_delay_seconds
        )
        self.scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def run_cleanup(self, db: Session | None = None) -> int:
        """
        Deletes every token row past its expiry.

        Args:
            db: Session to use (a manual trigger passes the request's session);
                scheduled runs open and close their own

        Returns:
            Number of rows deleted

        Raises:
            SQLAlchemyError: storage failure, after rollback
        """
        owns_session = db is None
        if owns_session:
            db = self.session_factory()
        try:
            deleted = RefreshTokenStore.delete_expired(db)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            if owns_session:
                db.close()

        pruned = self.mfa_store.prune() if self.mfa_store is not None else 0

        logger.info(
            f"Token cleanup removed {deleted} expired tokens",
            extra={"deleted": deleted, "mfa_entries_pruned": pruned}
        )
        return deleted

    def _scheduled_run(self) -> None:
        try:
            self.run_cleanup()
        except SQLAlchemyError as e:
            logger.error(
                f"Scheduled token cleanup failed: {str(e)}",
                extra={"error_type": type(e).__name__},
                exc_info=True
            )

    def start(self) -> None:
        if settings.ENV == "testing":
            logger.info("Token cleanup scheduler disabled in testing")
            return
        if self.running:
            return

        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._scheduled_run,
            "interval",
            seconds=self.interval_seconds,
            id=CLEANUP_JOB_ID,
            next_run_time=utcnow() + timedelta(seconds=self.initial_delay_seconds),
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()

        logger.info(
            "Token cleanup scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    def stop(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Token cleanup scheduler stopped")
