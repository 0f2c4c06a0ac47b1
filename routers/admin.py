from fastapi import APIRouter, Request
from utils.deps import db_dependency, admin_dependency, cleanup_dependency
from schemas.auth_schemas import CleanupResponse
from middleware.rate_limiter import limiter
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/admin",
    tags=["admin"]
)


@router.post("/tokens/cleanup", response_model=CleanupResponse)
@limiter.limit("5/minute")
def cleanup_tokens(request: Request, admin: admin_dependency, db: db_dependency,
                   cleanup: cleanup_dependency):
    """Delete expired refresh and reset tokens now instead of waiting for the next scheduled run."""
    deleted = cleanup.run_cleanup(db)

    logger.info(
        "Manual token cleanup triggered",
        extra={"user_id": admin.id, "deleted": deleted}
    )
    return {"message": "Token cleanup completed", "deleted": deleted}
