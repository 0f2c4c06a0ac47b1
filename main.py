# Essential imports
import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from routers import auth, mfa, admin
from contextlib import asynccontextmanager

# Import all models for SQLAlchemy relationship resolution
import models  # noqa: F401

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware.rate_limiter import limiter

# Logging imports
from core.logging_config import setup_logging
from utils.logger import get_logger
from middleware import RequestIDMiddleware
from core.config import settings
from core.database import SessionLocal
from fastapi.responses import JSONResponse

# Service wiring
from services.audit_service import AuditService
from services.auth_service import AuthService
from services.mfa_service import MfaStateStore, MfaService
from services.token_cleanup import TokenCleanupScheduler

# CORS imports
from fastapi.middleware.cors import CORSMiddleware

# Initialize logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


def build_services(app: FastAPI) -> None:
    """One set of long-lived services per app; MFA state lives in its store."""
    audit_service = AuditService()
    mfa_store = MfaStateStore()
    mfa_service = MfaService(mfa_store, audit_service)

    app.state.audit_service = audit_service
    app.state.mfa_store = mfa_store
    app.state.mfa_service = mfa_service
    app.state.auth_service = AuthService(mfa_service, audit_service)
    app.state.token_cleanup = TokenCleanupScheduler(SessionLocal, mfa_store=mfa_store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.token_cleanup.start()
    logger.info("Application startup complete", extra={"event": "startup"})
    yield
    app.state.token_cleanup.stop()
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Admin Auth API",
    description="Authentication, session and MFA backend for the admin application",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

build_services(app)


# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Access log line with status and duration for every request."""
    start_time = time.time()

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000
    client_ip = request.client.host if request.client else "unknown"

    logger.info(
        f'{client_ip} - "{request.method} {request.url.path} HTTP/1.1" {response.status_code}',
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration, 2),
            "client_ip": client_ip
            # request_id is stamped on the record by RequestIDMiddleware
        }
    )

    return response


app.add_middleware(RequestIDMiddleware)


@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {
        "status": "Healthy",
        "token_cleanup_running": app.state.token_cleanup.running
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Last resort for unhandled errors: full stack trace in the logs, a
    generic 500 for the client.
    """
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise

    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


app.include_router(auth.router)
app.include_router(mfa.router)
app.include_router(admin.router)


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
