from core.database import SessionLocal
from typing import Annotated
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from middleware.request_id import get_request_id
from models.users import User
from schemas.auth_schemas import ClientContext
from services.access_tokens import AccessTokenIssuer
from services.auth_service import AuthService
from services.mfa_service import MfaService
from services.token_cleanup import TokenCleanupScheduler
from services.token_service import RefreshTokenStore
from services.user_service import UserService
from utils.errors import Unauthorized, AccountNotActive, Forbidden
from utils.tokens import hash_token

REFRESH_TOKEN_HEADER = "X-Refresh-Token"

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


def get_client_context(request: Request) -> ClientContext:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.headers.get("x-real-ip") or (request.client.host if request.client else None)

    return ClientContext(
        user_agent=request.headers.get("user-agent"),
        ip_address=ip_address,
        request_id=get_request_id(request)
    )

client_dependency = Annotated[ClientContext, Depends(get_client_context)]


def get_current_user(
    db: db_dependency,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]
) -> User:
    payload = AccessTokenIssuer.decode(credentials.credentials if credentials else None)
    if payload is None:
        raise Unauthorized()

    user = UserService.find_by_id(db, payload.user_id)
    if user is None:
        raise Unauthorized()
    if not user.is_active:
        raise AccountNotActive()

    return user

user_dependency = Annotated[User, Depends(get_current_user)]


def require_admin(user: user_dependency) -> User:
    if user.role != "admin":
        raise Forbidden()
    return user

admin_dependency = Annotated[User, Depends(require_admin)]


def get_current_token_hash(request: Request, db: db_dependency, user: user_dependency) -> str | None:
    """
    Hash of the refresh token sent in X-Refresh-Token, if it is a live
    session of the calling user; marks that session as used.
    """
    refresh_token = request.headers.get(REFRESH_TOKEN_HEADER)
    if not refresh_token:
        return None

    token_hash = hash_token(refresh_token)
    if not RefreshTokenStore.touch(db, token_hash, user.id):
        return None
    return token_hash

current_token_hash_dependency = Annotated[str | None, Depends(get_current_token_hash)]


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service

auth_service_dependency = Annotated[AuthService, Depends(get_auth_service)]


def get_mfa_service(request: Request) -> MfaService:
    return request.app.state.mfa_service

mfa_service_dependency = Annotated[MfaService, Depends(get_mfa_service)]


def get_cleanup_scheduler(request: Request) -> TokenCleanupScheduler:
    return request.app.state.token_cleanup

cleanup_dependency = Annotated[TokenCleanupScheduler, Depends(get_cleanup_scheduler)]
