from fastapi import APIRouter, Request, BackgroundTasks
from utils.deps import (
    db_dependency, user_dependency, client_dependency,
    auth_service_dependency, current_token_hash_dependency
)
from schemas.auth_schemas import (
    LoginRequest, AuthResponse, MfaRequiredResponse, TokenResponse, RefreshTokenRequest,
    LogoutRequest, ForgotPasswordRequest, ResetPasswordRequest, MessageResponse,
    SessionsListResponse, TerminateAllSessionsRequest, SessionsTerminatedResponse
)
from services.password_service import RESET_REQUESTED_MESSAGE, RESET_COMPLETED_MESSAGE
from middleware.rate_limiter import limiter
from utils.tokens import hash_token


router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)


@router.post("/login", response_model=AuthResponse | MfaRequiredResponse)
@limiter.limit("5/minute")
def login(request: Request, body: LoginRequest, db: db_dependency,
          client: client_dependency, auth: auth_service_dependency):
    """
    Email/password login.

    Returns tokens, or ``mfa_required`` with a temp token when the account
    has MFA enabled (finish with /auth/mfa/verify-login).
    """
    return auth.login(db, body.email, body.password, body.remember_me, client)


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit("10/minute")
def refresh_token(request: Request, body: RefreshTokenRequest, db: db_dependency,
                  client: client_dependency, auth: auth_service_dependency):
    """
    Exchange a refresh token for a new access/refresh pair (rotation).
    Presenting an already-rotated token revokes every session of its owner.
    """
    return auth.refresh(db, body.refresh_token, client)


@router.post("/logout", response_model=MessageResponse)
@limiter.limit("10/minute")
def logout(request: Request, body: LogoutRequest, user: user_dependency, db: db_dependency,
           client: client_dependency, auth: auth_service_dependency):
    auth.logout(db, body.refresh_token, user.id, client)
    return {"message": "Logged out successfully"}


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("3/minute")
def forgot_password(request: Request, body: ForgotPasswordRequest, db: db_dependency,
                    bg: BackgroundTasks, client: client_dependency, auth: auth_service_dependency):
    """
    Request a password reset link by email. The answer is the same whether
    or not the address belongs to an account.
    """
    auth.request_password_reset(db, body.email, bg, client)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
def reset_password(request: Request, body: ResetPasswordRequest, db: db_dependency,
                   client: client_dependency, auth: auth_service_dependency):
    auth.reset_password(db, body.token, body.new_password, client)
    return {"message": RESET_COMPLETED_MESSAGE}


@router.get("/sessions", response_model=SessionsListResponse)
@limiter.limit("30/minute")
def list_sessions(request: Request, user: user_dependency, db: db_dependency,
                  current_hash: current_token_hash_dependency, auth: auth_service_dependency):
    """
    Active sessions of the current user. Send the refresh token in
    X-Refresh-Token to have the calling session marked ``current``.
    """
    return {"sessions": auth.list_sessions(db, user.id, current_hash)}


@router.delete("/sessions/all", response_model=SessionsTerminatedResponse)
@limiter.limit("5/minute")
def terminate_all_sessions(request: Request, user: user_dependency, db: db_dependency,
                           client: client_dependency, auth: auth_service_dependency,
                           current_hash: current_token_hash_dependency,
                           body: TerminateAllSessionsRequest | None = None):
    except_hash = None
    if body is not None and body.keep_current:
        except_hash = hash_token(body.refresh_token) if body.refresh_token else current_hash

    count = auth.terminate_all_sessions(db, user.id, except_hash, client)
    return {"message": f"{count} session(s) terminated", "count": count}


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
@limiter.limit("10/minute")
def terminate_session(request: Request, session_id: int, user: user_dependency, db: db_dependency,
                      client: client_dependency, auth: auth_service_dependency):
    auth.terminate_session(db, session_id, user.id, client)
    return {"message": "Session terminated successfully"}
