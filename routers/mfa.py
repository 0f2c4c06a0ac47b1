from fastapi import APIRouter, Request
from utils.deps import (
    db_dependency, user_dependency, client_dependency,
    auth_service_dependency, mfa_service_dependency
)
from schemas.auth_schemas import (
    AuthResponse, MessageResponse, MfaLoginRequest, MfaBackupCodeLoginRequest,
    MfaVerifySetupRequest, MfaSetupResponse
)
from middleware.rate_limiter import limiter


router = APIRouter(
    prefix="/auth/mfa",
    tags=["mfa"]
)


@router.post("/setup", response_model=MfaSetupResponse)
@limiter.limit("5/minute")
def setup_mfa(request: Request, user: user_dependency, db: db_dependency,
              client: client_dependency, mfa: mfa_service_dependency):
    """
    Start MFA enrolment. Returns the TOTP secret, an otpauth:// URI for QR
    codes and the backup codes (shown only this once).
    """
    return mfa.setup(db, user, client)


@router.post("/verify-setup", response_model=MessageResponse)
@limiter.limit("5/minute")
def verify_mfa_setup(request: Request, body: MfaVerifySetupRequest, user: user_dependency,
                     db: db_dependency, client: client_dependency, mfa: mfa_service_dependency):
    mfa.verify_setup(db, user, body.code, client)
    return {"message": "MFA enabled successfully"}


@router.post("/verify-login", response_model=AuthResponse)
@limiter.limit("10/minute")
def verify_mfa_login(request: Request, body: MfaLoginRequest, db: db_dependency,
                     client: client_dependency, auth: auth_service_dependency):
    return auth.complete_mfa(db, body.temp_token, code=body.code, client=client)


@router.post("/verify-backup-code", response_model=AuthResponse)
@limiter.limit("5/minute")
def verify_mfa_backup_code(request: Request, body: MfaBackupCodeLoginRequest, db: db_dependency,
                           client: client_dependency, auth: auth_service_dependency):
    return auth.complete_mfa(db, body.temp_token, backup_code=body.backup_code, client=client)
