from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
import re


def _check_password_strength(value: str) -> str:
    """
    Password must be at least 8 characters and contain:
    - At least one letter
    - At least one digit
    """
    if len(value) < 8:
        raise ValueError('Password must be at least 8 characters')

    if not re.search(r'[A-Za-z]', value):
        raise ValueError('Password must contain at least one letter')

    if not re.search(r'\d', value):
        raise ValueError('Password must contain at least one digit')

    return value


def _check_not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError('Token cannot be empty')
    return value


class ClientContext(BaseModel):
    """Who is calling: used for device metadata on tokens and for audit entries."""
    user_agent: str | None = None
    ip_address: str | None = None
    request_id: str | None = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None = None
    role: str
    mfa_enabled: bool


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(TokenResponse):
    user: UserResponse
    message: str | None = None


class MfaRequiredResponse(BaseModel):
    mfa_required: bool = True
    temp_token: str
    message: str = "MFA verification required"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    remember_me: bool = False


class RefreshTokenRequest(BaseModel):
    refresh_token: str

    @field_validator('refresh_token')
    @classmethod
    def validate_token(cls, value):
        return _check_not_blank(value)


class LogoutRequest(RefreshTokenRequest):
    pass


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str

    @field_validator('token')
    @classmethod
    def validate_token(cls, value):
        return _check_not_blank(value)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, value):
        return _check_password_strength(value)


class MessageResponse(BaseModel):
    message: str


class MfaLoginRequest(BaseModel):
    temp_token: str
    code: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, value):
        if len(value) != 6 or not value.isdigit():
            raise ValueError('must be a 6-digit code')
        return value


class MfaBackupCodeLoginRequest(BaseModel):
    temp_token: str
    backup_code: str

    @field_validator('backup_code')
    @classmethod
    def validate_backup_code(cls, value):
        value = value.strip().upper()
        if len(value) != 8 or not value.isalnum():
            raise ValueError('must be an 8-character backup code')
        return value


class MfaVerifySetupRequest(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, value):
        if len(value) != 6 or not value.isdigit():
            raise ValueError('must be a 6-digit code')
        return value


class MfaSetupResponse(BaseModel):
    secret: str
    qr_code_url: str
    backup_codes: list[str]


class SessionItem(BaseModel):
    id: int
    device: str
    browser: str
    ip: str
    location: str | None = None
    last_activity: datetime
    created_at: datetime
    current: bool


class SessionsListResponse(BaseModel):
    sessions: list[SessionItem]


class TerminateAllSessionsRequest(BaseModel):
    refresh_token: str | None = None
    keep_current: bool = False


class SessionsTerminatedResponse(BaseModel):
    message: str
    count: int


class CleanupResponse(BaseModel):
    message: str
    deleted: int
