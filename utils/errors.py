"""Authentication error taxonomy.

Raised from the service layer and rendered by FastAPI like any other
HTTPException. Messages touching account existence stay generic.
"""
from fastapi import HTTPException
from starlette import status


class InvalidCredentials(HTTPException):
    def __init__(self, detail: str = "Invalid email or password"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AccountNotActive(HTTPException):
    def __init__(self, detail: str = "Account is not active"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class EmailNotVerified(AccountNotActive):
    def __init__(self, detail: str = "Email not verified. Please check your inbox."):
        super().__init__(detail=detail)


class InvalidOrExpiredToken(HTTPException):
    def __init__(self, detail: str = "Invalid or expired token", status_code: int = status.HTTP_401_UNAUTHORIZED):
        super().__init__(status_code=status_code, detail=detail)


class SecurityViolation(HTTPException):
    def __init__(self, detail: str = "Security violation: Token reuse detected. All sessions invalidated."):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class MfaLockedOut(HTTPException):
    def __init__(self, detail: str = "Account temporarily locked due to too many failed MFA attempts"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class MfaInvalidCode(HTTPException):
    def __init__(self, remaining_attempts: int, kind: str = "MFA code"):
        self.remaining_attempts = remaining_attempts
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {kind}. {remaining_attempts} attempts remaining."
        )


class MfaNotConfigured(HTTPException):
    def __init__(self, detail: str = "MFA is not configured for this user"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class MfaAlreadyEnabled(HTTPException):
    def __init__(self, detail: str = "MFA is already enabled"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class SessionNotFound(HTTPException):
    def __init__(self, detail: str = "Session not found, already terminated, or does not belong to you"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials."):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidVerificationCode(HTTPException):
    def __init__(self, detail: str = "Invalid verification code"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
