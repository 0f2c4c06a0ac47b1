from models.users import User, UserStatus
from models.refresh_tokens import RefreshToken, TokenPurpose, PASSWORD_RESET_SENTINEL
from models.backup_codes import UserBackupCode

__all__ = ["User", "UserStatus", "RefreshToken", "TokenPurpose", "PASSWORD_RESET_SENTINEL", "UserBackupCode"]
