from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", extra="ignore")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./admin.db"
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Token lifetimes
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_HOURS_SHORT: int = 24
    REFRESH_TOKEN_EXPIRE_DAYS_LONG: int = 30
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Password hashing cost factor
    BCRYPT_ROUNDS: int = 12

    # MFA
    MFA_ISSUER: str = "AdminApp"
    MFA_TEMP_TOKEN_EXPIRE_SECONDS: int = 300
    MFA_MAX_ATTEMPTS: int = 3
    MFA_LOCKOUT_SECONDS: int = 900
    MFA_BACKUP_CODE_COUNT: int = 10

    # Expired refresh token sweep
    TOKEN_CLEANUP_INTERVAL_SECONDS: int = 3600
    TOKEN_CLEANUP_INITIAL_DELAY_SECONDS: int = 10

    FRONTEND_URL: str = "http://localhost:3000"

    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_FROM: str = "no-reply@localhost"
    MAIL_SERVER: str = "localhost"
    MAIL_PORT: int = 587

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]


settings = Settings()
