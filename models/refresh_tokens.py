import enum
from core.database import Base
from sqlalchemy import Column, Boolean, DateTime, String, Integer, ForeignKey, or_
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin

# Storage encoding of TokenPurpose.PASSWORD_RESET in device_info
PASSWORD_RESET_SENTINEL = "PASSWORD_RESET"


class TokenPurpose(str, enum.Enum):
    SESSION = "session"
    PASSWORD_RESET = "password_reset"


class RefreshToken(Base, CreatedAtMixin):
    """
    Persisted opaque token record.

    One table backs two purposes: login sessions (refresh tokens) and
    single-use password reset tokens. Only the sha256 of the secret is
    stored. ``revoked_at`` is set once and never cleared; rows are deleted
    only by the expired-token sweep, so a rotated token stays recognisable
    as reused until it expires.
    """
    __tablename__ = "refresh_tokens"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    #relationships
    user = relationship("User", back_populates="refresh_tokens")

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    # Client metadata
    device_info = Column(String(512), nullable=True)
    browser = Column(String(64), nullable=True)
    ip_address = Column(String(45), nullable=True)
    location = Column(String(255), nullable=True)
    fingerprint = Column(String(64), nullable=True)

    remember_me = Column(Boolean, default=False, nullable=False)

    @property
    def purpose(self) -> TokenPurpose:
        if self.device_info == PASSWORD_RESET_SENTINEL:
            return TokenPurpose.PASSWORD_RESET
        return TokenPurpose.SESSION

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @staticmethod
    def purpose_filter(purpose: TokenPurpose):
        """SQL criterion selecting rows of the given purpose."""
        if purpose == TokenPurpose.PASSWORD_RESET:
            return RefreshToken.device_info == PASSWORD_RESET_SENTINEL
        return or_(
            RefreshToken.device_info.is_(None),
            RefreshToken.device_info != PASSWORD_RESET_SENTINEL
        )
