from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean, DateTime)
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin, UpdatedAtMixin


class UserStatus:
    ACTIVE = "active"
    PENDING = "pending"  # registered, email not verified yet
    INACTIVE = "inactive"


class User(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "users"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", passive_deletes=True)
    backup_codes = relationship("UserBackupCode", back_populates="user", passive_deletes=True)

    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String)
    password_hash = Column(String, nullable=False)
    status = Column(String(20), default=UserStatus.ACTIVE, nullable=False)
    role = Column(String, default="user", nullable=False)
    # MFA fields
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    mfa_secret = Column(String(64), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE
