import os

# Must be set before any application module reads settings
os.environ["ENV"] = "testing"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-test-suite-only")
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["BCRYPT_ROUNDS"] = "4"

import pyotp
import pytest
from datetime import timedelta
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from main import app, build_services
from core.database import Base
from models.users import User, UserStatus
from services.audit_service import AuditService
from services.mfa_service import MfaStateStore, MfaService
from utils.deps import get_db
from utils.hashing import get_password_hash

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

TEST_PASSWORD = "TestPassword123!"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


class AuditRecorder:
    """Audit sink that keeps entries in memory."""

    def __init__(self):
        self.entries: list[dict] = []

    def __call__(self, entry: dict) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [entry["action"] for entry in self.entries]


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Uses SYNC SQLAlchemy to match the service layer.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def audit_recorder() -> AuditRecorder:
    return AuditRecorder()


@pytest.fixture
def audit(audit_recorder) -> AuditService:
    return AuditService(sink=audit_recorder)


@pytest.fixture
def mfa_store() -> MfaStateStore:
    return MfaStateStore()


@pytest.fixture
def mfa_service(mfa_store, audit) -> MfaService:
    return MfaService(mfa_store, audit)


@pytest.fixture
async def client(session: Session, audit_recorder: AuditRecorder):
    """
    Yields an HTTP client that interacts with the app using the test database.
    The client is async (for FastAPI), but the DB session is sync.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db

    # Fresh MFA state per test, audit entries captured in memory
    build_services(app)
    app.state.audit_service.sink = audit_recorder

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def create_user(session: Session, email: str, password: str = TEST_PASSWORD,
                status: str = UserStatus.ACTIVE, role: str = "user", **fields) -> User:
    user = User(
        email=email,
        name=fields.pop("name", "Test User"),
        password_hash=get_password_hash(password),
        status=status,
        role=role,
        **fields
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def verified_user(session: Session) -> User:
    return create_user(session, "verified@example.com")


@pytest.fixture
def admin_user(session: Session) -> User:
    return create_user(session, "admin@example.com", role="admin")


@pytest.fixture
def mfa_user(session: Session) -> User:
    return create_user(
        session,
        "mfa@example.com",
        mfa_enabled=True,
        mfa_secret=pyotp.random_base32(32)
    )


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD,
                remember_me: bool = False, headers: dict | None = None):
    return await client.post(
        "/auth/login",
        json={"email": email, "password": password, "remember_me": remember_me},
        headers=headers
    )


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}
