"""Pytest configuration and shared fixtures.

Tests run against a throwaway SQLite database (aiosqlite) created from the
ORM metadata, one file per test, so no external services are needed.
Object storage tests use moto's in-memory S3.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from tests.factories import DEFAULT_PASSWORD, TEST_SIGNING_KEY, create_user
from warden.api import create_app
from warden.core.config import Settings
from warden.db import close_engine, configure_engine, get_async_session
from warden.db.models import Base, User
from warden.services.background import BackgroundRunner
from warden.services.email import AccountMailer, LoggingEmailSender
from warden.services.passwords import PasswordHasher
from warden.services.rbac import ADMIN_ROLE, USER_ROLE, RBACStore


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for a disposable database and cheap password hashing.

    The resend cooldown is disabled so flows can request several emails in a
    row; throttling tests turn it back on.
    """
    return Settings(
        _env_file=None,
        environment="development",
        database={"url": f"sqlite+aiosqlite:///{tmp_path / 'warden.db'}"},
        tokens={"signing_key": TEST_SIGNING_KEY},
        security={
            "argon2_time_cost": 1,
            "argon2_memory_cost": 8192,
            "argon2_parallelism": 1,
            "resend_cooldown_seconds": 0,
        },
        smtp={"enabled": False},
        s3={"bucket": "warden-test-avatars", "access_key": "testing", "secret_key": "testing"},
        cors={"allowed_origins": ["http://localhost:3000"]},
    )


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    """Password hasher using the test argon2 parameters."""
    return PasswordHasher.from_settings(settings.security)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Configure the module-level engine and create every table."""
    engine = configure_engine(settings.database.url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await close_engine()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A session on the primary database."""
    async with get_async_session() as session:
        yield session


@pytest.fixture
async def rbac(session: AsyncSession) -> RBACStore:
    """RBAC store over a database seeded with the default roles and permissions."""
    store = RBACStore(session)
    await store.seed_defaults()
    await session.commit()
    return store


@pytest.fixture
async def admin(session: AsyncSession, hasher: PasswordHasher, rbac: RBACStore) -> User:
    """A verified user holding the admin role."""
    return await create_user(
        session, hasher, email="admin@example.com", name="Ada Admin", roles=[ADMIN_ROLE]
    )


@pytest.fixture
async def member(session: AsyncSession, hasher: PasswordHasher, rbac: RBACStore) -> User:
    """A verified user holding only the default user role."""
    return await create_user(
        session, hasher, email="member@example.com", name="Max Member", roles=[USER_ROLE]
    )


# ---------------------------------------------------------------------------
# Email fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def outbox() -> LoggingEmailSender:
    """Sender that records messages instead of delivering them."""
    return LoggingEmailSender()


@pytest.fixture
def mailer(settings: Settings, outbox: LoggingEmailSender) -> AccountMailer:
    """Account mailer writing to the outbox."""
    return AccountMailer(outbox, public_url=settings.public_url, app_name=settings.app_name)


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(settings: Settings, engine: AsyncEngine, mailer: AccountMailer):
    """Create a test FastAPI application instance.

    Emails go straight to the outbox instead of the background queue, and
    avatar storage is off unless a test installs a client.
    """
    app = create_app(settings)
    app.state.mailer = mailer
    app.state.storage = None
    return app


@pytest.fixture
def background(test_app) -> BackgroundRunner:
    """Runner for the work the API schedules after responding."""
    return test_app.state.background


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def password() -> str:
    """Password shared by the users the factories create."""
    return DEFAULT_PASSWORD
