import socket
from collections.abc import AsyncGenerator, Iterator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ciepi.core.config import settings
from ciepi.models.base import Base
from ciepi.models.student import Student
from ciepi.models.training import Training
from ciepi.repositories.student_repository import StudentRepository

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Registrant used across API and integration tests
TEST_NATIONAL_ID = "8-888-8888"
TEST_EMAIL = "ana.perez@example.com"
TEST_TRAINING_NAME = "Soldadura Básica"


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (one session per 'request')."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def test_student(db_session: AsyncSession) -> Student:
    """Create a registrant with an unverified email.

    Committed so requests running in other sessions can see it.
    """
    student = await StudentRepository.create(
        db_session,
        national_id=TEST_NATIONAL_ID,
        first_names="Ana María",
        last_names="Pérez Gómez",
        email=TEST_EMAIL,
    )
    await db_session.commit()
    return student


@pytest_asyncio.fixture
async def test_training(db_session: AsyncSession) -> Training:
    """Create a training course (committed)."""
    training = Training(name=TEST_TRAINING_NAME)
    db_session.add(training)
    await db_session.commit()
    await db_session.refresh(training)
    return training


@pytest.fixture
def mock_send_email() -> Iterator[AsyncMock]:
    """Replace outbound email dispatch with an AsyncMock."""
    with patch(
        "ciepi.api.v1.verification.send_verification_email",
        new_callable=AsyncMock,
    ) as mock_send:
        yield mock_send


@pytest_asyncio.fixture
async def client(
    session_factory,
    mock_send_email,  # noqa: ARG001 - keeps tests off the network
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client backed by the test database.

    Each request gets its own session, as in production.

    Yields:
        AsyncClient for making API requests.
    """
    from ciepi.core.database import get_db
    from ciepi.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting for all tests.

    Tests that exercise the limiter turn it back on explicitly.

    Yields:
        None (autouse fixture).
    """
    from ciepi.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original_enabled
