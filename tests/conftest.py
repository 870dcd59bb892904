from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.database import get_db, get_session_factory
from src.core.database.base import Base
from src.core.documents import NumberAuthority
from src.main import app
from src.modules.numbering.dependencies import get_number_authority

# Import models so they are registered with Base.metadata
from src.core.audit.models import AuditLog  # noqa: F401
from src.core.documents.models import DocumentSequence, NumberingPolicy  # noqa: F401

# Test database URL (in-memory SQLite for speed, or use test PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return test_async_session


@pytest.fixture
def authority(session_factory) -> NumberAuthority:
    """Number authority on the test database with short backoff."""
    return NumberAuthority(
        session_factory,
        max_attempts=3,
        backoff_base_ms=1,
        backoff_max_ms=5,
    )


@pytest.fixture
async def client(
    db_session: AsyncSession, authority: NumberAuthority
) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: test_async_session
    app.dependency_overrides[get_number_authority] = lambda: authority

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
