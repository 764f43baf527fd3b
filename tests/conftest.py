import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from taskhub.config import Settings
from taskhub.db import create_session_factory
from taskhub.main import create_app
from taskhub.models import Base, UserRole

from .factories import make_user
from .fakes import FakeStorage


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        bcrypt_rounds=4,
        upload_dir=str(tmp_path / "uploads"),
        log_dir=str(tmp_path / "logs"),
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def app(settings, engine, storage):
    return create_app(settings=settings, engine=engine, storage=storage)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture
async def alice(db):
    return await make_user(db, "Alice Smith")


@pytest_asyncio.fixture
async def bob(db):
    return await make_user(db, "Bob Jones")


@pytest_asyncio.fixture
async def carol(db):
    return await make_user(db, "Carol White")


@pytest_asyncio.fixture
async def admin(db):
    return await make_user(db, "Admin User", email="admin@example.com", role=UserRole.ADMIN)
