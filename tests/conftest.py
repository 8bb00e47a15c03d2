import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["NEYNAR_API_KEY"] = ""
os.environ["WEBHOOK_SECRET"] = ""
os.environ["PUSH_RELAY_URL"] = ""
os.environ["ORPHAN_REPLY_POLICY"] = "promote"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from depthcaster.database import Base, get_db  # noqa: E402
from depthcaster.main import app  # noqa: E402
from depthcaster.services.cache import clear_all_caches  # noqa: E402
from depthcaster.services.curation import ensure_placeholder_cast  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_caches():
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'depthcaster.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        await ensure_placeholder_cast(session)
        await session.commit()
        yield session


@pytest.fixture
async def client(session_factory, db):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
