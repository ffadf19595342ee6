import uuid

import httpx
import pytest
from asgi_lifespan import LifespanManager
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth import deps as auth_deps
from app.core.db import Base, get_session
from app.main import app
from app.models.models import User
from app.services.vision.client import set_client

API_BASE = "http://test"


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself so SAVEPOINT works on sqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def user(session):
    u = User(id=uuid.uuid4(), email="ada@example.com", name="Ada", style_preferences=["minimal"])
    session.add(u)
    await session.commit()
    return u


@pytest.fixture
async def other_user(session):
    u = User(id=uuid.uuid4(), email="bo@example.com", name="Bo")
    session.add(u)
    await session.commit()
    return u


@pytest.fixture(autouse=True)
def reset_vision_client():
    yield
    set_client(None)


@pytest.fixture
async def client(session_factory, user):
    async def _session_override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[auth_deps.get_current_user_id] = lambda: str(user.id)
    async with LifespanManager(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=API_BASE) as ac:
            yield ac
    app.dependency_overrides.pop(get_session, None)
    app.dependency_overrides.pop(auth_deps.get_current_user_id, None)
