import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ADMIN_EMAIL", "admin@milkcart.in")
os.environ.setdefault("ADMIN_PASSWORD", "AdminPass123")
os.environ.setdefault("SMTP_USER", "")
os.environ.setdefault("SMTP_PASSWORD", "")

from datetime import datetime, timedelta

import httpx
import pytest

from milkcart.database import Base, async_session_factory, engine
from tests.factories import NOW


@pytest.fixture(autouse=True)
async def reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    # In-memory database: disposing the pool drops every table
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


class Clock:
    """Mutable clock injected in place of the real one."""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
async def client(clock):
    from milkcart.api.deps import get_now
    from milkcart.main import app

    app.dependency_overrides[get_now] = lambda: clock.now
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
