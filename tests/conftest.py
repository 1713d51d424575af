# tests/conftest.py
import os
import tempfile
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Settings are read at import time, so the test database and the
# scheduler switch must be in place before anything from inbound loads.
_DB_DIR = tempfile.mkdtemp(prefix="inbound-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/inbound.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from inbound.database import Base, async_session_factory, engine, init_db  # noqa: E402
from inbound.main import app  # noqa: E402

from tests.factories import seed_world  # noqa: E402


# =========================================
# Fresh schema per test
# =========================================
@pytest_asyncio.fixture(autouse=True, scope="function")
async def _fresh_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_db()
    yield


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[AsyncSession, None]:
    """Plain session; the test decides when to commit."""
    async with async_session_factory() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def world():
    """Warehouse, vendor, products and locations shared by most tests."""
    async with async_session_factory() as sess:
        ids = await seed_world(sess)
        await sess.commit()
    return ids
