"""Shared test fixtures.

Tests run against a throwaway SQLite file. The URL has to be in the
environment before anything imports clubhouse.core.config, since the engine
is created at import time.
"""

import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

_DB_PATH = Path(tempfile.mkdtemp(prefix="clubhouse-tests-")) / "test.db"
os.environ["CH_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["CH_SECRET_KEY"] = "test-secret-key"
os.environ["CH_STRIPE_SECRET_KEY"] = ""

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from clubhouse.core.auth import ROLE_STAFF, create_access_token  # noqa: E402
from clubhouse.core.database import async_session_factory, engine  # noqa: E402
from clubhouse.main import app  # noqa: E402
from clubhouse.models import Base, Member, MemberStatus, Resource, ResourceKind  # noqa: E402


@pytest.fixture(autouse=True)
async def _database():
    """Fresh schema for every test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for a test, pooled connections bound to the old loop would fail, so
    the pool is disposed on both sides of each test.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def catalog():
    """Three Standard rooms, three halls, a lawn, a studio and three members.

    Returns plain ids so tests can keep using them after a rollback.
    """
    async with async_session_factory() as session:
        rooms = [
            Resource(
                name=f"Room {n}",
                kind=ResourceKind.ROOM,
                category="Standard",
                unit_number=n,
                capacity_min=1,
                capacity_max=3,
                member_rate=5000,
                guest_rate=8000,
            )
            for n in (101, 102, 103)
        ]
        halls = [
            Resource(
                name=f"Hall {letter}",
                kind=ResourceKind.HALL,
                unit_number=i,
                capacity_min=50,
                capacity_max=300,
                member_rate=100000,
                guest_rate=150000,
            )
            for i, letter in enumerate("ABC", start=1)
        ]
        lawn = Resource(
            name="Front Lawn",
            kind=ResourceKind.LAWN,
            category="Large",
            unit_number=1,
            capacity_min=100,
            capacity_max=800,
            member_rate=200000,
            guest_rate=260000,
        )
        studio = Resource(
            name="Photography Studio",
            kind=ResourceKind.STUDIO,
            unit_number=1,
            member_rate=15000,
            guest_rate=25000,
        )
        members = [
            Member(membership_no="M-1001", name="Ayesha Khan", email="ayesha@example.com"),
            Member(membership_no="M-1002", name="Bilal Ahmed", email="bilal@example.com"),
            Member(membership_no="M-1099", name="Lapsed Member", status=MemberStatus.INACTIVE),
        ]
        session.add_all([*rooms, *halls, lawn, studio, *members])
        await session.commit()

        return SimpleNamespace(
            rooms=[r.id for r in rooms],
            halls=[h.id for h in halls],
            lawn=lawn.id,
            studio=studio.id,
            member="M-1001",
            other="M-1002",
            inactive="M-1099",
            member_ids={m.membership_no: m.id for m in members},
        )


@pytest.fixture
def member_headers():
    return {"Authorization": f"Bearer {create_access_token('M-1001', name='Ayesha Khan')}"}


@pytest.fixture
def other_headers():
    return {"Authorization": f"Bearer {create_access_token('M-1002', name='Bilal Ahmed')}"}


@pytest.fixture
def staff_headers():
    return {"Authorization": f"Bearer {create_access_token('staff-7', role=ROLE_STAFF, name='Desk Officer')}"}
