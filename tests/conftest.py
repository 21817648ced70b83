"""
Pytest configuration and shared fixtures for the inventory tests.

The app reads DATABASE_URL at import time, so the environment is pointed at a
throwaway SQLite file before any application module is imported.
"""
import os
import tempfile

_DB_FD, _DB_PATH = tempfile.mkstemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SIDE_EFFECT_MAX_ATTEMPTS"] = "2"
os.environ["SIDE_EFFECT_BACKOFF_MAX"] = "0"

from datetime import datetime  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi import Request  # noqa: E402
from fastapi_users.password import PasswordHelper  # noqa: E402
from sqlalchemy import select  # noqa: E402

from core.auth import Actor, current_optional_user  # noqa: E402
from db.activity import ActivityLog, Notification  # noqa: E402
from db.database import Base, async_session_maker, engine  # noqa: E402
from db.device import Device  # noqa: E402
from db.users import Role, User  # noqa: E402
from main import app  # noqa: E402
from services.side_effects import SideEffectQueue  # noqa: E402

password_helper = PasswordHelper()


def pytest_sessionfinish(session, exitstatus):
    os.close(_DB_FD)
    if os.path.exists(_DB_PATH):
        os.unlink(_DB_PATH)


@pytest.fixture(autouse=True)
async def schema():
    """Fresh tables for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Pooled aiosqlite connections are bound to this test's event loop.
    await engine.dispose()


@pytest.fixture
async def session(schema):
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def sink():
    return SideEffectQueue(session_maker=async_session_maker, max_attempts=2, backoff_max=0)


async def _make_user(email: str, role: Role, full_name: str, created_at: datetime) -> User:
    async with async_session_maker() as s:
        user = User(
            email=email,
            hashed_password=password_helper.hash("password123"),
            full_name=full_name,
            role=role,
            is_active=True,
            is_superuser=False,
            is_verified=True,
            created_at=created_at,
        )
        s.add(user)
        await s.commit()
        await s.refresh(user)
        return user


@pytest.fixture
async def admin_user(schema):
    # Oldest admin: the primary admin account.
    return await _make_user("admin@example.com", Role.ADMIN, "Alice Admin", datetime(2020, 1, 1))


@pytest.fixture
async def second_admin_user(admin_user):
    return await _make_user("boss@example.com", Role.ADMIN, "Bob Boss", datetime(2021, 1, 1))


@pytest.fixture
async def employee_user(schema):
    return await _make_user("employee@example.com", Role.EMPLOYEE, "Eve Employee", datetime(2022, 1, 1))


@pytest.fixture
def admin(admin_user) -> Actor:
    return Actor.from_user(admin_user)


@pytest.fixture
def second_admin(second_admin_user) -> Actor:
    return Actor.from_user(second_admin_user)


@pytest.fixture
def employee(employee_user) -> Actor:
    return Actor.from_user(employee_user)


@pytest.fixture
def make_device(schema):
    """Factory: insert a device with the given baseline and return it."""
    counter = {"n": 0}

    async def _make(baseline: int = 10, minimum: int = 1, **kwargs) -> Device:
        counter["n"] += 1
        async with async_session_maker() as s:
            device = Device(
                barcode=kwargs.pop("barcode", f"DEV-{counter['n']:04d}"),
                name=kwargs.pop("name", f"Device {counter['n']}"),
                device_type=kwargs.pop("device_type", "laptop"),
                baseline_quantity=baseline,
                minimum_quantity=minimum,
                **kwargs,
            )
            s.add(device)
            await s.commit()
            await s.refresh(device)
            return device

    return _make


@pytest.fixture
async def client_for(sink):
    """Factory: an httpx client authenticated as the given user."""
    users = {}
    clients = []

    async def _current_user(request: Request) -> User:
        return users[request.headers["x-test-user"]]

    app.dependency_overrides[current_optional_user] = _current_user
    app.state.side_effects = sink

    def _client(user: User) -> httpx.AsyncClient:
        users[str(user.id)] = user
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
            headers={"x-test-user": str(user.id)},
        )
        clients.append(client)
        return client

    yield _client
    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


@pytest.fixture
async def anon_client(sink):
    app.state.side_effects = sink
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def fetch_activity(action: str | None = None) -> list[ActivityLog]:
    async with async_session_maker() as s:
        stmt = select(ActivityLog)
        if action:
            stmt = stmt.where(ActivityLog.action == action)
        return list((await s.execute(stmt)).scalars().all())


async def fetch_notifications(user_id) -> list[Notification]:
    async with async_session_maker() as s:
        res = await s.execute(select(Notification).where(Notification.user_id == user_id))
        return list(res.scalars().all())
