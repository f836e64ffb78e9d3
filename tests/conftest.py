"""
Pytest configuration and shared fixtures.
"""

import os
from datetime import date
from types import SimpleNamespace

os.environ.setdefault("WELLNESS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WELLNESS_SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from wellness.database import Base, get_db
from wellness.main import app
from wellness.models import Schedule, Service, Specialist, User
from wellness.security import hash_password

DAY = date(2024, 6, 10)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db):
    """One psychology specialist working 08:00-10:00 on 2024-06-10."""
    service = Service(title="Psicología", description="", is_active=True)
    specialist = Specialist(name="Ana Ruiz", email="ana@u.edu", is_active=True)
    other = Specialist(name="Luis Peña", email="luis@u.edu", is_active=True)
    service.specialists = [specialist, other]
    db.add(service)
    await db.flush()
    db.add(Schedule(specialist_id=specialist.id, date=DAY, start_time="08:00", end_time="10:00"))
    db.add(Schedule(specialist_id=other.id, date=DAY, start_time="14:00", end_time="15:00"))
    student = User(email="student@u.edu", full_name="Sofía Gómez", requester_type="Estudiante", role="user", password_hash=hash_password("secret"))
    admin = User(email="admin@u.edu", full_name="Admin", requester_type="Administrativo", role="admin", password_hash=hash_password("secret"))
    db.add_all([student, admin])
    await db.commit()
    return SimpleNamespace(service=service, specialist=specialist, other=other, student=student, admin=admin, day=DAY)


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    async def _login(email, password="secret"):
        resp = await client.post("/login", data={"email": email, "password": password})
        assert resp.status_code == 303
        return resp

    return _login
