"""
Shared fixtures: an in-memory database per test and an HTTP client bound to it.
"""

import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from assessment_api import config  # noqa: E402
from assessment_api.database import Base, get_db  # noqa: E402
from assessment_api.main import app  # noqa: E402
from assessment_api.models import User, UserRole  # noqa: E402
from assessment_api.security import ensure_admin, hash_password  # noqa: E402

CURATOR_LOGIN = "curator"
CURATOR_PASSWORD = "curator-pass"


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
async def admin_auth(session_factory):
    """Basic credentials of the bootstrap administrator."""
    async with session_factory() as session:
        await ensure_admin(session)
    return httpx.BasicAuth(config.ADMIN_LOGIN, config.ADMIN_PASSWORD)


@pytest.fixture
async def curator(session_factory):
    async with session_factory() as session:
        user = User(
            name="Curator One",
            login=CURATOR_LOGIN,
            role=UserRole.CURATOR.value,
            password_hash=hash_password(CURATOR_PASSWORD),
        )
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
def curator_auth(curator):
    return httpx.BasicAuth(CURATOR_LOGIN, CURATOR_PASSWORD)


@pytest.fixture
def make_group(client, admin_auth):
    """Factory creating a group with the given students through the API."""

    async def _make(name="Group A", students=(("Lee", "Ann"), ("Kim", "Bo")), curator_id=None):
        response = await client.post(
            "/admin/groups", json={"name": name, "curatorId": curator_id}, auth=admin_auth
        )
        assert response.status_code == 201, response.text
        group = response.json()
        if students:
            response = await client.post(
                f"/admin/groups/{group['id']}/students",
                json={"students": [{"lastName": last, "firstName": first} for last, first in students]},
                auth=admin_auth,
            )
            assert response.status_code == 201, response.text
            group["students"] = response.json()
        return group

    return _make


@pytest.fixture
def make_test(client, admin_auth):
    """Factory creating a test through the API; defaults to one A/B/C question worth 1/2/3."""

    async def _make(title="Quiz", questions=None, groups=(), auth=None):
        if questions is None:
            questions = [
                {
                    "text": "Pick one",
                    "type": "SINGLE_CHOICE",
                    "options": [
                        {"text": "A", "score": 1},
                        {"text": "B", "score": 2},
                        {"text": "C", "score": 3},
                    ],
                }
            ]
        response = await client.post(
            "/tests",
            json={"title": title, "questions": questions, "assignedGroups": list(groups)},
            auth=auth or admin_auth,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make


def option_id(test: dict, question_index: int, text: str) -> str:
    question = test["questions"][question_index]
    return next(option["id"] for option in question["options"] if option["text"] == text)


@pytest.fixture
def pick():
    return option_id
