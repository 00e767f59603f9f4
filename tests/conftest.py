"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) and an artifact
store whose HTTP calls are served by ``httpx.MockTransport``.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STORAGE_URL", "http://storage.test/files")
os.environ.setdefault("STORAGE_PUBLIC_URL", "http://cdn.test/files")
os.environ.pop("ACTIVITY_SERVICE_URL", None)

from datetime import datetime, timedelta

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stepwise.config import settings
from stepwise.db.database import Base
from stepwise.db import models  # noqa: F401
from stepwise.services import course_service
from stepwise.services.storage_service import ArtifactStore, Upload

STORAGE_URL = "http://storage.test/files"
PUBLIC_URL = "http://cdn.test/files"


class FakeStorageBackend:
    """In-memory object storage answering the gateway's PUT/DELETE calls."""

    def __init__(self):
        self.objects = {}
        self.fail_put = False
        self.fail_delete = False
        self.deleted = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.rsplit("/", 1)[-1]
        if request.method == "PUT":
            if self.fail_put:
                return httpx.Response(503)
            self.objects[key] = request.content
            return httpx.Response(200)
        if request.method == "DELETE":
            if self.fail_delete:
                raise httpx.ConnectError("storage unreachable", request=request)
            self.deleted.append(key)
            self.objects.pop(key, None)
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage_backend():
    return FakeStorageBackend()


@pytest.fixture
def storage(storage_backend):
    return ArtifactStore(STORAGE_URL, PUBLIC_URL, transport=httpx.MockTransport(storage_backend.handler))


def make_token(user_id, role="student", expires_in=timedelta(minutes=60)):
    """Mint a bearer token the way the identity provider does."""
    payload = {"user_id": user_id, "role": role, "exp": datetime.utcnow() + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def make_upload(name="answer.pdf", data=b"%PDF-1.4 answer", content_type="application/pdf"):
    return Upload(filename=name, content_type=content_type, data=data)


@pytest.fixture
def upload():
    return make_upload()


@pytest.fixture
def build_course(session, storage):
    """Create a course from a compact step list.

    Each item is ``"info"`` or a list of answer types for a task step,
    e.g. ``["info", ["text"], ["file"], ["text", "file"]]``.
    """

    async def _build(layout, title="Course"):
        course = await course_service.create_course(session, title)
        steps = []
        for i, item in enumerate(layout, start=1):
            if item == "info":
                step = await course_service.add_step(session, storage, course.id, f"Step {i}", step_type="info")
            else:
                step = await course_service.add_step(
                    session, storage, course.id, f"Step {i}", step_type="task", answer_types=item
                )
            steps.append(step)
        return course, steps

    return _build
