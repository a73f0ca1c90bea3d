"""
Shared fixtures: in-memory service wiring and an aiosqlite database.
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401  (register tables on the metadata)
from app.core.auth import AuthenticatedUser
from app.core.database import build_engine
from app.services.achievements import AchievementEngine
from app.services.coordination import InMemoryApprovalCounter, InMemoryBatchGuard
from app.services.verification import Coordinator, VerificationService
from dms_shared.schemas.common import Role

from fakes import FakeAchievementStore, FakeRepository, RecordingNotifier, make_user


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def achievement_store(repo) -> FakeAchievementStore:
    return FakeAchievementStore(repo)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def batch_guard() -> InMemoryBatchGuard:
    return InMemoryBatchGuard()


@pytest.fixture
def counter() -> InMemoryApprovalCounter:
    return InMemoryApprovalCounter()


@pytest.fixture
def service(repo, achievement_store, notifier, batch_guard) -> VerificationService:
    return VerificationService(
        repo, notifier, AchievementEngine(achievement_store), batch_guard, attention_hours=24
    )


@pytest.fixture
def coordinator() -> Coordinator:
    return Coordinator(id=uuid.uuid4(), name="Coordinator Jane")


@pytest.fixture
def coordinator_user() -> AuthenticatedUser:
    return AuthenticatedUser(make_user(Role.COORDINATOR, name="Coordinator Jane"))


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'dms_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    factory = sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
