"""Shared fixtures: a fresh SQLite database per test and an in-memory audit sink."""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta
from typing import Optional

_DB_DIR = tempfile.mkdtemp(prefix="club-authz-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["SESSION_SECRET"] = "test-session-secret"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.base import Base, utcnow  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, engine, import_models  # noqa: E402
from app.features.audit.emitter import AuditEmitter, get_audit_emitter  # noqa: E402
from app.features.committees.models import Committee, RoleAssignment  # noqa: E402
from app.features.members.models import Member  # noqa: E402
from app.main import app  # noqa: E402
from tests.support import MemoryAuditSink  # noqa: E402


@pytest_asyncio.fixture
async def database() -> AsyncIterator[None]:
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def audit_emitter(audit_sink: MemoryAuditSink) -> AuditEmitter:
    return AuditEmitter(audit_sink)


@pytest_asyncio.fixture
async def make_member(db_session: AsyncSession) -> Callable[..., Awaitable[Member]]:
    counter = 0

    async def _make(role: str = "member", *, is_active: bool = True) -> Member:
        nonlocal counter
        counter += 1
        member = Member(
            email=f"{role}-{counter}@club.org",
            name=f"{role} {counter}",
            global_role=role,
            is_active=is_active,
        )
        db_session.add(member)
        await db_session.commit()
        await db_session.refresh(member)
        return member

    return _make


@pytest_asyncio.fixture
async def make_committee(db_session: AsyncSession) -> Callable[..., Awaitable[Committee]]:
    async def _make(committee_id: str, *, is_active: bool = True) -> Committee:
        committee = Committee(id=committee_id, name=committee_id.title(), is_active=is_active)
        db_session.add(committee)
        await db_session.commit()
        return committee

    return _make


@pytest_asyncio.fixture
async def assign(db_session: AsyncSession) -> Callable[..., Awaitable[RoleAssignment]]:
    async def _assign(
        member: Member,
        committee_id: str,
        role: str,
        *,
        started: timedelta = timedelta(days=30),
        ended: Optional[timedelta] = None,
    ) -> RoleAssignment:
        now = utcnow()
        assignment = RoleAssignment(
            member_id=member.id,
            committee_id=committee_id,
            role=role,
            start_date=now - started,
            end_date=now - ended if ended is not None else None,
        )
        db_session.add(assignment)
        await db_session.commit()
        await db_session.refresh(assignment)
        return assignment

    return _assign


@pytest_asyncio.fixture
async def async_client(database: None, audit_emitter: AuditEmitter) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_audit_emitter] = lambda: audit_emitter
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
