"""Audit emitter, sinks and the append-only audit table."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from app.features.audit import emitter as audit
from app.features.audit.emitter import AuditEmitter, DatabaseAuditSink, get_client_ip
from app.features.audit.models import AppendOnlyViolation, AuditLog
from app.features.permissions.catalog import Role
from app.features.permissions.errors import InsufficientCapability
from app.features.permissions.gate import AuthorizationGate
from app.features.permissions.schemas import Actor, DenialCode, PolicyDecision
from tests.support import FailingAuditSink, MemoryAuditSink, auth_headers, make_request

pytestmark = pytest.mark.asyncio

DENIED = PolicyDecision.deny(
    DenialCode.INSUFFICIENT_CAPABILITY,
    "Missing capability: finance:view",
    missing_capabilities=["finance:view"],
)


async def test_record_carries_decision_and_actor() -> None:
    sink = MemoryAuditSink()
    emitter = AuditEmitter(sink)
    actor = Actor(id="m1", role=Role.WEBMASTER, impersonated_by="a1")

    record = await emitter.record(
        audit.CAPABILITY_CHECK,
        actor,
        DENIED,
        {"capability": "finance:view"},
        request=make_request({"User-Agent": "pytest", "X-Forwarded-For": "203.0.113.7, 10.0.0.1"}),
    )

    assert sink.records == [record]
    assert record.decision == "DENIED"
    assert record.reason == "Missing capability: finance:view"
    assert record.actor_id == "m1"
    assert record.ip_address == "203.0.113.7"
    assert record.user_agent == "pytest"
    assert record.metadata["capability"] == "finance:view"
    assert record.metadata["decision"]["missingCapabilities"] == ["finance:view"]
    assert record.metadata["actor"] == {"role": "webmaster", "impersonatedBy": "a1"}
    assert record.before is None and record.after is None


async def test_failing_sink_falls_back() -> None:
    fallback = MemoryAuditSink()
    emitter = AuditEmitter(FailingAuditSink(), fallback=fallback)
    record = await emitter.record(audit.CAPABILITY_CHECK, None, DENIED)
    assert record is not None
    assert fallback.records == [record]


async def test_record_returns_none_when_every_sink_fails() -> None:
    emitter = AuditEmitter(FailingAuditSink(), fallback=FailingAuditSink())
    assert await emitter.record(audit.CAPABILITY_CHECK, None, DENIED) is None


async def test_client_ip_prefers_proxy_headers() -> None:
    assert get_client_ip(None) is None
    assert get_client_ip(make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"
    assert get_client_ip(make_request()) == "127.0.0.1"


async def test_gate_decisions_survive_audit_outage(db_session, make_member) -> None:
    emitter = AuditEmitter(FailingAuditSink(), fallback=FailingAuditSink())
    gate = AuthorizationGate(db_session, emitter)
    member = await make_member()

    actor = await gate.require_capability(make_request(auth_headers(member)), "events:view")
    assert actor.id == member.id

    with pytest.raises(InsufficientCapability) as exc_info:
        await gate.require_capability(make_request(auth_headers(member)), "members:view")
    assert exc_info.value.trace_id is None


async def test_database_sink_writes_row(db_session) -> None:
    emitter = AuditEmitter(DatabaseAuditSink())
    record = await emitter.record(
        audit.ROLE_ASSIGNED,
        Actor(id="a1", role=Role.ADMIN),
        None,
        resource_type="role_assignment",
        resource_id="ra-1",
        after={"role": "event-chair"},
    )

    result = await db_session.execute(select(AuditLog).where(AuditLog.trace_id == record.trace_id))
    row = result.scalar_one()
    assert row.action == audit.ROLE_ASSIGNED
    assert row.resource_type == "role_assignment"
    assert row.actor_id == "a1"
    assert row.after == {"role": "event-chair"}
    assert row.decision is None


async def _stored_row(db_session) -> AuditLog:
    record = await AuditEmitter(DatabaseAuditSink()).record(audit.CAPABILITY_CHECK, None, DENIED)
    result = await db_session.execute(select(AuditLog).where(AuditLog.trace_id == record.trace_id))
    return result.scalar_one()


async def test_audit_rows_cannot_be_updated(db_session) -> None:
    row = await _stored_row(db_session)
    row.reason = "rewritten"
    with pytest.raises(AppendOnlyViolation):
        await db_session.commit()
    await db_session.rollback()


async def test_audit_rows_cannot_be_deleted(db_session) -> None:
    row = await _stored_row(db_session)
    await db_session.delete(row)
    with pytest.raises(AppendOnlyViolation):
        await db_session.commit()
    await db_session.rollback()
