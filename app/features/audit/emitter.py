"""
Audit Emitter.

Records every authorization decision to an append-only sink. Recording is
isolated from the decision itself: a failing sink is logged, the record goes
to the local fallback log, and the caller's authorization flow continues with
its original result.
"""
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database.base import generate_ulid, utcnow
from app.core.database.engine import AsyncSessionLocal
from app.features.audit.models import AuditLog
from app.features.permissions.schemas import Actor, PolicyDecision
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Audit actions
# ============================================================================

CAPABILITY_CHECK = "CAPABILITY_CHECK"
AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
INTERNAL_ERROR = "AUTHZ_INTERNAL_ERROR"
IMPERSONATION_BLOCKED = "IMPERSONATION_BLOCKED"
DELEGATION_ALLOWED = "DELEGATION_ALLOWED"
ASSIGNMENT_DENIED_NO_AUTHORITY = "ASSIGNMENT_DENIED_NO_AUTHORITY"
CROSS_SCOPE_BLOCKED = "CROSS_SCOPE_BLOCKED"
ESCALATION_BLOCKED = "ESCALATION_BLOCKED"
ROLE_ASSIGNED = "ROLE_ASSIGNED"
ROLE_ASSIGNMENT_ENDED = "ROLE_ASSIGNMENT_ENDED"
EVENT_UPDATED = "EVENT_UPDATED"
DELEGATION_DENIED = "DELEGATION_DENIED"
POLICY_DECISION = "POLICY_DECISION"


class AuditRecord(BaseModel):
    """Immutable audit entry as handed to a sink."""
    model_config = ConfigDict(frozen=True)

    trace_id: str = Field(default_factory=generate_ulid)
    timestamp: datetime = Field(default_factory=utcnow)
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    decision: Optional[str] = None
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ============================================================================
# Sinks
# ============================================================================

class AuditSink(Protocol):
    async def write(self, record: AuditRecord) -> None:
        ...


class DatabaseAuditSink:
    """
    Writes records to ``audit_logs`` in a session of its own, so a failed
    audit insert never rolls back (or commits) the request transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory

    async def write(self, record: AuditRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                AuditLog(
                    trace_id=record.trace_id,
                    action=record.action,
                    resource_type=record.resource_type,
                    resource_id=record.resource_id,
                    actor_id=record.actor_id,
                    before=record.before,
                    after=record.after,
                    details=record.metadata,
                    decision=record.decision,
                    reason=record.reason[:500] if record.reason else None,
                    ip_address=record.ip_address,
                    user_agent=record.user_agent[:255] if record.user_agent else None,
                    created_at=record.timestamp,
                )
            )
            await session.commit()


class LogAuditSink:
    """Local diagnostic log. Used as the fallback when the primary sink fails."""

    async def write(self, record: AuditRecord) -> None:
        log.info(
            "[AUDIT] trace=%s %s %s/%s actor=%s decision=%s reason=%s",
            record.trace_id,
            record.action,
            record.resource_type,
            record.resource_id,
            record.actor_id,
            record.decision,
            record.reason,
        )


# ============================================================================
# Emitter
# ============================================================================

def get_client_ip(request: Optional[Request]) -> Optional[str]:
    """Client IP, preferring proxy headers."""
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


class AuditEmitter:
    """
    Accepts decision records and writes them to the sink.

    ``record`` never raises for sink or serialization failures; cancellation of
    the surrounding request still propagates.
    """

    def __init__(self, sink: AuditSink, fallback: Optional[AuditSink] = None):
        self.sink = sink
        self.fallback = fallback or LogAuditSink()

    async def record(
        self,
        event: str,
        actor: Optional[Actor],
        decision: Optional[PolicyDecision],
        metadata: Optional[Dict[str, Any]] = None,
        *,
        resource_type: str = "authorization",
        resource_id: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> Optional[AuditRecord]:
        """
        Record one event.

        Args:
            event: Audit action, e.g. ``CAPABILITY_CHECK`` or ``ESCALATION_BLOCKED``
            actor: The acting identity, None when authentication failed
            decision: The decision being recorded, if any
            metadata: Extra structured context
            resource_type: Kind of resource acted on
            resource_id: Id of the resource acted on
            before: State before a mutation, None for pure authorization events
            after: State after a mutation, None for pure authorization events
            request: Source request, for client address and user agent

        Returns:
            The record that was written (to the sink or the fallback), or None
            if even the fallback failed
        """
        try:
            record = self._build(
                event, actor, decision, metadata,
                resource_type=resource_type,
                resource_id=resource_id,
                before=before,
                after=after,
                request=request,
            )
        except Exception:
            log.exception("Failed to build audit record for %s", event)
            return None

        try:
            await self.sink.write(record)
            return record
        except Exception:
            log.exception("Audit sink failed for trace %s; writing to fallback log", record.trace_id)

        try:
            await self.fallback.write(record)
            return record
        except Exception:
            log.exception("Fallback audit sink failed for trace %s", record.trace_id)
            return None

    @staticmethod
    def _build(
        event: str,
        actor: Optional[Actor],
        decision: Optional[PolicyDecision],
        metadata: Optional[Dict[str, Any]],
        *,
        resource_type: str,
        resource_id: Optional[str],
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        request: Optional[Request],
    ) -> AuditRecord:
        data: Dict[str, Any] = dict(metadata or {})
        if decision is not None:
            data["decision"] = decision.audit_metadata()
        if actor is not None:
            data["actor"] = {
                "role": actor.role.value if actor.role else actor.raw_role,
                "impersonatedBy": actor.impersonated_by,
            }

        return AuditRecord(
            action=event,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor.id if actor else None,
            before=before,
            after=after,
            metadata=data,
            decision=None if decision is None else ("ALLOWED" if decision.allowed else "DENIED"),
            reason=decision.reason if decision else None,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent") if request is not None else None,
        )


_default_emitter = AuditEmitter(DatabaseAuditSink())


def get_audit_emitter() -> AuditEmitter:
    """FastAPI dependency for the process-wide emitter."""
    return _default_emitter
