"""Authorization gate: authentication, capability checks, fail-closed behavior."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import true

from app.features.audit import emitter as audit
from app.features.events.policy import EventAction, EventContext, event_policy
from app.features.permissions.errors import (
    DelegationDenied,
    InsufficientCapability,
    InternalError,
    PolicyDenied,
    Unauthenticated,
)
from app.features.permissions.gate import (
    AuthorizationGate,
    check_any_capability,
    check_capability,
    check_capability_safe,
)
from app.features.permissions.catalog import Role
from app.features.permissions.policy import ResourcePolicy
from app.features.permissions.schemas import Actor, DenialCode
from tests.support import auth_headers, make_request, make_token

pytestmark = pytest.mark.asyncio


@pytest.fixture
def gate(db_session, audit_emitter) -> AuthorizationGate:
    return AuthorizationGate(db_session, audit_emitter)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class BrokenPolicy(ResourcePolicy[EventContext]):
    resource_type = "broken"
    actions = ("view",)

    def _decide(self, actor, context, action):
        raise KeyError("status")

    def filter_for(self, actor):
        return true()


# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------

async def test_check_capability_reports_what_is_missing() -> None:
    decision = check_capability(Actor(id="m1", role=Role.MEMBER), "members:view")
    assert not decision.allowed
    assert decision.code == DenialCode.INSUFFICIENT_CAPABILITY
    assert decision.missing_capabilities == ["members:view"]
    assert "members:view" in decision.reason


async def test_safe_check_blocks_sensitive_capability_only_while_impersonating() -> None:
    admin = Actor(id="a1", role=Role.ADMIN)
    viewing = Actor(id="a2", role=Role.ADMIN, impersonated_by="a1")
    assert check_capability_safe(admin, "finance:manage").allowed
    blocked = check_capability_safe(viewing, "finance:manage")
    assert not blocked.allowed
    assert blocked.sub_reason == "impersonation_blocked"
    assert check_capability_safe(viewing, "finance:view").allowed


async def test_actor_without_known_role_holds_nothing() -> None:
    actor = Actor(id="m1", role=None, raw_role="superuser")
    assert not check_capability(actor, "events:view").allowed
    assert not check_any_capability(actor, ["events:view", "members:view"]).allowed


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def test_missing_header_is_unauthenticated(gate, audit_sink) -> None:
    with pytest.raises(Unauthenticated) as exc_info:
        await gate.require_authentication(make_request())
    assert exc_info.value.status_code == 401
    assert audit_sink.actions() == [audit.AUTHENTICATION_FAILED]
    assert exc_info.value.trace_id == audit_sink.records[-1].trace_id


async def test_valid_session_resolves_actor(gate, make_member) -> None:
    member = await make_member("secretary")
    actor = await gate.require_authentication(make_request(auth_headers(member)))
    assert actor.id == member.id
    assert actor.role is Role.SECRETARY
    assert not actor.is_impersonating


async def test_expired_token_is_unauthenticated(gate, make_member) -> None:
    member = await make_member()
    token = make_token(member.id, expires_in=timedelta(minutes=-5))
    with pytest.raises(Unauthenticated) as exc_info:
        await gate.require_authentication(make_request(_bearer(token)))
    assert "expired" in exc_info.value.message


async def test_token_signed_with_another_secret_is_unauthenticated(gate, make_member) -> None:
    member = await make_member("admin")
    token = make_token(member.id, secret="not-the-session-secret")
    with pytest.raises(Unauthenticated):
        await gate.require_authentication(make_request(_bearer(token)))


async def test_garbage_token_is_unauthenticated(gate) -> None:
    with pytest.raises(Unauthenticated):
        await gate.require_authentication(make_request(_bearer("not-a-jwt")))


async def test_unknown_and_inactive_members_are_unauthenticated(gate, make_member) -> None:
    inactive = await make_member("president", is_active=False)
    with pytest.raises(Unauthenticated):
        await gate.require_authentication(make_request(auth_headers(inactive)))
    with pytest.raises(Unauthenticated):
        await gate.require_authentication(make_request(_bearer(make_token("01HNOSUCHMEMBER0000000000"))))


async def test_impersonation_by_non_admin_operator_is_rejected(gate, make_member) -> None:
    operator = await make_member("president")
    target = await make_member()
    with pytest.raises(Unauthenticated):
        await gate.require_authentication(make_request(auth_headers(target, impersonated_by=operator)))


async def test_resolver_failure_fails_closed(db_session, audit_emitter, audit_sink) -> None:
    async def broken_resolver(request, db):
        raise RuntimeError("session store unreachable")

    gate = AuthorizationGate(db_session, audit_emitter, resolver=broken_resolver)
    with pytest.raises(InternalError) as exc_info:
        await gate.require_authentication(make_request())
    assert exc_info.value.status_code == 403
    assert audit_sink.actions() == [audit.INTERNAL_ERROR]
    assert audit_sink.records[0].decision == "DENIED"


# ---------------------------------------------------------------------------
# Capability requirements
# ---------------------------------------------------------------------------

async def test_missing_capability_is_denied_and_audited(gate, make_member, audit_sink) -> None:
    member = await make_member()
    with pytest.raises(InsufficientCapability) as exc_info:
        await gate.require_capability(make_request(auth_headers(member)), "members:view")

    error = exc_info.value
    assert error.status_code == 403
    assert "members:view" in error.decision.reason
    assert "members:view" not in error.to_response_body()["message"]

    record = audit_sink.records[-1]
    assert record.action == audit.CAPABILITY_CHECK
    assert record.actor_id == member.id
    assert record.decision == "DENIED"
    assert record.metadata["decision"]["missingCapabilities"] == ["members:view"]
    assert error.trace_id == record.trace_id


async def test_held_capability_returns_actor_and_is_audited(gate, make_member, audit_sink) -> None:
    president = await make_member("president")
    actor = await gate.require_capability(make_request(auth_headers(president)), "members:view")
    assert actor.id == president.id
    assert audit_sink.records[-1].decision == "ALLOWED"


async def test_impersonating_admin_cannot_use_sensitive_capability(gate, make_member, audit_sink) -> None:
    operator = await make_member("admin")
    target = await make_member("admin")
    request = make_request(auth_headers(target, impersonated_by=operator))

    with pytest.raises(InsufficientCapability) as exc_info:
        await gate.require_capability_safe(request, "finance:manage")
    assert exc_info.value.decision.sub_reason == "impersonation_blocked"
    assert audit_sink.records[-1].action == audit.IMPERSONATION_BLOCKED
    assert audit_sink.records[-1].metadata["actor"]["impersonatedBy"] == operator.id

    actor = await gate.require_capability_safe(request, "finance:view")
    assert actor.impersonated_by == operator.id


async def test_impersonation_narrows_to_target_role(gate, make_member) -> None:
    operator = await make_member("admin")
    target = await make_member()
    request = make_request(auth_headers(target, impersonated_by=operator))
    with pytest.raises(InsufficientCapability):
        await gate.require_capability(request, "members:view")


async def test_require_any_capability(gate, make_member) -> None:
    webmaster = await make_member("webmaster")
    actor = await gate.require_any_capability(
        make_request(auth_headers(webmaster)), ["finance:view", "publishing:manage"]
    )
    assert actor.id == webmaster.id

    with pytest.raises(InsufficientCapability) as exc_info:
        await gate.require_any_capability(make_request(auth_headers(webmaster)), ["finance:view", "exports:access"])
    assert exc_info.value.decision.missing_capabilities == ["exports:access", "finance:view"]


# ---------------------------------------------------------------------------
# Delegation and row policies through the gate
# ---------------------------------------------------------------------------

async def test_delegation_refused_while_impersonating(gate, make_member, make_committee, audit_sink) -> None:
    await make_committee("hiking")
    operator = await make_member("admin")
    target = await make_member("admin")
    with pytest.raises(DelegationDenied) as exc_info:
        await gate.require_delegation(
            make_request(auth_headers(target, impersonated_by=operator)), "hiking", "event-chair"
        )
    assert exc_info.value.sub_reason == "impersonating"
    assert audit_sink.records[-1].action == audit.IMPERSONATION_BLOCKED


async def test_anonymous_denial_on_row_policy_is_unauthenticated(gate, audit_sink) -> None:
    context = EventContext(id="evt-1", status="DRAFT")
    with pytest.raises(Unauthenticated):
        await gate.require_resource_access(
            make_request(), event_policy, context, EventAction.VIEW, anonymous=True,
        )
    record = audit_sink.records[-1]
    assert record.action == audit.POLICY_DECISION
    assert record.resource_type == "event"
    assert record.resource_id == "evt-1"


async def test_anonymous_view_of_public_event_is_allowed(gate) -> None:
    context = EventContext(id="evt-1", status="PUBLISHED")
    actor = await gate.require_resource_access(
        make_request(), event_policy, context, EventAction.VIEW, anonymous=True,
    )
    assert actor is None


async def test_policy_exception_becomes_internal_error(gate, audit_sink) -> None:
    actor = Actor(id="a1", role=Role.ADMIN)
    with pytest.raises(InternalError):
        await gate.require_resource_access(
            make_request(), BrokenPolicy(), EventContext(id="x", status="DRAFT"), "view", actor=actor,
        )
    assert audit_sink.records[-1].metadata["decision"]["code"] == "internal_error"


async def test_denied_mutation_records_no_before_after(gate, audit_sink) -> None:
    actor = Actor(id="m1", role=Role.MEMBER)
    with pytest.raises(PolicyDenied):
        await gate.require_resource_access(
            make_request(), event_policy, EventContext(id="e", status="DRAFT"), EventAction.EDIT_CONTENT,
            actor=actor, before={"title": "a"}, after={"title": "b"},
        )
    record = audit_sink.records[-1]
    assert record.before is None
    assert record.after is None
