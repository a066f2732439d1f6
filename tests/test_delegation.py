"""Delegation engine: authority, scope and escalation checks."""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio

from app.core.database.base import utcnow
from app.features.audit import emitter as audit
from app.features.committees.delegation import (
    ESCALATION,
    INACTIVE_UNIT,
    NO_AUTHORITY,
    OUT_OF_SCOPE,
    can_assign_roles,
    can_grant_capabilities,
    can_grant_role,
    delegation_audit_action,
    get_delegation_scope,
    validate_delegation,
)
from app.features.permissions.catalog import ALL_ROLES, Role, capabilities_of, is_full_admin
from app.features.permissions.schemas import DenialCode, PolicyDecision

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def committees(make_committee):
    for committee_id in ("hiking", "finance", "social"):
        await make_committee(committee_id)
    await make_committee("archive", is_active=False)


# ---------------------------------------------------------------------------
# Catalog-only checks
# ---------------------------------------------------------------------------

async def test_assign_authority_follows_allow_list() -> None:
    assert can_assign_roles("vp-activities")
    assert can_assign_roles(Role.ADMIN)
    assert not can_assign_roles("event-chair")
    assert not can_assign_roles("vp-something-new")
    assert not can_assign_roles(None)


async def test_cannot_grant_capabilities_not_held() -> None:
    decision = can_grant_capabilities("vp-communications", ["members:view", "finance:view"])
    assert not decision.allowed
    assert decision.sub_reason == ESCALATION
    assert decision.missing_capabilities == ["finance:view"]
    assert can_grant_capabilities("admin", ["finance:manage", "admin:full"]).allowed


async def test_granting_unknown_role_is_not_found() -> None:
    decision = can_grant_role("admin", "grand-poobah")
    assert decision.code == DenialCode.RESOURCE_NOT_FOUND


async def test_no_role_can_grant_more_than_it_holds() -> None:
    for assigner in ALL_ROLES:
        for target in ALL_ROLES:
            decision = can_grant_role(assigner, target)
            if decision.allowed and not is_full_admin(assigner):
                assert capabilities_of(target) <= capabilities_of(assigner), (assigner, target)
            if not decision.allowed:
                assert set(decision.missing_capabilities) == set(capabilities_of(target) - capabilities_of(assigner))


# ---------------------------------------------------------------------------
# Full validation
# ---------------------------------------------------------------------------

async def test_role_without_authority_is_refused_first(db_session, make_member) -> None:
    chair = await make_member("event-chair")
    decision = await validate_delegation(db_session, chair.id, chair.global_role, "does-not-matter", "member")
    assert not decision.allowed
    assert decision.code == DenialCode.DELEGATION_DENIED
    assert decision.sub_reason == NO_AUTHORITY
    assert "no assignment authority" in decision.reason


async def test_committee_assignment_role_does_not_confer_authority(
    db_session, committees, make_member, assign
) -> None:
    member = await make_member("member")
    await assign(member, "hiking", "vp-activities")
    decision = await validate_delegation(db_session, member.id, member.global_role, "hiking", "member")
    assert decision.sub_reason == NO_AUTHORITY


async def test_assignment_outside_scope_lists_assigner_committees(
    db_session, committees, make_member, assign
) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "hiking", "vp-activities")
    decision = await validate_delegation(db_session, vp.id, vp.global_role, "finance", "event-chair")
    assert not decision.allowed
    assert decision.sub_reason == OUT_OF_SCOPE
    assert decision.assigner_committees == ["hiking"]


async def test_assignment_escalating_capabilities_is_refused(
    db_session, committees, make_member, assign
) -> None:
    vp = await make_member("vp-communications")
    await assign(vp, "social", "vp-communications")
    decision = await validate_delegation(db_session, vp.id, vp.global_role, "social", "event-chair")
    assert not decision.allowed
    assert decision.sub_reason == ESCALATION
    assert decision.missing_capabilities == ["registrations:view"]


async def test_delegation_within_scope_is_allowed(db_session, committees, make_member, assign) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "hiking", "vp-activities")
    decision = await validate_delegation(db_session, vp.id, vp.global_role, "hiking", "event-chair")
    assert decision.allowed
    assert decision.details["target_role"] == "event-chair"


async def test_vp_cannot_create_a_president(db_session, committees, make_member, assign) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "hiking", "vp-activities")
    decision = await validate_delegation(db_session, vp.id, vp.global_role, "hiking", "president")
    assert decision.sub_reason == ESCALATION
    assert "finance:view" in decision.missing_capabilities


async def test_inactive_committee_accepts_no_assignments(db_session, committees, make_member, assign) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "archive", "vp-activities")
    decision = await validate_delegation(db_session, vp.id, vp.global_role, "archive", "member")
    assert decision.sub_reason == INACTIVE_UNIT
    assert decision.assigner_committees == []

    admin = await make_member("admin")
    decision = await validate_delegation(db_session, admin.id, admin.global_role, "archive", "member")
    assert decision.sub_reason == INACTIVE_UNIT


async def test_missing_committee_is_not_found(db_session, committees, make_member) -> None:
    admin = await make_member("admin")
    decision = await validate_delegation(db_session, admin.id, admin.global_role, "chess", "member")
    assert decision.code == DenialCode.RESOURCE_NOT_FOUND


async def test_unknown_target_role_is_not_found(db_session, committees, make_member) -> None:
    admin = await make_member("admin")
    decision = await validate_delegation(db_session, admin.id, admin.global_role, "hiking", "overlord")
    assert decision.code == DenialCode.RESOURCE_NOT_FOUND


async def test_admin_may_assign_any_role_in_any_active_committee(db_session, committees, make_member) -> None:
    admin = await make_member("admin")
    for committee_id in ("hiking", "finance", "social"):
        decision = await validate_delegation(db_session, admin.id, admin.global_role, committee_id, "president")
        assert decision.allowed, committee_id


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

async def test_admin_scope_is_every_active_committee(db_session, committees, make_member) -> None:
    admin = await make_member("admin")
    scope = await get_delegation_scope(db_session, admin.id, admin.global_role)
    assert scope.is_global
    assert scope.sorted_ids() == ["finance", "hiking", "social"]


async def test_scope_of_role_without_authority_is_empty(db_session, committees, make_member, assign) -> None:
    chair = await make_member("event-chair")
    await assign(chair, "hiking", "event-chair")
    scope = await get_delegation_scope(db_session, chair.id, chair.global_role)
    assert scope.sorted_ids() == []
    assert not scope.is_global


async def test_scope_only_counts_assignments_active_now(db_session, committees, make_member, assign) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "hiking", "vp-activities", ended=timedelta(days=1))
    await assign(vp, "social", "vp-activities", started=timedelta(days=-5))
    await assign(vp, "finance", "vp-activities")

    scope = await get_delegation_scope(db_session, vp.id, vp.global_role)
    assert scope.sorted_ids() == ["finance"]
    assert "hiking" not in scope

    decision = await validate_delegation(db_session, vp.id, vp.global_role, "hiking", "member")
    assert decision.sub_reason == OUT_OF_SCOPE


async def test_scope_is_evaluated_at_the_given_time(db_session, committees, make_member, assign) -> None:
    vp = await make_member("vp-activities")
    await assign(vp, "hiking", "vp-activities", started=timedelta(days=10))
    decision = await validate_delegation(
        db_session, vp.id, vp.global_role, "hiking", "member", as_of=utcnow() - timedelta(days=20)
    )
    assert decision.sub_reason == OUT_OF_SCOPE


# ---------------------------------------------------------------------------
# Audit mapping
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "sub_reason, expected",
    [
        (NO_AUTHORITY, audit.ASSIGNMENT_DENIED_NO_AUTHORITY),
        (OUT_OF_SCOPE, audit.CROSS_SCOPE_BLOCKED),
        (INACTIVE_UNIT, audit.CROSS_SCOPE_BLOCKED),
        (ESCALATION, audit.ESCALATION_BLOCKED),
        ("impersonating", audit.IMPERSONATION_BLOCKED),
        (None, audit.DELEGATION_DENIED),
    ],
)
async def test_delegation_audit_action(sub_reason, expected) -> None:
    decision = PolicyDecision.deny(DenialCode.DELEGATION_DENIED, "no", sub_reason=sub_reason)
    assert delegation_audit_action(decision) == expected


async def test_allowed_delegation_audit_action() -> None:
    assert delegation_audit_action(PolicyDecision.allow("ok")) == audit.DELEGATION_ALLOWED
