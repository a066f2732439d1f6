"""
Delegation Engine.

Answers "may member A assign role X inside committee U?". Three independent
checks must all pass, evaluated in this order and short-circuiting on the
first failure:

1. Authority: the assigner's role is on the assignment-authority allow-list.
2. Scope: the committee exists, is active, and is inside the assigner's
   delegation scope.
3. Escalation: every capability the target role implies is held by the
   assigner, unless the assigner is a full admin.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.features.audit import emitter as audit
from app.features.committees.models import Committee, RoleAssignment
from app.features.permissions.catalog import (
    ROLES_WITH_ASSIGN_AUTHORITY,
    Role,
    capabilities_of,
    is_full_admin,
)
from app.features.permissions.schemas import DenialCode, PolicyDecision
from app.utils import get_logger


log = get_logger(__name__)

RoleLike = Union[Role, str, None]

NO_AUTHORITY = "no_authority"
OUT_OF_SCOPE = "out_of_scope"
INACTIVE_UNIT = "inactive_unit"
ESCALATION = "escalation"
IMPERSONATING = "impersonating"


@dataclass(frozen=True)
class DelegationScope:
    """
    Committees in which a member may currently create role assignments.

    Derived on demand; never stored.
    """
    committee_ids: frozenset[str]
    is_global: bool = False

    def __contains__(self, committee_id: object) -> bool:
        return committee_id in self.committee_ids

    def sorted_ids(self) -> list[str]:
        return sorted(self.committee_ids)


EMPTY_SCOPE = DelegationScope(committee_ids=frozenset())


# ============================================================================
# Static checks (catalog only)
# ============================================================================

def can_assign_roles(role: RoleLike) -> bool:
    """True if ``role`` is on the assignment-authority allow-list."""
    return Role.parse(role) in ROLES_WITH_ASSIGN_AUTHORITY


def can_grant_capabilities(role: RoleLike, capabilities: Iterable[str]) -> PolicyDecision:
    """
    Escalation check: ``role`` may only grant capabilities it holds itself.

    A full admin may grant anything.
    """
    requested = frozenset(capabilities)
    if is_full_admin(role):
        return PolicyDecision.allow("Full admin may grant any capability")

    missing = requested - capabilities_of(role)
    if missing:
        return PolicyDecision.deny(
            DenialCode.DELEGATION_DENIED,
            f"Cannot grant capabilities not held: {', '.join(sorted(missing))}",
            sub_reason=ESCALATION,
            missing_capabilities=list(missing),
        )
    return PolicyDecision.allow("All requested capabilities are held by the assigner")


def can_grant_role(role: RoleLike, target_role: RoleLike) -> PolicyDecision:
    """Escalation check for the capability set implied by ``target_role``."""
    parsed = Role.parse(target_role)
    if parsed is None:
        return PolicyDecision.deny(
            DenialCode.RESOURCE_NOT_FOUND,
            f"Unknown role: {target_role}",
            target_role=str(target_role),
        )
    decision = can_grant_capabilities(role, capabilities_of(parsed))
    if decision.allowed:
        return PolicyDecision.allow(f"May grant role {parsed.value}", target_role=parsed.value)
    return decision


# ============================================================================
# Scope (reads the store)
# ============================================================================

async def get_delegation_scope(
    db: AsyncSession,
    member_id: str,
    role: RoleLike,
    as_of: Optional[datetime] = None,
) -> DelegationScope:
    """
    Compute the delegation scope of a member.

    Args:
        db: Database session
        member_id: The assigner
        role: The assigner's global role
        as_of: Evaluation time (defaults to now)

    Returns:
        Every active committee for a full admin; otherwise the active
        committees where the member holds an active role assignment. Empty
        for roles without assignment authority.
    """
    if not can_assign_roles(role):
        return EMPTY_SCOPE

    if is_full_admin(role):
        result = await db.execute(select(Committee.id).where(Committee.is_active.is_(True)))
        return DelegationScope(committee_ids=frozenset(result.scalars().all()), is_global=True)

    as_of = as_of or utcnow()
    stmt = (
        select(RoleAssignment.committee_id)
        .join(Committee, Committee.id == RoleAssignment.committee_id)
        .where(
            RoleAssignment.member_id == member_id,
            RoleAssignment.active_at(as_of),
            Committee.is_active.is_(True),
        )
        .distinct()
    )
    result = await db.execute(stmt)
    return DelegationScope(committee_ids=frozenset(result.scalars().all()))


async def can_assign_to_committee(
    db: AsyncSession,
    member_id: str,
    role: RoleLike,
    committee_id: str,
    as_of: Optional[datetime] = None,
) -> PolicyDecision:
    """Scope check: the committee exists, is active, and is inside the member's scope."""
    committee = await db.get(Committee, committee_id)
    if committee is None:
        return PolicyDecision.deny(
            DenialCode.RESOURCE_NOT_FOUND,
            f"Committee not found: {committee_id}",
            committee_id=committee_id,
        )

    scope = await get_delegation_scope(db, member_id, role, as_of)

    if not committee.is_active:
        return PolicyDecision.deny(
            DenialCode.DELEGATION_DENIED,
            f"Committee {committee_id} is inactive and accepts no new assignments",
            sub_reason=INACTIVE_UNIT,
            assigner_committees=scope.sorted_ids(),
            committee_id=committee_id,
        )

    if committee_id not in scope:
        return PolicyDecision.deny(
            DenialCode.DELEGATION_DENIED,
            f"Committee {committee_id} is outside the assigner's delegation scope",
            sub_reason=OUT_OF_SCOPE,
            assigner_committees=scope.sorted_ids(),
            committee_id=committee_id,
        )

    return PolicyDecision.allow(f"Committee {committee_id} is within delegation scope", committee_id=committee_id)


# ============================================================================
# Combined check
# ============================================================================

async def validate_delegation(
    db: AsyncSession,
    assigner_id: str,
    assigner_role: RoleLike,
    target_committee_id: str,
    target_role: RoleLike,
    as_of: Optional[datetime] = None,
) -> PolicyDecision:
    """
    Decide whether ``assigner_id`` may assign ``target_role`` in ``target_committee_id``.

    Returns:
        PolicyDecision. Denials carry ``sub_reason`` (no_authority,
        out_of_scope, inactive_unit or escalation), ``assigner_committees``
        for scope failures and ``missing_capabilities`` for escalation.
        A missing committee or unknown role is a RESOURCE_NOT_FOUND denial.
    """
    if not can_assign_roles(assigner_role):
        return PolicyDecision.deny(
            DenialCode.DELEGATION_DENIED,
            f"Role {assigner_role or 'none'} has no assignment authority",
            sub_reason=NO_AUTHORITY,
        )

    scope_decision = await can_assign_to_committee(db, assigner_id, assigner_role, target_committee_id, as_of)
    if not scope_decision.allowed:
        return scope_decision

    escalation_decision = can_grant_role(assigner_role, target_role)
    if not escalation_decision.allowed:
        return escalation_decision

    log.debug("Delegation of %s into %s permitted for %s", target_role, target_committee_id, assigner_id)
    return PolicyDecision.allow(
        "Delegation permitted",
        committee_id=target_committee_id,
        target_role=Role.parse(target_role).value,
    )


def delegation_audit_action(decision: PolicyDecision) -> str:
    """Audit action name for a delegation decision."""
    if decision.allowed:
        return audit.DELEGATION_ALLOWED
    if decision.sub_reason == NO_AUTHORITY:
        return audit.ASSIGNMENT_DENIED_NO_AUTHORITY
    if decision.sub_reason in (OUT_OF_SCOPE, INACTIVE_UNIT):
        return audit.CROSS_SCOPE_BLOCKED
    if decision.sub_reason == ESCALATION:
        return audit.ESCALATION_BLOCKED
    if decision.sub_reason == IMPERSONATING:
        return audit.IMPERSONATION_BLOCKED
    return audit.DELEGATION_DENIED
