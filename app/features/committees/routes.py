"""
Committee feature routes.

Role assignments are created and closed only after the delegation engine
allows the caller to grant that role in that committee.
"""
from datetime import datetime, timedelta
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import as_utc, utcnow
from app.core.database.engine import get_db
from app.features.audit import emitter as audit
from app.features.committees.delegation import can_assign_roles, get_delegation_scope
from app.features.committees.dependencies import get_assignment_in_committee, get_committee_by_id
from app.features.committees.models import Committee, RoleAssignment
from app.features.committees.schemas import (
    CommitteeResponse,
    DelegationScopeResponse,
    RoleAssignmentCreate,
    RoleAssignmentEnd,
    RoleAssignmentResponse,
)
from app.features.members.models import Member
from app.features.permissions.catalog import MEMBERS_VIEW, Role
from app.features.permissions.dependencies import capability_guard, get_current_actor, get_gate
from app.features.permissions.gate import AuthorizationGate
from app.features.permissions.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

# Clock skew allowed between the client and the server when dating an assignment.
BACKDATE_TOLERANCE = timedelta(minutes=5)


def _reject_backdated(value: datetime, field: str) -> None:
    """Assignment history is never rewritten: start and end dates cannot lie in the past."""
    if value < utcnow() - BACKDATE_TOLERANCE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field} cannot be in the past"
        )


def _snapshot(assignment: RoleAssignment) -> Dict[str, Any]:
    """JSON-safe view of an assignment for audit before/after."""
    return {
        "id": assignment.id,
        "memberId": assignment.member_id,
        "committeeId": assignment.committee_id,
        "role": assignment.role,
        "startDate": as_utc(assignment.start_date).isoformat(),
        "endDate": as_utc(assignment.end_date).isoformat() if assignment.end_date else None,
        "assignedById": assignment.assigned_by_id,
    }


# ============================================================================
# Committees
# ============================================================================

@router.get("", response_model=list[CommitteeResponse])
async def list_committees(
    _actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = False,
):
    """List committees."""
    query = select(Committee).order_by(Committee.name)
    if not include_inactive:
        query = query.where(Committee.is_active.is_(True))
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/scope", response_model=DelegationScopeResponse)
async def get_my_scope(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Committees in which the caller may currently assign roles."""
    scope = await get_delegation_scope(db, actor.id, actor.role)
    return DelegationScopeResponse(
        member_id=actor.id,
        role=actor.role.value if actor.role else None,
        can_assign_roles=can_assign_roles(actor.role) and not actor.is_impersonating,
        is_global=scope.is_global,
        committee_ids=scope.sorted_ids(),
    )


# ============================================================================
# Role assignments
# ============================================================================

@router.get("/{committee_id}/assignments", response_model=list[RoleAssignmentResponse])
async def list_assignments(
    _actor: Annotated[Actor, Depends(capability_guard(MEMBERS_VIEW))],
    committee: Annotated[Committee, Depends(get_committee_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    active_only: bool = True,
):
    """List role assignments in a committee (requires members:view)."""
    query = select(RoleAssignment).where(RoleAssignment.committee_id == committee.id)
    if active_only:
        query = query.where(RoleAssignment.active_at(utcnow()))
    result = await db.execute(query.order_by(RoleAssignment.start_date))
    return result.scalars().all()


@router.post(
    "/{committee_id}/assignments",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_assignment(
    committee_id: str,
    body: RoleAssignmentCreate,
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Assign a member to a role inside a committee.

    The caller needs assignment authority, the committee must be active and in
    the caller's delegation scope, and the caller must hold every capability
    the role grants.
    """
    actor = await gate.require_delegation(request, committee_id, body.role)

    member = await db.get(Member, body.member_id)
    if member is None or not member.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found"
        )

    start_date = as_utc(body.start_date) if body.start_date else utcnow()
    _reject_backdated(start_date, "Start date")

    assignment = RoleAssignment(
        member_id=member.id,
        committee_id=committee_id,
        role=Role(body.role).value,
        start_date=start_date,
        end_date=None,
        assigned_by_id=actor.id,
    )
    db.add(assignment)
    await db.commit()
    await db.refresh(assignment)

    await gate.audit.record(
        audit.ROLE_ASSIGNED,
        actor,
        None,
        resource_type="role_assignment",
        resource_id=assignment.id,
        after=_snapshot(assignment),
        request=request,
    )
    log.info("%s assigned %s as %s in %s", actor.id, member.id, assignment.role, committee_id)
    return assignment


@router.post("/{committee_id}/assignments/{assignment_id}/end", response_model=RoleAssignmentResponse)
async def end_assignment(
    committee_id: str,
    assignment_id: str,
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
    body: RoleAssignmentEnd | None = None,
):
    """
    Close an open role assignment by setting its end date.

    Requires the same delegation authority as granting the role.
    Assignments are never deleted.
    """
    actor = await gate.require_authentication(request)
    assignment = await get_assignment_in_committee(committee_id, assignment_id, db)
    await gate.require_delegation(request, committee_id, assignment.role, actor=actor)

    if assignment.end_date is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role assignment has already ended"
        )

    end_date = as_utc(body.end_date) if body and body.end_date else utcnow()
    _reject_backdated(end_date, "End date")
    if end_date < as_utc(assignment.start_date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="End date cannot be before start date"
        )

    before = _snapshot(assignment)
    assignment.end_date = end_date
    await db.commit()
    await db.refresh(assignment)

    await gate.audit.record(
        audit.ROLE_ASSIGNMENT_ENDED,
        actor,
        None,
        resource_type="role_assignment",
        resource_id=assignment.id,
        before=before,
        after=_snapshot(assignment),
        request=request,
    )
    log.info("%s ended assignment %s", actor.id, assignment.id)
    return assignment
