"""
Member routes.
"""
from typing import Annotated, List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.members.models import Member
from app.features.members.schemas import MemberMe, MemberPublic
from app.features.permissions.catalog import MEMBERS_VIEW, ROLES_WITH_ASSIGN_AUTHORITY, capabilities_of
from app.features.permissions.dependencies import capability_guard, get_current_actor
from app.features.permissions.errors import Unauthenticated
from app.features.permissions.schemas import Actor


router = APIRouter()


@router.get("/me", response_model=MemberMe)
async def get_me(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Get the current member.

    While impersonating, this is the member being viewed; ``impersonated_by``
    names the operator.
    """
    member = await db.get(Member, actor.id)
    if member is None:
        # Resolved a moment ago; the row vanished mid-request.
        raise Unauthenticated()

    return MemberMe(
        id=member.id,
        name=member.name,
        email=member.email,
        role=actor.role.value if actor.role else None,
        is_impersonating=actor.is_impersonating,
        impersonated_by=actor.impersonated_by,
        capabilities=sorted(capabilities_of(actor.role)),
        can_assign_roles=actor.role in ROLES_WITH_ASSIGN_AUTHORITY,
        last_login_at=member.last_login_at,
    )


@router.get("", response_model=List[MemberPublic])
async def list_members(
    _actor: Annotated[Actor, Depends(capability_guard(MEMBERS_VIEW))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 100,
    include_inactive: bool = False,
):
    """List members (requires members:view)."""
    stmt = select(Member).order_by(Member.name)
    if not include_inactive:
        stmt = stmt.where(Member.is_active.is_(True))
    result = await db.execute(stmt.offset(skip).limit(min(limit, 500)))
    return result.scalars().all()
