"""
Committee-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.committees.models import Committee, RoleAssignment


async def get_committee_by_id(
    committee_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Committee:
    """
    Get committee by ID or raise 404.

    Args:
        committee_id: Committee id
        db: Database session

    Returns:
        Committee model

    Raises:
        HTTPException: 404 if committee not found
    """
    committee = await db.get(Committee, committee_id)
    if committee is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Committee not found"
        )
    return committee


async def get_assignment_in_committee(
    committee_id: str,
    assignment_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> RoleAssignment:
    """
    Get a role assignment belonging to ``committee_id`` or raise 404.
    """
    result = await db.execute(
        select(RoleAssignment).where(
            RoleAssignment.id == assignment_id,
            RoleAssignment.committee_id == committee_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role assignment not found"
        )
    return assignment
