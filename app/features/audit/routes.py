"""
Audit log routes.

Audit records carry internal reasons and missing-capability lists, so reading
them requires admin:full.
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.models import AuditLog
from app.features.audit.schemas import AuditLogListResponse, AuditLogResponse
from app.features.permissions.catalog import ADMIN_FULL
from app.features.permissions.dependencies import capability_guard
from app.features.permissions.schemas import Actor


router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    _actor: Annotated[Actor, Depends(capability_guard(ADMIN_FULL))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    decision: Optional[str] = None,
):
    """List audit logs with optional filtering, newest first."""
    limit = max(1, min(limit, 500))
    stmt = select(AuditLog)

    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if decision:
        stmt = stmt.where(AuditLog.decision == decision.upper())

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit
    page = (skip // limit) + 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
