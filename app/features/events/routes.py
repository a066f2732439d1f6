"""
Event feature routes.

Every route asks the event policy through the authorization gate; list views
use the policy's query filter so they show exactly the events the detail
view would allow.
"""
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import as_utc
from app.core.database.engine import get_db
from app.features.audit import emitter as audit
from app.features.events.models import Event, EventStatus
from app.features.events.policy import EventAction, EventContext, event_policy
from app.features.events.schemas import (
    ActionDecision,
    EventAccessResponse,
    EventResponse,
    EventStatusUpdate,
    EventUpdate,
)
from app.features.permissions.catalog import EVENTS_DELETE
from app.features.permissions.dependencies import get_gate, get_optional_actor
from app.features.permissions.gate import AuthorizationGate
from app.features.permissions.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _get_event(db: AsyncSession, event_id: str) -> Event:
    event = await db.get(Event, event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found"
        )
    return event


def _snapshot(event: Event) -> Dict[str, Any]:
    """JSON-safe view of an event for audit before/after."""
    return {
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "status": event.status,
        "chairId": event.chair_id,
        "committeeId": event.committee_id,
        "startTime": as_utc(event.start_time).isoformat() if event.start_time else None,
        "endTime": as_utc(event.end_time).isoformat() if event.end_time else None,
    }


# ============================================================================
# Read
# ============================================================================

@router.get("", response_model=list[EventResponse])
async def list_events(
    actor: Annotated[Optional[Actor], Depends(get_optional_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
    status_filter: EventStatus | None = None,
):
    """List the events visible to the caller. Anonymous callers see public events."""
    query = select(Event).where(event_policy.filter_for(actor))
    if status_filter is not None:
        query = query.where(Event.status == status_filter.value)
    query = query.order_by(Event.start_time).offset(skip).limit(min(limit, 200))
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: str,
    request: Request,
    actor: Annotated[Optional[Actor], Depends(get_optional_actor)],
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get one event."""
    event = await _get_event(db, event_id)
    await gate.require_resource_access(
        request, event_policy, EventContext.from_event(event), EventAction.VIEW,
        actor=actor, anonymous=True,
    )
    return event


@router.get("/{event_id}/access", response_model=EventAccessResponse)
async def get_event_access(
    event_id: str,
    request: Request,
    actor: Annotated[Optional[Actor], Depends(get_optional_actor)],
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Decision for every event action, for the caller.

    Advisory: each action endpoint still enforces its own decision.
    """
    event = await _get_event(db, event_id)
    context = EventContext.from_event(event)
    await gate.require_resource_access(
        request, event_policy, context, EventAction.VIEW, actor=actor, anonymous=True,
    )

    decisions = event_policy.decide_all(actor, context)
    return EventAccessResponse(
        event_id=event.id,
        status=event.status,
        actions={
            action: ActionDecision(allowed=decision.allowed, reason=decision.reason)
            for action, decision in decisions.items()
        },
        transitions=sorted(s.value for s in event_policy.allowed_transitions(actor, context)),
    )


# ============================================================================
# Write
# ============================================================================

@router.patch("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: str,
    body: EventUpdate,
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Edit event content. Only allowed while the event is in an editable state.

    The change is audited with before/after once it has been committed.
    """
    actor = await gate.require_authentication(request)
    event = await _get_event(db, event_id)
    await gate.require_resource_access(
        request, event_policy, EventContext.from_event(event), EventAction.EDIT_CONTENT, actor=actor,
    )

    update_data = body.model_dump(exclude_unset=True)
    start_time = update_data.get("start_time", event.start_time)
    end_time = update_data.get("end_time", event.end_time)
    if end_time is not None and as_utc(end_time) < as_utc(start_time):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="End time cannot be before start time"
        )

    before = _snapshot(event)
    for key, value in update_data.items():
        setattr(event, key, value)
    await db.commit()
    await db.refresh(event)

    await gate.audit.record(
        audit.EVENT_UPDATED,
        actor,
        None,
        {"fields": sorted(update_data)},
        resource_type=event_policy.resource_type,
        resource_id=event.id,
        before=before,
        after=_snapshot(event),
        request=request,
    )
    return event


@router.post("/{event_id}/status", response_model=EventResponse)
async def change_event_status(
    event_id: str,
    body: EventStatusUpdate,
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Move an event to another lifecycle state."""
    actor = await gate.require_authentication(request)
    event = await _get_event(db, event_id)

    previous = event.status
    await gate.require_resource_access(
        request,
        event_policy,
        EventContext.from_event(event, target_status=body.status),
        EventAction.EDIT_STATUS,
        actor=actor,
        before={"status": previous},
        after={"status": body.status.value},
    )

    event.status = body.status.value
    await db.commit()
    await db.refresh(event)
    log.info("Event %s moved %s -> %s by %s", event.id, previous, event.status, actor.id)
    return event


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete an event (requires events:delete; refused while impersonating)."""
    actor = await gate.require_capability_safe(request, EVENTS_DELETE)
    event = await _get_event(db, event_id)

    await gate.require_resource_access(
        request, event_policy, EventContext.from_event(event), EventAction.DELETE,
        actor=actor, before=_snapshot(event),
    )

    await db.delete(event)
    await db.commit()
    log.info("Event %s deleted by %s", event_id, actor.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
