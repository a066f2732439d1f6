"""
Event row-level policy.

Decides view / edit_content / edit_status / delete / register for a single
event from the actor's role, whether the actor chairs the event, and the
event's lifecycle state. Peer roles (``EVENT_PEER_ROLES``) view and edit any
event; deletion still needs ``events:delete``.

``EventPolicy.filter_for`` builds the list-view predicate from the same
rules as the view decision.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Union

from sqlalchemy import ColumnElement, or_, true

from app.core.database.base import as_utc, utcnow
from app.features.events.models import Event, EventStatus
from app.features.permissions.catalog import EVENTS_DELETE, has_capability, is_event_peer, is_full_admin
from app.features.permissions.policy import ResourcePolicy, register_policy
from app.features.permissions.schemas import Actor, DenialCode, PolicyDecision


class EventAction(str, enum.Enum):
    VIEW = "view"
    EDIT_CONTENT = "edit_content"
    EDIT_STATUS = "edit_status"
    DELETE = "delete"
    REGISTER = "register"
    VIEW_DETAILS = "view_details"
    CANCEL_REGISTRATION = "cancel_registration"


# ============================================================================
# Lifecycle tables
# ============================================================================

PUBLIC_STATES: frozenset[EventStatus] = frozenset({EventStatus.PUBLISHED, EventStatus.COMPLETED})

EDITABLE_STATES: frozenset[EventStatus] = frozenset({EventStatus.DRAFT, EventStatus.CHANGES_REQUESTED})

CANCELABLE_STATES: frozenset[EventStatus] = frozenset({
    EventStatus.DRAFT,
    EventStatus.PENDING_APPROVAL,
    EventStatus.CHANGES_REQUESTED,
    EventStatus.APPROVED,
    EventStatus.PUBLISHED,
})

# COMPLETED is set by the system once an event has run; nobody moves an event there.
SYSTEM_ONLY_STATES: frozenset[EventStatus] = frozenset({EventStatus.COMPLETED})

PEER_TRANSITIONS: Mapping[EventStatus, frozenset[EventStatus]] = MappingProxyType({
    EventStatus.DRAFT: frozenset({EventStatus.PENDING_APPROVAL}),
    EventStatus.PENDING_APPROVAL: frozenset({EventStatus.APPROVED, EventStatus.CHANGES_REQUESTED}),
    EventStatus.CHANGES_REQUESTED: frozenset({EventStatus.PENDING_APPROVAL}),
    EventStatus.APPROVED: frozenset({EventStatus.PUBLISHED}),
})

CHAIR_TRANSITIONS: Mapping[EventStatus, frozenset[EventStatus]] = MappingProxyType({
    EventStatus.DRAFT: frozenset({EventStatus.PENDING_APPROVAL}),
    EventStatus.CHANGES_REQUESTED: frozenset({EventStatus.PENDING_APPROVAL}),
})

_NONE: frozenset[EventStatus] = frozenset()


def _parse_status(value: Union[EventStatus, str, None]) -> Optional[EventStatus]:
    if isinstance(value, EventStatus):
        return value
    try:
        return EventStatus(value)
    except ValueError:
        return None


def _state_list(states: frozenset[EventStatus]) -> str:
    return ", ".join(sorted(s.value for s in states))


# ============================================================================
# Context
# ============================================================================

@dataclass(frozen=True)
class EventContext:
    """
    The facts about one event that the policy decides on.

    ``target_status`` is only read by edit_status; ``as_of`` by register and
    cancel_registration.
    """
    id: Optional[str]
    status: str
    chair_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    target_status: Optional[str] = None
    as_of: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: Event, target_status: Union[EventStatus, str, None] = None) -> "EventContext":
        if isinstance(target_status, EventStatus):
            target_status = target_status.value
        return cls(
            id=event.id,
            status=event.status,
            chair_id=event.chair_id,
            start_time=event.start_time,
            end_time=event.end_time,
            target_status=target_status,
        )

    def is_chaired_by(self, actor: Optional[Actor]) -> bool:
        return actor is not None and self.chair_id is not None and self.chair_id == actor.id


# ============================================================================
# Policy
# ============================================================================

class EventPolicy(ResourcePolicy[EventContext]):
    resource_type = "event"
    actions = tuple(a.value for a in EventAction)

    def _decide(self, actor: Optional[Actor], context: EventContext, action: str) -> PolicyDecision:
        if action == EventAction.VIEW:
            return self._view(actor, context)
        if action == EventAction.EDIT_CONTENT:
            return self._edit_content(actor, context)
        if action == EventAction.EDIT_STATUS:
            return self._edit_status(actor, context)
        if action == EventAction.DELETE:
            return self._delete(actor, context)
        if action == EventAction.VIEW_DETAILS:
            return self._view_details(actor, context)
        if action == EventAction.CANCEL_REGISTRATION:
            return self._cancel_registration(actor, context)
        return self._register(actor, context)

    def filter_for(self, actor: Optional[Actor]) -> ColumnElement[bool]:
        public = Event.status.in_([s.value for s in PUBLIC_STATES])
        if actor is None:
            return public
        if is_event_peer(actor.role):
            return true()
        return or_(public, Event.chair_id == actor.id)

    def allowed_transitions(self, actor: Optional[Actor], context: EventContext) -> frozenset[EventStatus]:
        """Statuses ``actor`` may move this event to from its current status."""
        if actor is None:
            return _NONE
        current = _parse_status(context.status)

        if is_full_admin(actor.role):
            return frozenset(s for s in EventStatus if s not in SYSTEM_ONLY_STATES and s != current)
        if current is None:
            return _NONE
        if is_event_peer(actor.role):
            targets = PEER_TRANSITIONS.get(current, _NONE)
            if current in CANCELABLE_STATES:
                targets = targets | {EventStatus.CANCELED}
            return targets
        if context.is_chaired_by(actor):
            return CHAIR_TRANSITIONS.get(current, _NONE)
        return _NONE

    # ------------------------------------------------------------------

    def _view(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is not None and is_event_peer(actor.role):
            return PolicyDecision.allow("Peer role may view any event")
        if context.is_chaired_by(actor):
            return PolicyDecision.allow("Chair may view own event")
        if _parse_status(context.status) in PUBLIC_STATES:
            return PolicyDecision.allow("Event is public")
        return PolicyDecision.deny(
            DenialCode.POLICY_DENIED,
            f"Event in state {context.status} is not visible to this member",
            action=EventAction.VIEW.value,
            status=context.status,
        )

    def _edit_content(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is None:
            return _anonymous(EventAction.EDIT_CONTENT)
        if _parse_status(context.status) not in EDITABLE_STATES:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Event can only be edited in states: {_state_list(EDITABLE_STATES)}",
                action=EventAction.EDIT_CONTENT.value,
                status=context.status,
                editable_states=sorted(s.value for s in EDITABLE_STATES),
            )
        if is_event_peer(actor.role):
            return PolicyDecision.allow("Peer role may edit any event")
        if context.is_chaired_by(actor):
            return PolicyDecision.allow("Chair may edit own event")
        return PolicyDecision.deny(
            DenialCode.POLICY_DENIED,
            "Only the event chair or a peer role may edit this event",
            action=EventAction.EDIT_CONTENT.value,
            status=context.status,
        )

    def _edit_status(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is None:
            return _anonymous(EventAction.EDIT_STATUS)
        allowed = self.allowed_transitions(actor, context)

        if context.target_status is None:
            if allowed:
                return PolicyDecision.allow(
                    "Status changes available",
                    transitions=sorted(s.value for s in allowed),
                )
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"No status changes available from {context.status}",
                action=EventAction.EDIT_STATUS.value,
                status=context.status,
            )

        target = _parse_status(context.target_status)
        if target is None:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Unknown event status: {context.target_status}",
                action=EventAction.EDIT_STATUS.value,
                status=context.status,
            )
        if target in SYSTEM_ONLY_STATES:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Events cannot be moved to {target.value} manually",
                action=EventAction.EDIT_STATUS.value,
                status=context.status,
                target_status=target.value,
            )
        if target in allowed:
            return PolicyDecision.allow(
                f"Transition {context.status} -> {target.value} permitted",
                status=context.status,
                target_status=target.value,
            )
        return PolicyDecision.deny(
            DenialCode.POLICY_DENIED,
            f"Transition {context.status} -> {target.value} is not permitted",
            action=EventAction.EDIT_STATUS.value,
            status=context.status,
            target_status=target.value,
            allowed_transitions=sorted(s.value for s in allowed),
        )

    def _delete(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is None:
            return _anonymous(EventAction.DELETE)
        if has_capability(actor.role, EVENTS_DELETE):
            return PolicyDecision.allow("Has capability: events:delete")
        reason = "Deleting events requires events:delete"
        if is_event_peer(actor.role):
            reason += "; use the cancellation workflow instead"
        return PolicyDecision.deny(
            DenialCode.POLICY_DENIED,
            reason,
            missing_capabilities=[EVENTS_DELETE],
            action=EventAction.DELETE.value,
            status=context.status,
        )

    def _register(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is None:
            return _anonymous(EventAction.REGISTER)
        if context.status != EventStatus.PUBLISHED:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Registration is only open for PUBLISHED events (event is {context.status})",
                action=EventAction.REGISTER.value,
                status=context.status,
            )
        ends_at = context.end_time or context.start_time
        now = context.as_of or utcnow()
        if ends_at is not None and as_utc(ends_at) <= now:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                "Event has already ended",
                action=EventAction.REGISTER.value,
                status=context.status,
            )
        return PolicyDecision.allow("Registration open")

    def _view_details(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        """Registrations and internal notes: the chair and peer roles only."""
        if actor is None:
            return _anonymous(EventAction.VIEW_DETAILS)
        if is_event_peer(actor.role):
            return PolicyDecision.allow("Peer role may view event details")
        if context.is_chaired_by(actor):
            return PolicyDecision.allow("Chair may view own event details")
        return PolicyDecision.deny(
            DenialCode.POLICY_DENIED,
            "Only the event chair or a peer role may view event details",
            action=EventAction.VIEW_DETAILS.value,
            status=context.status,
        )

    def _cancel_registration(self, actor: Optional[Actor], context: EventContext) -> PolicyDecision:
        if actor is None:
            return _anonymous(EventAction.CANCEL_REGISTRATION)
        if context.status != EventStatus.PUBLISHED:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Registrations can only be cancelled for PUBLISHED events (event is {context.status})",
                action=EventAction.CANCEL_REGISTRATION.value,
                status=context.status,
            )
        now = context.as_of or utcnow()
        if context.start_time is not None and as_utc(context.start_time) <= now:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                "Event has already started",
                action=EventAction.CANCEL_REGISTRATION.value,
                status=context.status,
            )
        return PolicyDecision.allow("Registration can be cancelled")


def _anonymous(action: EventAction) -> PolicyDecision:
    return PolicyDecision.deny(
        DenialCode.POLICY_DENIED,
        f"Sign-in required to {action.value.replace('_', ' ')}",
        action=action.value,
    )


event_policy = EventPolicy()
register_policy(event_policy)
