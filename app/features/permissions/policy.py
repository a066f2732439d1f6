"""
Row-level policy interface.

One ResourcePolicy per resource kind. ``decide`` answers for a single
instance; ``filter_for`` returns the SQL predicate that selects exactly the
instances ``decide(actor, instance, "view")`` would allow, so list views and
detail views cannot disagree.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, TypeVar

from sqlalchemy import ColumnElement

from app.features.permissions.schemas import Actor, DenialCode, PolicyDecision


ContextT = TypeVar("ContextT")

VIEW = "view"


class ResourcePolicy(ABC, Generic[ContextT]):
    """Base class for per-resource authorization policies."""

    resource_type: str = ""
    actions: tuple[str, ...] = ()

    def decide(self, actor: Optional[Actor], context: ContextT, action: str) -> PolicyDecision:
        """Allow or deny ``action`` on one resource instance. Unknown actions are denied."""
        if action not in self.actions:
            return PolicyDecision.deny(
                DenialCode.POLICY_DENIED,
                f"Unknown {self.resource_type} action: {action}",
                action=action,
            )
        return self._decide(actor, context, action)

    def decide_all(self, actor: Optional[Actor], context: ContextT) -> Dict[str, PolicyDecision]:
        """Decision for every action, e.g. to tell a UI which controls to show."""
        return {action: self.decide(actor, context, action) for action in self.actions}

    @abstractmethod
    def _decide(self, actor: Optional[Actor], context: ContextT, action: str) -> PolicyDecision:
        ...

    @abstractmethod
    def filter_for(self, actor: Optional[Actor]) -> ColumnElement[bool]:
        """SQL predicate selecting the instances ``actor`` may view."""
        ...


_POLICIES: Dict[str, ResourcePolicy[Any]] = {}


def register_policy(policy: ResourcePolicy[Any]) -> ResourcePolicy[Any]:
    if policy.resource_type in _POLICIES:
        raise ValueError(f"Policy already registered for {policy.resource_type!r}")
    _POLICIES[policy.resource_type] = policy
    return policy


def get_policy(resource_type: str) -> ResourcePolicy[Any]:
    try:
        return _POLICIES[resource_type]
    except KeyError:
        raise LookupError(f"No policy registered for {resource_type!r}") from None
