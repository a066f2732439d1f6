"""
Authorization error taxonomy.

Ordinary "access denied" outcomes are PolicyDecision values. These exceptions
exist for the HTTP boundary: the gate raises them once a decision has been
audited, and ``app.main`` turns them into ``{error, message}`` responses.
``message`` is safe to show end users; the full decision stays server-side.
"""
from typing import Optional

from fastapi import status

from app.features.permissions.schemas import DenialCode, PolicyDecision


class AuthorizationError(Exception):
    """Base class for every denial raised by the authorization gate."""

    status_code: int = status.HTTP_403_FORBIDDEN
    error: str = "Access denied"
    message: str = "You do not have permission to perform this action."
    code: DenialCode = DenialCode.POLICY_DENIED

    def __init__(
        self,
        decision: Optional[PolicyDecision] = None,
        *,
        message: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        if decision is None:
            decision = PolicyDecision.deny(self.code, message or self.message)
        self.decision = decision
        if message is not None:
            self.message = message
        self.trace_id = trace_id
        super().__init__(decision.reason)

    def to_response_body(self) -> dict:
        return {"error": self.error, "message": self.message}


class Unauthenticated(AuthorizationError):
    """No valid session is attached to the request."""
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
    message = "Authentication required."
    code = DenialCode.UNAUTHENTICATED


class InsufficientCapability(AuthorizationError):
    """Authenticated, but the role lacks the capability."""
    code = DenialCode.INSUFFICIENT_CAPABILITY


class DelegationDenied(AuthorizationError):
    """A role assignment failed the authority, scope or escalation check."""
    message = "You cannot assign this role here."
    code = DenialCode.DELEGATION_DENIED

    @property
    def sub_reason(self) -> Optional[str]:
        return self.decision.sub_reason


class PolicyDenied(AuthorizationError):
    """A row-level policy refused the action on a specific resource."""
    code = DenialCode.POLICY_DENIED


class ResourceNotFound(AuthorizationError):
    """The target committee, role or resource does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not found"
    message = "The requested resource was not found."
    code = DenialCode.RESOURCE_NOT_FOUND


class InternalError(AuthorizationError):
    """
    Unexpected fault while deciding.

    Still a denial; the request never proceeds on an error.
    """
    message = "Access could not be verified."
    code = DenialCode.INTERNAL_ERROR


_ERRORS_BY_CODE = {
    DenialCode.UNAUTHENTICATED: Unauthenticated,
    DenialCode.INSUFFICIENT_CAPABILITY: InsufficientCapability,
    DenialCode.DELEGATION_DENIED: DelegationDenied,
    DenialCode.POLICY_DENIED: PolicyDenied,
    DenialCode.RESOURCE_NOT_FOUND: ResourceNotFound,
    DenialCode.INTERNAL_ERROR: InternalError,
}


def error_for(decision: PolicyDecision, trace_id: Optional[str] = None) -> AuthorizationError:
    """Build the exception matching a denied decision."""
    if decision.allowed:
        raise ValueError("error_for() called with an allowed decision")
    error_class = _ERRORS_BY_CODE.get(decision.code, InternalError)
    return error_class(decision, trace_id=trace_id)
