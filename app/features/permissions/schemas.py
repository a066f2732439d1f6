"""
Pydantic schemas for authorization decisions.

``Actor`` and ``PolicyDecision`` are the values passed between the gate, the
delegation engine and the row-level policies. The remaining models are request
and response bodies for the permission routes.
"""
import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.permissions.catalog import Role


# ============================================================================
# Actor
# ============================================================================

class Actor(BaseModel):
    """
    Authenticated identity making a request.

    When ``impersonated_by`` is set, ``id`` and ``role`` belong to the member
    being viewed and ``impersonated_by`` is the operator. Impersonation only
    ever narrows what the actor may do.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    role: Optional[Role] = None
    raw_role: Optional[str] = None
    impersonated_by: Optional[str] = None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonated_by is not None


# ============================================================================
# Policy decisions
# ============================================================================

class DenialCode(str, enum.Enum):
    """Taxonomy of denial reasons carried in a PolicyDecision."""
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_CAPABILITY = "insufficient_capability"
    DELEGATION_DENIED = "delegation_denied"
    POLICY_DENIED = "policy_denied"
    RESOURCE_NOT_FOUND = "resource_not_found"
    INTERNAL_ERROR = "internal_error"


class PolicyDecision(BaseModel):
    """
    Result of any authorization check.

    On denial, ``code`` and the structured fields say why. Decisions never
    carry tokens or other secrets, but they do carry internal detail and are
    meant for audit records and capability-gated support views only.
    """
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str
    code: Optional[DenialCode] = None
    sub_reason: Optional[str] = None
    missing_capabilities: List[str] = Field(default_factory=list)
    assigner_committees: Optional[List[str]] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def allow(cls, reason: str, **details: Any) -> "PolicyDecision":
        return cls(allowed=True, reason=reason, details=details)

    @classmethod
    def deny(
        cls,
        code: DenialCode,
        reason: str,
        *,
        sub_reason: Optional[str] = None,
        missing_capabilities: Optional[List[str]] = None,
        assigner_committees: Optional[List[str]] = None,
        **details: Any,
    ) -> "PolicyDecision":
        return cls(
            allowed=False,
            reason=reason,
            code=code,
            sub_reason=sub_reason,
            missing_capabilities=sorted(missing_capabilities or []),
            assigner_committees=assigner_committees,
            details=details,
        )

    def audit_metadata(self) -> Dict[str, Any]:
        """Flatten the decision for an audit record."""
        data: Dict[str, Any] = {
            "allowed": self.allowed,
            "reason": self.reason,
        }
        if self.code is not None:
            data["code"] = self.code.value
        if self.sub_reason:
            data["subReason"] = self.sub_reason
        if self.missing_capabilities:
            data["missingCapabilities"] = list(self.missing_capabilities)
        if self.assigner_committees is not None:
            data["assignerCommittees"] = list(self.assigner_committees)
        if self.details:
            data["details"] = dict(self.details)
        return data


# ============================================================================
# Permission route schemas
# ============================================================================

class CapabilityResponse(BaseModel):
    """One catalog entry."""
    name: str
    resource: str
    action: str
    description: str
    sensitive: bool

    model_config = ConfigDict(from_attributes=True)


class RoleCapabilitiesResponse(BaseModel):
    role: Role
    capabilities: List[str]
    can_assign_roles: bool
    is_event_peer: bool


class MyCapabilitiesResponse(BaseModel):
    """Capabilities of the calling actor."""
    actor_id: str
    role: Optional[Role]
    is_impersonating: bool
    capabilities: List[str]
    blocked_while_impersonating: List[str] = []


class PermissionCheckRequest(BaseModel):
    """Ask whether the caller holds a capability."""
    capability: str = Field(..., min_length=1, max_length=100, description="Capability name, e.g. 'events:edit'")
    safe: bool = Field(False, description="Apply the impersonation block-list")


class PermissionCheckResponse(BaseModel):
    has_permission: bool
    reason: Optional[str] = None
