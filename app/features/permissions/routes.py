"""
Permission API routes.

Read-only views over the Capability Catalog. Grants are code constants, so
there is nothing here to create or update.
"""
from typing import Annotated, List

from fastapi import APIRouter, Depends, Request

from app.features.audit import emitter as audit
from app.features.audit.emitter import AuditEmitter, get_audit_emitter
from app.features.permissions.catalog import (
    ALL_ROLES,
    BLOCKED_WHILE_IMPERSONATING,
    CAPABILITIES,
    ROLE_CAPABILITIES,
    ROLES_ASSIGN,
    ROLES_WITH_ASSIGN_AUTHORITY,
    USERS_MANAGE,
    Role,
    capabilities_of,
    is_event_peer,
)
from app.features.permissions.dependencies import any_capability_guard, get_current_actor
from app.features.permissions.errors import ResourceNotFound
from app.features.permissions.gate import check_capability, check_capability_safe
from app.features.permissions.schemas import (
    Actor,
    CapabilityResponse,
    MyCapabilitiesResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RoleCapabilitiesResponse,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

# Support views over the catalog are limited to roles that manage people.
catalog_reader = any_capability_guard([USERS_MANAGE, ROLES_ASSIGN])


def _role_response(role: Role) -> RoleCapabilitiesResponse:
    return RoleCapabilitiesResponse(
        role=role,
        capabilities=sorted(ROLE_CAPABILITIES[role]),
        can_assign_roles=role in ROLES_WITH_ASSIGN_AUTHORITY,
        is_event_peer=is_event_peer(role),
    )


# ============================================================================
# Caller's own permissions
# ============================================================================

@router.get("/me", response_model=MyCapabilitiesResponse)
async def get_my_capabilities(actor: Annotated[Actor, Depends(get_current_actor)]):
    """Capabilities held by the calling session."""
    return MyCapabilitiesResponse(
        actor_id=actor.id,
        role=actor.role,
        is_impersonating=actor.is_impersonating,
        capabilities=sorted(capabilities_of(actor.role)),
        blocked_while_impersonating=sorted(BLOCKED_WHILE_IMPERSONATING) if actor.is_impersonating else [],
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    body: PermissionCheckRequest,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    audit_emitter: Annotated[AuditEmitter, Depends(get_audit_emitter)],
):
    """
    Check whether the caller holds a capability.

    Answers with a decision instead of a 403 so that clients can decide which
    controls to show. Visibility is not authorization: the action endpoints
    still enforce the capability themselves.
    """
    check = check_capability_safe if body.safe else check_capability
    decision = check(actor, body.capability)
    await audit_emitter.record(
        audit.CAPABILITY_CHECK,
        actor,
        decision,
        {"capability": body.capability, "safe": body.safe, "advisory": True},
        request=request,
    )
    return PermissionCheckResponse(has_permission=decision.allowed, reason=decision.reason)


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog", response_model=List[CapabilityResponse])
async def list_capabilities(_actor: Annotated[Actor, Depends(catalog_reader)]):
    """Every declared capability."""
    return [CapabilityResponse.model_validate(c) for c in sorted(CAPABILITIES.values(), key=lambda c: c.name)]


@router.get("/roles", response_model=List[RoleCapabilitiesResponse])
async def list_roles(_actor: Annotated[Actor, Depends(catalog_reader)]):
    """Capability set of every role."""
    return [_role_response(role) for role in ALL_ROLES]


@router.get("/roles/{role}", response_model=RoleCapabilitiesResponse)
async def get_role(role: str, _actor: Annotated[Actor, Depends(catalog_reader)]):
    """Capability set of one role."""
    parsed = Role.parse(role)
    if parsed is None:
        raise ResourceNotFound(message="Role not found.")
    return _role_response(parsed)
