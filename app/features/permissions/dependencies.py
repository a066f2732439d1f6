"""
FastAPI dependencies for route protection.

Routes never check roles themselves; they declare the capability they need:

    @router.get("/finance/report")
    async def report(actor: Actor = Depends(capability_guard(FINANCE_VIEW))):
        ...
"""
from typing import Annotated, Iterable, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.emitter import AuditEmitter, get_audit_emitter
from app.features.permissions.gate import AuthorizationGate
from app.features.permissions.schemas import Actor


async def get_gate(
    db: Annotated[AsyncSession, Depends(get_db)],
    audit_emitter: Annotated[AuditEmitter, Depends(get_audit_emitter)],
) -> AuthorizationGate:
    """Request-scoped authorization gate."""
    return AuthorizationGate(db, audit_emitter)


async def get_current_actor(
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
) -> Actor:
    """
    Authenticated actor for the request.

    Raises:
        Unauthenticated: 401 if no valid session is attached
    """
    return await gate.require_authentication(request)


def capability_guard(capability: str, safe: bool = False):
    """
    Dependency factory: require ``capability`` on the route.

    Args:
        capability: Capability name, e.g. ``events:edit``
        safe: Also refuse block-listed capabilities while impersonating.
            Use for every mutation endpoint.

    Returns:
        Dependency returning the authorized Actor
    """
    async def capability_dependency(
        request: Request,
        gate: Annotated[AuthorizationGate, Depends(get_gate)],
    ) -> Actor:
        if safe:
            return await gate.require_capability_safe(request, capability)
        return await gate.require_capability(request, capability)

    return capability_dependency


def any_capability_guard(capabilities: Iterable[str]):
    """Dependency factory: require at least one of ``capabilities``."""
    required = tuple(capabilities)

    async def any_capability_dependency(
        request: Request,
        gate: Annotated[AuthorizationGate, Depends(get_gate)],
    ) -> Actor:
        return await gate.require_any_capability(request, required)

    return any_capability_dependency


async def get_optional_actor(
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
) -> Optional[Actor]:
    """
    Actor for routes that also serve anonymous callers.

    No Authorization header means anonymous (None). A header that is present
    but invalid is still a 401.
    """
    if not request.headers.get("Authorization"):
        return None
    return await gate.require_authentication(request)
