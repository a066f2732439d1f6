"""
Authorization Gate.

Per-request entry point for every privileged action:

- authenticates the caller (401 on failure)
- answers simple capability checks from the catalog (403 on failure)
- applies the impersonation block-list for mutation endpoints
- forwards delegation requests to the delegation engine
- forwards per-object actions to the resource's row-level policy

Every decision is audited before the caller sees the result. Any unexpected
exception while deciding becomes an InternalError denial; nothing fails open.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit import emitter as audit
from app.features.audit.emitter import AuditEmitter
from app.features.committees.delegation import IMPERSONATING, delegation_audit_action, validate_delegation
from app.features.members.dependencies import resolve_actor
from app.features.permissions.catalog import (
    BLOCKED_WHILE_IMPERSONATING,
    capabilities_of,
    has_capability,
)
from app.features.permissions.errors import AuthorizationError, InternalError, Unauthenticated, error_for
from app.features.permissions.policy import ResourcePolicy
from app.features.permissions.schemas import Actor, DenialCode, PolicyDecision
from app.utils import get_logger


log = get_logger(__name__)

Resolver = Callable[[Request, AsyncSession], Awaitable[Actor]]


# ============================================================================
# Pure capability decisions
# ============================================================================

def check_capability(actor: Actor, capability: str) -> PolicyDecision:
    if has_capability(actor.role, capability):
        return PolicyDecision.allow(f"Has capability: {capability}", capability=capability)
    return PolicyDecision.deny(
        DenialCode.INSUFFICIENT_CAPABILITY,
        f"Missing capability: {capability}",
        missing_capabilities=[capability],
        capability=capability,
    )


def check_capability_safe(actor: Actor, capability: str) -> PolicyDecision:
    """As check_capability, but block-listed capabilities are refused while impersonating."""
    if actor.is_impersonating and capability in BLOCKED_WHILE_IMPERSONATING:
        return PolicyDecision.deny(
            DenialCode.INSUFFICIENT_CAPABILITY,
            f"Capability blocked while impersonating: {capability}",
            sub_reason="impersonation_blocked",
            capability=capability,
        )
    decision = check_capability(actor, capability)
    if decision.allowed and actor.is_impersonating:
        return PolicyDecision.allow(f"Has capability {capability} (impersonating)", capability=capability)
    return decision


def check_any_capability(actor: Actor, capabilities: Sequence[str]) -> PolicyDecision:
    held = capabilities_of(actor.role)
    for capability in capabilities:
        if capability in held:
            return PolicyDecision.allow(f"Has capability: {capability}", capability=capability)
    return PolicyDecision.deny(
        DenialCode.INSUFFICIENT_CAPABILITY,
        f"Missing capabilities: {' OR '.join(capabilities)}",
        missing_capabilities=list(capabilities),
        required_any=list(capabilities),
    )


def _internal_error(reason: str) -> PolicyDecision:
    return PolicyDecision.deny(DenialCode.INTERNAL_ERROR, reason)


# ============================================================================
# Gate
# ============================================================================

class AuthorizationGate:
    """
    Request-scoped gate. Holds only its collaborators (database session,
    audit emitter, session resolver); no decision state survives a call.
    """

    def __init__(self, db: AsyncSession, audit_emitter: AuditEmitter, resolver: Resolver = resolve_actor):
        self.db = db
        self.audit = audit_emitter
        self.resolver = resolver

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def require_authentication(self, request: Request) -> Actor:
        """
        Resolve the caller.

        Raises:
            Unauthenticated: No valid session (401)
            InternalError: Session resolution failed unexpectedly
        """
        try:
            return await self.resolver(request, self.db)
        except Unauthenticated as exc:
            record = await self.audit.record(
                audit.AUTHENTICATION_FAILED, None, exc.decision, request=request,
            )
            exc.trace_id = record.trace_id if record else None
            log.info("Authentication failed: %s", exc.decision.reason)
            raise exc
        except AuthorizationError:
            raise
        except Exception:
            log.exception("Session resolution failed; denying request")
            decision = _internal_error("Session resolution failed")
            record = await self.audit.record(audit.INTERNAL_ERROR, None, decision, request=request)
            raise InternalError(decision, trace_id=record.trace_id if record else None)

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    async def require_capability(self, request: Request, capability: str) -> Actor:
        """Authenticate, then require ``capability`` (401 / 403)."""
        actor = await self.require_authentication(request)
        decision = self._evaluate(check_capability, actor, capability)
        await self._finish(audit.CAPABILITY_CHECK, actor, decision, request, capability=capability)
        return actor

    async def require_capability_safe(self, request: Request, capability: str) -> Actor:
        """
        As require_capability, but refuses block-listed capabilities while the
        caller is impersonating, whatever the impersonated role holds.
        """
        actor = await self.require_authentication(request)
        decision = self._evaluate(check_capability_safe, actor, capability)
        event = audit.IMPERSONATION_BLOCKED if decision.sub_reason == "impersonation_blocked" else audit.CAPABILITY_CHECK
        await self._finish(event, actor, decision, request, capability=capability, safe=True)
        return actor

    async def require_any_capability(self, request: Request, capabilities: Iterable[str]) -> Actor:
        """Allow if the caller holds at least one of ``capabilities``."""
        required = list(capabilities)
        actor = await self.require_authentication(request)
        decision = self._evaluate(check_any_capability, actor, required)
        await self._finish(audit.CAPABILITY_CHECK, actor, decision, request, required_any=required)
        return actor

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    async def require_delegation(
        self,
        request: Request,
        committee_id: str,
        target_role: str,
        *,
        actor: Optional[Actor] = None,
    ) -> Actor:
        """
        Authenticate, then require that the caller may assign ``target_role``
        inside ``committee_id``.

        Pass ``actor`` when the caller was already authenticated in this request.

        Raises:
            DelegationDenied: Authority, scope or escalation failure (403)
            ResourceNotFound: Committee or role does not exist (404)
        """
        if actor is None:
            actor = await self.require_authentication(request)
        if actor.is_impersonating:
            decision = PolicyDecision.deny(
                DenialCode.DELEGATION_DENIED,
                "Role assignments cannot be made while impersonating",
                sub_reason=IMPERSONATING,
            )
        else:
            try:
                decision = await validate_delegation(self.db, actor.id, actor.role, committee_id, target_role)
            except Exception:
                log.exception("Delegation validation failed for %s into %s", actor.id, committee_id)
                decision = _internal_error("Delegation validation failed")

        await self._finish(
            delegation_audit_action(decision),
            actor,
            decision,
            request,
            resource_type="committee",
            resource_id=committee_id,
            target_role=target_role,
        )
        return actor

    # ------------------------------------------------------------------
    # Row-level policies
    # ------------------------------------------------------------------

    async def require_resource_access(
        self,
        request: Request,
        policy: ResourcePolicy[Any],
        context: Any,
        action: str,
        *,
        actor: Optional[Actor] = None,
        anonymous: bool = False,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
    ) -> Optional[Actor]:
        """
        Require that ``policy`` allows ``action`` on the resource in ``context``.

        Pass ``actor`` when the caller was already authenticated in this request.
        With ``anonymous=True`` and no actor, the policy decides for an
        unauthenticated caller instead of the gate answering 401.
        """
        if actor is None and not anonymous:
            actor = await self.require_authentication(request)
        decision = self._evaluate(policy.decide, actor, context, action)
        if actor is None and not decision.allowed and decision.code == DenialCode.POLICY_DENIED:
            # Anonymous denials surface as 401.
            decision = PolicyDecision.deny(DenialCode.UNAUTHENTICATED, decision.reason, **decision.details)
        await self._finish(
            audit.POLICY_DECISION,
            actor,
            decision,
            request,
            resource_type=policy.resource_type,
            resource_id=getattr(context, "id", None),
            before=before,
            after=after,
            action=action,
        )
        return actor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _evaluate(check: Callable[..., PolicyDecision], *args: Any) -> PolicyDecision:
        try:
            return check(*args)
        except Exception:
            log.exception("Authorization check %s failed; denying", getattr(check, "__name__", check))
            return _internal_error("Authorization check failed")

    async def _finish(
        self,
        event: str,
        actor: Optional[Actor],
        decision: PolicyDecision,
        request: Request,
        *,
        resource_type: str = "authorization",
        resource_id: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        **metadata: Any,
    ) -> None:
        """Audit the decision, then raise if it is a denial."""
        record = await self.audit.record(
            event,
            actor,
            decision,
            metadata,
            resource_type=resource_type,
            resource_id=resource_id,
            before=before if decision.allowed else None,
            after=after if decision.allowed else None,
            request=request,
        )
        actor_id = actor.id if actor else "anonymous"
        if decision.allowed:
            log.debug("Allowed %s for %s: %s", event, actor_id, decision.reason)
            return
        log.info("Denied %s for %s: %s", event, actor_id, decision.reason)
        raise error_for(decision, trace_id=record.trace_id if record else None)
