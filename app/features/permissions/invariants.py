"""
Security invariant verification.

Runs against the capability catalog at application startup and in the test
suite. A violation raises immediately and must block the deploy; none of these
checks is recoverable at runtime.
"""
from app.features.permissions.catalog import (
    ADMIN_FULL,
    ADMIN_ONLY_CAPABILITIES,
    ALL_ROLES,
    BLOCKED_WHILE_IMPERSONATING,
    CAPABILITIES,
    EVENT_PEER_ROLES,
    EVENTS_DELETE,
    EVENTS_EDIT,
    FINANCE_CAPABILITIES,
    FINANCE_DENIED_ROLES,
    FINANCE_MANAGE,
    ROLE_CAPABILITIES,
    ROLES_ASSIGN,
    ROLES_WITH_ASSIGN_AUTHORITY,
    TOP_ROLE,
    USERS_MANAGE,
    COMMS_SEND,
    WEBMASTER_DENIED_CAPABILITIES,
    Role,
    has_capability,
)
from app.utils import get_logger


log = get_logger(__name__)


class SecurityInvariantViolation(RuntimeError):
    """The capability catalog breaks a global security invariant."""


def _violation(message: str) -> SecurityInvariantViolation:
    log.critical("SECURITY INVARIANT VIOLATION: %s", message)
    return SecurityInvariantViolation(message)


def verify_catalog_integrity() -> None:
    """Every role has an entry and every granted capability is declared."""
    for role in ALL_ROLES:
        if role not in ROLE_CAPABILITIES:
            raise _violation(f'Role "{role.value}" has no capability entry')
        unknown = ROLE_CAPABILITIES[role] - set(CAPABILITIES)
        if unknown:
            raise _violation(f'Role "{role.value}" holds undeclared capabilities {sorted(unknown)}')


def verify_admin_only_capabilities() -> None:
    """No role other than the top role holds an admin-only capability."""
    for role in ALL_ROLES:
        if role is TOP_ROLE:
            continue
        for capability in sorted(ADMIN_ONLY_CAPABILITIES):
            if has_capability(role, capability):
                raise _violation(f'Role "{role.value}" has admin-only capability "{capability}"')


def verify_finance_isolation() -> None:
    """Finance-denied roles hold no finance capability."""
    for role in FINANCE_DENIED_ROLES:
        for capability in sorted(FINANCE_CAPABILITIES):
            if has_capability(role, capability):
                raise _violation(f'Role "{role.value}" has finance capability "{capability}"')


def verify_webmaster_restrictions() -> None:
    for capability in sorted(WEBMASTER_DENIED_CAPABILITIES):
        if has_capability(Role.WEBMASTER, capability):
            raise _violation(f'Webmaster has denied capability "{capability}"')


def verify_assignment_authority() -> None:
    """
    Only holders of roles:assign may delegate, and the grant-anything
    capability belongs to the top role alone.
    """
    for role in ROLES_WITH_ASSIGN_AUTHORITY:
        if not has_capability(role, ROLES_ASSIGN):
            raise _violation(f'Role "{role.value}" listed with assign authority lacks "{ROLES_ASSIGN}"')
    for role in (Role.EVENT_CHAIR, Role.WEBMASTER, Role.MEMBER):
        if role in ROLES_WITH_ASSIGN_AUTHORITY:
            raise _violation(f'Role "{role.value}" must not have assign authority')
    holders = [role for role in ALL_ROLES if has_capability(role, ADMIN_FULL)]
    if holders != [TOP_ROLE]:
        raise _violation(f'"{ADMIN_FULL}" must be held by the top role only, held by {[r.value for r in holders]}')


def verify_peer_roles() -> None:
    """Peer-trusted roles can edit events; none but the top role can delete them."""
    for role in EVENT_PEER_ROLES:
        if not has_capability(role, EVENTS_EDIT):
            raise _violation(f'Peer role "{role.value}" lacks "{EVENTS_EDIT}"')
        if role is not TOP_ROLE and has_capability(role, EVENTS_DELETE):
            raise _violation(f'Peer role "{role.value}" must not hold "{EVENTS_DELETE}"')


def verify_impersonation_block_list() -> None:
    """The derived block-list still covers the mutation floor."""
    required = {FINANCE_MANAGE, COMMS_SEND, USERS_MANAGE, EVENTS_DELETE, ADMIN_FULL}
    missing = required - BLOCKED_WHILE_IMPERSONATING
    if missing:
        raise _violation(f"Impersonation block-list is missing {sorted(missing)}")


def verify_all_invariants() -> None:
    """Run every check. Call during startup or test setup."""
    verify_catalog_integrity()
    verify_admin_only_capabilities()
    verify_finance_isolation()
    verify_webmaster_restrictions()
    verify_assignment_authority()
    verify_peer_roles()
    verify_impersonation_block_list()
    log.info(
        "Security invariants verified: %d roles, %d capabilities",
        len(ALL_ROLES),
        len(CAPABILITIES),
    )
