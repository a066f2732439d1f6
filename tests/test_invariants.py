"""Startup security invariants."""

from __future__ import annotations

import pytest

from app.features.permissions import invariants
from app.features.permissions.catalog import (
    ADMIN_ONLY_CAPABILITIES,
    ALL_ROLES,
    FINANCE_DENIED_ROLES,
    TOP_ROLE,
    Role,
    has_capability,
)
from app.features.permissions.invariants import SecurityInvariantViolation


def test_catalog_satisfies_all_invariants() -> None:
    invariants.verify_all_invariants()


def test_admin_only_capabilities_are_held_by_top_role_only() -> None:
    for role in ALL_ROLES:
        for capability in ADMIN_ONLY_CAPABILITIES:
            assert has_capability(role, capability) == (role is TOP_ROLE), (role, capability)


def test_finance_denied_roles_have_no_finance_access() -> None:
    for role in FINANCE_DENIED_ROLES:
        assert not has_capability(role, "finance:view")
        assert not has_capability(role, "finance:manage")


def _granting(role: Role, capability: str):
    real = invariants.has_capability

    def fake(r, c):
        if Role.parse(r) is role and c == capability:
            return True
        return real(r, c)

    return fake


def test_webmaster_with_finance_view_blocks_startup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(invariants, "has_capability", _granting(Role.WEBMASTER, "finance:view"))
    with pytest.raises(SecurityInvariantViolation, match="finance"):
        invariants.verify_all_invariants()


def test_non_top_role_with_admin_only_capability_is_a_violation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(invariants, "has_capability", _granting(Role.PRESIDENT, "events:delete"))
    with pytest.raises(SecurityInvariantViolation, match="president"):
        invariants.verify_admin_only_capabilities()


def test_second_holder_of_admin_full_is_a_violation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(invariants, "has_capability", _granting(Role.SECRETARY, "admin:full"))
    with pytest.raises(SecurityInvariantViolation, match="admin:full"):
        invariants.verify_assignment_authority()


def test_shrunken_block_list_is_a_violation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        invariants,
        "BLOCKED_WHILE_IMPERSONATING",
        invariants.BLOCKED_WHILE_IMPERSONATING - {"comms:send"},
    )
    with pytest.raises(SecurityInvariantViolation, match="comms:send"):
        invariants.verify_impersonation_block_list()


def test_violation_is_not_recoverable_error_type() -> None:
    assert issubclass(SecurityInvariantViolation, RuntimeError)
