"""
Capability Catalog.

The only place capability grants are declared. Every authorization decision in
the application is made in terms of capabilities; roles are lookup keys into
the table below and are never pattern-matched.

All tables are built once at import time and exposed read-only
(``MappingProxyType`` / ``frozenset``), so they are safe to read from any
number of concurrent requests. Changing a grant is a code change.
"""
import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Roles
# ============================================================================

class Role(str, enum.Enum):
    """Global organizational roles. Fixed; never extended at runtime."""
    ADMIN = "admin"
    PRESIDENT = "president"
    PAST_PRESIDENT = "past-president"
    VP_ACTIVITIES = "vp-activities"
    VP_COMMUNICATIONS = "vp-communications"
    EVENT_CHAIR = "event-chair"
    WEBMASTER = "webmaster"
    SECRETARY = "secretary"
    PARLIAMENTARIAN = "parliamentarian"
    MEMBER = "member"

    @classmethod
    def parse(cls, value: Union["Role", str, None]) -> Optional["Role"]:
        """Return the Role for ``value`` or None when it is not a known role."""
        if isinstance(value, Role):
            return value
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


TOP_ROLE = Role.ADMIN

ALL_ROLES: tuple[Role, ...] = tuple(Role)


# ============================================================================
# Capabilities
# ============================================================================

@dataclass(frozen=True)
class CapabilityDef:
    """
    Declaration of one capability.

    ``sensitive`` marks capabilities that mutate money, identities or outbound
    communications, or that are destructive. The impersonation block-list is
    derived from this flag.
    """
    name: str
    resource: str
    action: str
    description: str
    sensitive: bool = False


# Capability names
ADMIN_FULL = "admin:full"
USERS_MANAGE = "users:manage"
ROLES_ASSIGN = "roles:assign"
MEMBERS_VIEW = "members:view"
MEMBERS_HISTORY = "members:history"
REGISTRATIONS_VIEW = "registrations:view"
EVENTS_VIEW = "events:view"
EVENTS_EDIT = "events:edit"
EVENTS_APPROVE = "events:approve"
EVENTS_DELETE = "events:delete"
FINANCE_VIEW = "finance:view"
FINANCE_MANAGE = "finance:manage"
EXPORTS_ACCESS = "exports:access"
COMMS_MANAGE = "comms:manage"
COMMS_SEND = "comms:send"
PUBLISHING_MANAGE = "publishing:manage"
CONTENT_BOARD_PUBLISH = "content:board:publish"
FILES_UPLOAD = "files:upload"
FILES_MANAGE = "files:manage"
TRANSITIONS_VIEW = "transitions:view"
TRANSITIONS_APPROVE = "transitions:approve"
MEETINGS_READ = "meetings:read"
MEETINGS_MOTIONS_READ = "meetings:motions:read"
MEETINGS_MOTIONS_ANNOTATE = "meetings:motions:annotate"
MEETINGS_MINUTES_READ_ALL = "meetings:minutes:read_all"
MEETINGS_MINUTES_DRAFT_CREATE = "meetings:minutes:draft:create"
MEETINGS_MINUTES_DRAFT_EDIT = "meetings:minutes:draft:edit"
MEETINGS_MINUTES_DRAFT_SUBMIT = "meetings:minutes:draft:submit"
MEETINGS_MINUTES_FINALIZE = "meetings:minutes:finalize"
GOVERNANCE_DOCS_READ = "governance:docs:read"
GOVERNANCE_DOCS_WRITE = "governance:docs:write"
GOVERNANCE_RULES_MANAGE = "governance:rules:manage"
GOVERNANCE_FLAGS_CREATE = "governance:flags:create"
GOVERNANCE_INTERPRETATIONS_CREATE = "governance:interpretations:create"
GOVERNANCE_INTERPRETATIONS_EDIT = "governance:interpretations:edit"
GOVERNANCE_INTERPRETATIONS_PUBLISH = "governance:interpretations:publish"
GOVERNANCE_POLICIES_ANNOTATE = "governance:policies:annotate"
GOVERNANCE_POLICIES_PROPOSE_CHANGE = "governance:policies:propose_change"


def _cap(name: str, description: str, sensitive: bool = False) -> CapabilityDef:
    resource, _, action = name.partition(":")
    return CapabilityDef(name=name, resource=resource, action=action, description=description, sensitive=sensitive)


_CAPABILITY_DEFS = (
    # Administration
    _cap(ADMIN_FULL, "Full administrative access", sensitive=True),
    _cap(USERS_MANAGE, "Change user accounts and entitlements", sensitive=True),
    _cap(ROLES_ASSIGN, "Assign committee roles to members"),

    # Members
    _cap(MEMBERS_VIEW, "View member directory and profiles"),
    _cap(MEMBERS_HISTORY, "View member service history"),
    _cap(REGISTRATIONS_VIEW, "View event registrations"),

    # Events
    _cap(EVENTS_VIEW, "View events"),
    _cap(EVENTS_EDIT, "Edit any event"),
    _cap(EVENTS_APPROVE, "Approve submitted events"),
    _cap(EVENTS_DELETE, "Delete events", sensitive=True),

    # Finance
    _cap(FINANCE_VIEW, "View financial records"),
    _cap(FINANCE_MANAGE, "Move money and change financial records", sensitive=True),
    _cap(EXPORTS_ACCESS, "Export member and registration data"),

    # Communications and publishing
    _cap(COMMS_MANAGE, "Manage message templates and lists"),
    _cap(COMMS_SEND, "Send email and SMS to members", sensitive=True),
    _cap(PUBLISHING_MANAGE, "Manage public pages and theming"),
    _cap(CONTENT_BOARD_PUBLISH, "Publish board content to members"),

    # Files
    _cap(FILES_UPLOAD, "Upload files"),
    _cap(FILES_MANAGE, "Manage all files"),

    # Officer transitions
    _cap(TRANSITIONS_VIEW, "View officer transition plans"),
    _cap(TRANSITIONS_APPROVE, "Approve officer transitions"),

    # Meetings
    _cap(MEETINGS_READ, "Read board meetings"),
    _cap(MEETINGS_MOTIONS_READ, "Read meeting motions"),
    _cap(MEETINGS_MOTIONS_ANNOTATE, "Annotate meeting motions"),
    _cap(MEETINGS_MINUTES_READ_ALL, "Read all meeting minutes"),
    _cap(MEETINGS_MINUTES_DRAFT_CREATE, "Create draft minutes"),
    _cap(MEETINGS_MINUTES_DRAFT_EDIT, "Edit draft minutes"),
    _cap(MEETINGS_MINUTES_DRAFT_SUBMIT, "Submit draft minutes"),
    _cap(MEETINGS_MINUTES_FINALIZE, "Finalize meeting minutes"),

    # Governance
    _cap(GOVERNANCE_DOCS_READ, "Read governance documents"),
    _cap(GOVERNANCE_DOCS_WRITE, "Write governance documents"),
    _cap(GOVERNANCE_RULES_MANAGE, "Manage rules of order"),
    _cap(GOVERNANCE_FLAGS_CREATE, "Raise governance flags"),
    _cap(GOVERNANCE_INTERPRETATIONS_CREATE, "Create bylaw interpretations"),
    _cap(GOVERNANCE_INTERPRETATIONS_EDIT, "Edit bylaw interpretations"),
    _cap(GOVERNANCE_INTERPRETATIONS_PUBLISH, "Publish bylaw interpretations"),
    _cap(GOVERNANCE_POLICIES_ANNOTATE, "Annotate club policies"),
    _cap(GOVERNANCE_POLICIES_PROPOSE_CHANGE, "Propose policy changes"),
)

CAPABILITIES: Mapping[str, CapabilityDef] = MappingProxyType({c.name: c for c in _CAPABILITY_DEFS})


# ============================================================================
# Role -> Capability map
# ============================================================================

_ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    # The top role holds every declared capability, listed explicitly rather
    # than implied by admin:full.
    Role.ADMIN: frozenset(CAPABILITIES),
    Role.PRESIDENT: frozenset({
        MEMBERS_VIEW,
        MEMBERS_HISTORY,
        REGISTRATIONS_VIEW,
        EVENTS_VIEW,
        EVENTS_EDIT,
        EVENTS_APPROVE,
        FINANCE_VIEW,
        EXPORTS_ACCESS,
        COMMS_MANAGE,
        CONTENT_BOARD_PUBLISH,
        FILES_UPLOAD,
        TRANSITIONS_VIEW,
        TRANSITIONS_APPROVE,
        ROLES_ASSIGN,
        MEETINGS_READ,
        MEETINGS_MINUTES_READ_ALL,
        MEETINGS_MINUTES_FINALIZE,
        GOVERNANCE_DOCS_READ,
        GOVERNANCE_DOCS_WRITE,
    }),
    Role.PAST_PRESIDENT: frozenset({
        MEMBERS_VIEW,
        MEMBERS_HISTORY,
        EVENTS_VIEW,
        TRANSITIONS_VIEW,
        MEETINGS_READ,
        GOVERNANCE_DOCS_READ,
    }),
    Role.VP_ACTIVITIES: frozenset({
        MEMBERS_VIEW,
        MEMBERS_HISTORY,
        REGISTRATIONS_VIEW,
        EVENTS_VIEW,
        EVENTS_EDIT,
        EVENTS_APPROVE,
        FILES_UPLOAD,
        ROLES_ASSIGN,
    }),
    Role.VP_COMMUNICATIONS: frozenset({
        MEMBERS_VIEW,
        MEMBERS_HISTORY,
        EVENTS_VIEW,
        COMMS_MANAGE,
        COMMS_SEND,
        PUBLISHING_MANAGE,
        FILES_UPLOAD,
        ROLES_ASSIGN,
    }),
    Role.EVENT_CHAIR: frozenset({
        MEMBERS_VIEW,
        REGISTRATIONS_VIEW,
        EVENTS_VIEW,
        FILES_UPLOAD,
    }),
    # Hardened: no member data, no exports, no finance, no sending.
    Role.WEBMASTER: frozenset({
        EVENTS_VIEW,
        PUBLISHING_MANAGE,
        COMMS_MANAGE,
        FILES_UPLOAD,
    }),
    Role.SECRETARY: frozenset({
        EVENTS_VIEW,
        MEETINGS_READ,
        MEETINGS_MINUTES_READ_ALL,
        MEETINGS_MINUTES_DRAFT_CREATE,
        MEETINGS_MINUTES_DRAFT_EDIT,
        MEETINGS_MINUTES_DRAFT_SUBMIT,
        GOVERNANCE_DOCS_READ,
    }),
    Role.PARLIAMENTARIAN: frozenset({
        EVENTS_VIEW,
        MEETINGS_READ,
        MEETINGS_MOTIONS_READ,
        MEETINGS_MOTIONS_ANNOTATE,
        GOVERNANCE_DOCS_READ,
        GOVERNANCE_DOCS_WRITE,
        GOVERNANCE_RULES_MANAGE,
        GOVERNANCE_FLAGS_CREATE,
        GOVERNANCE_INTERPRETATIONS_CREATE,
        GOVERNANCE_INTERPRETATIONS_EDIT,
        GOVERNANCE_INTERPRETATIONS_PUBLISH,
        GOVERNANCE_POLICIES_ANNOTATE,
        GOVERNANCE_POLICIES_PROPOSE_CHANGE,
    }),
    Role.MEMBER: frozenset({
        EVENTS_VIEW,
    }),
}

ROLE_CAPABILITIES: Mapping[Role, frozenset[str]] = MappingProxyType(_ROLE_CAPABILITIES)

_EMPTY: frozenset[str] = frozenset()


# ============================================================================
# Lookups
# ============================================================================

def capabilities_of(role: Union[Role, str, None]) -> frozenset[str]:
    """
    Capability set held by ``role``.

    Unknown or missing roles hold nothing.
    """
    parsed = Role.parse(role)
    if parsed is None:
        if role:
            log.warning("Capability lookup for unknown role %r", role)
        return _EMPTY
    return ROLE_CAPABILITIES.get(parsed, _EMPTY)


def has_capability(role: Union[Role, str, None], capability: str) -> bool:
    """True if ``role`` holds ``capability``."""
    return capability in capabilities_of(role)


def has_any_capability(role: Union[Role, str, None], capabilities: Iterable[str]) -> bool:
    """True if ``role`` holds at least one of ``capabilities``."""
    held = capabilities_of(role)
    return any(capability in held for capability in capabilities)


def is_full_admin(role: Union[Role, str, None]) -> bool:
    return has_capability(role, ADMIN_FULL)


def is_known_capability(capability: str) -> bool:
    return capability in CAPABILITIES


def all_capabilities() -> frozenset[str]:
    return frozenset(CAPABILITIES)


# ============================================================================
# Enumerated allow-lists and deny-lists
# Verified by app.features.permissions.invariants at startup.
# ============================================================================

ADMIN_ONLY_CAPABILITIES: frozenset[str] = frozenset({
    ADMIN_FULL,
    EVENTS_DELETE,
    USERS_MANAGE,
    FILES_MANAGE,
    FINANCE_MANAGE,
})

FINANCE_CAPABILITIES: frozenset[str] = frozenset({FINANCE_VIEW, FINANCE_MANAGE})

FINANCE_DENIED_ROLES: tuple[Role, ...] = (
    Role.WEBMASTER,
    Role.EVENT_CHAIR,
    Role.VP_COMMUNICATIONS,
    Role.SECRETARY,
    Role.PARLIAMENTARIAN,
    Role.MEMBER,
)

WEBMASTER_DENIED_CAPABILITIES: frozenset[str] = frozenset({
    MEMBERS_HISTORY,
    EXPORTS_ACCESS,
    FINANCE_VIEW,
    FINANCE_MANAGE,
    USERS_MANAGE,
    COMMS_SEND,
    ADMIN_FULL,
    EVENTS_DELETE,
})

# Derived from the sensitive tag so a new sensitive capability is blocked
# during impersonation without a second list to keep in sync.
BLOCKED_WHILE_IMPERSONATING: frozenset[str] = frozenset(
    c.name for c in CAPABILITIES.values() if c.sensitive
)

# Delegation authority comes from holding roles:assign, never from the role name.
ROLES_WITH_ASSIGN_AUTHORITY: tuple[Role, ...] = tuple(
    role for role in ALL_ROLES if ROLES_ASSIGN in ROLE_CAPABILITIES[role]
)

ROLES_WITHOUT_ASSIGN_AUTHORITY: tuple[Role, ...] = tuple(
    role for role in ALL_ROLES if role not in ROLES_WITH_ASSIGN_AUTHORITY
)

# Peer trust: these roles view and edit any event regardless of ownership.
# Deletion still requires events:delete, which only the top role holds.
EVENT_PEER_ROLES: frozenset[Role] = frozenset({
    Role.ADMIN,
    Role.PRESIDENT,
    Role.VP_ACTIVITIES,
})


def is_event_peer(role: Union[Role, str, None]) -> bool:
    return Role.parse(role) in EVENT_PEER_ROLES
