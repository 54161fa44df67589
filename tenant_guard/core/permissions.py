"""Permission registry and role defaults.

Roles form a strict hierarchy (field_worker < supervisor < admin < super_admin);
every role holds at least the permissions of the role below it.
"""

from dataclasses import dataclass
from enum import Enum

from tenant_guard.db.enums import Role


class PermissionKey(str, Enum):
    VIEW_ORGANIZATION = "view_organization"
    MANAGE_ORGANIZATION = "manage_organization"

    VIEW_MEMBERS = "view_members"
    MANAGE_MEMBERS = "manage_members"
    DELETE_MEMBERS = "delete_members"

    VIEW_INVITATIONS = "view_invitations"
    INVITE_MEMBERS = "invite_members"
    MANAGE_INVITATIONS = "manage_invitations"

    VIEW_OWN_SESSIONS = "view_own_sessions"
    VIEW_AUDIT_LOG = "view_audit_log"
    MANAGE_SECURITY = "manage_security"


class PermissionCategory(str, Enum):
    ORGANIZATION = "Organization"
    TEAM = "Team"
    SECURITY = "Security"


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""
    key: str
    label: str
    description: str
    category: str


P = PermissionKey

PERMISSION_REGISTRY: dict[str, PermissionDef] = {
    P.VIEW_ORGANIZATION: PermissionDef(
        P.VIEW_ORGANIZATION, "View Organization",
        "See organization profile and settings", PermissionCategory.ORGANIZATION
    ),
    P.MANAGE_ORGANIZATION: PermissionDef(
        P.MANAGE_ORGANIZATION, "Manage Organization",
        "Change organization settings and limits", PermissionCategory.ORGANIZATION
    ),
    P.VIEW_MEMBERS: PermissionDef(
        P.VIEW_MEMBERS, "View Members",
        "See the member directory", PermissionCategory.TEAM
    ),
    P.MANAGE_MEMBERS: PermissionDef(
        P.MANAGE_MEMBERS, "Manage Members",
        "Change roles, edit profiles and deactivate members", PermissionCategory.TEAM
    ),
    P.DELETE_MEMBERS: PermissionDef(
        P.DELETE_MEMBERS, "Delete Members",
        "Permanently remove a member and their sessions", PermissionCategory.TEAM
    ),
    P.VIEW_INVITATIONS: PermissionDef(
        P.VIEW_INVITATIONS, "View Invitations",
        "See pending and past invitations", PermissionCategory.TEAM
    ),
    P.INVITE_MEMBERS: PermissionDef(
        P.INVITE_MEMBERS, "Invite Members",
        "Send invitations (limited by role)", PermissionCategory.TEAM
    ),
    P.MANAGE_INVITATIONS: PermissionDef(
        P.MANAGE_INVITATIONS, "Manage Invitations",
        "Revoke and resend invitations", PermissionCategory.TEAM
    ),
    P.VIEW_OWN_SESSIONS: PermissionDef(
        P.VIEW_OWN_SESSIONS, "View Own Sessions",
        "List and sign out own devices", PermissionCategory.SECURITY
    ),
    P.VIEW_AUDIT_LOG: PermissionDef(
        P.VIEW_AUDIT_LOG, "View Audit Log",
        "Access the organization audit trail", PermissionCategory.SECURITY
    ),
    P.MANAGE_SECURITY: PermissionDef(
        P.MANAGE_SECURITY, "Manage Security",
        "Unlock accounts and reset MFA", PermissionCategory.SECURITY
    ),
}


# =============================================================================
# Default Role Permissions
# =============================================================================

_FIELD_WORKER = {
    P.VIEW_ORGANIZATION,
    P.VIEW_OWN_SESSIONS,
}

_SUPERVISOR = _FIELD_WORKER | {
    P.VIEW_MEMBERS,
    P.VIEW_INVITATIONS,
    P.INVITE_MEMBERS,
}

_ADMIN = _SUPERVISOR | {
    P.MANAGE_ORGANIZATION,
    P.MANAGE_MEMBERS,
    P.DELETE_MEMBERS,
    P.MANAGE_INVITATIONS,
    P.VIEW_AUDIT_LOG,
    P.MANAGE_SECURITY,
}

ROLE_DEFAULTS: dict[str, set[str]] = {
    Role.FIELD_WORKER.value: {p.value for p in _FIELD_WORKER},
    Role.SUPERVISOR.value: {p.value for p in _SUPERVISOR},
    Role.ADMIN.value: {p.value for p in _ADMIN},
    Role.SUPER_ADMIN.value: {p.value for p in PermissionKey},  # All permissions
}


def get_permission(key: str) -> PermissionDef | None:
    """Get permission by key."""
    return PERMISSION_REGISTRY.get(key)


def get_role_default_permissions(role: str) -> set[str]:
    """Get default permissions for a role."""
    return ROLE_DEFAULTS.get(_role_value(role), set())


def minimum_role_for(permission: str) -> Role | None:
    """Lowest role whose defaults include the permission."""
    for role in sorted(Role, key=lambda r: r.level):
        if _role_value(permission) in ROLE_DEFAULTS[role.value]:
            return role
    return None


def _role_value(value: str) -> str:
    return value.value if isinstance(value, Enum) else value
