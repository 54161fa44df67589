"""Centralized RBAC policies for resources."""

from dataclasses import dataclass

from tenant_guard.core.permissions import PermissionKey as P


@dataclass(frozen=True)
class ResourcePolicy:
    """Default permission + per-action overrides for a resource."""

    default: P | None
    actions: dict[str, P]


POLICIES: dict[str, ResourcePolicy] = {
    "organization": ResourcePolicy(
        default=P.VIEW_ORGANIZATION,
        actions={
            "update": P.MANAGE_ORGANIZATION,
            "update_settings": P.MANAGE_ORGANIZATION,
        },
    ),
    "members": ResourcePolicy(
        default=P.VIEW_MEMBERS,
        actions={
            "change_role": P.MANAGE_MEMBERS,
            "update_profile": P.MANAGE_MEMBERS,
            "deactivate": P.MANAGE_MEMBERS,
            "delete": P.DELETE_MEMBERS,
        },
    ),
    "invitations": ResourcePolicy(
        default=P.VIEW_INVITATIONS,
        actions={
            "invite": P.INVITE_MEMBERS,
            "revoke": P.MANAGE_INVITATIONS,
            "resend": P.MANAGE_INVITATIONS,
        },
    ),
    "sessions": ResourcePolicy(default=P.VIEW_OWN_SESSIONS, actions={}),
    "audit_log": ResourcePolicy(default=P.VIEW_AUDIT_LOG, actions={"view": P.VIEW_AUDIT_LOG}),
    "security": ResourcePolicy(
        default=P.MANAGE_SECURITY,
        actions={
            "unlock_account": P.MANAGE_SECURITY,
            "reset_mfa": P.MANAGE_SECURITY,
        },
    ),
}


def permission_for(resource: str, action: str | None = None) -> P | None:
    """
    Resolve the permission guarding (resource, action).

    Returns None for unknown resources and unknown actions, which callers treat
    as deny.
    """
    policy = POLICIES.get(resource)
    if policy is None:
        return None
    if action in (None, "view", "list"):
        return policy.default
    return policy.actions.get(action)
