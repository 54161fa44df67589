"""Role authorization engine.

Pure decisions (has_permission, can_invite, check_profile_update) plus
enforcement helpers that audit every denial as ``access_denied`` and raise.
"""

import logging
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from tenant_guard.core.errors import ForbiddenError, InsufficientRoleError
from tenant_guard.core.permissions import get_role_default_permissions, minimum_role_for
from tenant_guard.core.policies import permission_for
from tenant_guard.core.structured_logging import build_log_context
from tenant_guard.db.enums import AuditEventType, Role
from tenant_guard.db.models import Membership
from tenant_guard.services import audit_service

logger = logging.getLogger(__name__)

# super_admin is created only by bootstrap
INVITABLE_ROLES = frozenset({Role.FIELD_WORKER, Role.SUPERVISOR, Role.ADMIN})

# Highest role each inviter may grant
_INVITE_CEILING: dict[Role, Role | None] = {
    Role.FIELD_WORKER: None,
    Role.SUPERVISOR: Role.SUPERVISOR,
    Role.ADMIN: Role.ADMIN,
    Role.SUPER_ADMIN: Role.ADMIN,
}

PROTECTED_PROFILE_FIELDS = frozenset({"role", "organization_id"})


def _as_role(role: Role | str) -> Role:
    return role if isinstance(role, Role) else Role(role)


def role_at_least(role: Role | str, minimum: Role | str) -> bool:
    return _as_role(role).level >= _as_role(minimum).level


# =============================================================================
# Pure decisions
# =============================================================================

def has_permission(role: Role | str, action: str | None, resource: str) -> bool:
    """Whether the role may perform action on resource. Unknown pairs are denied."""
    permission = permission_for(resource, action)
    if permission is None:
        return False
    return permission.value in get_role_default_permissions(_as_role(role).value)


def can_invite(inviter_role: Role | str, target_role: Role | str) -> bool:
    """
    Whether inviter_role may invite someone as target_role.

    Monotone in the inviter: if a role may invite a target, every higher role
    may too.
    """
    inviter = _as_role(inviter_role)
    target = _as_role(target_role)
    if target not in INVITABLE_ROLES:
        return False
    if not has_permission(inviter, "invite", "invitations"):
        return False
    ceiling = _INVITE_CEILING[inviter]
    return ceiling is not None and target.level <= ceiling.level


def required_role_for_invite(target_role: Role | str) -> Role:
    """Lowest role allowed to invite target_role."""
    target = _as_role(target_role)
    for role in sorted(Role, key=lambda r: r.level):
        if can_invite(role, target):
            return role
    return Role.SUPER_ADMIN


def check_profile_update(actor: Membership, target: Membership, patch: Mapping[str, Any]) -> bool:
    """
    Whether actor may apply patch to target's profile.

    No actor may change role or organization_id through a profile update;
    role changes go through membership_service.change_role.
    """
    if PROTECTED_PROFILE_FIELDS & set(patch):
        return False
    if actor.organization_id != target.organization_id:
        return False
    if actor.id == target.id:
        return True
    return has_permission(actor.role, "update_profile", "members")


# =============================================================================
# Enforcement
# =============================================================================

def deny(
    db: Session,
    actor: Membership | None,
    *,
    action: str,
    resource: str,
    required_role: Role | None = None,
    org_id: UUID | None = None,
    reason: str = "insufficient_role",
    extra: dict[str, Any] | None = None,
) -> None:
    """Audit an access denial and commit it so it survives the caller's rollback."""
    details: dict[str, Any] = {
        "attempted_action": action,
        "resource": resource,
        "reason": reason,
    }
    if required_role is not None:
        details["required_role"] = required_role.value
    if actor is not None:
        details["actor_role"] = actor.role
    if extra:
        details.update(extra)

    audit_service.record_event(
        db,
        AuditEventType.ACCESS_DENIED,
        user_id=actor.id if actor else None,
        org_id=org_id or (actor.organization_id if actor else None),
        resource=resource,
        details=details,
        success=False,
    )
    db.commit()
    logger.info(
        "Access denied: %s on %s (%s)",
        action,
        resource,
        reason,
        extra=build_log_context(
            user_id=actor.id if actor else None,
            org_id=org_id or (actor.organization_id if actor else None),
            operation=action,
        ),
    )


def require_permission(db: Session, actor: Membership, resource: str, action: str | None = None) -> None:
    """Raise InsufficientRoleError (audited) unless actor's role grants (resource, action)."""
    if actor.is_active and has_permission(actor.role, action, resource):
        return
    permission = permission_for(resource, action)
    required = minimum_role_for(permission) if permission else None
    deny(db, actor, action=action or "view", resource=resource, required_role=required)
    raise InsufficientRoleError(
        f"Role {actor.role} may not {action or 'view'} {resource}",
        required_role=required.value if required else None,
        attempted_action=action or "view",
    )


def require_same_org(
    db: Session, actor: Membership, org_id: UUID, *, action: str, resource: str
) -> None:
    """Raise ForbiddenError (audited) when actor belongs to a different organization."""
    if actor.organization_id == org_id:
        return
    deny(
        db,
        actor,
        action=action,
        resource=resource,
        org_id=actor.organization_id,
        reason="cross_tenant",
        extra={"target_organization_id": str(org_id)},
    )
    raise ForbiddenError(f"Actor {actor.id} is not a member of organization {org_id}")


def require_invite(db: Session, actor: Membership, target_role: Role | str) -> None:
    """Raise InsufficientRoleError (audited) unless actor may invite target_role."""
    target = _as_role(target_role)
    if actor.is_active and can_invite(actor.role, target):
        return
    required = required_role_for_invite(target)
    deny(
        db,
        actor,
        action="invite",
        resource="invitations",
        required_role=required,
        extra={"target_role": target.value},
    )
    raise InsufficientRoleError(
        f"Role {actor.role} may not invite {target.value}",
        required_role=required.value,
        attempted_action="invite",
    )
