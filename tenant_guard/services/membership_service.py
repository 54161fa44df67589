"""Membership service - profiles, roles and member lifecycle within one organization."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.db_retry import retry_read
from tenant_guard.core.deadline import check_deadline
from tenant_guard.core.errors import (
    AlreadyMemberError,
    ForbiddenError,
    InsufficientRoleError,
    InvalidInputError,
    NotFoundError,
)
from tenant_guard.core.interfaces import Clock
from tenant_guard.db.enums import AuditEventType, Role
from tenant_guard.db.models import (
    Invitation,
    Membership,
    MfaSettings,
    PasswordHistoryEntry,
    UserSession,
)
from tenant_guard.schemas.organization import ProfilePatch
from tenant_guard.services import audit_service, authorization_service

logger = logging.getLogger(__name__)


@retry_read
def get_membership(db: Session, identity_id: UUID) -> Membership | None:
    """Get the membership for an identity (at most one exists)."""
    return db.get(Membership, identity_id)


@retry_read
def get_membership_for_org(db: Session, org_id: UUID, identity_id: UUID) -> Membership | None:
    """Get membership scoped to an organization."""
    return db.scalars(
        select(Membership).where(
            Membership.id == identity_id,
            Membership.organization_id == org_id,
        )
    ).first()


def find_member_by_email(db: Session, org_id: UUID, email: str) -> Membership | None:
    return db.scalars(
        select(Membership).where(
            Membership.organization_id == org_id,
            func.lower(Membership.email) == email.strip().lower(),
        )
    ).first()


def count_members(db: Session, org_id: UUID) -> int:
    """Active members count against max_users."""
    return db.scalar(
        select(func.count(Membership.id)).where(
            Membership.organization_id == org_id,
            Membership.is_active.is_(True),
        )
    ) or 0


def list_members(db: Session, actor: Membership, org_id: UUID) -> list[Membership]:
    authorization_service.require_same_org(db, actor, org_id, action="list", resource="members")
    authorization_service.require_permission(db, actor, "members", "list")
    return list(
        db.scalars(
            select(Membership)
            .where(Membership.organization_id == org_id)
            .order_by(Membership.created_at)
        ).all()
    )


def _get_target(db: Session, actor: Membership, target_id: UUID, action: str) -> Membership:
    target = db.get(Membership, target_id)
    if target is None:
        raise NotFoundError(f"Member {target_id} not found")
    authorization_service.require_same_org(
        db, actor, target.organization_id, action=action, resource="members"
    )
    return target


def create_bootstrap_membership(
    db: Session,
    org_id: UUID,
    identity_id: UUID,
    email: str,
    role: Role = Role.ADMIN,
    *,
    clock: Clock = system_clock,
) -> Membership:
    """
    Privileged path for seeding an organization's first member.

    Bypasses invitations; used by the CLI and tests. Raises AlreadyMemberError
    if the identity already belongs to an organization.
    """
    if get_membership(db, identity_id) is not None:
        raise AlreadyMemberError(f"Identity {identity_id} already has a membership")
    now = clock.now()
    membership = Membership(
        id=identity_id,
        organization_id=org_id,
        email=email.strip().lower(),
        role=Role(role).value,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(membership)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyMemberError(f"Identity {identity_id} already has a membership") from exc

    from tenant_guard.services import mfa_service

    mfa_service.initialize_mfa_settings(db, identity_id, org_id, clock=clock)
    db.commit()
    return membership


def update_profile(
    db: Session,
    actor: Membership,
    target_id: UUID,
    patch: dict[str, Any],
    *,
    clock: Clock = system_clock,
) -> Membership:
    """
    Update profile fields on self, or on a member of the same org as an admin.

    Any attempt to touch role or organization_id fails with InsufficientRoleError.
    """
    target = _get_target(db, actor, target_id, "update_profile")

    if not authorization_service.check_profile_update(actor, target, patch):
        protected = sorted(authorization_service.PROTECTED_PROFILE_FIELDS & set(patch))
        authorization_service.deny(
            db,
            actor,
            action="update_profile",
            resource="members",
            required_role=None if protected else Role.ADMIN,
            extra={"target_user_id": str(target_id), "protected_fields": protected},
        )
        raise InsufficientRoleError(
            "Profile update not permitted",
            required_role=None if protected else Role.ADMIN.value,
            attempted_action="update_profile",
        )

    try:
        validated = ProfilePatch.model_validate(patch)
    except ValidationError as exc:
        raise InvalidInputError(str(exc)) from exc

    changes = validated.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(target, field, value)
    if changes:
        target.updated_at = clock.now()
        audit_service.record_event(
            db,
            AuditEventType.PROFILE_UPDATED,
            user_id=actor.id,
            org_id=target.organization_id,
            resource="members",
            details={"target_user_id": str(target_id), "fields": sorted(changes)},
            clock=clock,
        )
        db.commit()
    return target


def change_role(
    db: Session,
    actor: Membership,
    target_id: UUID,
    new_role: Role | str,
    *,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> Membership:
    """
    Change a member's role. Admin or above, same organization, never self.

    The new role may not exceed the actor's own role.
    """
    new_role = Role(new_role)
    target = _get_target(db, actor, target_id, "change_role")
    authorization_service.require_permission(db, actor, "members", "change_role")

    if target.id == actor.id:
        authorization_service.deny(
            db, actor, action="change_role", resource="members", reason="self_change"
        )
        raise ForbiddenError("Members cannot change their own role")
    if not authorization_service.role_at_least(actor.role, new_role) or not authorization_service.role_at_least(
        actor.role, target.role
    ):
        authorization_service.deny(
            db,
            actor,
            action="change_role",
            resource="members",
            required_role=max(new_role, Role(target.role), key=lambda r: r.level),
            extra={"target_user_id": str(target_id), "new_role": new_role.value},
        )
        raise InsufficientRoleError(
            f"Role {actor.role} may not assign {new_role.value}",
            required_role=new_role.value,
            attempted_action="change_role",
        )

    old_role = target.role
    if old_role == new_role.value:
        return target
    target.role = new_role.value
    target.updated_at = clock.now()
    audit_service.record_event(
        db,
        AuditEventType.ROLE_CHANGE,
        user_id=actor.id,
        org_id=target.organization_id,
        resource="members",
        details={"target_user_id": str(target_id), "old_role": old_role, "new_role": new_role.value},
        clock=clock,
    )
    check_deadline(db, deadline, clock)
    db.commit()
    logger.info("Role change %s: %s -> %s", target_id, old_role, new_role.value)
    return target


def deactivate_membership(
    db: Session,
    actor: Membership,
    target_id: UUID,
    *,
    clock: Clock = system_clock,
) -> Membership:
    """Soft-delete a member and end all their sessions."""
    target = _get_target(db, actor, target_id, "deactivate")
    authorization_service.require_permission(db, actor, "members", "deactivate")
    if target.id == actor.id:
        raise ForbiddenError("Members cannot deactivate themselves")

    now = clock.now()
    target.is_active = False
    target.updated_at = now
    ended = db.execute(
        update(UserSession)
        .where(UserSession.user_id == target.id, UserSession.is_active.is_(True))
        .values(is_active=False, ended_at=now, end_reason="deactivated")
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.ACCOUNT_DEACTIVATED,
        user_id=actor.id,
        org_id=target.organization_id,
        resource="members",
        details={"target_user_id": str(target_id), "sessions_ended": ended},
        clock=clock,
    )
    db.commit()
    return target


def delete_membership(
    db: Session,
    actor: Membership,
    target_id: UUID,
    *,
    clock: Clock = system_clock,
) -> None:
    """
    Permanently remove a member.

    Sessions, MFA settings and password history go with it. Invitations the
    member sent are kept with invited_by_id cleared and flagged in metadata.
    """
    target = _get_target(db, actor, target_id, "delete")
    authorization_service.require_permission(db, actor, "members", "delete")
    if target.id == actor.id:
        raise ForbiddenError("Members cannot delete themselves")

    org_id = target.organization_id
    sent = db.scalars(select(Invitation).where(Invitation.invited_by_id == target.id)).all()
    for invitation in sent:
        invitation.invited_by_id = None
        invitation.invite_metadata = {**(invitation.invite_metadata or {}), "original_inviter_deleted": True}
    db.flush()

    sessions = db.execute(delete(UserSession).where(UserSession.user_id == target.id)).rowcount or 0
    db.execute(delete(MfaSettings).where(MfaSettings.user_id == target.id))
    db.execute(delete(PasswordHistoryEntry).where(PasswordHistoryEntry.user_id == target.id))
    db.delete(target)

    audit_service.record_event(
        db,
        AuditEventType.USER_DELETED,
        user_id=actor.id,
        org_id=org_id,
        resource="members",
        details={
            "deleted_user_id": str(target_id),
            "role": target.role,
            "sessions_deleted": sessions,
            "invitations_orphaned": len(sent),
        },
        clock=clock,
    )
    db.commit()
    logger.info("Deleted member %s from org %s", target_id, org_id)
