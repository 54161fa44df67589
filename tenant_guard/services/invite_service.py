"""Invitation service - the only way into an organization.

Invitations are single-use and time-limited. Acceptance is serialized by a
compare-and-set on the invitation status, committed in the same transaction
as the membership insert, so a token admits exactly one member.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.config import settings
from tenant_guard.core.deadline import check_deadline
from tenant_guard.core.errors import (
    AlreadyMemberError,
    DuplicatePendingInvitationError,
    ForbiddenError,
    InvalidInputError,
    InvitationInvalidOrExpiredError,
    NotFoundError,
    OrganizationFullError,
)
from tenant_guard.core.interfaces import Clock, CredentialVerifier, IdentityStore, Notifier
from tenant_guard.core.structured_logging import build_log_context
from tenant_guard.db.enums import AuditEventType, InvitationStatus, Role
from tenant_guard.db.models import Invitation, Membership, Organization
from tenant_guard.schemas.invitation import AcceptProfile, InvitationCreate, InvitationView
from tenant_guard.services import (
    account_security_service,
    audit_service,
    authorization_service,
    membership_service,
    mfa_service,
    notification_service,
    org_service,
    session_service,
)
from tenant_guard.services.credential_service import default_verifier
from tenant_guard.services.identity_service import SqlIdentityStore

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    InvitationStatus.ACCEPTED.value: "This invitation has already been accepted",
    InvitationStatus.EXPIRED.value: "This invitation has expired",
    InvitationStatus.REVOKED.value: "This invitation has been revoked",
}


@dataclass
class IssuedInvitation:
    """A stored invitation and its plaintext token (returned exactly once)."""
    invitation: Invitation
    token: str


def expiry_window() -> timedelta:
    return timedelta(hours=settings.INVITATION_EXPIRY_HOURS)


def get_invite_status(
    invitation: Invitation, now: datetime
) -> Literal["pending", "accepted", "expired", "revoked"]:
    """Effective status: a pending invitation past expires_at reads as expired."""
    if invitation.status == InvitationStatus.PENDING.value and invitation.expires_at <= now:
        return "expired"
    return invitation.status


def _get_by_token(db: Session, token: str) -> Invitation | None:
    if not token:
        return None
    return db.scalars(
        select(Invitation).where(Invitation.token_hash == session_service.hash_token(token))
    ).first()


def _expire_if_overdue(db: Session, invitation: Invitation, now: datetime) -> bool:
    """Flip an overdue pending invitation to expired. Returns True if it changed."""
    result = db.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation.id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        db.expire(invitation)
        return True
    return False


def _inviter_name(db: Session, invitation: Invitation) -> str | None:
    if invitation.invited_by_id is None:
        return None
    inviter = db.get(Membership, invitation.invited_by_id)
    return inviter.display_name if inviter else None


# =============================================================================
# Issue
# =============================================================================


def create_invitation(
    db: Session,
    inviter: Membership,
    email: str,
    role: Role | str,
    org_id: UUID,
    *,
    region_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    notifier: Notifier | None = None,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> IssuedInvitation:
    """
    Invite an email into org_id with a role.

    Raises:
        InvalidInputError: Malformed email or unknown role
        ForbiddenError: Inviter belongs to another organization
        InsufficientRoleError: Inviter's role may not grant this role
        AlreadyMemberError: Email already belongs to a member of the org
        OrganizationFullError: Org is at max_users
        DuplicatePendingInvitationError: A pending invitation exists for this email
    """
    data = _validate_input(email, role, region_id, metadata)
    authorization_service.require_same_org(db, inviter, org_id, action="invite", resource="invitations")
    authorization_service.require_invite(db, inviter, data.role)
    return _issue(db, data, org_id, inviter, notifier=notifier, clock=clock, deadline=deadline)


def create_bootstrap_invitation(
    db: Session,
    org_id: UUID,
    email: str,
    role: Role | str = Role.ADMIN,
    *,
    notifier: Notifier | None = None,
    clock: Clock = system_clock,
) -> IssuedInvitation:
    """Privileged path: invite an organization's first admin with no inviter."""
    data = _validate_input(email, role, None, {"bootstrap": True})
    return _issue(db, data, org_id, None, notifier=notifier, clock=clock, deadline=None)


def _validate_input(
    email: str, role: Role | str, region_id: UUID | None, metadata: dict[str, Any] | None
) -> InvitationCreate:
    try:
        return InvitationCreate(email=email, role=role, region_id=region_id, metadata=metadata or {})
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
        raise InvalidInputError(f"Invalid invitation input: {fields}") from exc


def _issue(
    db: Session,
    data: InvitationCreate,
    org_id: UUID,
    inviter: Membership | None,
    *,
    notifier: Notifier | None,
    clock: Clock,
    deadline: datetime | None,
) -> IssuedInvitation:
    org = org_service.get_organization(db, org_id)
    email = str(data.email)

    if membership_service.find_member_by_email(db, org_id, email) is not None:
        raise AlreadyMemberError(f"{audit_service.hash_email(email)} is already a member")
    if membership_service.count_members(db, org_id) >= org.max_users:
        raise OrganizationFullError(f"Organization {org_id} is at its limit of {org.max_users} users")

    now = clock.now()
    # Overdue pending rows would otherwise hold the (org, email) slot
    db.execute(
        update(Invitation)
        .where(
            Invitation.organization_id == org_id,
            func.lower(Invitation.email) == email,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    token = session_service.generate_token()
    invitation = Invitation(
        organization_id=org_id,
        email=email,
        role=data.role.value,
        region_id=data.region_id,
        token_hash=session_service.hash_token(token),
        status=InvitationStatus.PENDING.value,
        expires_at=now + expiry_window(),
        invited_by_id=inviter.id if inviter else None,
        invite_metadata=dict(data.metadata),
        resend_count=0,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.begin_nested():
            db.add(invitation)
            db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicatePendingInvitationError(
            f"Pending invitation already exists for {audit_service.hash_email(email)}"
        ) from exc

    audit_service.record_event(
        db,
        AuditEventType.INVITATION_SENT,
        user_id=inviter.id if inviter else None,
        org_id=org_id,
        resource="invitations",
        details={
            "invitation_id": str(invitation.id),
            "invited_email": audit_service.hash_email(email),
            "invited_role": data.role.value,
        },
        clock=clock,
    )
    check_deadline(db, deadline, clock)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicatePendingInvitationError(
            f"Pending invitation already exists for {audit_service.hash_email(email)}"
        ) from exc

    _send_invitation_email(
        notifier or notification_service.LoggingNotifier(),
        invitation,
        token,
        org.name,
        inviter.display_name if inviter else None,
    )
    logger.info(
        "Invitation %s issued (role=%s)",
        invitation.id,
        data.role.value,
        extra=build_log_context(
            user_id=inviter.id if inviter else None, org_id=org_id, email=email, operation="invite"
        ),
    )
    return IssuedInvitation(invitation=invitation, token=token)


def _send_invitation_email(
    notifier: Notifier,
    invitation: Invitation,
    token: str,
    organization_name: str,
    inviter_name: str | None,
) -> None:
    notification_service.dispatch(
        "invitation",
        notifier.send_invitation,
        to_email=invitation.email,
        token=token,
        organization_name=organization_name,
        role=invitation.role,
        inviter_name=inviter_name,
        expires_at=invitation.expires_at,
    )


# =============================================================================
# Validate / accept
# =============================================================================


def validate_invitation(db: Session, token: str, *, clock: Clock = system_clock) -> InvitationView:
    """
    Public lookup of a pending invitation by token.

    Idempotent for a valid token. An overdue pending invitation is marked
    expired on read.

    Raises:
        InvitationInvalidOrExpiredError: Unknown, expired, revoked or used token
    """
    invitation = _get_by_token(db, token)
    if invitation is None:
        raise InvitationInvalidOrExpiredError("Invalid invitation token")

    if invitation.status != InvitationStatus.PENDING.value:
        raise InvitationInvalidOrExpiredError(STATUS_MESSAGES.get(invitation.status))

    now = clock.now()
    if _expire_if_overdue(db, invitation, now):
        db.commit()
        raise InvitationInvalidOrExpiredError(STATUS_MESSAGES[InvitationStatus.EXPIRED.value])

    org = db.get(Organization, invitation.organization_id)
    return InvitationView(
        id=invitation.id,
        email=invitation.email,
        role=Role(invitation.role),
        organization_id=invitation.organization_id,
        organization_name=org.name if org else "",
        inviter_name=_inviter_name(db, invitation),
        expires_at=invitation.expires_at,
    )


def accept_invitation(
    db: Session,
    token: str,
    *,
    password: str | None = None,
    profile: AcceptProfile | dict[str, Any] | None = None,
    identity_id: UUID | None = None,
    identity_store: IdentityStore | None = None,
    verifier: CredentialVerifier | None = None,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> Membership:
    """
    Redeem an invitation and create the membership, exactly once.

    The identity is the one named by identity_id (its email must match the
    invitation), else the one registered under the invitation email, else a
    new identity created with password.

    Raises:
        InvitationInvalidOrExpiredError: Token unknown, not pending, expired,
            or consumed concurrently
        AlreadyMemberError: Identity already has a membership (no state changes)
        ForbiddenError: identity_id does not match the invitation email
        OrganizationFullError: Org reached max_users
        InvalidInputError: New identity with a missing or weak password
        OperationCancelledError: Deadline passed before commit
    """
    identity_store = identity_store or SqlIdentityStore(db)
    verifier = verifier or default_verifier
    if isinstance(profile, dict):
        try:
            profile = AcceptProfile.model_validate(profile)
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc
    profile = profile or AcceptProfile()

    invitation = _get_by_token(db, token)
    if invitation is None or invitation.status != InvitationStatus.PENDING.value:
        raise InvitationInvalidOrExpiredError(
            STATUS_MESSAGES.get(invitation.status) if invitation else "Invalid invitation token"
        )
    now = clock.now()
    if _expire_if_overdue(db, invitation, now):
        db.commit()
        raise InvitationInvalidOrExpiredError(STATUS_MESSAGES[InvitationStatus.EXPIRED.value])

    invitation_id = invitation.id
    org_id = invitation.organization_id
    email = invitation.email
    role = invitation.role

    # Resolve identity (reads only)
    if identity_id is not None:
        identity = identity_store.get(identity_id)
        if identity is None or identity.email.strip().lower() != email:
            raise ForbiddenError("Identity does not match the invited email")
    else:
        identity = identity_store.find_by_email(email)

    if identity is not None and membership_service.get_membership(db, identity.id) is not None:
        raise AlreadyMemberError(f"Identity {identity.id} already has a membership")

    if identity is None:
        account_security_service.validate_password_strength(password or "")

    # Serialization point: lock the org row for the capacity check, then CAS the invitation
    org = db.scalars(
        select(Organization).where(Organization.id == org_id).with_for_update()
    ).one()
    if membership_service.count_members(db, org_id) >= org.max_users:
        db.rollback()
        raise OrganizationFullError(f"Organization {org_id} is at its limit of {org.max_users} users")

    claimed = db.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation_id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > now,
        )
        .values(status=InvitationStatus.ACCEPTED.value, accepted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise InvitationInvalidOrExpiredError("Invitation was already used")

    try:
        new_identity = identity is None
        password_hash = None
        if new_identity:
            password_hash = verifier.hash_password(password)
            identity = identity_store.create_identity(
                email, password_hash, {"first_name": profile.first_name, "last_name": profile.last_name}
            )

        membership = Membership(
            id=identity.id,
            organization_id=org_id,
            email=email,
            role=role,
            region_id=invitation.region_id,
            first_name=profile.first_name,
            last_name=profile.last_name,
            phone=profile.phone,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(membership)
        db.flush()

        db.execute(
            update(Invitation)
            .where(Invitation.id == invitation_id)
            .values(accepted_by_id=identity.id)
            .execution_options(synchronize_session=False)
        )
        mfa_service.initialize_mfa_settings(db, identity.id, org_id, clock=clock)
        if new_identity:
            account_security_service.record_password_change(
                db, identity.id, org_id, password_hash, clock=clock, audit=False
            )

        audit_service.record_event(
            db,
            AuditEventType.INVITATION_ACCEPTED,
            user_id=identity.id,
            org_id=org_id,
            resource="invitations",
            details={
                "invitation_id": str(invitation_id),
                "invited_email": audit_service.hash_email(email),
                "role": role,
                "invited_by": str(invitation.invited_by_id) if invitation.invited_by_id else None,
                "new_identity": new_identity,
            },
            clock=clock,
        )
        check_deadline(db, deadline, clock)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyMemberError("Identity already has a membership") from exc

    logger.info(
        "Invitation %s accepted",
        invitation_id,
        extra=build_log_context(user_id=membership.id, org_id=org_id, operation="accept_invitation"),
    )
    return membership


# =============================================================================
# Administration
# =============================================================================


def _get_for_actor(db: Session, actor: Membership, invitation_id: UUID, action: str) -> Invitation:
    invitation = db.get(Invitation, invitation_id)
    if invitation is None:
        raise NotFoundError(f"Invitation {invitation_id} not found")
    authorization_service.require_same_org(
        db, actor, invitation.organization_id, action=action, resource="invitations"
    )
    return invitation


def revoke_invitation(
    db: Session,
    actor: Membership,
    invitation_id: UUID,
    *,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> Invitation:
    """
    Revoke a pending invitation. Admin or above in the invitation's organization.

    Raises InvitationInvalidOrExpiredError if it is no longer pending.
    """
    invitation = _get_for_actor(db, actor, invitation_id, "revoke")
    authorization_service.require_permission(db, actor, "invitations", "revoke")

    now = clock.now()
    if _expire_if_overdue(db, invitation, now):
        db.commit()
        raise InvitationInvalidOrExpiredError(STATUS_MESSAGES[InvitationStatus.EXPIRED.value])

    result = db.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation_id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > now,
        )
        .values(
            status=InvitationStatus.REVOKED.value,
            revoked_at=now,
            revoked_by_id=actor.id,
            revoke_reason=reason[:500] if reason else None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvitationInvalidOrExpiredError(
            STATUS_MESSAGES.get(invitation.status, "Invitation is not pending")
        )

    audit_service.record_event(
        db,
        AuditEventType.INVITATION_REVOKED,
        user_id=actor.id,
        org_id=invitation.organization_id,
        resource="invitations",
        details={
            "invitation_id": str(invitation_id),
            "invited_email": audit_service.hash_email(invitation.email),
            "reason": reason,
        },
        clock=clock,
    )
    db.commit()
    db.refresh(invitation)
    return invitation


def can_resend(invitation: Invitation, now: datetime) -> tuple[bool, str | None]:
    """Check whether an invitation can be resent. Returns (ok, reason)."""
    if invitation.status != InvitationStatus.PENDING.value:
        return False, STATUS_MESSAGES.get(invitation.status, "Invitation is not pending")
    if invitation.resend_count >= settings.MAX_INVITE_RESENDS:
        return False, f"Maximum of {settings.MAX_INVITE_RESENDS} resends reached"
    last = invitation.last_resent_at or invitation.created_at
    cooldown = timedelta(minutes=settings.INVITE_RESEND_COOLDOWN_MINUTES)
    if now - last < cooldown:
        wait_seconds = int((cooldown - (now - last)).total_seconds())
        return False, f"Please wait {wait_seconds // 60 + 1} minute(s) before resending"
    return True, None


def resend_invitation(
    db: Session,
    actor: Membership,
    invitation_id: UUID,
    *,
    notifier: Notifier | None = None,
    clock: Clock = system_clock,
) -> IssuedInvitation:
    """
    Rotate the token, restart the expiry window and send the email again.

    The original inviter may resend; anyone else needs the manage permission.
    """
    invitation = _get_for_actor(db, actor, invitation_id, "resend")
    if invitation.invited_by_id != actor.id:
        authorization_service.require_permission(db, actor, "invitations", "resend")

    now = clock.now()
    ok, reason = can_resend(invitation, now)
    if not ok:
        if invitation.status != InvitationStatus.PENDING.value:
            raise InvitationInvalidOrExpiredError(reason)
        raise InvalidInputError(reason)

    token = session_service.generate_token()
    invitation.token_hash = session_service.hash_token(token)
    invitation.expires_at = now + expiry_window()
    invitation.resend_count += 1
    invitation.last_resent_at = now
    invitation.updated_at = now

    audit_service.record_event(
        db,
        AuditEventType.INVITATION_RESENT,
        user_id=actor.id,
        org_id=invitation.organization_id,
        resource="invitations",
        details={"invitation_id": str(invitation_id), "resend_count": invitation.resend_count},
        clock=clock,
    )
    db.commit()

    org = db.get(Organization, invitation.organization_id)
    _send_invitation_email(
        notifier or notification_service.LoggingNotifier(),
        invitation,
        token,
        org.name if org else "",
        _inviter_name(db, invitation),
    )
    return IssuedInvitation(invitation=invitation, token=token)


def list_invitations(
    db: Session,
    actor: Membership,
    org_id: UUID,
    *,
    status: InvitationStatus | str | None = None,
    limit: int = 100,
) -> list[Invitation]:
    """Invitations for an organization, newest first (supervisor and above)."""
    authorization_service.require_same_org(db, actor, org_id, action="list", resource="invitations")
    authorization_service.require_permission(db, actor, "invitations", "list")

    query = select(Invitation).where(Invitation.organization_id == org_id)
    if status is not None:
        query = query.where(Invitation.status == InvitationStatus(status).value)
    return list(db.scalars(query.order_by(Invitation.created_at.desc()).limit(min(limit, 200))).all())


def expire_stale_invitations(db: Session, *, clock: Clock = system_clock) -> int:
    """Mark every overdue pending invitation expired. One summary audit event."""
    now = clock.now()
    expired = db.execute(
        update(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.SYSTEM_MAINTENANCE,
        resource="invitations",
        details={"task": "invitation_expiry", "expired": expired},
        clock=clock,
    )
    db.commit()
    return expired
