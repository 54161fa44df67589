"""Tenancy and membership models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tenant_guard.db.base import Base
from tenant_guard.db.enums import InvitationStatus, Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ROLE_VALUES = ", ".join(f"'{r.value}'" for r in Role)
_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in InvitationStatus)


class Organization(Base):
    """
    A tenant in the multi-tenant system.

    Every membership, invitation, session and audit event is scoped by
    organization_id.
    """

    __tablename__ = "organizations"
    __table_args__ = (
        CheckConstraint("max_users > 0", name="ck_organizations_max_users_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default="basic", server_default=text("'basic'")
    )
    mfa_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    max_users: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, server_default=text("100")
    )
    # String keys, scalar values only (validated in org_service)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class Identity(Base):
    """
    Login identity backing the default SQL identity store.

    Deployments with an external identity provider plug in their own store and
    leave this table empty.
    """

    __tablename__ = "identities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attributes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class Membership(Base):
    """
    User profile within exactly one organization.

    The primary key is the identity id, so an identity can never hold a second
    membership. organization_id never changes after insert.
    """

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("id", "organization_id", name="uq_memberships_id_org"),
        CheckConstraint(f"role IN ({_ROLE_VALUES})", name="ck_memberships_role"),
        Index("ix_memberships_org_active", "organization_id", "is_active"),
        Index("ix_memberships_org_email", "organization_id", "email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    region_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    device_info: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email


class Invitation(Base):
    """
    Single-use, time-limited grant to join an organization with a role.

    Only the SHA256 of the token is stored. At most one pending invitation per
    (organization_id, email), enforced by a partial unique index.
    """

    __tablename__ = "invitations"
    __table_args__ = (
        CheckConstraint(f"role IN ({_ROLE_VALUES})", name="ck_invitations_role"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_invitations_status"),
        Index(
            "uq_invitations_pending_org_email",
            "organization_id",
            "email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_invitations_status_expires", "status", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    region_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvitationStatus.PENDING.value
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    # NULL for bootstrap invites and after the inviter is deleted
    invited_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("memberships.id", ondelete="SET NULL"), nullable=True
    )
    invite_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    resend_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_resent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
