"""Invitation-related Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from tenant_guard.db.enums import InvitationStatus, Role


class InvitationCreate(BaseModel):
    """
    Input for creating an invitation.

    Validates:
    - Email format
    - Role is valid enum value
    - Email is normalized to lowercase
    """
    email: EmailStr
    role: Role
    region_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.strip().lower() if isinstance(v, str) else v


class InvitationView(BaseModel):
    """Public view of a pending invitation, returned by token validation."""
    id: UUID
    email: str
    role: Role
    organization_id: UUID
    organization_name: str
    inviter_name: str | None
    expires_at: datetime


class InvitationRead(BaseModel):
    """Admin view of an invitation. Never includes the token."""
    id: UUID
    organization_id: UUID
    email: str
    role: Role
    status: InvitationStatus
    expires_at: datetime
    invited_by_id: UUID | None
    accepted_at: datetime | None
    revoked_at: datetime | None
    resend_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class AcceptProfile(BaseModel):
    """Profile fields supplied by the invitee on acceptance."""
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
