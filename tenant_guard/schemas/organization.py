"""Organization and membership schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenant_guard.db.enums import Role, SubscriptionTier

SCALAR_TYPES = (str, int, float, bool, type(None))


class OrganizationRead(BaseModel):
    id: UUID
    name: str
    slug: str
    subscription_tier: str
    mfa_required: bool
    max_users: int
    settings: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


class OrganizationSettingsPatch(BaseModel):
    """Partial update for organization settings. Unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=100)
    subscription_tier: SubscriptionTier | None = None
    mfa_required: bool | None = None
    max_users: int | None = Field(default=None, gt=0)
    settings: dict[str, Any] | None = None

    @field_validator("settings")
    @classmethod
    def scalar_values_only(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is None:
            return v
        for key, value in v.items():
            if not isinstance(value, SCALAR_TYPES):
                raise ValueError(f"Setting '{key}' must be a scalar value")
        return v


class ProfilePatch(BaseModel):
    """
    Self-service profile update.

    role and organization_id are not patchable; the membership service
    rejects them before this model is built.
    """

    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    avatar_url: str | None = None
    region_id: UUID | None = None
    preferences: dict[str, Any] | None = None


class MembershipRead(BaseModel):
    id: UUID
    organization_id: UUID
    email: str
    role: Role
    first_name: str | None
    last_name: str | None
    is_active: bool
    last_login_at: datetime | None
    last_activity_at: datetime | None

    model_config = {"from_attributes": True}
