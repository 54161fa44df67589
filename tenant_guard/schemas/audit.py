"""Audit query schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from tenant_guard.db.enums import AuditEventType


class AuditFilters(BaseModel):
    """Optional filters for audit search. All conditions are ANDed."""
    event_types: list[AuditEventType] | None = None
    user_id: UUID | None = None
    resource: str | None = None
    success: bool | None = None
    since: datetime | None = None
    until: datetime | None = None

    @model_validator(mode="after")
    def check_range(self) -> "AuditFilters":
        if self.since and self.until and self.since >= self.until:
            raise ValueError("since must be before until")
        return self


class Pagination(BaseModel):
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class AuditEventRead(BaseModel):
    """Response schema for an audit event."""
    id: UUID
    user_id: UUID | None
    organization_id: UUID | None
    event_type: AuditEventType
    resource: str | None
    details: dict[str, Any]
    ip_address: str | None
    success: bool
    error_details: str | None
    timestamp: datetime

    model_config = {"from_attributes": True}
