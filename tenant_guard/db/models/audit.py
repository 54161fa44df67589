"""Audit trail model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tenant_guard.db.base import Base
from tenant_guard.db.enums import AuditEventType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_EVENT_VALUES = ", ".join(f"'{e.value}'" for e in AuditEventType)


class AuditEvent(Base):
    """
    Append-only security audit log.

    Security:
    - Never stores secrets or tokens
    - Emails in details are hashed
    - No foreign keys: events outlive the users and sessions they describe
    - System events (maintenance sweeps) have no organization
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        CheckConstraint(f"event_type IN ({_EVENT_VALUES})", name="ck_audit_events_event_type"),
        Index("ix_audit_events_org_time", "organization_id", "timestamp"),
        Index("ix_audit_events_org_type_time", "organization_id", "event_type", "timestamp"),
        Index("ix_audit_events_user_time", "user_id", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)  # AuditEventType
    resource: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
