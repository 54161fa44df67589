"""SQLAlchemy ORM models."""

from tenant_guard.db.models.audit import AuditEvent
from tenant_guard.db.models.auth import Identity, Invitation, Membership, Organization
from tenant_guard.db.models.security import (
    LoginAttempt,
    MfaSettings,
    PasswordHistoryEntry,
    UserSession,
)

__all__ = [
    "AuditEvent",
    "Identity",
    "Invitation",
    "LoginAttempt",
    "Membership",
    "MfaSettings",
    "Organization",
    "PasswordHistoryEntry",
    "UserSession",
]
