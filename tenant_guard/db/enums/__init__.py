"""Enum definitions for application constants."""

from tenant_guard.db.enums.audit import AuditEventType
from tenant_guard.db.enums.auth import (
    ROLE_LEVELS,
    AttemptType,
    InvitationStatus,
    Role,
    SubscriptionTier,
)

__all__ = [
    "AuditEventType",
    "AttemptType",
    "InvitationStatus",
    "ROLE_LEVELS",
    "Role",
    "SubscriptionTier",
]
