"""Audit enums."""

from enum import Enum


class AuditEventType(str, Enum):
    """
    Security audit events. Closed set; storage rejects anything else.

    Groups:
    - Authentication: login, logout, lockout, MFA
    - Membership: invitations, role changes, deactivation
    - Tenancy: organization lifecycle
    - System: access denials, incidents, maintenance sweeps
    """

    # Authentication
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"

    # Membership
    ROLE_CHANGE = "role_change"
    PROFILE_UPDATED = "profile_updated"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    USER_DELETED = "user_deleted"
    INVITATION_SENT = "invitation_sent"
    INVITATION_RESENT = "invitation_resent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REVOKED = "invitation_revoked"

    # Tenancy
    ORGANIZATION_CREATED = "organization_created"
    ORGANIZATION_UPDATED = "organization_updated"

    # System
    ACCESS_DENIED = "access_denied"
    SECURITY_INCIDENT = "security_incident"
    SYSTEM_MAINTENANCE = "system_maintenance"
