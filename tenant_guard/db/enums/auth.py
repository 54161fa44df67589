"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles with increasing privilege levels.

    - FIELD_WORKER: Field crews recording inspections and readings
    - SUPERVISOR: Crew leads, may invite field workers and supervisors
    - ADMIN: Organization admin (settings, invites, role changes, audit log)
    - SUPER_ADMIN: Platform operator, created only by bootstrap
    """

    FIELD_WORKER = "field_worker"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]


ROLE_LEVELS: dict[Role, int] = {
    Role.FIELD_WORKER: 1,
    Role.SUPERVISOR: 2,
    Role.ADMIN: 3,
    Role.SUPER_ADMIN: 4,
}


class InvitationStatus(str, Enum):
    """Invitation lifecycle. Only PENDING may transition."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AttemptType(str, Enum):
    """Credential checks recorded for lockout accounting."""

    LOGIN = "login"
    MFA = "mfa"
    PASSWORD_RESET = "password_reset"


class SubscriptionTier(str, Enum):
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
