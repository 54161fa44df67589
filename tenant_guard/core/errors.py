"""Typed errors raised by the services.

Every error carries a stable ``code`` and a ``public_message`` that is safe to
show to callers; the exception's own message may carry internal detail.
"""

from tenant_guard.core.config import settings


class ServiceError(Exception):
    """Base exception for tenant-guard service errors."""

    code = "service_error"
    public_message = "The request could not be completed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class InvalidInputError(ServiceError, ValueError):
    """Malformed input (email, slug, password strength, patch shape)."""

    code = "invalid_input"
    public_message = "The request contains invalid input."


class NotFoundError(ServiceError):
    """Referenced record does not exist (or is outside the caller's tenant)."""

    code = "not_found"
    public_message = "Not found."


class DuplicateSlugError(ServiceError):
    """Organization slug already taken."""

    code = "duplicate_slug"
    public_message = "An organization with this slug already exists."


class ForbiddenError(ServiceError):
    """Actor is outside the target tenant or acting on someone else's data."""

    code = "forbidden"
    public_message = "You do not have access to this resource."


class InsufficientRoleError(ServiceError):
    """Actor's role is below what the action needs."""

    code = "insufficient_role"
    public_message = "You do not have permission to perform this action."

    def __init__(
        self,
        message: str | None = None,
        *,
        required_role: str | None = None,
        attempted_action: str | None = None,
    ):
        super().__init__(message)
        self.required_role = required_role
        self.attempted_action = attempted_action


class InvitationInvalidOrExpiredError(ServiceError):
    """Token unknown, expired, revoked or already used."""

    code = "invitation_invalid_or_expired"
    public_message = "This invitation is invalid or has expired."


class AlreadyMemberError(ServiceError):
    """Identity already has a membership."""

    code = "already_member"
    public_message = "This user is already a member."


class DuplicatePendingInvitationError(ServiceError):
    """A pending invitation already exists for this email in the organization."""

    code = "duplicate_pending_invitation"
    public_message = "An invitation is already pending for this email."


class OrganizationFullError(ServiceError):
    """Organization reached max_users."""

    code = "organization_full"
    public_message = "This organization has reached its user limit."


class InvalidCredentialsError(ServiceError):
    code = "invalid_credentials"
    public_message = "Invalid email or password."


class AccountLockedError(ServiceError):
    """Too many failed sign-in attempts inside the lockout window."""

    code = "account_locked"
    public_message = "Account temporarily locked. Try again later."

    def __init__(self, message: str | None = None, *, failed_count: int = 0):
        super().__init__(message)
        self.failed_count = failed_count


class MfaRequiredError(ServiceError):
    code = "mfa_required"
    public_message = "A verification code is required."


class SessionExpiredError(ServiceError):
    code = "session_expired"
    public_message = "Your session has expired. Please sign in again."


class PasswordReusedError(ServiceError):
    code = "password_reused"
    public_message = "This password was used recently. Choose a different one."


class OperationCancelledError(ServiceError):
    """Caller's deadline passed before the operation could commit."""

    code = "operation_cancelled"
    public_message = "The operation was cancelled."


def public_error(exc: ServiceError, *, mask_lockout: bool | None = None) -> tuple[str, str]:
    """
    Map a service error to a stable (code, message) pair for callers.

    With lockout masking on, a locked account is indistinguishable from bad
    credentials.
    """
    if mask_lockout is None:
        mask_lockout = settings.MASK_ACCOUNT_LOCKED
    if mask_lockout and isinstance(exc, AccountLockedError):
        return InvalidCredentialsError.code, InvalidCredentialsError.public_message
    return exc.code, exc.public_message
