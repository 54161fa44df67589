"""Account security guard - derived lockout and password reuse rules.

Lockout is never stored: it is computed from the login_attempts rows inside a
sliding window, so it lifts by itself once old failures age out.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.config import settings
from tenant_guard.core.errors import InvalidInputError, NotFoundError
from tenant_guard.core.interfaces import Clock, CredentialVerifier
from tenant_guard.core.structured_logging import build_log_context
from tenant_guard.db.enums import AttemptType, AuditEventType
from tenant_guard.db.models import LoginAttempt, Membership, PasswordHistoryEntry
from tenant_guard.services import audit_service

logger = logging.getLogger(__name__)

SPECIAL_CHARACTERS = "@$!%*?&"
PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$"
)


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    failed_count: int
    remaining: int


def _normalize(email: str) -> str:
    return (email or "").strip().lower()


# =============================================================================
# Login attempts and lockout
# =============================================================================


def _window_failures(db: Session, email: str, now: datetime) -> int:
    window_start = now - timedelta(minutes=settings.LOCKOUT_WINDOW_MINUTES)
    conditions = [
        LoginAttempt.email == email,
        LoginAttempt.success.is_(False),
        LoginAttempt.cleared_at.is_(None),
        LoginAttempt.attempted_at >= window_start,
    ]
    if settings.LOCKOUT_RESET_ON_SUCCESS:
        last_success = db.scalar(
            select(func.max(LoginAttempt.attempted_at)).where(
                LoginAttempt.email == email,
                LoginAttempt.success.is_(True),
                LoginAttempt.attempted_at >= window_start,
            )
        )
        if last_success is not None:
            conditions.append(LoginAttempt.attempted_at > last_success)

    return db.scalar(select(func.count(LoginAttempt.id)).where(*conditions)) or 0


def check_lockout(db: Session, email: str, *, clock: Clock = system_clock) -> LockoutStatus:
    """
    Derive lockout state for an email.

    locked iff failures inside the window reach the threshold; remaining is how
    many more failures are allowed before that.
    """
    threshold = settings.LOCKOUT_MAX_FAILED_ATTEMPTS
    failed = _window_failures(db, _normalize(email), clock.now())
    locked = failed >= threshold
    return LockoutStatus(locked=locked, failed_count=failed, remaining=0 if locked else threshold - failed)


def record_attempt(
    db: Session,
    email: str,
    ip_address: str | None,
    success: bool,
    *,
    attempt_type: AttemptType = AttemptType.LOGIN,
    org_id: UUID | None = None,
    user_id: UUID | None = None,
    clock: Clock = system_clock,
) -> LockoutStatus:
    """
    Record one credential check. Does not commit.

    Emits account_locked on the failure that reaches the threshold.
    """
    email = _normalize(email)
    db.add(
        LoginAttempt(
            email=email,
            ip_address=ip_address,
            attempt_type=AttemptType(attempt_type).value,
            success=success,
            attempted_at=clock.now(),
        )
    )
    db.flush()

    status = check_lockout(db, email, clock=clock)
    if not success and status.failed_count == settings.LOCKOUT_MAX_FAILED_ATTEMPTS:
        audit_service.record_event(
            db,
            AuditEventType.ACCOUNT_LOCKED,
            user_id=user_id,
            org_id=org_id,
            resource="auth",
            details={
                "email": audit_service.hash_email(email),
                "failed_count": status.failed_count,
                "window_minutes": settings.LOCKOUT_WINDOW_MINUTES,
            },
            ip_address=ip_address,
            success=False,
            clock=clock,
        )
        logger.warning(
            "Account locked after %s failed attempts",
            status.failed_count,
            extra=build_log_context(email=email, ip_address=ip_address, operation="lockout"),
        )
    return status


def unlock_account(
    db: Session,
    actor: Membership,
    email: str,
    *,
    clock: Clock = system_clock,
) -> int:
    """
    Admin clears the windowed failures of a member in their own organization.

    Returns the number of attempts cleared.
    """
    from tenant_guard.services import authorization_service, membership_service

    email = _normalize(email)
    target = membership_service.find_member_by_email(db, actor.organization_id, email)
    if target is None:
        raise NotFoundError("No such member in this organization")
    authorization_service.require_permission(db, actor, "security", "unlock_account")

    now = clock.now()
    window_start = now - timedelta(minutes=settings.LOCKOUT_WINDOW_MINUTES)
    cleared = db.execute(
        update(LoginAttempt)
        .where(
            LoginAttempt.email == email,
            LoginAttempt.success.is_(False),
            LoginAttempt.cleared_at.is_(None),
            LoginAttempt.attempted_at >= window_start,
        )
        .values(cleared_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.ACCOUNT_UNLOCKED,
        user_id=actor.id,
        org_id=actor.organization_id,
        resource="auth",
        details={"target_user_id": str(target.id), "cleared_attempts": cleared},
        clock=clock,
    )
    db.commit()
    return cleared


def prune_login_attempts(db: Session, *, clock: Clock = system_clock) -> int:
    cutoff = clock.now() - timedelta(days=settings.LOGIN_ATTEMPT_RETENTION_DAYS)
    deleted = db.execute(
        delete(LoginAttempt)
        .where(LoginAttempt.attempted_at < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.SYSTEM_MAINTENANCE,
        resource="login_attempts",
        details={"task": "login_attempt_retention", "deleted": deleted},
        clock=clock,
    )
    db.commit()
    return deleted


# =============================================================================
# Passwords
# =============================================================================


def validate_password_strength(password: str) -> None:
    """
    Enforce the password policy.

    At least PASSWORD_MIN_LENGTH characters with a lowercase letter, an uppercase
    letter, a digit and one of @$!%*?&. Letters, digits and those specials only.
    """
    if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
        raise InvalidInputError(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters")
    if not PASSWORD_PATTERN.match(password):
        raise InvalidInputError(
            "Password must contain uppercase, lowercase, a number and a special character "
            f"({SPECIAL_CHARACTERS})"
        )


def _recent_history(db: Session, user_id: UUID, now: datetime) -> list[PasswordHistoryEntry]:
    cutoff = now - timedelta(days=settings.PASSWORD_HISTORY_RETENTION_DAYS)
    return list(
        db.scalars(
            select(PasswordHistoryEntry)
            .where(
                PasswordHistoryEntry.user_id == user_id,
                PasswordHistoryEntry.created_at >= cutoff,
            )
            .order_by(PasswordHistoryEntry.created_at.desc())
            .limit(settings.PASSWORD_HISTORY_DEPTH)
        ).all()
    )


def check_password_reuse(
    db: Session, user_id: UUID, candidate_hash: str, *, clock: Clock = system_clock
) -> bool:
    """True if candidate_hash equals a history entry inside the retention window."""
    return any(entry.password_hash == candidate_hash for entry in _recent_history(db, user_id, clock.now()))


def is_password_reused(
    db: Session,
    user_id: UUID,
    password: str,
    verifier: CredentialVerifier,
    *,
    clock: Clock = system_clock,
) -> bool:
    """Reuse check for salted hashes: verify the plaintext against each recent entry."""
    return any(
        verifier.verify_password(password, entry.password_hash)
        for entry in _recent_history(db, user_id, clock.now())
    )


def record_password_change(
    db: Session,
    user_id: UUID,
    org_id: UUID,
    new_hash: str,
    *,
    clock: Clock = system_clock,
    audit: bool = True,
) -> PasswordHistoryEntry:
    """
    Append a history entry and prune beyond depth and retention. Does not commit.
    """
    now = clock.now()
    entry = PasswordHistoryEntry(
        user_id=user_id,
        organization_id=org_id,
        password_hash=new_hash,
        created_at=now,
    )
    db.add(entry)
    db.flush()

    keep_ids = select(PasswordHistoryEntry.id).where(
        PasswordHistoryEntry.user_id == user_id
    ).order_by(PasswordHistoryEntry.created_at.desc()).limit(settings.PASSWORD_HISTORY_DEPTH)
    keep = set(db.scalars(keep_ids).all())
    cutoff = now - timedelta(days=settings.PASSWORD_HISTORY_RETENTION_DAYS)
    stale = [
        e.id
        for e in db.scalars(select(PasswordHistoryEntry).where(PasswordHistoryEntry.user_id == user_id)).all()
        if e.id not in keep or e.created_at < cutoff
    ]
    if stale:
        db.execute(
            delete(PasswordHistoryEntry)
            .where(PasswordHistoryEntry.id.in_(stale))
            .execution_options(synchronize_session=False)
        )

    if audit:
        audit_service.record_event(
            db,
            AuditEventType.PASSWORD_CHANGE,
            user_id=user_id,
            org_id=org_id,
            resource="auth",
            clock=clock,
        )
    return entry


def prune_password_history(db: Session, *, clock: Clock = system_clock) -> int:
    cutoff = clock.now() - timedelta(days=settings.PASSWORD_HISTORY_RETENTION_DAYS)
    deleted = db.execute(
        delete(PasswordHistoryEntry)
        .where(PasswordHistoryEntry.created_at < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.SYSTEM_MAINTENANCE,
        resource="password_history",
        details={"task": "password_history_retention", "deleted": deleted},
        clock=clock,
    )
    db.commit()
    return deleted
