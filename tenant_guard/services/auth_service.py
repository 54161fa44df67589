"""Authentication flows - sign-in, sign-out and password changes.

Composes the account security guard, MFA and the session manager:
lockout is checked before credentials, every credential check is recorded,
and a session is opened only after all checks pass.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.deadline import check_deadline
from tenant_guard.core.errors import (
    AccountLockedError,
    InvalidCredentialsError,
    MfaRequiredError,
    NotFoundError,
    PasswordReusedError,
)
from tenant_guard.core.interfaces import Clock, CredentialVerifier, IdentityStore, Notifier
from tenant_guard.core.structured_logging import build_log_context
from tenant_guard.db.enums import AttemptType, AuditEventType
from tenant_guard.db.models import UserSession
from tenant_guard.services import (
    account_security_service,
    audit_service,
    membership_service,
    mfa_service,
    notification_service,
    org_service,
    session_service,
)
from tenant_guard.services.credential_service import default_verifier
from tenant_guard.services.identity_service import SqlIdentityStore

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    session: UserSession
    token: str
    mfa_setup_required: bool = False


def _login_failed(
    db: Session,
    email: str,
    reason: str,
    *,
    ip_address: str | None,
    user_agent: str | None,
    user_id: UUID | None = None,
    org_id: UUID | None = None,
    record: bool = True,
    attempt_type: AttemptType = AttemptType.LOGIN,
    clock: Clock,
) -> None:
    if record:
        account_security_service.record_attempt(
            db,
            email,
            ip_address,
            False,
            attempt_type=attempt_type,
            org_id=org_id,
            user_id=user_id,
            clock=clock,
        )
    audit_service.record_event(
        db,
        AuditEventType.LOGIN_FAILED,
        user_id=user_id,
        org_id=org_id,
        resource="auth",
        details={"email": audit_service.hash_email(email), "reason": reason},
        ip_address=ip_address,
        user_agent=user_agent,
        success=False,
        clock=clock,
    )
    db.commit()


def login(
    db: Session,
    email: str,
    password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_info: dict[str, Any] | None = None,
    mfa_code: str | None = None,
    identity_store: IdentityStore | None = None,
    verifier: CredentialVerifier | None = None,
    clock: Clock = system_clock,
) -> LoginResult:
    """
    Authenticate and open a session.

    Raises:
        AccountLockedError: Too many recent failures (checked before credentials;
            not itself recorded as an attempt)
        InvalidCredentialsError: Unknown email, wrong password, inactive member,
            or wrong MFA code
        MfaRequiredError: Member has MFA enabled and no code was supplied
    """
    identity_store = identity_store or SqlIdentityStore(db)
    verifier = verifier or default_verifier
    email = (email or "").strip().lower()

    status = account_security_service.check_lockout(db, email, clock=clock)
    if status.locked:
        _login_failed(
            db, email, "account_locked",
            ip_address=ip_address, user_agent=user_agent, record=False, clock=clock,
        )
        logger.info("Sign-in refused for locked account", extra=build_log_context(email=email, ip_address=ip_address))
        raise AccountLockedError("Account is locked", failed_count=status.failed_count)

    identity = identity_store.find_by_email(email)
    if identity is None or not identity.password_hash or not verifier.verify_password(
        password or "", identity.password_hash
    ):
        _login_failed(
            db, email, "invalid_credentials",
            ip_address=ip_address, user_agent=user_agent,
            user_id=identity.id if identity else None, clock=clock,
        )
        raise InvalidCredentialsError("Invalid email or password")

    membership = membership_service.get_membership(db, identity.id)
    if membership is None or not membership.is_active:
        _login_failed(
            db, email, "no_active_membership",
            ip_address=ip_address, user_agent=user_agent, user_id=identity.id,
            org_id=membership.organization_id if membership else None, clock=clock,
        )
        raise InvalidCredentialsError("Invalid email or password")

    if mfa_service.is_mfa_enabled(db, membership.id):
        if not mfa_code:
            raise MfaRequiredError("Verification code required")
        ok, method = mfa_service.verify_mfa(db, membership.id, mfa_code, verifier, clock=clock)
        if not ok:
            _login_failed(
                db, email, "invalid_mfa_code",
                ip_address=ip_address, user_agent=user_agent, user_id=membership.id,
                org_id=membership.organization_id, attempt_type=AttemptType.MFA, clock=clock,
            )
            raise InvalidCredentialsError("Invalid verification code")
        logger.debug("MFA verified via %s for %s", method, membership.id)

    account_security_service.record_attempt(
        db, email, ip_address, True,
        org_id=membership.organization_id, user_id=membership.id, clock=clock,
    )
    org = org_service.get_organization(db, membership.organization_id)
    mfa_setup_required = org.mfa_required and not mfa_service.is_mfa_enabled(db, membership.id)

    grant = session_service.create_session(
        db,
        membership.id,
        membership.organization_id,
        device_info=device_info,
        ip_address=ip_address,
        user_agent=user_agent,
        clock=clock,
    )
    return LoginResult(session=grant.session, token=grant.token, mfa_setup_required=mfa_setup_required)


def logout(db: Session, token: str, *, clock: Clock = system_clock) -> bool:
    """End the session for token. Returns False if it was already gone."""
    return session_service.revoke_session(db, token, reason="logout", clock=clock)


def change_password(
    db: Session,
    user_id: UUID,
    current_password: str,
    new_password: str,
    *,
    keep_session_token: str | None = None,
    identity_store: IdentityStore | None = None,
    verifier: CredentialVerifier | None = None,
    notifier: Notifier | None = None,
    clock: Clock = system_clock,
    deadline: datetime | None = None,
) -> None:
    """
    Change a member's password.

    Other sessions are ended; keep_session_token (the caller's own session)
    survives.

    Raises:
        InvalidCredentialsError: current_password is wrong
        InvalidInputError: new_password fails the strength policy
        PasswordReusedError: new_password matches recent history (nothing recorded)
    """
    identity_store = identity_store or SqlIdentityStore(db)
    verifier = verifier or default_verifier

    membership = membership_service.get_membership(db, user_id)
    identity = identity_store.get(user_id)
    if membership is None or identity is None:
        raise NotFoundError(f"User {user_id} not found")

    if not identity.password_hash or not verifier.verify_password(current_password or "", identity.password_hash):
        account_security_service.record_attempt(
            db, identity.email, None, False,
            attempt_type=AttemptType.PASSWORD_RESET,
            org_id=membership.organization_id, user_id=user_id, clock=clock,
        )
        db.commit()
        raise InvalidCredentialsError("Current password is incorrect")

    account_security_service.validate_password_strength(new_password)
    if account_security_service.is_password_reused(db, user_id, new_password, verifier, clock=clock):
        raise PasswordReusedError("Password was used recently")

    new_hash = verifier.hash_password(new_password)
    identity_store.update_password_hash(user_id, new_hash)
    account_security_service.record_password_change(
        db, user_id, membership.organization_id, new_hash, clock=clock
    )
    check_deadline(db, deadline, clock)
    db.commit()

    ended = session_service.revoke_all_sessions(
        db, user_id, except_token=keep_session_token, reason="password_change", clock=clock
    )
    logger.info(
        "Password changed; %s other sessions ended",
        ended,
        extra=build_log_context(user_id=user_id, org_id=membership.organization_id, operation="change_password"),
    )
    notification_service.dispatch(
        "security_notice",
        (notifier or notification_service.LoggingNotifier()).send_security_notice,
        to_email=identity.email,
        subject="Your password was changed",
        body="The password for your account was just changed. If this wasn't you, contact your administrator.",
    )
