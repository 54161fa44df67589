"""MFA service - TOTP and recovery code management.

Provides:
- TOTP secret generation and verification (pyotp)
- Recovery code generation and validation
- Per-user MFA settings lifecycle (setup, verify, disable, admin reset)
"""

import hashlib
import hmac
import logging
import secrets
from typing import Any, Tuple
from uuid import UUID

import pyotp
from sqlalchemy import select
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.config import settings
from tenant_guard.core.errors import ForbiddenError, InvalidCredentialsError, NotFoundError
from tenant_guard.core.interfaces import Clock, CredentialVerifier
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import Membership, MfaSettings

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

RECOVERY_CODE_COUNT = 8
RECOVERY_CODE_LENGTH = 8  # Characters per code


# =============================================================================
# TOTP Functions
# =============================================================================


def generate_totp_secret() -> str:
    """Generate a random base32 TOTP secret (32 characters)."""
    return pyotp.random_base32()


def get_totp_provisioning_uri(secret: str, email: str) -> str:
    """Provisioning URI for authenticator apps (rendered as a QR code by clients)."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.MFA_ISSUER)


def verify_totp_code(secret: str, code: str) -> bool:
    """
    Verify a 6-digit TOTP code.

    Allows 1 time step tolerance (±30 seconds) for clock drift.
    """
    if not secret or not code:
        return False

    code = code.strip().replace(" ", "").replace("-", "")
    if len(code) != 6 or not code.isdigit():
        return False

    return pyotp.TOTP(secret).verify(code, valid_window=1)


# =============================================================================
# Recovery Codes
# =============================================================================


def generate_recovery_codes(count: int = RECOVERY_CODE_COUNT) -> list[str]:
    """
    Generate a list of random recovery codes.

    Format: 8 characters, uppercase + digits without 0, O, 1, I, L
    """
    alphabet = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    return [
        "".join(secrets.choice(alphabet) for _ in range(RECOVERY_CODE_LENGTH))
        for _ in range(count)
    ]


def hash_recovery_code(code: str) -> str:
    """Hash a recovery code for storage using SHA-256."""
    normalized = code.upper().strip().replace("-", "").replace(" ", "")
    return hashlib.sha256(normalized.encode()).hexdigest()


def verify_recovery_code(code: str, hashed_codes: list[str]) -> Tuple[bool, int]:
    """
    Check if a recovery code matches any stored hash.

    Returns:
        (is_valid, index) - index of matching code, or -1 if not found
    """
    hashed_input = hash_recovery_code(code)
    for i, stored_hash in enumerate(hashed_codes):
        if hmac.compare_digest(hashed_input, stored_hash):
            return True, i
    return False, -1


# =============================================================================
# Settings lifecycle
# =============================================================================


def get_mfa_settings(db: Session, user_id: UUID) -> MfaSettings | None:
    return db.scalars(select(MfaSettings).where(MfaSettings.user_id == user_id)).first()


def initialize_mfa_settings(
    db: Session, user_id: UUID, org_id: UUID, *, clock: Clock = system_clock
) -> MfaSettings:
    """Create disabled MFA settings for a new member. Idempotent; does not commit."""
    existing = get_mfa_settings(db, user_id)
    if existing:
        return existing
    now = clock.now()
    mfa = MfaSettings(
        user_id=user_id,
        organization_id=org_id,
        totp_enabled=False,
        sms_enabled=False,
        backup_codes=[],
        recovery_codes_used=0,
        created_at=now,
        updated_at=now,
    )
    db.add(mfa)
    db.flush()
    return mfa


def _require_settings(db: Session, user_id: UUID) -> MfaSettings:
    mfa = get_mfa_settings(db, user_id)
    if mfa is None:
        raise NotFoundError(f"MFA settings for {user_id} not found")
    return mfa


def begin_totp_setup(
    db: Session,
    user: Membership,
    verifier: CredentialVerifier,
    *,
    clock: Clock = system_clock,
) -> Tuple[str, str]:
    """
    Start TOTP enrollment.

    Stores a fresh secret without enabling TOTP. Returns (secret, provisioning_uri).
    """
    mfa = initialize_mfa_settings(db, user.id, user.organization_id, clock=clock)
    if mfa.totp_enabled:
        raise ForbiddenError("TOTP is already enabled; disable it first")
    secret = verifier.generate_mfa_secret()
    mfa.totp_secret = secret
    mfa.updated_at = clock.now()
    db.commit()
    return secret, get_totp_provisioning_uri(secret, user.email)


def complete_totp_setup(
    db: Session,
    user: Membership,
    code: str,
    verifier: CredentialVerifier,
    *,
    clock: Clock = system_clock,
) -> list[str]:
    """
    Confirm enrollment with a first code and enable TOTP.

    Returns plaintext recovery codes; only their hashes are stored.
    """
    from tenant_guard.services import audit_service

    mfa = _require_settings(db, user.id)
    if not mfa.totp_secret or mfa.totp_enabled:
        raise ForbiddenError("No TOTP setup in progress")
    if not verifier.verify_mfa_code(mfa.totp_secret, code):
        raise InvalidCredentialsError("Invalid verification code")

    codes = generate_recovery_codes()
    now = clock.now()
    mfa.totp_enabled = True
    mfa.backup_codes = [hash_recovery_code(c) for c in codes]
    mfa.recovery_codes_used = 0
    mfa.last_used_at = now
    mfa.updated_at = now
    audit_service.record_event(
        db,
        AuditEventType.MFA_ENABLED,
        user_id=user.id,
        org_id=user.organization_id,
        resource="mfa",
        details={"method": "totp"},
        clock=clock,
    )
    db.commit()
    return codes


def is_mfa_enabled(db: Session, user_id: UUID) -> bool:
    mfa = get_mfa_settings(db, user_id)
    return bool(mfa and (mfa.totp_enabled or mfa.sms_enabled))


def verify_mfa(
    db: Session,
    user_id: UUID,
    code: str,
    verifier: CredentialVerifier,
    *,
    clock: Clock = system_clock,
) -> Tuple[bool, str | None]:
    """
    Check a TOTP or single-use recovery code.

    Returns (ok, method) with method "totp" or "recovery". A used recovery code
    is removed. Does not commit.
    """
    mfa = get_mfa_settings(db, user_id)
    if mfa is None or not mfa.totp_enabled or not code:
        return False, None

    if mfa.totp_secret and verifier.verify_mfa_code(mfa.totp_secret, code):
        mfa.last_used_at = clock.now()
        return True, "totp"

    ok, index = verify_recovery_code(code, list(mfa.backup_codes or []))
    if ok:
        remaining = list(mfa.backup_codes)
        remaining.pop(index)
        mfa.backup_codes = remaining
        mfa.recovery_codes_used = (mfa.recovery_codes_used or 0) + 1
        mfa.last_used_at = clock.now()
        logger.info("Recovery code used for user %s (%s remaining)", user_id, len(remaining))
        return True, "recovery"
    return False, None


def _clear(mfa: MfaSettings, clock: Clock) -> None:
    mfa.totp_enabled = False
    mfa.totp_secret = None
    mfa.sms_enabled = False
    mfa.backup_codes = []
    mfa.updated_at = clock.now()


def disable_mfa(db: Session, user: Membership, *, clock: Clock = system_clock) -> MfaSettings:
    """Owner turns MFA off."""
    from tenant_guard.services import audit_service

    mfa = _require_settings(db, user.id)
    _clear(mfa, clock)
    audit_service.record_event(
        db,
        AuditEventType.MFA_DISABLED,
        user_id=user.id,
        org_id=user.organization_id,
        resource="mfa",
        details={"reset": False},
        clock=clock,
    )
    db.commit()
    return mfa


def reset_mfa(
    db: Session, actor: Membership, target_id: UUID, *, clock: Clock = system_clock
) -> MfaSettings:
    """Admin clears a member's MFA so they must enroll again."""
    from tenant_guard.services import audit_service, authorization_service

    target = db.get(Membership, target_id)
    if target is None:
        raise NotFoundError(f"Member {target_id} not found")
    authorization_service.require_same_org(
        db, actor, target.organization_id, action="reset_mfa", resource="security"
    )
    authorization_service.require_permission(db, actor, "security", "reset_mfa")

    mfa = initialize_mfa_settings(db, target.id, target.organization_id, clock=clock)
    _clear(mfa, clock)
    audit_service.record_event(
        db,
        AuditEventType.MFA_DISABLED,
        user_id=actor.id,
        org_id=target.organization_id,
        resource="mfa",
        details={"reset": True, "target_user_id": str(target_id)},
        clock=clock,
    )
    db.commit()
    return mfa


def get_mfa_status(mfa: MfaSettings | None) -> dict[str, Any]:
    if mfa is None:
        return {"totp_enabled": False, "sms_enabled": False, "backup_codes_remaining": 0, "last_used_at": None}
    return {
        "totp_enabled": mfa.totp_enabled,
        "sms_enabled": mfa.sms_enabled,
        "backup_codes_remaining": mfa.backup_codes_remaining,
        "last_used_at": mfa.last_used_at,
    }
