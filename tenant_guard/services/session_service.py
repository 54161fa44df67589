"""Session service - per-device session tracking and revocation.

Sessions slide forward on activity by the idle timeout but never past the
hard lifetime measured from creation. Only the SHA256 of the session token is
stored; the plaintext is handed to the caller once by create_session.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from user_agents import parse as parse_user_agent

from tenant_guard.core.clock import system_clock
from tenant_guard.core.config import settings
from tenant_guard.core.db_retry import retry_read
from tenant_guard.core.errors import ForbiddenError, NotFoundError, SessionExpiredError
from tenant_guard.core.interfaces import Clock
from tenant_guard.core.structured_logging import build_log_context
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import Membership, UserSession
from tenant_guard.services import audit_service, authorization_service

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits


@dataclass
class SessionGrant:
    """A new session and its plaintext token (returned exactly once)."""
    session: UserSession
    token: str


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """Hash token for storage (SHA256)."""
    return hashlib.sha256(token.encode()).hexdigest()


def idle_timeout() -> timedelta:
    return timedelta(minutes=settings.SESSION_IDLE_TIMEOUT_MINUTES)


def max_lifetime() -> timedelta:
    return timedelta(hours=settings.SESSION_MAX_LIFETIME_HOURS)


def _next_expiry(created_at: datetime, now: datetime) -> datetime:
    return min(now + idle_timeout(), created_at + max_lifetime())


def parse_device_info(user_agent_str: str | None) -> dict[str, Any]:
    """Parse a user agent into a device description, e.g. "Chrome 120 on Windows 10"."""
    if not user_agent_str:
        return {"label": "Unknown Device"}

    ua = parse_user_agent(user_agent_str)
    browser = f"{ua.browser.family} {ua.browser.version_string}".strip()
    os_name = f"{ua.os.family} {ua.os.version_string}".strip()
    if ua.is_mobile:
        device_type = "mobile"
    elif ua.is_tablet:
        device_type = "tablet"
    elif ua.is_bot:
        device_type = "bot"
    else:
        device_type = "desktop"

    parts = []
    if browser:
        parts.append(browser)
    if os_name:
        parts.append(f"on {os_name}")
    return {
        "label": " ".join(parts) if parts else "Unknown Device",
        "browser": ua.browser.family,
        "os": ua.os.family,
        "device": ua.device.family,
        "device_type": device_type,
    }


# =============================================================================
# Lifecycle
# =============================================================================


def _insert_session(db: Session, attempts: int = 2, **values: Any) -> tuple[UserSession, str]:
    """Insert with a fresh token; a hash collision retries inside a SAVEPOINT."""
    for attempt in range(attempts):
        token = generate_token()
        session = UserSession(session_token_hash=hash_token(token), **values)
        try:
            with db.begin_nested():
                db.add(session)
                db.flush()
            return session, token
        except IntegrityError:
            if attempt == attempts - 1:
                raise
            logger.warning("Session token collision, regenerating")


def create_session(
    db: Session,
    user_id: UUID,
    org_id: UUID,
    *,
    device_info: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    clock: Clock = system_clock,
) -> SessionGrant:
    """
    Open a session for a member and record the login.

    Updates the member's last_login_at / last_activity_at and emits ``login``.
    Commits.
    """
    now = clock.now()
    info = parse_device_info(user_agent)
    if device_info:
        info.update(device_info)

    session, token = _insert_session(
        db,
        user_id=user_id,
        organization_id=org_id,
        device_info=info,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
        is_active=True,
        created_at=now,
        last_activity_at=now,
        expires_at=_next_expiry(now, now),
    )

    membership = db.get(Membership, user_id)
    if membership is not None:
        membership.last_login_at = now
        membership.last_activity_at = now
        membership.device_info = info

    audit_service.record_event(
        db,
        AuditEventType.LOGIN,
        user_id=user_id,
        org_id=org_id,
        resource="sessions",
        details={"device": info.get("label")},
        ip_address=ip_address,
        user_agent=user_agent,
        session_id=session.id,
        clock=clock,
    )
    db.commit()
    logger.info(
        "Session created",
        extra=build_log_context(user_id=user_id, org_id=org_id, session_id=session.id, operation="login"),
    )
    return SessionGrant(session=session, token=token)


@retry_read
def get_session_by_token(db: Session, token: str) -> UserSession | None:
    return db.scalars(
        select(UserSession).where(UserSession.session_token_hash == hash_token(token))
    ).first()


def touch_session(db: Session, token: str, *, clock: Clock = system_clock) -> UserSession:
    """
    Record activity on a session and slide its expiry.

    Raises SessionExpiredError if the session is unknown, revoked or past
    expires_at; an overdue session is marked inactive on the way out.
    """
    session = get_session_by_token(db, token)
    if session is None or not session.is_active:
        raise SessionExpiredError("Session not found or inactive")

    now = clock.now()
    if now > session.expires_at:
        session.is_active = False
        session.ended_at = now
        session.end_reason = "expired"
        db.commit()
        raise SessionExpiredError("Session expired")

    session.last_activity_at = now
    session.expires_at = _next_expiry(session.created_at, now)
    db.execute(
        update(Membership)
        .where(Membership.id == session.user_id)
        .values(last_activity_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return session


def revoke_session(
    db: Session, token: str, *, reason: str = "logout", clock: Clock = system_clock
) -> bool:
    """End the session for a token. Returns False if it was unknown or already ended."""
    session = get_session_by_token(db, token)
    if session is None or not session.is_active:
        return False
    _end(db, session, reason, clock)
    db.commit()
    return True


def revoke_session_by_id(
    db: Session, actor: Membership, session_id: UUID, *, clock: Clock = system_clock
) -> bool:
    """Sign out one of the actor's own devices."""
    session = db.get(UserSession, session_id)
    if session is None or session.user_id != actor.id:
        raise NotFoundError(f"Session {session_id} not found")
    if not session.is_active:
        return False
    _end(db, session, "revoked", clock)
    db.commit()
    return True


def revoke_all_sessions(
    db: Session,
    user_id: UUID,
    *,
    except_token: str | None = None,
    reason: str = "logout_all",
    clock: Clock = system_clock,
) -> int:
    """End every active session for a user, optionally keeping the current one."""
    conditions = [UserSession.user_id == user_id, UserSession.is_active.is_(True)]
    if except_token:
        conditions.append(UserSession.session_token_hash != hash_token(except_token))
    sessions = db.scalars(select(UserSession).where(*conditions)).all()
    for session in sessions:
        _end(db, session, reason, clock)
    db.commit()
    return len(sessions)


def _end(db: Session, session: UserSession, reason: str, clock: Clock) -> None:
    now = clock.now()
    session.is_active = False
    session.ended_at = now
    session.end_reason = reason
    audit_service.record_event(
        db,
        AuditEventType.LOGOUT,
        user_id=session.user_id,
        org_id=session.organization_id,
        resource="sessions",
        details={"reason": reason},
        session_id=session.id,
        clock=clock,
    )


# =============================================================================
# Queries
# =============================================================================


def list_sessions(
    db: Session,
    actor: Membership,
    identity_id: UUID,
    *,
    org_id: UUID | None = None,
    clock: Clock = system_clock,
) -> list[UserSession]:
    """
    Active sessions of the actor, newest activity first.

    Asking for another identity's sessions, or for another organization, is
    Forbidden and audited.
    """
    if identity_id != actor.id:
        authorization_service.deny(
            db,
            actor,
            action="list",
            resource="sessions",
            reason="other_identity",
            extra={"target_user_id": str(identity_id)},
        )
        raise ForbiddenError("Sessions can only be listed by their owner")
    if org_id is not None:
        authorization_service.require_same_org(db, actor, org_id, action="list", resource="sessions")

    return list(
        db.scalars(
            select(UserSession)
            .where(
                UserSession.user_id == actor.id,
                UserSession.organization_id == actor.organization_id,
                UserSession.is_active.is_(True),
                UserSession.expires_at >= clock.now(),
            )
            .order_by(UserSession.last_activity_at.desc())
        ).all()
    )


def cleanup_expired_sessions(db: Session, *, clock: Clock = system_clock) -> int:
    """
    Delete expired sessions and sessions idle past the purge window.

    Records one system_maintenance summary event. Returns the count deleted.
    """
    now = clock.now()
    stale_before = now - timedelta(days=settings.SESSION_INACTIVITY_PURGE_DAYS)
    deleted = db.execute(
        delete(UserSession)
        .where(
            or_(
                UserSession.expires_at < now,
                UserSession.last_activity_at < stale_before,
            )
        )
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    audit_service.record_event(
        db,
        AuditEventType.SYSTEM_MAINTENANCE,
        resource="user_sessions",
        details={"task": "session_cleanup", "deleted": deleted},
        clock=clock,
    )
    db.commit()
    if deleted:
        logger.info("Cleaned up %s expired sessions", deleted)
    return deleted
