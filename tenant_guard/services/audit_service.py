"""Audit logging service - security event tracking.

Every security-relevant action lands here. Writes are isolated in a SAVEPOINT
so a failing audit insert never aborts the operation being audited; failures
go to the operational alert channel instead.

Security guidelines:
- NEVER log secrets (passwords, tokens, TOTP secrets)
- Hash emails in details (use hash_email)
- Use IDs instead of raw data where possible
"""

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.config import settings
from tenant_guard.core.db_retry import retry_read
from tenant_guard.core.interfaces import Clock
from tenant_guard.core.monitoring import report_operational_failure
from tenant_guard.core.structured_logging import hash_email as _hash_email
from tenant_guard.db.enums import AuditEventType
from tenant_guard.db.models import AuditEvent, Membership
from tenant_guard.schemas.audit import AuditFilters, Pagination

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def hash_email(email: str) -> str:
    """Hash email for audit details (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    return f"{prefix}...@[hash:{_hash_email(email)[:12]}]"


def canonical_json(obj: dict | None) -> str:
    """Serialize to canonical JSON (sorted keys, compact, str() for non-JSON types)."""
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def _json_safe(details: dict[str, Any] | None) -> dict[str, Any]:
    return json.loads(canonical_json(details))


def record_event(
    db: Session,
    event_type: AuditEventType,
    *,
    user_id: UUID | None = None,
    org_id: UUID | None = None,
    resource: str | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    session_id: UUID | None = None,
    success: bool = True,
    error_details: str | None = None,
    clock: Clock = system_clock,
) -> AuditEvent | None:
    """
    Append an audit event inside a SAVEPOINT.

    The event becomes durable when the caller commits. Returns None (and
    alerts) if the insert fails; never raises.
    """
    try:
        with db.begin_nested():
            entry = AuditEvent(
                user_id=user_id,
                organization_id=org_id,
                event_type=AuditEventType(event_type).value,
                resource=resource,
                details=_json_safe(details),
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None,
                session_id=session_id,
                success=success,
                error_details=error_details,
                timestamp=clock.now(),
            )
            db.add(entry)
            db.flush()
        return entry
    except Exception as exc:  # audit must never break the audited operation
        report_operational_failure(
            "Audit write failed",
            exc,
            {
                "event_type": str(getattr(event_type, "value", event_type)),
                "org_id": str(org_id) if org_id else None,
                "user_id": str(user_id) if user_id else None,
            },
        )
        return None


@dataclass
class AuditPage:
    items: list[AuditEvent]
    total: int
    limit: int
    offset: int


@retry_read
def query_events(
    db: Session,
    actor: Membership,
    org_id: UUID,
    filters: AuditFilters | None = None,
    pagination: Pagination | None = None,
) -> AuditPage:
    """
    Org-scoped audit search, newest first.

    Requires the audit-log permission within org_id. Results never include
    events from another organization.
    """
    from tenant_guard.services import authorization_service

    authorization_service.require_same_org(db, actor, org_id, action="view", resource="audit_log")
    authorization_service.require_permission(db, actor, "audit_log", "view")

    filters = filters or AuditFilters()
    pagination = pagination or Pagination()
    limit = min(pagination.limit, MAX_PAGE_SIZE)

    conditions = [AuditEvent.organization_id == org_id]
    if filters.event_types:
        conditions.append(AuditEvent.event_type.in_([e.value for e in filters.event_types]))
    if filters.user_id:
        conditions.append(AuditEvent.user_id == filters.user_id)
    if filters.resource:
        conditions.append(AuditEvent.resource == filters.resource)
    if filters.success is not None:
        conditions.append(AuditEvent.success.is_(filters.success))
    if filters.since:
        conditions.append(AuditEvent.timestamp >= filters.since)
    if filters.until:
        conditions.append(AuditEvent.timestamp < filters.until)

    total = db.scalar(select(func.count(AuditEvent.id)).where(*conditions)) or 0
    items = db.scalars(
        select(AuditEvent)
        .where(*conditions)
        .order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
        .offset(pagination.offset)
        .limit(limit)
    ).all()
    return AuditPage(items=list(items), total=total, limit=limit, offset=pagination.offset)


def purge_expired_events(db: Session, *, clock: Clock = system_clock) -> int:
    """Delete events past the retention window and record one summary event."""
    cutoff = clock.now() - timedelta(days=settings.AUDIT_RETENTION_DAYS)
    result = db.execute(
        delete(AuditEvent)
        .where(AuditEvent.timestamp < cutoff)
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    record_event(
        db,
        AuditEventType.SYSTEM_MAINTENANCE,
        resource="audit_events",
        details={"task": "audit_retention", "deleted": deleted, "retention_days": settings.AUDIT_RETENTION_DAYS},
        clock=clock,
    )
    db.commit()
    logger.info("Purged %s audit events older than %s", deleted, cutoff.isoformat())
    return deleted
