"""Caller-supplied deadlines for mutating operations."""

from datetime import datetime

from sqlalchemy.orm import Session

from tenant_guard.core.clock import ensure_aware
from tenant_guard.core.errors import OperationCancelledError
from tenant_guard.core.interfaces import Clock


def check_deadline(db: Session, deadline: datetime | None, clock: Clock) -> None:
    """Roll back and raise if the deadline has passed. Call before commit."""
    if deadline is None:
        return
    if clock.now() >= ensure_aware(deadline):
        db.rollback()
        raise OperationCancelledError("Deadline exceeded before commit")
