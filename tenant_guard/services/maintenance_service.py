"""Maintenance sweeps - expiry and retention for every security table.

Each sweep runs in isolation: one failing does not stop the others. Every
sweep records its own system_maintenance audit event.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

from sqlalchemy.orm import Session

from tenant_guard.core.clock import system_clock
from tenant_guard.core.interfaces import Clock
from tenant_guard.core.monitoring import report_operational_failure
from tenant_guard.services import (
    account_security_service,
    audit_service,
    invite_service,
    session_service,
)

logger = logging.getLogger(__name__)

Sweep = Callable[..., int]

SWEEPS: Mapping[str, Sweep] = {
    "sessions": session_service.cleanup_expired_sessions,
    "invitations": invite_service.expire_stale_invitations,
    "audit_events": audit_service.purge_expired_events,
    "password_history": account_security_service.prune_password_history,
    "login_attempts": account_security_service.prune_login_attempts,
}


@dataclass
class MaintenanceReport:
    counts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def run_all(
    db: Session,
    *,
    clock: Clock = system_clock,
    only: list[str] | None = None,
) -> MaintenanceReport:
    """Run the registered sweeps (or the named subset) and report per-sweep results."""
    report = MaintenanceReport()
    for name, sweep in SWEEPS.items():
        if only and name not in only:
            continue
        try:
            report.counts[name] = sweep(db, clock=clock)
        except Exception as exc:
            db.rollback()
            report.errors[name] = f"{type(exc).__name__}: {exc}"
            report_operational_failure(f"Maintenance sweep '{name}' failed", exc, {"sweep": name})
    logger.info("Maintenance complete: %s (errors: %s)", report.counts, list(report.errors))
    return report
