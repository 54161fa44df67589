"""Error tracking and the operational alert channel."""

import logging
from typing import Any

import sentry_sdk

from tenant_guard.core.config import settings

logger = logging.getLogger(__name__)
alerts_logger = logging.getLogger("tenant_guard.alerts")

_initialized = False


def init_monitoring() -> bool:
    """Initialize Sentry when a DSN is configured outside dev. Safe to call repeatedly."""
    global _initialized
    if _initialized:
        return True
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return False

    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[SqlalchemyIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
    )
    _initialized = True
    logger.info("Sentry initialized for error tracking")
    return True


def report_operational_failure(
    message: str, exc: BaseException | None = None, context: dict[str, Any] | None = None
) -> None:
    """
    Surface a failure that must not break the caller (audit writes, sweeps).

    Always logs on the alerts logger; forwards to Sentry when initialized.
    """
    alerts_logger.error(
        "%s: %s",
        message,
        type(exc).__name__ if exc else "no exception",
        extra={"alert_context": context or {}},
        exc_info=exc,
    )
    if _initialized and exc is not None:
        with sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exc)
