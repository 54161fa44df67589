"""Outbound notifications - fire-and-forget delivery of invitation and security mail.

Delivery never blocks or fails the operation that triggered it: calls run on a
small thread pool and any exception is logged.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable

from tenant_guard.core.config import settings
from tenant_guard.core.structured_logging import hash_email

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None
_pending: set[Future] = set()
_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=settings.NOTIFIER_MAX_WORKERS,
                thread_name_prefix="tenant-guard-notify",
            )
        return _executor


def build_invitation_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/invite/{token}"


def _run(label: str, fn: Callable[..., Any], kwargs: dict[str, Any]) -> bool:
    try:
        fn(**kwargs)
        return True
    except Exception:
        to_email = kwargs.get("to_email") or ""
        logger.exception("Notification %s failed (to=%s)", label, hash_email(to_email)[:16])
        return False


def dispatch(label: str, fn: Callable[..., Any], **kwargs: Any) -> Future:
    """Schedule fn(**kwargs) on the notification pool. Failures are logged, never raised."""
    future = _get_executor().submit(_run, label, fn, kwargs)
    with _lock:
        _pending.add(future)
    future.add_done_callback(_forget)
    return future


def _forget(future: Future) -> None:
    with _lock:
        _pending.discard(future)


def drain(timeout: float | None = 30.0) -> None:
    """Wait for outstanding deliveries (CLI exit, tests)."""
    with _lock:
        pending = list(_pending)
    if pending:
        wait(pending, timeout=timeout)


def shutdown() -> None:
    global _executor
    drain()
    with _lock:
        if _executor is not None:
            _executor.shutdown(wait=True)
            _executor = None


class LoggingNotifier:
    """
    Notifier that writes deliveries to the log.

    Default for development; production deployments inject a real mail sender.
    The token itself is never logged.
    """

    def send_invitation(
        self,
        *,
        to_email: str,
        token: str,
        organization_name: str,
        role: str,
        inviter_name: str | None,
        expires_at: datetime,
    ) -> None:
        logger.info(
            "Invitation mail: to=%s org=%s role=%s inviter=%s expires=%s",
            hash_email(to_email)[:16],
            organization_name,
            role,
            inviter_name or "-",
            expires_at.isoformat(),
        )

    def send_security_notice(self, *, to_email: str, subject: str, body: str) -> None:
        logger.info("Security notice: to=%s subject=%s", hash_email(to_email)[:16], subject)
