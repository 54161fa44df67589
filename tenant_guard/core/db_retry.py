"""Single retry for idempotent reads that hit a transient database error."""

import functools
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_read(func: Callable[..., T]) -> Callable[..., T]:
    """
    Retry a read once on OperationalError.

    The first positional argument must be the Session; it is rolled back before
    the retry so the second attempt starts on a clean transaction. Never use on
    functions that write.
    """

    @functools.wraps(func)
    def wrapper(db, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except OperationalError as exc:
            logger.warning("Transient read failure in %s, retrying once: %s", func.__name__, exc)
            db.rollback()
            return func(db, *args, **kwargs)

    return wrapper
