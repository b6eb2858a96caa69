from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from app.core.config import settings

T = TypeVar("T")

_LOG = logging.getLogger("app.external")


class ExternalCallFailed(Exception):
    pass


def call_with_retries(
    func: Callable[[], T],
    *,
    label: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Run ``func`` up to ``attempts`` times with exponential backoff.

    Raises ``ExternalCallFailed`` chained to the last error once attempts are exhausted.
    """
    total = max(int(attempts if attempts is not None else settings.EXTERNAL_RETRY_ATTEMPTS), 1)
    base_delay = float(backoff_seconds if backoff_seconds is not None else settings.EXTERNAL_RETRY_BACKOFF_SECONDS)
    last_exc: Exception | None = None
    for attempt in range(1, total + 1):
        try:
            return func()
        except Exception as exc:
            last_exc = exc
            if attempt < total:
                sleep_for = base_delay * (2 ** (attempt - 1))
                _LOG.warning("%s failed (attempt %s/%s), retrying in %.2fs: %s", label, attempt, total, sleep_for, exc)
                if sleep_for > 0:
                    time.sleep(sleep_for)
    _LOG.error("%s failed after %s attempts: %s", label, total, last_exc)
    raise ExternalCallFailed(f"{label} failed: {last_exc}") from last_exc
