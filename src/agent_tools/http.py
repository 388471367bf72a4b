"""Bounded-timeout, retry-once HTTP helper shared by the search and model clients."""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 1          # one extra attempt after the first failure
BASE_DELAY = 0.5             # backoff grows linearly per attempt


class TransportError(RuntimeError):
    """Network, DNS or timeout failure that survived every retry."""


def make_timeout(seconds: Optional[float]) -> httpx.Timeout:
    """Build an httpx timeout with a short connect phase and a bounded total."""
    total = float(seconds or DEFAULT_TIMEOUT)
    return httpx.Timeout(total, connect=min(5.0, total))


def send_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request, retrying only on transport failures.

    HTTP error statuses are returned to the caller untouched; providers map
    them to their own messages. When every attempt fails at the transport
    layer a :class:`TransportError` is raised.
    """
    attempts = max(0, int(retries)) + 1
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            last_exc = e
            if attempt < attempts:
                delay = base_delay * attempt
                logger.warning("%s %s retry %d: %s (sleep %.2fs)", method, url, attempt, e, delay)
                time.sleep(delay)
    logger.error("%s %s failed after %d attempt(s): %s", method, url, attempts, last_exc)
    raise TransportError(f"Request to {url} failed: {last_exc}") from last_exc
