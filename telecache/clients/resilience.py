"""Error taxonomy, retry policy and circuit breaker for the Gemini API."""

import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Exception Hierarchy ──────────────────────────────────────────────────────


class APIError(Exception):
    """Base class for Gemini API failures."""


class TransientAPIError(APIError):
    """Retriable errors (429, 5xx, network failures)."""


class PermanentAPIError(APIError):
    """Non-retriable errors (400, 403, 404, etc.)."""


class AuthError(PermanentAPIError):
    """Authentication/authorisation failure (401)."""


class SchemaChangeError(PermanentAPIError):
    """Remote API response shape changed unexpectedly."""


class CircuitOpenError(APIError):
    """Circuit breaker is open: calls are being shed."""


TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


# ── Response Classification ──────────────────────────────────────────────────


def classify_response(response: object) -> None:
    """Raise an appropriate error based on HTTP status code.

    Args:
        response: An object with a ``status_code`` attribute (e.g. httpx.Response).

    Raises:
        AuthError: On 401.
        PermanentAPIError: On other 4xx.
        TransientAPIError: On 429, 5xx.
    """
    status = getattr(response, "status_code", None)
    if status is None or 200 <= status < 400:
        return

    if status == 401:
        raise AuthError(f"Authentication failed (HTTP {status})")
    if status in TRANSIENT_STATUS_CODES:
        raise TransientAPIError(f"Transient error (HTTP {status})")
    if 400 <= status < 500:
        raise PermanentAPIError(f"Client error (HTTP {status})")
    raise TransientAPIError(f"Server error (HTTP {status})")


# ── Retry ─────────────────────────────────────────────────────────────────


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` callback that logs each retry."""
    attempt = retry_state.attempt_number
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Retry attempt %d after error: %s", attempt, exc)


resilient_request = retry(
    retry=retry_if_exception_type(TransientAPIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=log_retry_attempt,
    reraise=True,
)
"""Retry ``TransientAPIError`` up to three attempts with exponential backoff."""


# ── Circuit Breaker ──────────────────────────────────────────────────────────


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Async circuit breaker shedding calls to a failing upstream.

    After ``fail_max`` consecutive failures the circuit opens and calls fail
    fast with ``CircuitOpenError``. Once ``reset_timeout`` seconds pass, one
    trial call is let through (half-open): success closes the circuit, failure
    opens it again.

    Args:
        name: Upstream name used in logs and errors.
        fail_max: Consecutive failures before opening.
        reset_timeout: Seconds the circuit stays open.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        name: str,
        fail_max: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _trip(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning("Circuit '%s' opened: %s", self.name, reason)

    async def call_async(self, coro: Awaitable[T]) -> T:
        """Await *coro* under the breaker.

        Raises:
            CircuitOpenError: While the circuit is open; *coro* is closed unawaited.
        """
        current = self.state
        if current == CircuitState.OPEN:
            coro.close()  # type: ignore[attr-defined]
            raise CircuitOpenError(f"Circuit '{self.name}' is open")

        try:
            result = await coro
        except Exception:
            self._failures += 1
            if current == CircuitState.HALF_OPEN:
                self._trip("trial call failed")
            elif self._failures >= self.fail_max:
                self._trip(f"{self._failures} consecutive failures")
            raise

        self._failures = 0
        self._state = CircuitState.CLOSED
        return result


gemini_breaker = CircuitBreaker("gemini", fail_max=5, reset_timeout=60.0)


# ── Schema Validation ────────────────────────────────────────────────────────


def validate_gemini_schema(data: object) -> None:
    """Validate that a Gemini ``generateContent`` response has candidates.

    Raises:
        SchemaChangeError: If required keys are missing.
    """
    if not isinstance(data, dict):
        raise SchemaChangeError("Expected dict for Gemini generateContent response")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise SchemaChangeError("Missing candidates in Gemini response")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict) or "parts" not in content:
        raise SchemaChangeError("Missing content.parts in Gemini candidate")
