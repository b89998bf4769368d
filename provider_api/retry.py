"""
Per-adapter retry policy with exponential backoff.

Retry is adapter-local: each adapter owns a RetryPolicy and runs its vendor call through
`run_with_retry`. Only the Raixer adapter is configured with more than one attempt; every
other adapter uses `RetryPolicy.single()`, because relay toggles and cloud actions of those
vendors are not known to be safe to repeat.

Each attempt is bounded by `attempt_timeout_s` through asyncio.wait_for, and the backoff
between attempts is an asyncio sleep. Both are cancellation points: if the surrounding
request is cancelled or its own deadline fires, asyncio.CancelledError propagates out of
`run_with_retry` immediately and no further attempts are made.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from monitoring.metrics import VENDOR_RETRY_COUNT
from shared.models import ErrorCode
from .http import VendorCallError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to call a vendor and how long to wait in between.

    Attributes:
        max_attempts (int): Total attempts including the first one (>= 1).
        base_delay_s (float): Delay before the second attempt; doubles for each later one.
        attempt_timeout_s (Optional[float]): Upper bound for a single attempt.
    """

    max_attempts: int = 1
    base_delay_s: float = 0.5
    attempt_timeout_s: Optional[float] = None

    @classmethod
    def single(cls, attempt_timeout_s: Optional[float] = None) -> "RetryPolicy":
        """One attempt, no retries."""
        return cls(max_attempts=1, attempt_timeout_s=attempt_timeout_s)

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed attempt number `attempt` (1-based): 0.5s, 1s, 2s..."""
        return self.base_delay_s * (2 ** (attempt - 1))


@dataclass
class RetryOutcome:
    """Result of `run_with_retry`: the value on success, the last error otherwise."""

    value: Any
    attempts: int
    last_error: Optional[VendorCallError] = None

    @property
    def succeeded(self) -> bool:
        return self.last_error is None

    @property
    def retries(self) -> int:
        """Attempts made after the first one."""
        return self.attempts - 1


async def run_with_retry(
    call: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    provider: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryOutcome:
    """
    Run a vendor call under a retry policy.

    Args:
        call (Callable[[], Awaitable[Any]]): Factory producing a fresh coroutine per attempt.
            It must raise VendorCallError for vendor failures.
        policy (RetryPolicy): Attempt count, backoff and per-attempt timeout.
        provider (str): Provider name for logs and metrics.
        sleep (Callable): Awaitable sleep used for backoff; injectable for tests.

    Returns:
        RetryOutcome: value and attempt count on success, or last_error after the final
        failed attempt.

    Raises:
        asyncio.CancelledError: When the caller cancels during an attempt or a backoff wait.
    """
    max_attempts = max(1, policy.max_attempts)
    last_error: Optional[VendorCallError] = None

    for attempt in range(1, max_attempts + 1):
        try:
            if policy.attempt_timeout_s:
                value = await asyncio.wait_for(call(), timeout=policy.attempt_timeout_s)
            else:
                value = await call()
            if attempt > 1:
                logger.info(f"[{provider}] Vendor call succeeded on attempt {attempt}/{max_attempts}")
            return RetryOutcome(value=value, attempts=attempt)
        except asyncio.TimeoutError:
            last_error = VendorCallError(
                ErrorCode.TIMEOUT, f"Timed out after {policy.attempt_timeout_s:.1f}s"
            )
        except VendorCallError as exc:
            last_error = exc

        logger.warning(
            f"[{provider}] Attempt {attempt}/{max_attempts} failed: {last_error.message}",
            extra={'provider': provider},
        )
        if attempt < max_attempts:
            VENDOR_RETRY_COUNT.labels(provider=provider).inc()
            await sleep(policy.delay_for(attempt))

    return RetryOutcome(value=None, attempts=max_attempts, last_error=last_error)
