"""
Core metrics and monitoring helpers for the access gateway.

This module defines Prometheus metrics and a decorator for tracking:
- Dispatch counts per provider, operation and outcome
- Vendor API latency
- Vendor retry attempts
- Terminal states of the public unlock flow
- Audit write failures
"""

import time
import functools
import logging
from typing import Callable, Optional
from prometheus_client import Counter, Histogram

# Configure logger
logger = logging.getLogger(__name__)

# Dispatch metrics
DISPATCH_COUNT = Counter(
    'iot_dispatch_total',
    'Total number of device commands dispatched through the orchestrator',
    ['provider', 'operation', 'outcome']  # outcome: 'success' or an ErrorCode value
)

VENDOR_REQUEST_TIME = Histogram(
    'iot_vendor_request_duration_seconds',
    'Time spent waiting for a vendor API call',
    ['provider'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")]
)

VENDOR_RETRY_COUNT = Counter(
    'iot_vendor_retry_total',
    'Number of vendor call attempts that were retried after a failure',
    ['provider']
)

# Public unlock flow
UNLOCK_OUTCOME_COUNT = Counter(
    'unlock_requests_total',
    'Terminal states reached by the public one-time unlock flow',
    ['state']  # success, rejected-invalid-token, rejected-not-found, rejected-dispatch-failed
)

# Audit metrics
AUDIT_WRITE_FAILURES = Counter(
    'audit_write_failures_total',
    'Access log entries that could not be persisted',
    ['action']
)


def track_vendor_latency(provider: Optional[str] = None) -> Callable:
    """
    A decorator factory that records the duration of an async vendor call.

    Args:
        provider (str, optional): Label value. When omitted the decorated method's
            instance must expose a `name` attribute, which is used instead.

    Returns:
        Callable: The decorated coroutine function

    Example:
        @track_vendor_latency()
        async def _post_open(self, ...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.monotonic() - start_time
                label = provider
                if label is None and args:
                    # For instance methods, first arg is 'self'
                    label = getattr(args[0], 'name', None)
                VENDOR_REQUEST_TIME.labels(provider=label or 'unknown').observe(duration)
                logger.debug(
                    f"Vendor call {func.__name__} took {duration:.2f} seconds",
                    extra={'extra_fields': {'duration': duration, 'function': func.__name__}}
                )
        return wrapper
    return decorator
