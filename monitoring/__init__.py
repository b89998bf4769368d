"""
Monitoring package initializer.

This package exposes the Prometheus metrics and the latency decorator used by the provider
adapters, the orchestrator, the credential gate and the audit sink.
"""

from .metrics import (
    DISPATCH_COUNT,
    VENDOR_REQUEST_TIME,
    VENDOR_RETRY_COUNT,
    UNLOCK_OUTCOME_COUNT,
    AUDIT_WRITE_FAILURES,
    track_vendor_latency,
)

__all__ = [
    'DISPATCH_COUNT',
    'VENDOR_REQUEST_TIME',
    'VENDOR_RETRY_COUNT',
    'UNLOCK_OUTCOME_COUNT',
    'AUDIT_WRITE_FAILURES',
    'track_vendor_latency',
]
