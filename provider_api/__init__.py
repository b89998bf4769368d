"""
provider_api package: vendor adapters for smart locks, relays and hubs.

This package contains the abstractions and concrete implementations that allow the gateway to
actuate devices from different vendors through a consistent interface. The design follows the
adapter pattern: the orchestrator, the credential gate and the API layers speak to a small
contract (`ProviderAdapter`) while vendor-specific transport, auth, retry and response parsing
stay behind that boundary.

Included modules:
- base: The abstract adapter interface, the Capability enum and result helpers.
- http / retry: Shared httpx transport with failure classification, and the retry policy.
- raixer, shelly, sonoff, homeassistant, nuki, generic: Vendor adapters.
- mock_client: A deterministic, in-memory adapter for local development, tests and demos.
- registry: The immutable vendor -> adapter mapping built at startup.

Adding a vendor means writing a module that implements `ProviderAdapter` and listing it in
`registry.build_registry`.
"""

from .base import Capability, ProviderAdapter
from .mock_client import MockLockAdapter
from .registry import ProviderRegistry, build_registry

__all__ = [
    "Capability",
    "ProviderAdapter",
    "MockLockAdapter",
    "ProviderRegistry",
    "build_registry",
]
