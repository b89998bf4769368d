"""
Provider registry: vendor identifier -> adapter.

The registry is built once at startup (see `build_registry`) and is immutable afterwards.
Lookups are case-insensitive. Resolution rules:

- A registered vendor whose adapter is disabled raises ProviderDisabledError.
- An unknown vendor resolves to the generic HTTP adapter when fallback is enabled, otherwise
  ProviderNotSupportedError is raised.
- An empty vendor identifier is always unsupported.
"""

import asyncio
import logging
import os
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional

from core.errors import ProviderDisabledError, ProviderNotSupportedError
from .base import Capability, ProviderAdapter
from .generic import GenericHttpAdapter
from .homeassistant import HomeAssistantAdapter
from .mock_client import MockLockAdapter
from .nuki import NukiAdapter
from .raixer import RaixerAdapter
from .shelly import ShellyAdapter
from .sonoff import SonoffAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Immutable mapping from vendor identifiers to adapter instances.

    Args:
        adapters (Iterable[ProviderAdapter]): Adapters keyed by their `name`.
        fallback_to_generic (bool): Resolve unknown vendors to the GENERIC adapter.
    """

    def __init__(self, adapters: Iterable[ProviderAdapter], fallback_to_generic: bool = True) -> None:
        self._adapters = MappingProxyType({a.name.upper(): a for a in adapters})
        self.fallback_to_generic = fallback_to_generic

    def _lookup(self, vendor_id: Optional[str]) -> Optional[ProviderAdapter]:
        key = (vendor_id or "").strip().upper()
        if not key:
            return None
        adapter = self._adapters.get(key)
        if adapter is None and self.fallback_to_generic:
            adapter = self._adapters.get(GenericHttpAdapter.name)
        return adapter

    def resolve(self, vendor_id: Optional[str]) -> ProviderAdapter:
        """
        Return the enabled adapter for a vendor.

        Raises:
            ProviderNotSupportedError: Unknown or empty vendor with no fallback.
            ProviderDisabledError: The matching adapter is disabled.
        """
        adapter = self._lookup(vendor_id)
        if adapter is None:
            raise ProviderNotSupportedError(f"IoT provider not supported: {vendor_id!r}")
        if not adapter.is_enabled():
            raise ProviderDisabledError(f"IoT provider {adapter.name} is disabled")
        if adapter.name != (vendor_id or "").strip().upper():
            logger.warning(f"Unknown vendor {vendor_id!r}, falling back to {adapter.name}")
        return adapter

    def supports(self, vendor_id: Optional[str], capability: Capability) -> bool:
        """True when the vendor resolves to an adapter declaring `capability`."""
        adapter = self._lookup(vendor_id)
        return adapter is not None and adapter.supports(capability)

    def supports_status(self, vendor_id: Optional[str]) -> bool:
        return self.supports(vendor_id, Capability.STATUS)

    def list_enabled(self) -> List[str]:
        """Names of the enabled adapters, sorted."""
        return sorted(name for name, adapter in self._adapters.items() if adapter.is_enabled())

    def names(self) -> List[str]:
        return sorted(self._adapters)


def build_registry(
    env: Optional[Mapping[str, str]] = None,
    fallback_to_generic: bool = True,
    transport: Any = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ProviderRegistry:
    """
    Construct every adapter from an environment mapping and freeze them into a registry.

    Args:
        env (Optional[Mapping[str, str]]): Environment; defaults to os.environ.
        fallback_to_generic (bool): See ProviderRegistry.
        transport: httpx transport handed to every HTTP adapter (tests only).
        sleep: Backoff sleep for retrying adapters (tests only).

    Returns:
        ProviderRegistry: The registry, with disabled adapters still registered.
    """
    env = os.environ if env is None else env
    adapters = [
        RaixerAdapter(env, transport=transport, sleep=sleep),
        ShellyAdapter(env, transport=transport),
        SonoffAdapter(env, transport=transport),
        HomeAssistantAdapter(env, transport=transport),
        NukiAdapter(env, transport=transport),
        GenericHttpAdapter(env, transport=transport),
        MockLockAdapter(env),
    ]
    registry = ProviderRegistry(adapters, fallback_to_generic=fallback_to_generic)
    logger.info(f"Provider registry built; enabled providers: {', '.join(registry.list_enabled())}")
    return registry
