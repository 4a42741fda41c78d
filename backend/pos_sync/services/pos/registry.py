"""Registry of available POS adapters.

Built once at startup and frozen; services receive it through the
``get_registry`` dependency instead of reaching for a module global.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pos_sync.core.exceptions import UnknownProviderError
from pos_sync.services.pos.base import AdapterDescriptor, POSAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., POSAdapter]


@dataclass(frozen=True)
class _Entry:
    factory: AdapterFactory
    descriptor: AdapterDescriptor


class AdapterRegistry:
    """Maps a provider slug to its adapter factory and descriptor."""

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, provider_id: str, factory: AdapterFactory, descriptor: AdapterDescriptor) -> None:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen; cannot register '{provider_id}'")
        if provider_id != descriptor.provider_id:
            raise ValueError(
                f"Descriptor id '{descriptor.provider_id}' does not match '{provider_id}'"
            )
        if provider_id in self._entries:
            logger.warning(f"Replacing POS adapter registration for '{provider_id}'")
        self._entries[provider_id] = _Entry(factory=factory, descriptor=descriptor)

    def freeze(self) -> "AdapterRegistry":
        self._frozen = True
        return self

    def _entry(self, provider_id: str) -> _Entry:
        entry = self._entries.get(provider_id)
        if entry is None:
            raise UnknownProviderError(provider_id, available=list(self._entries))
        return entry

    def create_adapter(self, provider_id: str, config: Dict[str, Any], **options: Any) -> POSAdapter:
        """Construct a configured adapter. Extra options go to the factory."""
        entry = self._entry(provider_id)
        return entry.factory(config, **options)

    def descriptor(self, provider_id: str) -> AdapterDescriptor:
        return self._entry(provider_id).descriptor

    def list_providers(self) -> List[AdapterDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def is_valid_provider(self, provider_id: Optional[str]) -> bool:
        return provider_id in self._entries

    def features_of(self, provider_id: str) -> List[str]:
        return list(self._entry(provider_id).descriptor.features)


def build_default_registry() -> AdapterRegistry:
    """Registry with every bundled POS vendor, already frozen."""
    from pos_sync.services.pos.bistrosoft import BISTROSOFT_DESCRIPTOR, BistrosoftAdapter
    from pos_sync.services.pos.fudo import FUDO_DESCRIPTOR, FudoAdapter

    registry = AdapterRegistry()
    registry.register("fudo", FudoAdapter, FUDO_DESCRIPTOR)
    registry.register("bistrosoft", BistrosoftAdapter, BISTROSOFT_DESCRIPTOR)
    return registry.freeze()


_default_registry: Optional[AdapterRegistry] = None


def get_registry() -> AdapterRegistry:
    """FastAPI dependency returning the process-wide registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
