"""POS provider adapters."""

from pos_sync.services.pos.base import (
    AdapterDescriptor,
    DateRange,
    NormalizedSale,
    POSAdapter,
    SaleCustomer,
    SaleItem,
    SaleModifier,
)
from pos_sync.services.pos.bistrosoft import BistrosoftAdapter, BistrosoftClient
from pos_sync.services.pos.fudo import FudoAdapter, FudoClient
from pos_sync.services.pos.registry import AdapterRegistry, build_default_registry, get_registry

__all__ = [
    "AdapterDescriptor",
    "AdapterRegistry",
    "BistrosoftAdapter",
    "BistrosoftClient",
    "DateRange",
    "FudoAdapter",
    "FudoClient",
    "NormalizedSale",
    "POSAdapter",
    "SaleCustomer",
    "SaleItem",
    "SaleModifier",
    "build_default_registry",
    "get_registry",
]
