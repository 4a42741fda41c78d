"""Base class for POS adapters.

This defines the contract every POS vendor integration must implement so the
sync orchestrator can stay provider-agnostic.
To add a new POS vendor:
1. Create a new module in this package
2. Subclass POSAdapter and implement all abstract methods
3. Register a factory and an AdapterDescriptor in registry.build_default_registry
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pos_sync.core.exceptions import InvalidDateRangeError

MONEY_TOLERANCE = Decimal("0.01")
TWO_PLACES = Decimal("0.01")

# Canonical payment methods shared by every provider
PAYMENT_METHODS = (
    "cash",
    "credit_card",
    "debit_card",
    "bank_transfer",
    "digital_wallet",
    "check",
    "other",
)


@dataclass(frozen=True)
class SaleModifier:
    name: str
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class SaleItem:
    """One line of a normalized sale."""

    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    category: Optional[str] = None
    sku: Optional[str] = None
    modifiers: tuple[SaleModifier, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class SaleCustomer:
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None


@dataclass(frozen=True)
class NormalizedSale:
    """A POS transaction in the common schema, independent of vendor origin.

    ``timestamp`` is an ISO-8601 string carrying its UTC offset. ``metadata``
    always contains ``provider``.
    """

    id: str
    timestamp: str
    amount: Decimal
    items: tuple[SaleItem, ...]
    payment_method: str
    pos_transaction_id: str
    customer: Optional[SaleCustomer] = None
    metadata: dict = field(default_factory=dict)

    @property
    def provider(self) -> Optional[str]:
        return self.metadata.get("provider")


@dataclass(frozen=True)
class AdapterDescriptor:
    """Static capability metadata for a registered provider."""

    provider_id: str
    name: str
    version: str
    features: tuple[str, ...]
    batch_size_limit: int
    real_time_supported: bool = False
    pagination_supported: bool = False
    data_format: str = "json"

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "name": self.name,
            "version": self.version,
            "features": list(self.features),
            "batch_size_limit": self.batch_size_limit,
            "real_time_supported": self.real_time_supported,
            "pagination_supported": self.pagination_supported,
            "data_format": self.data_format,
        }


def _parse_bound(value: Any, end_of_day: bool) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.max if end_of_day else time.min)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidDateRangeError(f"Invalid date: {value!r}") from e
        if len(value.strip()) == 10 and end_of_day:
            parsed = datetime.combine(parsed.date(), time.max)
    else:
        raise InvalidDateRangeError(f"Invalid date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DateRange:
    """Inclusive time window for a sales fetch. Both bounds are timezone-aware."""

    start: datetime
    end: datetime

    @classmethod
    def parse(cls, start: Any, end: Any) -> "DateRange":
        """Build a range from ISO strings, dates or datetimes.

        A bare date as the upper bound covers that whole day. Naive values are
        taken as UTC. Raises InvalidDateRangeError for unparseable input.
        """
        return cls(_parse_bound(start, end_of_day=False), _parse_bound(end, end_of_day=True))

    @classmethod
    def trailing(cls, hours: int, now: datetime) -> "DateRange":
        return cls(now - timedelta(hours=hours), now)

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400

    def validate(self, max_days: int) -> None:
        if self.start > self.end:
            raise InvalidDateRangeError(
                f"Range start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )
        if self.days > max_days:
            raise InvalidDateRangeError(f"Date range cannot exceed {max_days} days")


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce a vendor number (int, float or numeric string) to Decimal."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def is_record_list(value: Any, optional: bool = False) -> bool:
    """True for a list of dicts; ``None`` passes when ``optional``."""
    if value is None:
        return optional
    return isinstance(value, list) and all(isinstance(entry, dict) for entry in value)


def is_optional_record(value: Any) -> bool:
    return not value or isinstance(value, dict)


def unwrap_envelope(raw_data: Any, *keys: str) -> Any:
    """Return the record list from a vendor envelope, or the payload itself."""
    if isinstance(raw_data, dict):
        for key in keys:
            if key in raw_data and raw_data[key] is not None:
                return raw_data[key]
    return raw_data


class POSAdapter(ABC):
    """Abstract base class for POS provider adapters."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Registry slug (e.g., 'fudo', 'bistrosoft')."""
        pass

    @abstractmethod
    async def fetch_sales(self, client_id: str, date_range: DateRange) -> list[NormalizedSale]:
        """
        Fetch and normalize sales for a client within a date range.

        Raises:
            IntegrationConnectionError: the provider cannot be reached
            IntegrationAuthError: credentials were rejected
            IntegrationTimeoutError: the request deadline was exceeded
            InvalidDateRangeError: the range is inverted or too long
        """
        pass

    @abstractmethod
    def map_to_tupa(self, raw_data: Any) -> list[NormalizedSale]:
        """
        Translate raw vendor records into normalized sales.

        Raises:
            SchemaError: the payload is structurally invalid
        """
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Check the provider is reachable. Returns False on any failure."""
        pass

    async def get_last_sync(self) -> Optional[datetime]:
        """Last successful sync as tracked by the provider, if it tracks one."""
        return None

    def get_supported_features(self) -> list[str]:
        return []

    def get_metadata(self) -> dict[str, Any]:
        return {"provider": self.provider_id}
