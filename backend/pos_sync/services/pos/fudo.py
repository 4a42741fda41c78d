"""Fudo POS integration.

Fudo exposes a small REST API authenticated with a Bearer key. Sales come
back as ``ventas`` with the date and time split into ``fecha`` (DD/MM/YYYY)
and ``hora`` (HH:MM) in the store's local time.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx

from pos_sync.core.config import settings
from pos_sync.core.exceptions import SchemaError
from pos_sync.services.pos.base import (
    MONEY_TOLERANCE,
    TWO_PLACES,
    AdapterDescriptor,
    DateRange,
    NormalizedSale,
    POSAdapter,
    SaleCustomer,
    SaleItem,
    SaleModifier,
    is_number,
    is_optional_record,
    is_record_list,
    to_decimal,
    unwrap_envelope,
)
from pos_sync.services.pos.http_client import PosHttpClient

logger = logging.getLogger(__name__)

FUDO_API_BASE = "https://api.fudo.com.ar"
PROVIDER_ID = "fudo"

FUDO_FEATURES = (
    "sales_sync",
    "real_time_updates",
    "customer_data",
    "item_modifiers",
    "table_service",
    "waiter_tracking",
    "discount_handling",
)

FUDO_DESCRIPTOR = AdapterDescriptor(
    provider_id=PROVIDER_ID,
    name="Fudo POS",
    version="1.0.0",
    features=FUDO_FEATURES,
    batch_size_limit=1000,
    real_time_supported=True,
    pagination_supported=False,
)

FUDO_PAYMENT_METHODS = {
    "cash": "cash",
    "efectivo": "cash",
    "credit_card": "credit_card",
    "debit_card": "debit_card",
    "transfer": "bank_transfer",
    "transferencia": "bank_transfer",
    "qr": "digital_wallet",
    "mercadopago": "digital_wallet",
}


def normalize_fudo_payment(method: Optional[str]) -> str:
    if not method:
        return "unknown"
    return FUDO_PAYMENT_METHODS.get(method.strip().lower(), "other")


def parse_fudo_timestamp(fecha: str, hora: str, tz: ZoneInfo) -> str:
    """Combine ``fecha`` and ``hora`` into an ISO-8601 string in ``tz``.

    Raises ValueError when either part cannot be parsed.
    """
    local = datetime.strptime(f"{fecha.strip()} {hora.strip()}", "%d/%m/%Y %H:%M")
    return local.replace(tzinfo=tz).isoformat()


def validate_fudo_data(data: Any) -> bool:
    """Structural check of a list of raw Fudo sales."""
    if not isinstance(data, list):
        return False
    return all(
        isinstance(sale, dict)
        and isinstance(sale.get("id"), str)
        and isinstance(sale.get("fecha"), str)
        and isinstance(sale.get("hora"), str)
        and is_number(sale.get("total"))
        and is_record_list(sale.get("items"))
        and all(is_record_list(item.get("modificadores"), optional=True) for item in sale["items"])
        and is_optional_record(sale.get("cliente"))
        for sale in data
    )


def check_fudo_sale_integrity(sale: Dict[str, Any]) -> bool:
    """Item totals minus discounts should match the ticket total."""
    items_total = sum((to_decimal(item.get("precio_total")) for item in sale.get("items", [])), Decimal("0"))
    expected = items_total - to_decimal(sale.get("descuentos"))
    return abs(expected - to_decimal(sale.get("total"))) <= MONEY_TOLERANCE


def _map_item(item: Dict[str, Any], sale_id: str, index: int) -> SaleItem:
    quantity = max(1, int(item.get("cantidad") or 1))
    total_price = max(Decimal("0"), to_decimal(item.get("precio_total")))
    unit_price = (total_price / quantity).quantize(TWO_PLACES)
    code = item.get("codigo")
    return SaleItem(
        name=item.get("nombre") or f"Item {code}",
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        category=item.get("categoria") or "General",
        sku=str(code) if code else f"fudo-{sale_id}-{index}",
        modifiers=tuple(
            SaleModifier(
                name=mod.get("nombre") or "Modifier",
                price=max(Decimal("0"), to_decimal(mod.get("precio"))),
            )
            for mod in item.get("modificadores") or []
        ),
        notes=item.get("observaciones") or None,
    )


def map_fudo_sale(sale: Dict[str, Any], tz: ZoneInfo) -> NormalizedSale:
    sale_id = sale["id"]
    items = tuple(_map_item(item, sale_id, i) for i, item in enumerate(sale["items"]))
    items_total = sum((item.total_price for item in items), Decimal("0"))
    amount = max(Decimal("0"), to_decimal(sale.get("total")) or items_total)

    reconciled = check_fudo_sale_integrity(sale)
    if not reconciled:
        logger.warning(f"Fudo sale {sale_id}: item totals do not reconcile with total {sale.get('total')}")

    cliente = sale.get("cliente")
    customer = None
    if cliente:
        customer = SaleCustomer(
            name=cliente.get("nombre") or None,
            email=cliente.get("email") or None,
            phone=cliente.get("telefono") or None,
            document=cliente.get("documento") or None,
        )

    return NormalizedSale(
        id=sale_id,
        timestamp=parse_fudo_timestamp(sale["fecha"], sale["hora"], tz),
        amount=amount,
        items=items,
        customer=customer,
        payment_method=normalize_fudo_payment(sale.get("metodo_pago")),
        pos_transaction_id=sale_id,
        metadata={
            "provider": PROVIDER_ID,
            "table_number": sale.get("mesa"),
            "waiter_id": sale.get("mozo"),
            "discounts": max(Decimal("0"), to_decimal(sale.get("descuentos"))),
            "original_total": to_decimal(sale.get("total")),
            "items_total": items_total,
            "totals_reconciled": reconciled,
        },
    )


def map_fudo_sales(raw_sales: List[Dict[str, Any]], tz: ZoneInfo) -> List[NormalizedSale]:
    """Map validated raw sales; records that cannot be normalized are dropped."""
    mapped = []
    for sale in raw_sales:
        try:
            mapped.append(map_fudo_sale(sale, tz))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Dropping Fudo sale {sale.get('id')}: {e}")
    return mapped


class FudoClient:
    """Raw access to the Fudo REST API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = FUDO_API_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = PosHttpClient(
            PROVIDER_ID,
            api_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def health(self) -> Any:
        return await self._http.get_json("/api/health")

    async def fetch_sales(self, date_range: DateRange) -> Any:
        data = await self._http.get_json(
            "/api/ventas",
            params={
                "fecha_desde": date_range.start.isoformat(),
                "fecha_hasta": date_range.end.isoformat(),
            },
        )
        return unwrap_envelope(data, "ventas", "data")

    async def last_sync(self) -> Optional[str]:
        data = await self._http.get_json("/api/sync/last")
        payload = unwrap_envelope(data, "data")
        if isinstance(payload, dict):
            return payload.get("last_sync_timestamp")
        return None


class FudoAdapter(POSAdapter):
    """POS adapter for Fudo."""

    def __init__(
        self,
        config: Dict[str, Any],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = config.get("api_key")
        if not api_key:
            raise ValueError("Fudo config requires 'api_key'")
        self.tz = ZoneInfo(config.get("timezone") or settings.pos_default_timezone)
        self.max_range_days = int(config.get("max_range_days") or settings.pos_max_range_days)
        self.client = FudoClient(
            api_key,
            api_url=config.get("api_url") or FUDO_API_BASE,
            timeout=float(config.get("timeout") or settings.pos_request_timeout_seconds),
            transport=transport,
        )

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    async def fetch_sales(self, client_id: str, date_range: DateRange) -> list[NormalizedSale]:
        date_range.validate(self.max_range_days)
        logger.info(
            f"Fetching Fudo sales for client {client_id}: "
            f"{date_range.start.isoformat()} to {date_range.end.isoformat()}"
        )
        raw_sales = await self.client.fetch_sales(date_range)
        sales = self.map_to_tupa(raw_sales)
        logger.info(f"Fudo returned {len(sales)} sales for client {client_id}")
        return sales

    def map_to_tupa(self, raw_data: Any) -> list[NormalizedSale]:
        if raw_data is None:
            raise SchemaError("No data provided for mapping", provider=PROVIDER_ID)
        raw_sales = unwrap_envelope(raw_data, "ventas", "sales", "data")
        if not validate_fudo_data(raw_sales):
            raise SchemaError("Invalid Fudo data structure", provider=PROVIDER_ID)
        return map_fudo_sales(raw_sales, self.tz)

    async def validate_connection(self) -> bool:
        try:
            await self.client.health()
            return True
        except Exception as e:
            logger.warning(f"Fudo connection validation failed: {e}")
            return False

    async def get_last_sync(self) -> Optional[datetime]:
        try:
            raw = await self.client.last_sync()
            if not raw:
                return None
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except Exception as e:
            logger.warning(f"Could not read Fudo last sync: {e}")
            return None

    def get_supported_features(self) -> list[str]:
        return list(FUDO_FEATURES)

    def get_metadata(self) -> dict[str, Any]:
        return {
            "provider": PROVIDER_ID,
            "name": FUDO_DESCRIPTOR.name,
            "version": FUDO_DESCRIPTOR.version,
            "batch_size_limit": FUDO_DESCRIPTOR.batch_size_limit,
            "real_time": FUDO_DESCRIPTOR.real_time_supported,
            "timezone": str(self.tz),
        }
