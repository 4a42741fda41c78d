"""Bistrosoft POS integration."""

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

BISTROSOFT_API_BASE = "https://api.bistrosoft.com/v1"
PROVIDER_ID = "bistrosoft"
TICKETS_PER_PAGE = 100

BISTROSOFT_FEATURES = (
    "sales_sync",
    "customer_data",
    "table_service",
    "discount_handling",
    "waiter_tracking",
    "tax_reporting",
    "pagination_support",
)

BISTROSOFT_DESCRIPTOR = AdapterDescriptor(
    provider_id=PROVIDER_ID,
    name="Bistrosoft POS",
    version="1.0.0",
    features=BISTROSOFT_FEATURES,
    batch_size_limit=500,
    real_time_supported=False,
    pagination_supported=True,
)

BISTROSOFT_PAYMENT_METHODS = {
    "efectivo": "cash",
    "cash": "cash",
    "tarjeta_credito": "credit_card",
    "tarjeta_debito": "debit_card",
    "transferencia": "bank_transfer",
    "mercadopago": "digital_wallet",
    "billetera_digital": "digital_wallet",
    "cheque": "check",
}


def normalize_bistrosoft_payment(method: Optional[str]) -> str:
    if not method:
        return "unknown"
    return BISTROSOFT_PAYMENT_METHODS.get(method.strip().lower(), "other")


def parse_bistrosoft_timestamp(value: str, tz: ZoneInfo) -> str:
    """Normalize an ISO timestamp. Values without an offset are store-local."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.isoformat()


def validate_bistrosoft_data(data: Any) -> bool:
    if not isinstance(data, list):
        return False
    return all(
        isinstance(sale, dict)
        and isinstance(sale.get("ticket_id"), str)
        and isinstance(sale.get("timestamp"), str)
        and is_number(sale.get("total_amount"))
        and is_record_list(sale.get("line_items"))
        and all(is_record_list(item.get("modifiers"), optional=True) for item in sale["line_items"])
        and is_optional_record(sale.get("customer_info"))
        for sale in data
    )


def check_bistrosoft_sale_integrity(sale: Dict[str, Any]) -> bool:
    """Item totals minus discount plus tax should match the ticket total."""
    items_total = sum(
        (to_decimal(item.get("total_price")) for item in sale.get("line_items", [])), Decimal("0")
    )
    expected = items_total - to_decimal(sale.get("discount_amount")) + to_decimal(sale.get("tax_amount"))
    return abs(expected - to_decimal(sale.get("total_amount"))) <= MONEY_TOLERANCE


def _map_line_item(item: Dict[str, Any], ticket_id: str, index: int) -> SaleItem:
    quantity = max(1, int(item.get("qty") or 1))
    total_price = max(Decimal("0"), to_decimal(item.get("total_price")))
    item_id = item.get("item_id")
    return SaleItem(
        name=item.get("item_name") or f"Item {item_id}",
        quantity=quantity,
        unit_price=(total_price / quantity).quantize(TWO_PLACES),
        total_price=total_price,
        category=item.get("category_name") or "General",
        sku=str(item_id) if item_id else f"bistrosoft-{ticket_id}-{index}",
        modifiers=tuple(
            SaleModifier(
                name=mod.get("modifier_name") or "Modifier",
                price=max(Decimal("0"), to_decimal(mod.get("modifier_price"))),
            )
            for mod in item.get("modifiers") or []
        ),
        notes=item.get("special_instructions") or None,
    )


def map_bistrosoft_sale(sale: Dict[str, Any], tz: ZoneInfo) -> NormalizedSale:
    ticket_id = sale["ticket_id"]
    items = tuple(_map_line_item(item, ticket_id, i) for i, item in enumerate(sale["line_items"]))
    items_total = sum((item.total_price for item in items), Decimal("0"))
    discount = max(Decimal("0"), to_decimal(sale.get("discount_amount")))
    tax = to_decimal(sale.get("tax_amount"))
    amount = max(Decimal("0"), to_decimal(sale.get("total_amount")) or (items_total - discount + tax))

    reconciled = check_bistrosoft_sale_integrity(sale)
    if not reconciled:
        logger.warning(
            f"Bistrosoft ticket {ticket_id}: item totals do not reconcile with total {sale.get('total_amount')}"
        )

    info = sale.get("customer_info")
    customer = None
    if info:
        customer = SaleCustomer(
            id=str(info["customer_id"]) if info.get("customer_id") else None,
            name=info.get("name") or None,
            email=info.get("email") or None,
            phone=info.get("phone") or None,
            document=info.get("tax_id") or None,
        )

    return NormalizedSale(
        id=ticket_id,
        timestamp=parse_bistrosoft_timestamp(sale["timestamp"], tz),
        amount=amount,
        items=items,
        customer=customer,
        payment_method=normalize_bistrosoft_payment(sale.get("payment_type")),
        pos_transaction_id=ticket_id,
        metadata={
            "provider": PROVIDER_ID,
            "table_number": sale.get("table_id"),
            "waiter_id": sale.get("server_id"),
            "waiter_name": sale.get("server_name"),
            "discounts": discount,
            "tax_amount": tax,
            "original_total": to_decimal(sale.get("total_amount")),
            "items_total": items_total,
            "totals_reconciled": reconciled,
        },
    )


def map_bistrosoft_sales(raw_sales: List[Dict[str, Any]], tz: ZoneInfo) -> List[NormalizedSale]:
    mapped = []
    for sale in raw_sales:
        try:
            mapped.append(map_bistrosoft_sale(sale, tz))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Dropping Bistrosoft ticket {sale.get('ticket_id')}: {e}")
    return mapped


class BistrosoftClient:
    """Raw access to the Bistrosoft API with page-following ticket fetch."""

    def __init__(
        self,
        api_key: str,
        api_url: str = BISTROSOFT_API_BASE,
        store_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"X-API-Key": api_key}
        if store_id:
            headers["X-Store-ID"] = str(store_id)
        self._http = PosHttpClient(
            PROVIDER_ID, api_url, headers=headers, timeout=timeout, transport=transport
        )

    async def ping(self) -> Any:
        return await self._http.get_json("/ping")

    async def fetch_tickets(self, date_range: DateRange) -> List[Any]:
        tickets: List[Any] = []
        page = 1
        while True:
            data = await self._http.get_json(
                "/tickets",
                params={
                    "from_date": date_range.start.isoformat(),
                    "to_date": date_range.end.isoformat(),
                    "page": page,
                    "per_page": TICKETS_PER_PAGE,
                },
            )
            batch = unwrap_envelope(data, "tickets", "data")
            if not isinstance(batch, list):
                raise SchemaError(f"Bistrosoft page {page} is not a ticket list", provider=PROVIDER_ID)
            tickets.extend(batch)

            pagination = data.get("pagination") if isinstance(data, dict) else None
            total_pages = int((pagination or {}).get("total_pages") or 0)
            if page >= total_pages:
                break
            page += 1
        logger.debug(f"Bistrosoft returned {len(tickets)} tickets across {page} page(s)")
        return tickets

    async def sync_status(self) -> Optional[str]:
        data = await self._http.get_json("/sync/status")
        payload = unwrap_envelope(data, "data")
        if isinstance(payload, dict):
            return payload.get("last_sync_timestamp")
        return None


class BistrosoftAdapter(POSAdapter):
    """POS adapter for Bistrosoft."""

    def __init__(
        self,
        config: Dict[str, Any],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = config.get("api_key")
        if not api_key:
            raise ValueError("Bistrosoft config requires 'api_key'")
        self.tz = ZoneInfo(config.get("timezone") or settings.pos_default_timezone)
        self.max_range_days = int(config.get("max_range_days") or settings.pos_max_range_days)
        self.client = BistrosoftClient(
            api_key,
            api_url=config.get("api_url") or BISTROSOFT_API_BASE,
            store_id=config.get("store_id"),
            timeout=float(config.get("timeout") or settings.pos_request_timeout_seconds),
            transport=transport,
        )

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    async def fetch_sales(self, client_id: str, date_range: DateRange) -> list[NormalizedSale]:
        date_range.validate(self.max_range_days)
        logger.info(
            f"Fetching Bistrosoft tickets for client {client_id}: "
            f"{date_range.start.isoformat()} to {date_range.end.isoformat()}"
        )
        raw_tickets = await self.client.fetch_tickets(date_range)
        return self.map_to_tupa(raw_tickets)

    def map_to_tupa(self, raw_data: Any) -> list[NormalizedSale]:
        if raw_data is None:
            raise SchemaError("No data provided for mapping", provider=PROVIDER_ID)
        raw_sales = unwrap_envelope(raw_data, "tickets", "sales", "data")
        if not validate_bistrosoft_data(raw_sales):
            raise SchemaError("Invalid Bistrosoft data structure", provider=PROVIDER_ID)
        return map_bistrosoft_sales(raw_sales, self.tz)

    async def validate_connection(self) -> bool:
        try:
            await self.client.ping()
            return True
        except Exception as e:
            logger.warning(f"Bistrosoft connection validation failed: {e}")
            return False

    async def get_last_sync(self) -> Optional[datetime]:
        try:
            raw = await self.client.sync_status()
            if not raw:
                return None
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except Exception as e:
            logger.warning(f"Could not read Bistrosoft sync status: {e}")
            return None

    def get_supported_features(self) -> list[str]:
        return list(BISTROSOFT_FEATURES)

    def get_metadata(self) -> dict[str, Any]:
        return {
            "provider": PROVIDER_ID,
            "name": BISTROSOFT_DESCRIPTOR.name,
            "version": BISTROSOFT_DESCRIPTOR.version,
            "batch_size_limit": BISTROSOFT_DESCRIPTOR.batch_size_limit,
            "pagination": BISTROSOFT_DESCRIPTOR.pagination_supported,
            "real_time": BISTROSOFT_DESCRIPTOR.real_time_supported,
        }
