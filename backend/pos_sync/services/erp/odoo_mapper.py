"""Translation between stored consumption records and the Odoo model."""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pos_sync.models.consumption import ConsumptionRecord

logger = logging.getLogger(__name__)

ODOO_CONSUMPTION_MODEL = "tupa.consumption"
SYNC_SOURCE = "tupa_pos"
DEFAULT_CURRENCY_ID = 2  # USD in a stock Odoo install
ERP_STATES = ("draft", "confirmed", "processed")


def generate_external_id(client_id: str, consumption_date: Any, location_id: Optional[str] = None) -> str:
    """Deterministic dedup key for one client, day and location."""
    if isinstance(consumption_date, (date, datetime)):
        consumption_date = consumption_date.isoformat()[:10]
    return f"tupa_consumption_{client_id}_{consumption_date}_{location_id or 'main'}"


def _money(value: Any) -> float:
    if isinstance(value, Decimal):
        return float(value)
    return value


def map_consumption_to_odoo(
    record: ConsumptionRecord,
    client_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the values dict for a ``tupa.consumption`` create or write."""
    client_ref = client_ref or record.client_id
    day = record.consumption_date.isoformat()
    categories = list(record.top_categories or [])
    per_category = record.total_items // len(categories) if categories else 0

    metadata = dict(record.sync_metadata or {})
    metadata.update(
        {
            "tupa_consumption_id": record.id,
            "original_created_at": record.created_at.isoformat() if record.created_at else None,
            "original_updated_at": record.updated_at.isoformat() if record.updated_at else None,
        }
    )

    return {
        "name": f"Consumption {day} - {client_ref}",
        "client_ref": client_ref,
        "location_ref": record.location_id,
        "consumption_date": day,
        "total_amount": _money(record.total_amount),
        "total_items": record.total_items,
        "average_order_value": _money(record.average_order_value),
        "currency_id": DEFAULT_CURRENCY_ID,
        "category_lines": [
            {"name": f"Category: {category}", "quantity": per_category, "category": category}
            for category in categories
        ],
        "payment_method_lines": [
            {"payment_method": method, "amount": amount if isinstance(amount, (int, float)) else 0}
            for method, amount in (record.payment_methods or {}).items()
        ],
        "metadata_json": json.dumps(metadata, default=str),
        "state": "draft",
        "sync_source": SYNC_SOURCE,
        "sync_timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        "external_id": generate_external_id(record.client_id, day, record.location_id),
    }


def validate_odoo_record(values: Dict[str, Any]) -> List[str]:
    """Return the reasons ``values`` cannot be sent to Odoo; empty when valid."""
    errors = []
    if not values.get("client_ref"):
        errors.append("client_ref is required")
    if not values.get("consumption_date"):
        errors.append("consumption_date is required")
    if not values.get("external_id"):
        errors.append("external_id is required")

    total_amount = values.get("total_amount")
    total_items = values.get("total_items")
    if not isinstance(total_amount, (int, float)) or isinstance(total_amount, bool):
        errors.append("total_amount must be a number")
    elif total_amount < 0:
        errors.append("total_amount cannot be negative")
    if not isinstance(total_items, int) or isinstance(total_items, bool):
        errors.append("total_items must be a number")
    elif total_items < 0:
        errors.append("total_items cannot be negative")

    if values.get("consumption_date"):
        try:
            date.fromisoformat(str(values["consumption_date"])[:10])
        except ValueError:
            errors.append("consumption_date must be a valid date")
    return errors


def external_id_domain(external_id: str) -> List[Any]:
    return [["external_id", "=", external_id]]


def create_search_domain(client_ref: str, consumption_date: str, location_ref: Optional[str] = None) -> List[Any]:
    domain: List[Any] = [["client_ref", "=", client_ref], ["consumption_date", "=", consumption_date]]
    if location_ref:
        domain.append(["location_ref", "=", location_ref])
    return domain


def map_odoo_to_consumption(odoo_record: Dict[str, Any]) -> Dict[str, Any]:
    """Read an Odoo record back into consumption fields."""
    try:
        metadata = json.loads(odoo_record.get("metadata_json") or "{}")
    except (TypeError, ValueError) as e:
        logger.warning(f"Odoo record {odoo_record.get('id')} has unreadable metadata_json: {e}")
        metadata = {}

    payment_methods = {
        line["payment_method"]: line["amount"]
        for line in odoo_record.get("payment_method_lines") or []
        if line.get("payment_method") and isinstance(line.get("amount"), (int, float))
    }
    metadata.update(
        {
            "odoo_id": odoo_record.get("id"),
            "odoo_state": odoo_record.get("state"),
            "sync_source": odoo_record.get("sync_source"),
            "odoo_sync_timestamp": odoo_record.get("sync_timestamp"),
        }
    )
    return {
        "client_id": odoo_record.get("client_ref"),
        "location_id": odoo_record.get("location_ref") or None,
        "consumption_date": odoo_record.get("consumption_date"),
        "total_amount": odoo_record.get("total_amount"),
        "total_items": odoo_record.get("total_items"),
        "average_order_value": odoo_record.get("average_order_value"),
        "top_categories": [line.get("category") for line in odoo_record.get("category_lines") or []],
        "payment_methods": payment_methods,
        "metadata": metadata,
    }


def format_for_dashboard(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Summarize Odoo consumption rows for a status view."""
    total_amount = sum(r.get("total_amount") or 0 for r in records)
    total_items = sum(r.get("total_items") or 0 for r in records)

    categories: Dict[str, Dict[str, float]] = {}
    states: Dict[str, int] = {}
    for r in records:
        state = r.get("state") or "unknown"
        states[state] = states.get(state, 0) + 1
        # one2many reads may return bare ids instead of line dicts
        for line in r.get("category_lines") or []:
            if not isinstance(line, dict):
                continue
            stats = categories.setdefault(line.get("category"), {"quantity": 0, "amount": 0})
            stats["quantity"] += line.get("quantity") or 0
            stats["amount"] += line.get("total_amount") or 0

    dates = sorted(str(r["consumption_date"]) for r in records if r.get("consumption_date"))
    sync_times = sorted(str(r["sync_timestamp"]) for r in records if r.get("sync_timestamp"))
    return {
        "summary": {
            "total_records": len(records),
            "total_amount": round(total_amount, 2),
            "total_items": total_items,
            "average_order_value": round(total_amount / len(records), 2) if records else 0,
        },
        "states": states,
        "categories": categories,
        "date_range": {"from": dates[0] if dates else None, "to": dates[-1] if dates else None},
        "last_sync_at": sync_times[-1] if sync_times else None,
    }
