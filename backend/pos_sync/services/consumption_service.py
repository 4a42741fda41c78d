"""Consumption aggregation service.

Rolls a batch of normalized POS sales into one daily consumption record per
client and location. Derived fields are always recomputed from the full
input set, never accumulated, so aggregating the same sales twice yields the
same figures.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_sync.core.exceptions import SaleValidationError, StorageError
from pos_sync.models.consumption import ConsumptionRecord
from pos_sync.services.pos.base import DateRange, NormalizedSale
from pos_sync.services.sync_orchestrator import BatchContext, BatchOutcome

logger = logging.getLogger(__name__)

TOP_CATEGORY_LIMIT = 5
CENTS = Decimal("0.01")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, keeping its own offset. Naive means UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    records_processed: int = 0
    records_valid: int = 0


@dataclass
class ConsumptionDraft:
    """An aggregated, not yet persisted, consumption record."""

    client_id: str
    location_id: Optional[str]
    consumption_date: date
    total_amount: Decimal
    total_items: int
    average_order_value: Decimal
    top_categories: List[str]
    payment_methods: Dict[str, Decimal]
    metadata: Dict[str, Any]

    def derived_fields(self) -> Dict[str, Any]:
        """Fields that depend only on the input sales."""
        return {
            "total_amount": self.total_amount,
            "total_items": self.total_items,
            "average_order_value": self.average_order_value,
            "top_categories": list(self.top_categories),
            "payment_methods": dict(self.payment_methods),
            "sales_count": self.metadata.get("sales_count"),
            "peak_hour": self.metadata.get("peak_hour"),
            "customer_count": self.metadata.get("customer_count"),
            "provider": self.metadata.get("provider"),
        }

    def to_row(self) -> Dict[str, Any]:
        """Column values for ConsumptionRecord. JSON columns hold plain floats."""
        return {
            "client_id": self.client_id,
            "location_id": self.location_id,
            "consumption_date": self.consumption_date,
            "total_amount": self.total_amount,
            "total_items": self.total_items,
            "average_order_value": self.average_order_value,
            "top_categories": list(self.top_categories),
            "payment_methods": {k: float(v) for k, v in self.payment_methods.items()},
            "sync_metadata": dict(self.metadata),
        }


class ConsumptionStore(Protocol):
    """Persistence operations the aggregator relies on."""

    def insert(self, draft: ConsumptionDraft) -> int: ...

    def select_by_client(
        self,
        client_id: str,
        date_range: Optional[DateRange] = None,
        location_id: Optional[str] = None,
    ) -> List[ConsumptionRecord]: ...

    def update(self, record_id: int, fields: Dict[str, Any]) -> None: ...

    def get(self, record_id: int) -> Optional[ConsumptionRecord]: ...

    def find(
        self, client_id: str, consumption_date: date, location_id: Optional[str]
    ) -> Optional[ConsumptionRecord]: ...


class SqlConsumptionStore:
    """ConsumptionStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def insert(self, draft: ConsumptionDraft) -> int:
        record = ConsumptionRecord(**draft.to_row())
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not insert consumption for {draft.client_id}: {e}", original=e) from e
        return record.id

    def select_by_client(
        self,
        client_id: str,
        date_range: Optional[DateRange] = None,
        location_id: Optional[str] = None,
    ) -> List[ConsumptionRecord]:
        query = select(ConsumptionRecord).where(ConsumptionRecord.client_id == client_id)
        if location_id:
            query = query.where(ConsumptionRecord.location_id == location_id)
        if date_range:
            query = query.where(
                ConsumptionRecord.consumption_date >= date_range.start.date(),
                ConsumptionRecord.consumption_date <= date_range.end.date(),
            )
        query = query.order_by(ConsumptionRecord.consumption_date.desc(), ConsumptionRecord.id.desc())
        try:
            return list(self.db.scalars(query).all())
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load consumption for {client_id}: {e}", original=e) from e

    def update(self, record_id: int, fields: Dict[str, Any]) -> None:
        record = self.get(record_id)
        if record is None:
            raise StorageError(f"Consumption record {record_id} not found")
        try:
            for key, value in fields.items():
                setattr(record, key, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not update consumption record {record_id}: {e}", original=e) from e

    def get(self, record_id: int) -> Optional[ConsumptionRecord]:
        try:
            return self.db.get(ConsumptionRecord, record_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read consumption record {record_id}: {e}", original=e) from e

    def find(
        self, client_id: str, consumption_date: date, location_id: Optional[str]
    ) -> Optional[ConsumptionRecord]:
        query = select(ConsumptionRecord).where(
            ConsumptionRecord.client_id == client_id,
            ConsumptionRecord.consumption_date == consumption_date,
        )
        if location_id is None:
            query = query.where(ConsumptionRecord.location_id.is_(None))
        else:
            query = query.where(ConsumptionRecord.location_id == location_id)
        try:
            return self.db.scalars(query.order_by(ConsumptionRecord.id)).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not look up consumption for {client_id}: {e}", original=e) from e


class ConsumptionAggregator:
    """Validate, aggregate and persist daily consumption."""

    def __init__(self, store: ConsumptionStore, clock: Clock = utc_now):
        self.store_backend = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, sales: List[NormalizedSale]) -> ValidationResult:
        """Classify a batch. Any blocking error marks the whole batch invalid."""
        if not sales:
            return ValidationResult(is_valid=True, warnings=["No sales data provided"])

        errors: List[str] = []
        warnings: List[str] = []
        valid = 0
        now = self.clock()
        one_year_ago = now - timedelta(days=365)

        for index, sale in enumerate(sales):
            sale_errors: List[str] = []
            if not sale.id:
                sale_errors.append(f"Sale {index}: Missing ID")
            if not sale.pos_transaction_id:
                sale_errors.append(f"Sale {index}: Missing POS transaction ID")

            if not sale.timestamp:
                sale_errors.append(f"Sale {index}: Missing timestamp")
            else:
                try:
                    ts = parse_timestamp(sale.timestamp)
                except (ValueError, TypeError, AttributeError):
                    sale_errors.append(f"Sale {index}: Invalid timestamp format")
                else:
                    if ts > now:
                        warnings.append(f"Sale {index}: Future timestamp detected")
                    elif ts < one_year_ago:
                        warnings.append(f"Sale {index}: Very old timestamp detected")

            amount = sale.amount
            if not isinstance(amount, (Decimal, int, float)) or isinstance(amount, bool) or amount < 0:
                sale_errors.append(f"Sale {index}: Invalid amount ({amount})")

            if not sale.items:
                sale_errors.append(f"Sale {index}: No items found")
            for item_index, item in enumerate(sale.items):
                if not item.name:
                    sale_errors.append(f"Sale {index}, Item {item_index}: Missing name")
                if item.quantity is None or item.quantity <= 0:
                    sale_errors.append(f"Sale {index}, Item {item_index}: Invalid quantity")
                if item.unit_price is None or item.unit_price < 0 or item.total_price is None or item.total_price < 0:
                    sale_errors.append(f"Sale {index}, Item {item_index}: Invalid price")

            if sale_errors:
                errors.extend(sale_errors)
            else:
                valid += 1

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            records_processed=len(sales),
            records_valid=valid,
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate(
        self, client_id: str, sales: List[NormalizedSale], location_id: Optional[str] = None
    ) -> ConsumptionDraft:
        """Roll sales into a draft dated with the clock's current UTC date."""
        now = self.clock()

        total_amount = sum((Decimal(sale.amount) for sale in sales), Decimal("0"))
        total_items = sum(item.quantity for sale in sales for item in sale.items)
        average = total_amount / len(sales) if sales else Decimal("0")

        # Counter keeps first-seen order; sorted() is stable so ties stay in that order
        category_qty: Counter = Counter()
        for sale in sales:
            for item in sale.items:
                if item.category:
                    category_qty[item.category] += item.quantity
        top_categories = [
            category
            for category, _ in sorted(category_qty.items(), key=lambda kv: kv[1], reverse=True)[:TOP_CATEGORY_LIMIT]
        ]

        payment_methods: Dict[str, Decimal] = {}
        for sale in sales:
            method = sale.payment_method or "unknown"
            payment_methods[method] = payment_methods.get(method, Decimal("0")) + Decimal(sale.amount)
        payment_methods = {k: round_money(v) for k, v in payment_methods.items()}

        hour_counts: Counter = Counter()
        for sale in sales:
            try:
                hour_counts[parse_timestamp(sale.timestamp).hour] += 1
            except (ValueError, TypeError, AttributeError):
                logger.warning(f"Client {client_id}: sale {sale.id} has no usable timestamp for peak hour")
        peak_hour = max(hour_counts, key=hour_counts.get) if hour_counts else None

        customers = {sale.customer.id for sale in sales if sale.customer and sale.customer.id}

        return ConsumptionDraft(
            client_id=client_id,
            location_id=location_id,
            consumption_date=now.astimezone(timezone.utc).date(),
            total_amount=round_money(total_amount),
            total_items=total_items,
            average_order_value=round_money(average),
            top_categories=top_categories,
            payment_methods=payment_methods,
            metadata={
                "provider": (sales[0].provider if sales else None) or "unknown",
                "sync_timestamp": now.isoformat(),
                "sales_count": len(sales),
                "peak_hour": peak_hour,
                "customer_count": len(customers),
            },
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _require_valid(self, client_id: str, sales: List[NormalizedSale]) -> ValidationResult:
        validation = self.validate(sales)
        if not validation.is_valid:
            logger.error(
                f"Client {client_id}: consumption validation failed with {len(validation.errors)} error(s)"
            )
            raise SaleValidationError(validation.errors, validation.warnings)
        return validation

    def store(
        self, client_id: str, sales: List[NormalizedSale], location_id: Optional[str] = None
    ) -> ConsumptionRecord:
        self._require_valid(client_id, sales)
        draft = self.aggregate(client_id, sales, location_id)
        record_id = self.store_backend.insert(draft)
        logger.info(f"Stored consumption record {record_id} for client {client_id} ({len(sales)} sales)")
        return self.store_backend.get(record_id)

    def update(self, record_id: int, sales: List[NormalizedSale]) -> ConsumptionRecord:
        """Replace a record's derived fields with a fresh aggregation of ``sales``."""
        existing = self.store_backend.get(record_id)
        if existing is None:
            raise StorageError(f"Consumption record {record_id} not found")
        self._require_valid(existing.client_id, sales)

        draft = self.aggregate(existing.client_id, sales, existing.location_id)
        fields = draft.to_row()
        fields["updated_at"] = self.clock()
        self.store_backend.update(record_id, fields)
        logger.info(f"Updated consumption record {record_id} for client {existing.client_id}")
        return self.store_backend.get(record_id)

    def get_client_consumption(
        self,
        client_id: str,
        date_range: Optional[DateRange] = None,
        location_id: Optional[str] = None,
    ) -> List[ConsumptionRecord]:
        return self.store_backend.select_by_client(client_id, date_range, location_id)

    def find_current(self, client_id: str, location_id: Optional[str] = None) -> Optional[ConsumptionRecord]:
        """The record for the clock's current day, if one exists."""
        today = self.clock().astimezone(timezone.utc).date()
        return self.store_backend.find(client_id, today, location_id)


class ConsumptionBatchHandler:
    """Orchestrator batch handler that stores sales as daily consumption.

    Accepted batches of one run accumulate; after each batch the day's record
    is created or replaced from everything accepted so far. A batch that fails
    validation is rejected whole and does not enter the accumulated set.
    """

    def __init__(self, aggregator: ConsumptionAggregator):
        self.aggregator = aggregator
        self._accepted: List[NormalizedSale] = []
        self._record_id: Optional[int] = None

    @property
    def record_id(self) -> Optional[int]:
        return self._record_id

    async def __call__(self, context: BatchContext, batch: List[NormalizedSale]) -> BatchOutcome:
        validation = self.aggregator.validate(batch)
        if not validation.is_valid:
            raise SaleValidationError(validation.errors, validation.warnings)
        for warning in validation.warnings:
            logger.warning(f"Client {context.client_id} batch {context.batch_index}: {warning}")
        if not batch:
            return BatchOutcome()

        candidate = self._accepted + list(batch)
        if self._record_id is None:
            existing = self.aggregator.find_current(context.client_id, context.location_id)
            if existing is None:
                record = self.aggregator.store(context.client_id, candidate, context.location_id)
                self._record_id = record.id
                self._accepted = candidate
                return BatchOutcome(created=1)
            self._record_id = existing.id

        self.aggregator.update(self._record_id, candidate)
        self._accepted = candidate
        return BatchOutcome(updated=1)
