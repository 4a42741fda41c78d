"""Tests for consumption validation, aggregation and persistence."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from pos_sync.core.exceptions import SaleValidationError, StorageError
from pos_sync.services.consumption_service import (
    ConsumptionAggregator,
    ConsumptionBatchHandler,
    SqlConsumptionStore,
)
from pos_sync.services.pos.base import DateRange
from pos_sync.services.sync_orchestrator import BatchContext

from factories import FIXED_NOW, fixed_clock, make_item, make_sale


@pytest.fixture
def aggregator(db_session: Session) -> ConsumptionAggregator:
    return ConsumptionAggregator(SqlConsumptionStore(db_session), clock=fixed_clock)


def example_sales():
    return [
        make_sale("s1", "100", items=[make_item("Latte", 2, "100", "Coffee")]),
        make_sale("s2", "50", items=[make_item("Tostado", 1, "50", "Food")], payment_method="credit_card"),
    ]


def context(index=1, count=1, location_id=None):
    return BatchContext(
        client_id="c1", provider="fake", batch_index=index, batch_count=count, location_id=location_id
    )


class TestValidation:
    """Tests for batch validation."""

    def test_valid_batch(self, aggregator):
        result = aggregator.validate(example_sales())
        assert result.is_valid is True
        assert result.records_processed == 2
        assert result.records_valid == 2
        assert result.errors == []

    def test_empty_batch_is_valid_with_warning(self, aggregator):
        result = aggregator.validate([])
        assert result.is_valid is True
        assert result.warnings == ["No sales data provided"]

    def test_negative_amount_invalidates_whole_batch(self, aggregator):
        sales = example_sales() + [make_sale("s3", "-5")]
        result = aggregator.validate(sales)

        assert result.is_valid is False
        assert result.records_valid == 2
        assert result.errors == ["Sale 2: Invalid amount (-5)"]

    def test_item_errors(self, aggregator):
        bad = make_sale("s1", items=[make_item(name="", quantity=0, total="10")])
        result = aggregator.validate([bad])

        assert "Sale 0, Item 0: Missing name" in result.errors
        assert "Sale 0, Item 0: Invalid quantity" in result.errors

    def test_sale_without_items(self, aggregator):
        result = aggregator.validate([make_sale("s1", items=[])])
        assert result.errors == ["Sale 0: No items found"]

    def test_invalid_timestamp(self, aggregator):
        result = aggregator.validate([make_sale(timestamp="yesterday")])
        assert result.errors == ["Sale 0: Invalid timestamp format"]

    def test_future_and_old_timestamps_warn(self, aggregator):
        sales = [
            make_sale("s1", timestamp="2024-03-16T10:00:00+00:00"),
            make_sale("s2", timestamp="2022-01-01T10:00:00+00:00"),
        ]
        result = aggregator.validate(sales)

        assert result.is_valid is True
        assert result.warnings == [
            "Sale 0: Future timestamp detected",
            "Sale 1: Very old timestamp detected",
        ]


class TestAggregation:
    """Tests for rolling sales into a daily draft."""

    def test_totals_example(self, aggregator):
        draft = aggregator.aggregate("c1", example_sales())

        assert draft.total_amount == Decimal("150.00")
        assert draft.total_items == 3
        assert draft.average_order_value == Decimal("75.00")
        assert draft.consumption_date == date(2024, 3, 15)

    def test_breakdowns(self, aggregator):
        draft = aggregator.aggregate("c1", example_sales())

        assert draft.top_categories == ["Coffee", "Food"]
        assert draft.payment_methods == {"cash": Decimal("100.00"), "credit_card": Decimal("50.00")}
        assert draft.metadata["peak_hour"] == 12
        assert draft.metadata["sales_count"] == 2
        assert draft.metadata["provider"] == "fake"
        assert draft.metadata["sync_timestamp"] == FIXED_NOW.isoformat()

    def test_top_categories_capped_at_five_and_ties_keep_first_seen(self, aggregator):
        items = [make_item(f"i{n}", 1, "1", f"cat{n}") for n in range(7)]
        items.append(make_item("extra", 3, "3", "cat6"))
        draft = aggregator.aggregate("c1", [make_sale("s1", "10", items=items)])

        assert draft.top_categories == ["cat6", "cat0", "cat1", "cat2", "cat3"]

    def test_peak_hour_tie_keeps_first_seen_hour(self, aggregator):
        sales = [
            make_sale("s1", timestamp="2024-03-15T12:10:00+00:00"),
            make_sale("s2", timestamp="2024-03-15T09:05:00+00:00"),
            make_sale("s3", timestamp="2024-03-15T09:45:00+00:00"),
            make_sale("s4", timestamp="2024-03-15T12:50:00+00:00"),
        ]
        assert aggregator.aggregate("c1", sales).metadata["peak_hour"] == 12
        assert aggregator.aggregate("c1", sales[1:] + sales[:1]).metadata["peak_hour"] == 9

    def test_peak_hour_uses_timestamp_offset(self, aggregator):
        sales = [make_sale("s1", timestamp="2024-03-15T21:15:00-03:00")]
        assert aggregator.aggregate("c1", sales).metadata["peak_hour"] == 21

    def test_unique_customers(self, aggregator):
        sales = [
            make_sale("s1", customer_id="cust-1"),
            make_sale("s2", customer_id="cust-1"),
            make_sale("s3", customer_id="cust-2"),
            make_sale("s4"),
        ]
        assert aggregator.aggregate("c1", sales).metadata["customer_count"] == 2

    def test_half_up_rounding(self, aggregator):
        sales = [make_sale("s1", "10.00"), make_sale("s2", "10.00"), make_sale("s3", "10.01")]
        assert aggregator.aggregate("c1", sales).average_order_value == Decimal("10.00")
        assert aggregator.aggregate("c1", [make_sale("s1", "0.005")]).total_amount == Decimal("0.01")

    def test_aggregation_is_idempotent(self, aggregator):
        first = aggregator.aggregate("c1", example_sales())
        second = aggregator.aggregate("c1", example_sales())
        assert first.derived_fields() == second.derived_fields()

    def test_empty_input(self, aggregator):
        draft = aggregator.aggregate("c1", [])
        assert draft.total_amount == Decimal("0.00")
        assert draft.average_order_value == Decimal("0.00")
        assert draft.metadata["provider"] == "unknown"
        assert draft.metadata["peak_hour"] is None


class TestPersistence:
    """Tests for storing and updating consumption records."""

    def test_store_creates_record(self, aggregator):
        record = aggregator.store("c1", example_sales(), location_id="loc-1")

        assert record.id is not None
        assert record.total_amount == Decimal("150.00")
        assert record.location_id == "loc-1"
        assert record.payment_methods == {"cash": 100.0, "credit_card": 50.0}
        assert record.sync_metadata["sales_count"] == 2

    def test_store_refuses_invalid_batch(self, aggregator):
        with pytest.raises(SaleValidationError) as exc_info:
            aggregator.store("c1", [make_sale("s1", "-1")])
        assert exc_info.value.errors == ["Sale 0: Invalid amount (-1)"]
        assert aggregator.get_client_consumption("c1") == []

    def test_update_replaces_derived_fields(self, aggregator):
        record = aggregator.store("c1", example_sales()[:1])
        updated = aggregator.update(record.id, example_sales())

        assert updated.id == record.id
        assert updated.total_amount == Decimal("150.00")
        assert updated.total_items == 3

    def test_one_record_per_client_day_and_location(self, aggregator):
        aggregator.store("c1", example_sales())
        aggregator.store("c1", example_sales(), location_id="loc-1")

        with pytest.raises(StorageError):
            aggregator.store("c1", example_sales())
        with pytest.raises(StorageError):
            aggregator.store("c1", example_sales(), location_id="loc-1")

        assert len(aggregator.get_client_consumption("c1")) == 2

    def test_update_missing_record(self, aggregator):
        with pytest.raises(StorageError):
            aggregator.update(999, example_sales())

    def test_get_client_consumption_filters(self, aggregator):
        aggregator.store("c1", example_sales(), location_id="loc-1")
        aggregator.store("c1", example_sales(), location_id="loc-2")
        aggregator.store("c2", example_sales())

        assert len(aggregator.get_client_consumption("c1")) == 2
        assert len(aggregator.get_client_consumption("c1", location_id="loc-2")) == 1
        outside = DateRange.parse("2024-01-01", "2024-01-31")
        assert aggregator.get_client_consumption("c1", date_range=outside) == []


class TestBatchHandler:
    """Tests for the orchestrator-facing handler."""

    @pytest.mark.asyncio
    async def test_first_batch_creates_then_updates(self, aggregator):
        handler = ConsumptionBatchHandler(aggregator)
        first, second = example_sales()

        created = await handler(context(1, 2), [first])
        updated = await handler(context(2, 2), [second])

        assert created.created == 1
        assert updated.updated == 1
        [record] = aggregator.get_client_consumption("c1")
        assert record.total_amount == Decimal("150.00")
        assert record.sync_metadata["sales_count"] == 2

    @pytest.mark.asyncio
    async def test_rejected_batch_is_not_accumulated(self, aggregator):
        handler = ConsumptionBatchHandler(aggregator)
        first, second = example_sales()

        await handler(context(1, 3), [first])
        with pytest.raises(SaleValidationError):
            await handler(context(2, 3), [make_sale("bad", "-3")])
        await handler(context(3, 3), [second])

        [record] = aggregator.get_client_consumption("c1")
        assert record.total_amount == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_new_run_updates_existing_day(self, aggregator):
        aggregator.store("c1", example_sales()[:1])
        handler = ConsumptionBatchHandler(aggregator)

        outcome = await handler(context(), example_sales())

        assert outcome.updated == 1
        assert len(aggregator.get_client_consumption("c1")) == 1

    @pytest.mark.asyncio
    async def test_empty_batch_writes_nothing(self, aggregator):
        outcome = await ConsumptionBatchHandler(aggregator)(context(), [])
        assert outcome.created == 0
        assert aggregator.get_client_consumption("c1") == []
