"""Tests for pushing consumption into Odoo.

The Odoo client is replaced with an AsyncMock so each test controls exactly
what the ERP answers.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from pos_sync.core.exceptions import ErpRpcError, IntegrationConnectionError
from pos_sync.models.consumption import ConsumptionRecord
from pos_sync.services.consumption_service import ConsumptionAggregator, SqlConsumptionStore
from pos_sync.services.erp.odoo_client import OdooClient
from pos_sync.services.erp.push_sync import ErpPushSyncService, PushSyncConfig

from factories import FIXED_NOW, fixed_clock, make_sale

CONFIG = PushSyncConfig(retry_attempts=3, retry_delay_ms=0, batch_size=2, batch_delay_ms=0)


def odoo_mock(**overrides):
    client = AsyncMock(spec=OdooClient)
    client.validate_connection.return_value = True
    client.search.return_value = []
    client.create.return_value = 101
    client.write.return_value = True
    for name, value in overrides.items():
        setattr(client, name, value)
    return client


def record(record_id=1, **overrides):
    fields = dict(
        id=record_id,
        client_id="c1",
        location_id=None,
        consumption_date=date(2024, 3, 15),
        total_amount=Decimal("150.00"),
        total_items=3,
        average_order_value=Decimal("75.00"),
        top_categories=["Coffee"],
        payment_methods={"cash": 150.0},
        sync_metadata={"provider": "fake"},
    )
    fields.update(overrides)
    return ConsumptionRecord(**fields)


def service(client, config=CONFIG, aggregator=None):
    return ErpPushSyncService(client, config=config, aggregator=aggregator, clock=fixed_clock)


class TestPushSyncConfig:
    """Tests for push configuration bounds."""

    def test_zero_retry_attempts_rejected(self):
        with pytest.raises(ValueError, match="retry_attempts"):
            PushSyncConfig(retry_attempts=0)

    def test_zero_batch_size_rejected(self):
        with pytest.raises(ValueError, match="batch_size"):
            PushSyncConfig(batch_size=0)

    def test_single_attempt_is_allowed(self):
        assert PushSyncConfig(retry_attempts=1).retry_attempts == 1


class TestPushRecords:
    """Tests for the create and update paths."""

    @pytest.mark.asyncio
    async def test_new_record_is_created(self):
        client = odoo_mock()
        result = await service(client).push_records("c1", [record()])

        assert result.success is True
        assert result.records_created == 1
        assert result.records_processed == 1
        assert result.last_sync_at == FIXED_NOW
        client.search.assert_awaited_once_with(
            "tupa.consumption", [["external_id", "=", "tupa_consumption_c1_2024-03-15_main"]], limit=1
        )
        model, values = client.create.await_args.args
        assert model == "tupa.consumption"
        assert values["external_id"] == "tupa_consumption_c1_2024-03-15_main"

    @pytest.mark.asyncio
    async def test_existing_record_is_updated_without_external_id(self):
        client = odoo_mock()
        client.search.return_value = [55]

        result = await service(client).push_records("c1", [record()])

        assert result.records_updated == 1
        assert result.records_created == 0
        client.create.assert_not_awaited()
        model, ids, values = client.write.await_args.args
        assert ids == [55]
        assert "external_id" not in values
        assert values["sync_timestamp"] == FIXED_NOW.isoformat()

    @pytest.mark.asyncio
    async def test_second_push_takes_update_path(self):
        created_ids = []

        async def search(model, domain, limit=None):
            return list(created_ids)

        async def create(model, values):
            created_ids.append(101)
            return 101

        client = odoo_mock()
        client.search.side_effect = search
        client.create.side_effect = create
        sync = service(client)

        first = await sync.push_records("c1", [record()])
        second = await sync.push_records("c1", [record()])

        assert first.records_created == 1
        assert second.records_updated == 1
        assert client.create.await_count == 1

    @pytest.mark.asyncio
    async def test_dedup_disabled_always_creates(self):
        client = odoo_mock()
        config = PushSyncConfig(retry_delay_ms=0, batch_delay_ms=0, enable_deduplication=False)

        result = await service(client, config=config).push_records("c1", [record()])

        assert result.records_created == 1
        client.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_record_skipped_without_network(self):
        client = odoo_mock()

        result = await service(client).push_records("c1", [record(total_amount=Decimal("-5"))])

        assert result.success is True
        assert result.records_skipped == 1
        assert result.errors == ["Record 1: Validation failed: total_amount cannot be negative"]
        client.search.assert_not_awaited()
        client.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dedup_lookup_failure_skips(self):
        client = odoo_mock()
        client.search.side_effect = ErpRpcError("Odoo RPC Error: boom")

        result = await service(client).push_records("c1", [record()])

        assert result.records_skipped == 1
        assert "Deduplication lookup failed" in result.errors[0]
        client.create.assert_not_awaited()


class TestRetry:
    """Tests for the bounded linear retry."""

    @pytest.mark.asyncio
    async def test_create_retried_exactly_three_times(self):
        client = odoo_mock()
        client.create.side_effect = IntegrationConnectionError("Odoo HTTP 503")

        result = await service(client).push_records("c1", [record()])

        assert client.create.await_count == 3
        assert result.success is True
        assert result.records_skipped == 1
        assert result.errors == ["Record 1: Creation failed: Odoo HTTP 503"]

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self):
        client = odoo_mock()
        client.create.side_effect = [IntegrationConnectionError("blip"), 202]

        result = await service(client).push_records("c1", [record()])

        assert result.records_created == 1
        assert client.create.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_write_is_retried(self):
        client = odoo_mock()
        client.search.return_value = [55]
        client.write.return_value = False

        result = await service(client).push_records("c1", [record()])

        assert client.write.await_count == 3
        assert result.records_skipped == 1
        assert result.errors == ["Record 1: Update failed: Odoo rejected write to 55"]

    @pytest.mark.asyncio
    async def test_linear_backoff_then_last_error(self, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("pos_sync.services.erp.push_sync.asyncio.sleep", fake_sleep)
        client = odoo_mock()
        client.create.side_effect = [
            IntegrationConnectionError("first"),
            IntegrationConnectionError("second"),
            IntegrationConnectionError("third"),
        ]
        config = PushSyncConfig(retry_attempts=3, retry_delay_ms=1000, batch_delay_ms=0)

        with pytest.raises(IntegrationConnectionError, match="third"):
            await service(client, config=config).create_with_retry({"name": "x"})
        assert delays == [1.0, 2.0]


class TestPushRun:
    """Tests for run-level behaviour."""

    @pytest.mark.asyncio
    async def test_connection_failure_fails_run(self):
        client = odoo_mock()
        client.validate_connection.return_value = False

        result = await service(client).push_records("c1", [record()])

        assert result.success is False
        assert result.errors == ["Unable to connect to Odoo server"]
        client.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batches_paced(self, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("pos_sync.services.erp.push_sync.asyncio.sleep", fake_sleep)
        config = PushSyncConfig(retry_delay_ms=0, batch_size=2, batch_delay_ms=100)

        result = await service(odoo_mock(), config=config).push_records(
            "c1", [record(i, location_id=f"loc-{i}") for i in range(1, 6)]
        )

        assert result.records_created == 5
        # 5 records in batches of 2 means two pauses between three batches
        assert delays == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_push_consumption_loads_stored_records(self, db_session):
        aggregator = ConsumptionAggregator(SqlConsumptionStore(db_session), clock=fixed_clock)
        aggregator.store("c1", [make_sale("s1"), make_sale("s2", "50")])
        client = odoo_mock()

        result = await service(client, aggregator=aggregator).push_consumption("c1")

        assert result.records_created == 1
        values = client.create.await_args.args[1]
        assert values["total_amount"] == 150.0
        assert values["consumption_date"] == "2024-03-15"

    @pytest.mark.asyncio
    async def test_push_consumption_requires_aggregator(self):
        with pytest.raises(RuntimeError):
            await service(odoo_mock()).push_consumption("c1")


class TestMaintenance:
    """Tests for cleanup and status reads."""

    @pytest.mark.asyncio
    async def test_cleanup_only_targets_old_processed(self):
        client = odoo_mock()
        client.search.return_value = [1, 2, 3]
        client.unlink.return_value = True

        result = await service(client).cleanup_old_records(90)

        assert result == {"deleted": 3, "errors": []}
        client.search.assert_awaited_once_with(
            "tupa.consumption",
            [["consumption_date", "<", "2023-12-16"], ["state", "=", "processed"]],
        )
        client.unlink.assert_awaited_once_with("tupa.consumption", [1, 2, 3])

    @pytest.mark.asyncio
    async def test_cleanup_nothing_to_delete(self):
        client = odoo_mock()
        result = await service(client).cleanup_old_records(30)

        assert result == {"deleted": 0, "errors": []}
        client.unlink.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cleanup_refused(self):
        client = odoo_mock()
        client.search.return_value = [9]
        client.unlink.return_value = False

        assert await service(client).cleanup_old_records() == {"deleted": 0, "errors": ["Failed to delete records"]}

    @pytest.mark.asyncio
    async def test_sync_status(self):
        client = odoo_mock()
        client.search_read.return_value = [
            {"consumption_date": "2024-03-15", "total_amount": 150.0, "state": "draft",
             "sync_timestamp": "2024-03-15T14:30:00+00:00"},
        ]

        status = await service(client).get_sync_status("c1")

        assert status["summary"]["total_records"] == 1
        assert status["last_sync_at"] == "2024-03-15T14:30:00+00:00"
        kwargs = client.search_read.await_args.kwargs
        assert kwargs["limit"] == 100
        assert kwargs["order"] == "consumption_date desc"

    @pytest.mark.asyncio
    async def test_sync_status_reads_item_and_category_fields(self):
        client = odoo_mock()
        client.search_read.return_value = [
            {"consumption_date": "2024-03-15", "total_amount": 150.0, "total_items": 3, "state": "draft",
             "category_lines": [{"category": "Coffee", "quantity": 3, "total_amount": 150.0}]},
            {"consumption_date": "2024-03-14", "total_amount": 50.0, "total_items": 1, "state": "processed",
             "category_lines": [7, 8]},
        ]

        status = await service(client).get_sync_status("c1")

        fields = client.search_read.await_args.kwargs["fields"]
        assert "total_items" in fields
        assert "category_lines" in fields
        assert status["summary"]["total_items"] == 4
        assert status["categories"] == {"Coffee": {"quantity": 3, "amount": 150.0}}

    @pytest.mark.asyncio
    async def test_disconnect_logs_out(self):
        client = odoo_mock()
        await service(client).disconnect()
        client.logout.assert_awaited_once()

    def test_generate_external_id_exposed(self):
        assert ErpPushSyncService.generate_external_id("c1", "2024-03-15", "loc") == (
            "tupa_consumption_c1_2024-03-15_loc"
        )
