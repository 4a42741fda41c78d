"""Push daily consumption records into Odoo.

Each record is mapped, validated, looked up by its deterministic external id
and then written with a bounded linear-backoff retry. Record-level failures
are reported as skipped; only a failed connection fails the whole push.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pos_sync.core.config import Settings
from pos_sync.core.exceptions import StorageError
from pos_sync.models.consumption import ConsumptionRecord
from pos_sync.schemas.sync import PushResult
from pos_sync.services.consumption_service import ConsumptionAggregator
from pos_sync.services.erp.odoo_client import OdooClient
from pos_sync.services.erp.odoo_mapper import (
    ODOO_CONSUMPTION_MODEL,
    external_id_domain,
    format_for_dashboard,
    generate_external_id,
    map_consumption_to_odoo,
    validate_odoo_record,
)
from pos_sync.services.pos.base import DateRange
from pos_sync.services.sync_orchestrator import chunk

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PushSyncConfig:
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    batch_size: int = 50
    batch_delay_ms: int = 100
    enable_deduplication: bool = True

    def __post_init__(self):
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushSyncConfig":
        return cls(
            retry_attempts=settings.odoo_retry_attempts,
            retry_delay_ms=settings.odoo_retry_delay_ms,
            batch_size=settings.odoo_batch_size,
            batch_delay_ms=settings.odoo_batch_delay_ms,
            enable_deduplication=settings.odoo_enable_deduplication,
        )


class WriteRejectedError(Exception):
    """Odoo answered a write with ``False``."""


@dataclass
class _RecordOutcome:
    action: str  # created, updated, skipped
    odoo_id: Optional[int] = None
    error: Optional[str] = None


class ErpPushSyncService:
    """Idempotent consumption push to Odoo."""

    def __init__(
        self,
        client: OdooClient,
        config: Optional[PushSyncConfig] = None,
        aggregator: Optional[ConsumptionAggregator] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.config = config or PushSyncConfig()
        self.aggregator = aggregator
        self.clock = clock

    generate_external_id = staticmethod(generate_external_id)

    async def validate_connection(self) -> bool:
        return await self.client.validate_connection()

    async def push_consumption(
        self,
        client_id: str,
        date_range: Optional[DateRange] = None,
        location_id: Optional[str] = None,
    ) -> PushResult:
        """Load a client's stored consumption and push it."""
        if self.aggregator is None:
            raise RuntimeError("push_consumption needs a ConsumptionAggregator")
        started = time.monotonic()
        if not await self.validate_connection():
            return self._failed(started, "Unable to connect to Odoo server")
        try:
            records = self.aggregator.get_client_consumption(client_id, date_range, location_id)
        except StorageError as e:
            return self._failed(started, f"Could not load consumption for {client_id}: {e}")
        logger.info(f"Pushing {len(records)} consumption record(s) for client {client_id} to Odoo")
        return await self._push(client_id, records, started)

    async def push_records(self, client_id: str, records: List[ConsumptionRecord]) -> PushResult:
        """Push already-loaded records."""
        started = time.monotonic()
        if not await self.validate_connection():
            return self._failed(started, "Unable to connect to Odoo server")
        return await self._push(client_id, records, started)

    async def _push(self, client_id: str, records: List[ConsumptionRecord], started: float) -> PushResult:
        processed = created = updated = skipped = 0
        errors: List[str] = []

        batches = chunk(records, self.config.batch_size)
        for index, batch in enumerate(batches, start=1):
            logger.debug(f"Odoo push {client_id}: batch {index}/{len(batches)} ({len(batch)} records)")
            for record in batch:
                outcome = await self._process_record(record, client_id)
                processed += 1
                if outcome.action == "created":
                    created += 1
                elif outcome.action == "updated":
                    updated += 1
                else:
                    skipped += 1
                if outcome.error:
                    errors.append(f"Record {record.id}: {outcome.error}")

            if index < len(batches) and self.config.batch_delay_ms > 0:
                await asyncio.sleep(self.config.batch_delay_ms / 1000)

        logger.info(
            f"Odoo push {client_id} completed: {created} created, {updated} updated, {skipped} skipped"
        )
        return PushResult(
            success=True,
            records_processed=processed,
            records_created=created,
            records_updated=updated,
            records_skipped=skipped,
            errors=errors,
            duration=int((time.monotonic() - started) * 1000),
            last_sync_at=self.clock(),
        )

    def _failed(self, started: float, message: str) -> PushResult:
        logger.error(f"Odoo push failed: {message}")
        return PushResult(
            success=False,
            errors=[message],
            duration=int((time.monotonic() - started) * 1000),
            last_sync_at=self.clock(),
        )

    async def _process_record(self, record: ConsumptionRecord, client_id: str) -> _RecordOutcome:
        values = map_consumption_to_odoo(record, client_id, now=self.clock())
        problems = validate_odoo_record(values)
        if problems:
            logger.warning(f"Odoo push {client_id}: record {record.id} skipped, {', '.join(problems)}")
            return _RecordOutcome("skipped", error=f"Validation failed: {', '.join(problems)}")

        if self.config.enable_deduplication:
            try:
                existing_id = await self.find_existing_record(values["external_id"])
            except Exception as e:
                # Creating blindly here could duplicate the ERP record
                logger.error(f"Odoo push {client_id}: dedup lookup for record {record.id} failed: {e}")
                return _RecordOutcome("skipped", error=f"Deduplication lookup failed: {e}")
            if existing_id is not None:
                try:
                    await self.update_with_retry(existing_id, values)
                except Exception as e:
                    logger.error(f"Odoo push {client_id}: update of {existing_id} failed: {e}")
                    return _RecordOutcome("skipped", error=f"Update failed: {e}")
                logger.info(f"Updated Odoo consumption {existing_id} from record {record.id}")
                return _RecordOutcome("updated", odoo_id=existing_id)

        try:
            new_id = await self.create_with_retry(values)
        except Exception as e:
            logger.error(f"Odoo push {client_id}: create for record {record.id} failed: {e}")
            return _RecordOutcome("skipped", error=f"Creation failed: {e}")
        logger.info(f"Created Odoo consumption {new_id} from record {record.id}")
        return _RecordOutcome("created", odoo_id=new_id)

    async def find_existing_record(self, external_id: str) -> Optional[int]:
        ids = await self.client.search(ODOO_CONSUMPTION_MODEL, external_id_domain(external_id), limit=1)
        return ids[0] if ids else None

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` up to ``retry_attempts`` times, sleeping ``delay × attempt``."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.retry_attempts + 1):
            try:
                return await call()
            except Exception as e:
                last_error = e
                logger.warning(f"Odoo {operation} attempt {attempt}/{self.config.retry_attempts} failed: {e}")
                if attempt < self.config.retry_attempts:
                    await asyncio.sleep(self.config.retry_delay_ms * attempt / 1000)
        raise last_error

    async def create_with_retry(self, values: Dict[str, Any]) -> int:
        return await self._with_retry("create", lambda: self.client.create(ODOO_CONSUMPTION_MODEL, values))

    async def update_with_retry(self, odoo_id: int, values: Dict[str, Any]) -> bool:
        update_values = {k: v for k, v in values.items() if k != "external_id"}

        async def write() -> bool:
            update_values["sync_timestamp"] = self.clock().isoformat()
            ok = await self.client.write(ODOO_CONSUMPTION_MODEL, [odoo_id], update_values)
            if not ok:
                raise WriteRejectedError(f"Odoo rejected write to {odoo_id}")
            return True

        return await self._with_retry("update", write)

    async def cleanup_old_records(self, days_old: int = 90) -> Dict[str, Any]:
        """Delete ``processed`` ERP records older than ``days_old`` days."""
        cutoff = (self.clock() - timedelta(days=days_old)).date().isoformat()
        domain = [["consumption_date", "<", cutoff], ["state", "=", "processed"]]
        ids = await self.client.search(ODOO_CONSUMPTION_MODEL, domain)
        if not ids:
            return {"deleted": 0, "errors": []}
        if await self.client.unlink(ODOO_CONSUMPTION_MODEL, ids):
            logger.info(f"Cleaned up {len(ids)} processed Odoo consumption records before {cutoff}")
            return {"deleted": len(ids), "errors": []}
        logger.error(f"Odoo refused to delete {len(ids)} consumption records")
        return {"deleted": 0, "errors": ["Failed to delete records"]}

    async def get_sync_status(self, client_id: str) -> Dict[str, Any]:
        records = await self.client.search_read(
            ODOO_CONSUMPTION_MODEL,
            [["client_ref", "=", client_id]],
            fields=["consumption_date", "total_amount", "total_items", "category_lines", "state", "sync_timestamp"],
            order="consumption_date desc",
            limit=100,
        )
        return format_for_dashboard(records)

    async def get_server_info(self) -> Dict[str, Any]:
        return await self.client.get_server_info()

    async def disconnect(self) -> None:
        await self.client.logout()
        logger.info("Disconnected from Odoo")
