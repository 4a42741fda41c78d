"""Sync orchestrator.

Drives one synchronization run for one client against one POS adapter:
connection check, date range resolution, a single fetch, fixed-size batching
and sequential per-batch processing with a pacing delay. A failing batch is
recorded and the run moves on to the next one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pos_sync.core.exceptions import SyncError, UnknownProviderError
from pos_sync.schemas.sync import SyncResult, SyncState
from pos_sync.services.pos.base import DateRange, NormalizedSale, POSAdapter
from pos_sync.services.pos.registry import AdapterRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncRequest:
    client_id: str
    pos_type: str
    pos_config: Dict[str, Any] = field(default_factory=dict)
    date_range: Optional[DateRange] = None
    batch_size: Optional[int] = None
    location_id: Optional[str] = None


@dataclass(frozen=True)
class BatchContext:
    """Where a batch sits within its run. ``batch_index`` is 1-based."""

    client_id: str
    provider: str
    batch_index: int
    batch_count: int
    location_id: Optional[str] = None


@dataclass(frozen=True)
class BatchOutcome:
    created: int = 0
    updated: int = 0
    skipped: int = 0


BatchHandler = Callable[[BatchContext, List[NormalizedSale]], Awaitable[Optional[BatchOutcome]]]


@dataclass
class _RunState:
    """State machine position of a single run."""

    client_id: str
    state: SyncState = SyncState.IDLE

    def transition(self, state: SyncState) -> None:
        logger.debug(f"Sync {self.client_id}: {self.state.value} -> {state.value}")
        self.state = state


async def _noop_handler(context: BatchContext, batch: List[NormalizedSale]) -> None:
    return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def chunk(items: List[Any], size: int) -> List[List[Any]]:
    """Split ``items`` into consecutive slices of ``size``, order preserved."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncOrchestrator:
    """Runs sync requests against adapters from a registry."""

    def __init__(
        self,
        registry: AdapterRegistry,
        batch_handler: Optional[BatchHandler] = None,
        batch_delay_ms: int = 1000,
        default_window_hours: int = 24,
        default_batch_size: int = 100,
        clock: Callable[[], datetime] = _utc_now,
        adapter_options: Optional[Dict[str, Any]] = None,
    ):
        self.registry = registry
        self.batch_handler = batch_handler or _noop_handler
        self.batch_delay_ms = batch_delay_ms
        self.default_window_hours = default_window_hours
        self.default_batch_size = default_batch_size
        self.clock = clock
        self.adapter_options = adapter_options or {}

    def resolve_batch_size(self, pos_type: str, requested: Optional[int]) -> int:
        """``min(requested or default, provider limit)``; clamping is logged."""
        limit = self.registry.descriptor(pos_type).batch_size_limit
        wanted = requested or self.default_batch_size
        if wanted > limit:
            logger.warning(f"Batch size {wanted} exceeds {pos_type} limit {limit}; clamping to {limit}")
            return limit
        return max(1, wanted)

    async def resolve_range(self, adapter: POSAdapter, requested: Optional[DateRange]) -> DateRange:
        if requested is not None:
            return requested
        now = self.clock()
        last_sync = await adapter.get_last_sync()
        if last_sync is None:
            return DateRange.trailing(self.default_window_hours, now)
        if last_sync.tzinfo is None:
            last_sync = last_sync.replace(tzinfo=timezone.utc)
        return DateRange(start=last_sync, end=now)

    async def run(self, request: SyncRequest) -> SyncResult:
        started = time.monotonic()
        errors: List[str] = []
        processed = created = updated = skipped = 0
        client_id = request.client_id
        run_state = _RunState(client_id)

        def finish(state: SyncState) -> SyncResult:
            run_state.transition(state)
            return SyncResult(
                success=not errors and state == SyncState.COMPLETED,
                state=state,
                client_id=client_id,
                provider=request.pos_type,
                records_processed=processed,
                records_created=created,
                records_updated=updated,
                records_skipped=skipped,
                errors=list(errors),
                duration=int((time.monotonic() - started) * 1000),
                timestamp=self.clock(),
            )

        try:
            adapter = self.registry.create_adapter(request.pos_type, request.pos_config, **self.adapter_options)
            batch_size = self.resolve_batch_size(request.pos_type, request.batch_size)
        except UnknownProviderError as e:
            logger.error(f"Sync {client_id}: {e}")
            errors.append(str(e))
            return finish(SyncState.FAILED)
        except (ValueError, TypeError) as e:
            logger.error(f"Sync {client_id}: invalid {request.pos_type} configuration: {e}")
            errors.append(f"Invalid configuration: {e}")
            return finish(SyncState.FAILED)

        run_state.transition(SyncState.VALIDATING_CONNECTION)
        if not await adapter.validate_connection():
            logger.error(f"Sync {client_id}: cannot connect to {request.pos_type}")
            errors.append(f"Connection failed: unable to reach {request.pos_type}")
            return finish(SyncState.FAILED)

        try:
            run_state.transition(SyncState.RESOLVING_RANGE)
            date_range = await self.resolve_range(adapter, request.date_range)

            run_state.transition(SyncState.FETCHING)
            sales = await adapter.fetch_sales(client_id, date_range)
        except SyncError as e:
            logger.error(f"Sync {client_id}: fetch from {request.pos_type} failed: {e}")
            errors.append(str(e))
            return finish(SyncState.FAILED)
        except Exception as e:
            logger.exception(f"Sync {client_id}: unexpected error fetching from {request.pos_type}")
            errors.append(f"Unexpected fetch error: {e}")
            return finish(SyncState.FAILED)

        run_state.transition(SyncState.BATCHING)
        batches = chunk(sales, batch_size)
        logger.info(
            f"Sync {client_id}: {len(sales)} sales from {request.pos_type} in "
            f"{len(batches)} batch(es) of up to {batch_size}"
        )

        run_state.transition(SyncState.PROCESSING_BATCHES)
        for index, batch in enumerate(batches, start=1):
            context = BatchContext(
                client_id=client_id,
                provider=request.pos_type,
                batch_index=index,
                batch_count=len(batches),
                location_id=request.location_id,
            )
            try:
                outcome = await self.batch_handler(context, batch)
                if outcome is not None:
                    created += outcome.created
                    updated += outcome.updated
                    skipped += outcome.skipped
            except Exception as e:
                # One bad batch must not discard the rest of the run
                logger.exception(f"Sync {client_id}: batch {index}/{len(batches)} failed")
                errors.append(f"Batch {index}: {e}")
            processed += len(batch)

            if index < len(batches) and self.batch_delay_ms > 0:
                await asyncio.sleep(self.batch_delay_ms / 1000)

        result = finish(SyncState.COMPLETED)
        logger.info(
            f"Sync {client_id} completed: {result.records_processed} processed, "
            f"{len(result.errors)} error(s) in {result.duration}ms"
        )
        return result
