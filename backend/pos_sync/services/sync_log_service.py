"""Sync run logging, retry scheduling and auto-pause.

Every sync attempt gets a PosSyncLog row. Failures schedule a retry with a
linear backoff and count toward the client's failure streak; once the streak
reaches the configured limit the client is paused until the maximum backoff
has elapsed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_sync.core.config import Settings, settings as default_settings
from pos_sync.core.exceptions import StorageError
from pos_sync.models.sync_log import PosSyncLog, PosSyncStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    is_paused: bool
    next_retry_at: Optional[datetime] = None
    backoff_seconds: Optional[int] = None


@dataclass(frozen=True)
class SyncPermission:
    allowed: bool
    reason: Optional[str] = None
    next_allowed_at: Optional[datetime] = None


class SyncLogService:
    """Records sync attempts and decides when a client may sync again."""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.config = config or default_settings
        self.clock = clock

    def backoff_seconds(self, retry_count: int) -> int:
        """Linear backoff: ``base × retry_count`` capped at the maximum."""
        return min(
            self.config.sync_base_backoff_seconds * retry_count,
            self.config.sync_max_backoff_seconds,
        )

    def _get_log(self, log_id: int) -> PosSyncLog:
        log = self.db.get(PosSyncLog, log_id)
        if log is None:
            raise StorageError(f"Sync log {log_id} not found")
        return log

    def _get_status(self, client_id: str) -> Optional[PosSyncStatus]:
        return self.db.scalars(
            select(PosSyncStatus).where(PosSyncStatus.client_id == client_id)
        ).first()

    def start_sync(
        self,
        client_id: str,
        pos_type: str,
        operation: str = "sync_sales",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        log = PosSyncLog(
            client_id=client_id,
            pos_type=pos_type,
            operation=operation,
            status="running",
            started_at=self.clock(),
            details=metadata or {},
        )
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        logger.info(f"Started sync log {log.id} for {client_id}/{pos_type}/{operation}")
        return log.id

    def _duration_ms(self, log: PosSyncLog, completed_at: datetime) -> int:
        started = log.started_at or completed_at
        return max(0, int((completed_at - started).total_seconds() * 1000))

    def log_success(
        self,
        log_id: int,
        records_processed: int = 0,
        records_success: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        log = self._get_log(log_id)
        completed_at = self.clock()
        log.status = "success"
        log.completed_at = completed_at
        log.duration_ms = self._duration_ms(log, completed_at)
        log.records_processed = records_processed
        log.records_success = records_success
        log.next_retry_at = None
        if metadata:
            log.details = {**(log.details or {}), **metadata}
        self._update_status(log.client_id, log.pos_type, success=True)
        self.db.commit()
        logger.info(f"Sync log {log_id}: success, {records_processed} records")

    def log_error(
        self,
        log_id: int,
        message: str,
        error_code: Optional[str] = None,
        records_processed: int = 0,
        records_failed: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RetryDecision:
        log = self._get_log(log_id)
        completed_at = self.clock()
        retry_count = (log.retry_count or 0) + 1
        should_retry = retry_count < self.config.sync_max_retries
        backoff = self.backoff_seconds(retry_count)
        next_retry_at = completed_at + timedelta(seconds=backoff) if should_retry else None

        log.status = "retry" if should_retry else "error"
        log.completed_at = completed_at
        log.duration_ms = self._duration_ms(log, completed_at)
        log.records_processed = records_processed
        log.records_failed = records_failed
        log.error_message = message
        log.error_code = error_code
        log.retry_count = retry_count
        log.next_retry_at = next_retry_at
        if metadata:
            log.details = {**(log.details or {}), **metadata}

        is_paused = self._update_status(log.client_id, log.pos_type, success=False)
        self.db.commit()
        logger.warning(
            f"Sync log {log_id} for {log.client_id}: {message} "
            f"(retry={should_retry}, paused={is_paused})"
        )
        return RetryDecision(
            should_retry=should_retry,
            is_paused=is_paused,
            next_retry_at=next_retry_at,
            backoff_seconds=backoff if should_retry else None,
        )

    def _update_status(self, client_id: str, pos_type: str, success: bool) -> bool:
        """Advance the client's failure streak. Returns True when now paused."""
        now = self.clock()
        status = self._get_status(client_id)
        if status is None:
            status = PosSyncStatus(
                client_id=client_id,
                pos_type=pos_type,
                consecutive_failures=0,
                total_syncs=0,
                total_failures=0,
                is_paused=False,
            )
            self.db.add(status)

        status.pos_type = pos_type
        status.total_syncs = (status.total_syncs or 0) + 1
        status.last_sync_at = now
        if success:
            status.consecutive_failures = 0
            status.last_success_at = now
            self._clear_pause(status)
            return False

        status.consecutive_failures = (status.consecutive_failures or 0) + 1
        status.total_failures = (status.total_failures or 0) + 1
        status.last_failure_at = now
        if status.consecutive_failures >= self.config.sync_max_consecutive_failures:
            status.is_paused = True
            status.pause_reason = f"Auto-paused after {status.consecutive_failures} consecutive failures"
            status.paused_at = now
            status.paused_until = now + timedelta(seconds=self.config.sync_max_backoff_seconds)
            logger.warning(f"Auto-paused sync for {client_id} until {status.paused_until.isoformat()}")
            return True
        return bool(status.is_paused)

    def can_sync(self, client_id: str) -> SyncPermission:
        status = self._get_status(client_id)
        if status is None or not status.is_paused:
            return SyncPermission(allowed=True)

        now = self.clock()
        paused_until = status.paused_until or now
        if now >= paused_until:
            self._clear_pause(status)
            self.db.commit()
            logger.info(f"Auto-resumed sync for {client_id}")
            return SyncPermission(allowed=True)
        return SyncPermission(
            allowed=False,
            reason=status.pause_reason or "Sync is paused",
            next_allowed_at=paused_until,
        )

    @staticmethod
    def _clear_pause(status: PosSyncStatus) -> None:
        status.is_paused = False
        status.pause_reason = None
        status.paused_at = None
        status.paused_until = None

    def resume_sync(self, client_id: str) -> bool:
        """Manually lift a pause. Returns False when the client has no status yet."""
        status = self._get_status(client_id)
        if status is None:
            return False
        self._clear_pause(status)
        status.consecutive_failures = 0
        self.db.commit()
        logger.info(f"Manually resumed sync for {client_id}")
        return True

    def get_sync_logs(
        self, client_id: str, limit: int = 50, status: Optional[str] = None
    ) -> List[PosSyncLog]:
        query = select(PosSyncLog).where(PosSyncLog.client_id == client_id)
        if status:
            query = query.where(PosSyncLog.status == status)
        query = query.order_by(PosSyncLog.started_at.desc(), PosSyncLog.id.desc()).limit(limit)
        return list(self.db.scalars(query).all())

    def get_status(self, client_id: str) -> Optional[PosSyncStatus]:
        return self._get_status(client_id)
