"""Tests for sync logging, backoff and auto-pause."""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from pos_sync.core.config import Settings
from pos_sync.core.exceptions import StorageError
from pos_sync.services.sync_log_service import SyncLogService

from factories import FIXED_NOW


class MovableClock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return MovableClock()


@pytest.fixture
def sync_log(db_session: Session, test_settings: Settings, clock) -> SyncLogService:
    return SyncLogService(db_session, test_settings, clock=clock)


def fail(sync_log, client_id="c1", message="Connection failed"):
    log_id = sync_log.start_sync(client_id, "fudo")
    return sync_log.log_error(log_id, message, error_code="failed")


class TestBackoff:
    """Tests for the retry schedule."""

    def test_linear_and_capped(self, sync_log):
        assert sync_log.backoff_seconds(1) == 30
        assert sync_log.backoff_seconds(4) == 120
        assert sync_log.backoff_seconds(1000) == 3600

    def test_error_schedules_retry(self, sync_log):
        decision = fail(sync_log)

        assert decision.should_retry is True
        assert decision.backoff_seconds == 30
        assert decision.next_retry_at == FIXED_NOW + timedelta(seconds=30)

    def test_retries_stop_at_limit(self, sync_log, db_session):
        log_id = sync_log.start_sync("c1", "fudo")
        log = sync_log._get_log(log_id)
        log.retry_count = 4
        db_session.commit()

        decision = sync_log.log_error(log_id, "still failing")

        assert decision.should_retry is False
        assert decision.next_retry_at is None
        [stored] = sync_log.get_sync_logs("c1")
        assert stored.status == "error"
        assert stored.retry_count == 5


class TestLogLifecycle:
    """Tests for start, success and error bookkeeping."""

    def test_start_creates_running_log(self, sync_log):
        log_id = sync_log.start_sync("c1", "fudo", metadata={"forced": True})

        [log] = sync_log.get_sync_logs("c1")
        assert log.id == log_id
        assert log.status == "running"
        assert log.details == {"forced": True}

    def test_success_records_duration(self, sync_log, clock):
        log_id = sync_log.start_sync("c1", "fudo")
        clock.advance(seconds=2)

        sync_log.log_success(log_id, records_processed=10, records_success=10, metadata={"records_created": 1})

        [log] = sync_log.get_sync_logs("c1")
        assert log.status == "success"
        assert log.duration_ms == 2000
        assert log.records_processed == 10
        assert log.details["records_created"] == 1
        status = sync_log.get_status("c1")
        assert status.total_syncs == 1
        assert status.consecutive_failures == 0

    def test_error_records_message(self, sync_log):
        fail(sync_log, message="Batch 2: boom")

        [log] = sync_log.get_sync_logs("c1")
        assert log.status == "retry"
        assert log.error_message == "Batch 2: boom"
        assert log.error_code == "failed"

    def test_unknown_log(self, sync_log):
        with pytest.raises(StorageError):
            sync_log.log_success(404)

    def test_logs_filtered_and_limited(self, sync_log, clock):
        for _ in range(3):
            fail(sync_log)
            clock.advance(minutes=1)
        sync_log.log_success(sync_log.start_sync("c1", "fudo"))

        assert len(sync_log.get_sync_logs("c1")) == 4
        assert len(sync_log.get_sync_logs("c1", limit=2)) == 2
        assert [log.status for log in sync_log.get_sync_logs("c1", status="success")] == ["success"]
        assert sync_log.get_sync_logs("c2") == []


class TestAutoPause:
    """Tests for pausing after repeated failures."""

    def test_pauses_after_three_consecutive_failures(self, sync_log):
        assert fail(sync_log).is_paused is False
        assert fail(sync_log).is_paused is False
        decision = fail(sync_log)

        assert decision.is_paused is True
        status = sync_log.get_status("c1")
        assert status.consecutive_failures == 3
        assert status.total_failures == 3
        assert status.pause_reason == "Auto-paused after 3 consecutive failures"

    def test_success_resets_streak(self, sync_log):
        fail(sync_log)
        fail(sync_log)
        sync_log.log_success(sync_log.start_sync("c1", "fudo"))

        assert fail(sync_log).is_paused is False
        assert sync_log.get_status("c1").consecutive_failures == 1

    def test_paused_client_cannot_sync(self, sync_log):
        for _ in range(3):
            fail(sync_log)

        permission = sync_log.can_sync("c1")

        assert permission.allowed is False
        assert "Auto-paused" in permission.reason
        assert permission.next_allowed_at == FIXED_NOW + timedelta(seconds=3600)

    def test_pause_expires(self, sync_log, clock):
        for _ in range(3):
            fail(sync_log)
        clock.advance(seconds=3600)

        assert sync_log.can_sync("c1").allowed is True
        assert sync_log.get_status("c1").is_paused is False

    def test_client_without_history_can_sync(self, sync_log):
        assert sync_log.can_sync("new-client").allowed is True

    def test_manual_resume(self, sync_log):
        for _ in range(3):
            fail(sync_log)

        assert sync_log.resume_sync("c1") is True
        status = sync_log.get_status("c1")
        assert status.is_paused is False
        assert status.consecutive_failures == 0
        assert sync_log.can_sync("c1").allowed is True

    def test_resume_unknown_client(self, sync_log):
        assert sync_log.resume_sync("nobody") is False
