"""Sync run schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator


class SyncState(str, Enum):
    IDLE = "idle"
    VALIDATING_CONNECTION = "validating_connection"
    RESOLVING_RANGE = "resolving_range"
    FETCHING = "fetching"
    BATCHING = "batching"
    PROCESSING_BATCHES = "processing_batches"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Terminal report of one orchestration run."""

    model_config = {"frozen": True}

    success: bool
    state: SyncState
    client_id: str
    provider: str
    records_processed: int = 0
    records_created: Optional[int] = None
    records_updated: Optional[int] = None
    records_skipped: Optional[int] = None
    errors: List[str] = Field(default_factory=list)
    duration: int = 0  # milliseconds
    timestamp: datetime


class PushResult(BaseModel):
    """Outcome of pushing consumption records to the ERP."""

    success: bool
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    duration: int = 0  # milliseconds
    last_sync_at: datetime


class SyncRequestBody(BaseModel):
    """Body of a manual sync trigger."""

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    batch_size: Optional[int] = Field(default=None, ge=1)
    force: bool = False

    @field_validator("date_from", "date_to")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive bounds are read as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_range(self) -> "SyncRequestBody":
        if (self.date_from is None) != (self.date_to is None):
            raise ValueError("date_from and date_to must be given together")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class PushRequestBody(BaseModel):
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    location_id: Optional[str] = None


class CleanupRequestBody(BaseModel):
    days_old: int = Field(default=90, ge=1)


class CleanupResponse(BaseModel):
    deleted: int
    errors: List[str] = Field(default_factory=list)


class SyncLogResponse(BaseModel):
    id: int
    client_id: str
    pos_type: str
    operation: str
    status: str
    records_processed: int
    records_success: int
    records_failed: int
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int
    next_retry_at: Optional[datetime] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    model_config = {"from_attributes": True}


class ResumeResponse(BaseModel):
    client_id: str
    resumed: bool


class BulkSyncRequestBody(BaseModel):
    """Clients to sync in one call; each runs with its own session."""

    client_ids: List[str] = Field(..., min_length=1, max_length=100)
    force: bool = False
