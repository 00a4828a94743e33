import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class ClaimedEvent(BaseModel):
    """Row returned by a claim; payload is still the stored (serialized) value."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    payload: Any
    attempts: int
    next_retry_at: datetime
    created_at: datetime


class BatchResult(BaseModel):
    processed: int = 0
    failed: int = 0

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(processed=self.processed + other.processed, failed=self.failed + other.failed)


class ProcessResponse(BatchResult):
    success: bool = True


class ProcessIfNeededResponse(ProcessResponse):
    skipped: bool
    pending_count: int
    status: str


class PendingEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    next_retry_at: datetime
    locked_at: datetime | None = None
    created_at: datetime


class OutboxStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    pending_count: int
    oldest_pending_at: datetime | None = None
    last_error: str | None = None
    last_degraded_at: datetime | None = None
    last_recovered_at: datetime | None = None
    updated_at: datetime | None = None
    events: list[PendingEventRead] | None = None


class HealthOutboxSummary(BaseModel):
    status: str
    pending_count: int | None = None
    last_degraded_at: datetime | None = None
    last_recovered_at: datetime | None = None
