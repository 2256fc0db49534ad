"""Queue request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import Priority, QueueStatus


class QueueEntryResponse(BaseModel):
    id: UUID
    module: str
    reference_id: str
    kind: str
    scope: str
    priority: Priority
    subject: str | None = ""
    status: QueueStatus
    retry_count: int
    max_retries: int
    scheduled_at: datetime | None
    claimed_by: str | None = None
    lease_expires_at: datetime | None = None
    last_error: str | None = ""
    processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class QueueEntryDetail(QueueEntryResponse):
    recipients: dict
    payload: dict
    error_history: list[dict]


class ProcessRequest(BaseModel):
    limit: int | None = Field(None, ge=1, le=500)
    status_filter: QueueStatus = QueueStatus.PENDING
