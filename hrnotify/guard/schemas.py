"""Completion guard request/response schemas."""

import enum
from uuid import UUID

from pydantic import BaseModel, Field

from ..queue.models import DedupKey, Priority
from ..recipients.schemas import RecipientSpec, ResolutionContext


class NotificationEvent(BaseModel):
    """A business event that may need an in-app notification and an email."""

    module: str = Field(..., min_length=1, max_length=50)
    reference_id: str = Field(..., min_length=1, max_length=100)
    kind: str = Field(..., min_length=1, max_length=50)
    scope: str = Field("", max_length=50)
    recipients: RecipientSpec = Field(default_factory=RecipientSpec)
    context: ResolutionContext = Field(default_factory=ResolutionContext)
    payload: dict = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    max_retries: int | None = Field(None, ge=0, le=20)
    subject: str = Field("", max_length=500)

    @property
    def key(self) -> DedupKey:
        return DedupKey(self.module, self.reference_id, self.kind, self.scope)


class GuardStatus(enum.StrEnum):
    ENQUEUED = "enqueued"
    INCOMPLETE = "incomplete"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    RESOLUTION_FAILED = "resolution_failed"
    FAILED = "failed"


class GuardOutcome(BaseModel):
    status: GuardStatus
    entry_id: UUID | None = None
    inapp_count: int = 0
    error: str = ""


class EventRequest(BaseModel):
    event: NotificationEvent
    is_last_expected_part: bool = True


class CancelRequest(BaseModel):
    module: str = Field(..., min_length=1, max_length=50)
    reference_id: str = Field(..., min_length=1, max_length=100)
    scope: str | None = Field(None, max_length=50)
    kind: str | None = Field(None, max_length=50)
