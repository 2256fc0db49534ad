"""In-app notification response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    module: str
    reference_id: str
    kind: str
    title: str
    message: str | None = ""
    payload: dict
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
