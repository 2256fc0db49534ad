"""In-app notification model."""

import uuid

from sqlalchemy import JSON, Boolean, Column, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base
from ..database.types import UTCDateTime, utcnow


class InAppNotification(Base):
    """Immediately visible notification, written at event time and never retried."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(UUID(as_uuid=True), nullable=False)

    # Dedup key parts, so a repeated completion finds the earlier row
    module = Column(String(50), nullable=False, default="")
    reference_id = Column(String(100), nullable=False, default="")
    kind = Column(String(50), nullable=False)
    scope = Column(String(50), nullable=False, default="")

    title = Column(String(255), nullable=False)
    message = Column(Text, default="")
    payload = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("idx_notifications_recipient_read", "recipient_id", "is_read"),
        Index("idx_notifications_dedup", "module", "reference_id", "kind", "scope", "recipient_id"),
        Index("idx_notifications_created", "created_at"),
    )
