"""Outbound email queue model."""

import enum
import uuid
from typing import NamedTuple

from sqlalchemy import JSON, CheckConstraint, Column, Index, Integer, String, Text, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base
from ..database.types import UTCDateTime, utcnow


class QueueStatus(enum.StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.CANCELLED})


class Priority(enum.StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.NORMAL: 2,
    Priority.LOW: 1,
}


class DedupKey(NamedTuple):
    module: str
    reference_id: str
    kind: str
    scope: str = ""

    def __str__(self) -> str:
        suffix = f"/{self.scope}" if self.scope else ""
        return f"{self.module}:{self.reference_id}:{self.kind}{suffix}"


class QueueEntry(Base):
    __tablename__ = "email_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Dedup key
    module = Column(String(50), nullable=False)
    reference_id = Column(String(100), nullable=False)
    kind = Column(String(50), nullable=False)
    scope = Column(String(50), nullable=False, default="")

    priority = Column(
        SQLEnum(Priority, values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=Priority.NORMAL,
    )
    subject = Column(String(500), default="")
    # {"spec": RecipientSpec, "context": ResolutionContext, "resolved": ResolvedRecipients | null}
    recipients = Column(JSON, nullable=False, default=dict)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(
        SQLEnum(QueueStatus, values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=QueueStatus.PENDING,
    )
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    scheduled_at = Column(UTCDateTime, nullable=False, default=utcnow)

    # Claim / lease
    claimed_by = Column(String(100), nullable=True)
    lease_expires_at = Column(UTCDateTime, nullable=True)

    error_history = Column(JSON, nullable=False, default=list)
    last_error = Column(Text, default="")
    processed_at = Column(UTCDateTime, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_email_queue_dedup_active",
            "module",
            "reference_id",
            "kind",
            "scope",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("idx_email_queue_status_scheduled", "status", "scheduled_at"),
        Index("idx_email_queue_module_reference", "module", "reference_id"),
        Index("idx_email_queue_created", "created_at"),
        CheckConstraint("retry_count >= 0 AND retry_count <= max_retries", name="ck_email_queue_retry_bound"),
    )

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey(self.module, self.reference_id, self.kind, self.scope or "")
