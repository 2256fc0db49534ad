"""Dispatcher: claims due queue entries and hands them to the mail transport.

Any number of dispatchers may poll the same table; they coordinate only
through the atomic claim in the queue store. The claim is committed before
the provider is called so other workers see the lease, and each outcome is
committed as soon as it is recorded.
"""

import enum
import logging
import os
import socket
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import NamedTuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import settings
from ..database.types import utcnow
from ..directory.service import Directory
from ..errors import NotificationError, TransportError
from ..queue import service as queue
from ..queue.models import QueueEntry, QueueStatus
from ..recipients.resolver import resolve_with_timeout
from ..recipients.schemas import RecipientSpec, ResolutionContext, ResolvedRecipients
from ..recipients.static_cc import StaticCcConfig
from ..rendering.service import TemplateRenderer
from ..transport.service import Mailer

logger = logging.getLogger(__name__)


class DispatchStatus(enum.StrEnum):
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


class DispatchOutcome(NamedTuple):
    entry_id: UUID
    status: DispatchStatus
    error: str = ""


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _batch_clock(now: datetime | None) -> Callable[[], datetime]:
    """Wall clock for a batch; a given ``now`` is the start and advances with real time."""
    if now is None:
        return utcnow
    started = time.monotonic()
    return lambda: now + timedelta(seconds=time.monotonic() - started)


class Dispatcher:
    def __init__(
        self,
        directory: Directory,
        renderer: TemplateRenderer,
        mailer: Mailer,
        static_cc: StaticCcConfig | None = None,
        worker_id: str | None = None,
        lease_seconds: int | None = None,
        resolver_timeout: float | None = None,
    ) -> None:
        self.directory = directory
        self.renderer = renderer
        self.mailer = mailer
        self.static_cc = static_cc
        self.worker_id = worker_id or default_worker_id()
        self.lease_seconds = settings.claim_lease_seconds if lease_seconds is None else lease_seconds
        self.resolver_timeout = settings.resolver_timeout_seconds if resolver_timeout is None else resolver_timeout

    def process_batch(
        self,
        db: Session,
        limit: int | None = None,
        status_filter: str = QueueStatus.PENDING,
        now: datetime | None = None,
    ) -> list[DispatchOutcome]:
        """Attempt delivery of up to ``limit`` eligible entries.

        Only pending entries are ever dispatchable; failed entries come back
        solely through an operator requeue.
        """
        if status_filter != QueueStatus.PENDING:
            raise ValueError(f"Only pending entries can be dispatched, got status_filter={status_filter!r}")
        limit = settings.batch_limit if limit is None else limit
        clock = _batch_clock(now)

        candidates = [entry.id for entry in queue.select_eligible(db, limit, clock())]
        if not candidates:
            return []

        outcomes = [self._dispatch_one(db, entry_id, clock) for entry_id in candidates]
        sent = sum(1 for o in outcomes if o.status == DispatchStatus.SENT)
        logger.info(
            "Batch done worker=%s candidates=%d sent=%d other=%d",
            self.worker_id, len(candidates), sent, len(outcomes) - sent,
        )
        return outcomes

    def _dispatch_one(self, db: Session, entry_id: UUID, clock: Callable[[], datetime]) -> DispatchOutcome:
        # Read the clock at claim time so the lease covers this send, not the batch start
        if not queue.claim(db, entry_id, self.worker_id, clock(), self.lease_seconds):
            db.rollback()
            logger.debug("Entry %s already claimed elsewhere", entry_id)
            return DispatchOutcome(entry_id, DispatchStatus.SKIPPED)
        db.commit()

        entry = queue.get_entry(db, entry_id)
        try:
            resolved = self._recipients(entry)
            rendered = self.renderer.render(entry.kind, entry.payload or {})
            subject = entry.subject or rendered.subject
            self.mailer.send(resolved.to_emails, resolved.cc_emails, subject, rendered.body)
        except NotificationError as e:
            return self._fail(db, entry, e, clock())
        except Exception as e:
            logger.exception("Unexpected error dispatching entry %s", entry_id)
            return self._fail(db, entry, TransportError(f"{type(e).__name__}: {e}", retryable=True), clock())

        if not queue.mark_sent(db, entry_id, self.worker_id, clock()):
            db.rollback()
            logger.warning("Entry %s was sent but its lease had been lost", entry_id)
            return DispatchOutcome(entry_id, DispatchStatus.SKIPPED)
        db.commit()
        logger.info("Sent %s entry=%s to=%d cc=%d", entry.kind, entry_id, len(resolved.to), len(resolved.cc))
        return DispatchOutcome(entry_id, DispatchStatus.SENT)

    def _recipients(self, entry: QueueEntry) -> ResolvedRecipients:
        """Recipients pre-resolved at enqueue time, or resolved now."""
        doc = entry.recipients or {}
        if doc.get("resolved"):
            return ResolvedRecipients.model_validate(doc["resolved"])
        return resolve_with_timeout(
            RecipientSpec.model_validate(doc.get("spec") or {}),
            ResolutionContext.model_validate(doc.get("context") or {}),
            self.directory,
            self.static_cc,
            self.resolver_timeout,
        )

    def _fail(self, db: Session, entry: QueueEntry, error: NotificationError, now: datetime) -> DispatchOutcome:
        status = queue.record_failure(db, entry, self.worker_id, error, now)
        if status is None:
            db.rollback()
            return DispatchOutcome(entry.id, DispatchStatus.SKIPPED, str(error))
        db.commit()

        if status == QueueStatus.PENDING:
            logger.warning("Attempt failed for entry %s (%s), retry scheduled: %s", entry.id, error.error_type, error)
            return DispatchOutcome(entry.id, DispatchStatus.RETRY_SCHEDULED, str(error))
        logger.error("Entry %s failed permanently (%s): %s", entry.id, error.error_type, error)
        return DispatchOutcome(entry.id, DispatchStatus.FAILED, str(error))
