"""Completion guard: turns "this logical operation is now complete" into one
queue entry plus in-app notifications, exactly once per dedup key.

Producers call ``on_sub_update`` for every persisted sub-update and pass an
explicit completeness flag; nothing is written until it is true. Every
database step runs inside a SAVEPOINT and failures come back as an outcome,
so the producer's own transaction is never rolled back by the pipeline. The
guard never commits.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..directory.service import Directory
from ..errors import DuplicateSuppressed, NotificationError, ResolutionError
from ..inapp.service import notify
from ..queue import service as queue
from ..recipients.resolver import resolve_with_timeout
from ..recipients.static_cc import StaticCcConfig
from ..rendering.service import TemplateRenderer
from .schemas import GuardOutcome, GuardStatus, NotificationEvent

logger = logging.getLogger(__name__)


class CompletionGuard:
    def __init__(
        self,
        directory: Directory,
        renderer: TemplateRenderer,
        static_cc: StaticCcConfig | None = None,
        resolver_timeout: float | None = None,
    ) -> None:
        self.directory = directory
        self.renderer = renderer
        self.static_cc = static_cc
        self.resolver_timeout = settings.resolver_timeout_seconds if resolver_timeout is None else resolver_timeout

    def on_sub_update(self, db: Session, event: NotificationEvent, is_last_expected_part: bool) -> GuardOutcome:
        key = event.key
        try:
            with db.begin_nested():
                existing = queue.find_active(db, key)
        except SQLAlchemyError as e:
            logger.error("Dedup lookup failed for %s: %s", key, e)
            return GuardOutcome(status=GuardStatus.FAILED, error=str(e))

        if existing is not None:
            logger.debug("Duplicate completion for %s suppressed (entry=%s)", key, existing.id)
            return GuardOutcome(status=GuardStatus.DUPLICATE_SUPPRESSED, entry_id=existing.id)

        if not is_last_expected_part:
            return GuardOutcome(status=GuardStatus.INCOMPLETE)

        recipients_doc = {
            "spec": event.recipients.model_dump(mode="json"),
            "context": event.context.model_dump(mode="json"),
            "resolved": None,
        }
        enqueue_args = dict(
            recipients=recipients_doc,
            payload=event.payload,
            priority=event.priority,
            subject=event.subject,
            max_retries=event.max_retries,
            created_by=event.context.acting_user_id,
        )

        try:
            resolved = resolve_with_timeout(
                event.recipients, event.context, self.directory, self.static_cc, self.resolver_timeout
            )
        except ResolutionError as e:
            if not e.retryable:
                logger.warning("Recipient resolution failed for %s: %s", key, e)
                return self._enqueue_failed(db, event, enqueue_args, e)
            # Left unresolved; the dispatcher resolves it when the entry comes due
            logger.warning("Recipient resolution deferred for %s: %s", key, e)
            resolved, deferred = None, str(e)

        if resolved is not None:
            recipients_doc["resolved"] = resolved.model_dump(mode="json")
        try:
            entry = queue.enqueue(db, key, **enqueue_args)
        except DuplicateSuppressed as dup:
            logger.info("Lost enqueue race for %s", key)
            return GuardOutcome(status=GuardStatus.DUPLICATE_SUPPRESSED, entry_id=dup.existing_id)
        except SQLAlchemyError as e:
            logger.error("Enqueue failed for %s: %s", key, e)
            return GuardOutcome(status=GuardStatus.FAILED, error=str(e))

        if resolved is None:
            return GuardOutcome(status=GuardStatus.ENQUEUED, entry_id=entry.id, error=deferred)

        inapp_count = 0
        for recipient in resolved.to:
            if recipient.id is None:
                continue
            result = notify(
                db,
                self.renderer,
                recipient.id,
                event.kind,
                event.payload,
                module=event.module,
                reference_id=event.reference_id,
                scope=event.scope,
            )
            if result.created:
                inapp_count += 1

        logger.info(
            "Completion of %s: entry=%s to=%d cc=%d in-app=%d",
            key, entry.id, len(resolved.to), len(resolved.cc), inapp_count,
        )
        return GuardOutcome(status=GuardStatus.ENQUEUED, entry_id=entry.id, inapp_count=inapp_count)

    def _enqueue_failed(
        self, db: Session, event: NotificationEvent, enqueue_args: dict, error: NotificationError
    ) -> GuardOutcome:
        """Record an unresolvable event as a visible ``failed`` entry."""
        try:
            entry = queue.enqueue(db, event.key, failure=error, **enqueue_args)
        except DuplicateSuppressed as dup:
            return GuardOutcome(status=GuardStatus.DUPLICATE_SUPPRESSED, entry_id=dup.existing_id)
        except SQLAlchemyError as e:
            logger.error("Could not record failed entry for %s: %s", event.key, e)
            return GuardOutcome(status=GuardStatus.FAILED, error=str(e))
        return GuardOutcome(status=GuardStatus.RESOLUTION_FAILED, entry_id=entry.id, error=str(error))

    def cancel(
        self,
        db: Session,
        module: str,
        reference_id: str,
        scope: str | None = None,
        kind: str | None = None,
    ) -> int:
        """Cancel pending, unclaimed entries for a record (e.g. it was deleted).

        Entries already claimed by a dispatcher finish their attempt.
        """
        with db.begin_nested():
            count = queue.cancel_entries(db, module, str(reference_id), kind=kind, scope=scope)
        return count
