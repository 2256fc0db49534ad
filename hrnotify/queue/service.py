"""Queue store: enqueue, claim/lease, and the guarded status transitions.

Every mutation after creation is a single conditional UPDATE whose WHERE
clause encodes the allowed source state, so two workers (or a worker and an
operator) can never both win the same transition. Callers own the
transaction; nothing here commits.
"""

import logging
import re
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..database.types import utcnow
from ..errors import DuplicateSuppressed, NotificationError
from .models import PRIORITY_RANK, DedupKey, Priority, QueueEntry, QueueStatus

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 500
_SENSITIVE_PATTERNS = (
    re.compile(r"bearer\s+[a-z0-9\-_\.]+", re.IGNORECASE),
    re.compile(r"(api[_-]?key|token|secret|password)\s*[:=]\s*[^\s,;]+", re.IGNORECASE),
)


def _lease_free(now: datetime):
    return or_(QueueEntry.lease_expires_at.is_(None), QueueEntry.lease_expires_at <= now)


def _expire_cached(db: Session, entry_id: UUID) -> None:
    """Drop stale in-session state after a bulk UPDATE on one row."""
    cached = db.identity_map.get(Session.identity_key(QueueEntry, entry_id))
    if cached is not None:
        db.expire(cached)


def backoff_delay(retry_count: int, base_seconds: int | None = None, max_seconds: int | None = None) -> timedelta:
    """Exponential backoff: base * 2^retry_count, capped."""
    base = settings.backoff_base_seconds if base_seconds is None else base_seconds
    cap = settings.backoff_max_seconds if max_seconds is None else max_seconds
    return timedelta(seconds=min(base * (2**retry_count), cap))


def sanitize_error(error: Exception) -> str:
    """Error text safe to persist: credentials redacted, length capped."""
    message = str(error).strip() or type(error).__name__
    for pattern in _SENSITIVE_PATTERNS:
        message = pattern.sub("[redacted]", message)
    return message[:_MAX_ERROR_LENGTH]


def error_record(error: Exception, attempt: int, now: datetime) -> dict:
    """Structured error_history item."""
    if isinstance(error, NotificationError):
        error_type, retryable = error.error_type, error.retryable
    else:
        error_type, retryable = type(error).__name__, True
    return {
        "at": now.isoformat(),
        "attempt": attempt,
        "error_type": error_type,
        "message": sanitize_error(error),
        "retryable": retryable,
    }


# ── Lookups ────────────────────────────────────────────────────────────


def find_active(db: Session, key: DedupKey) -> QueueEntry | None:
    """The non-cancelled entry for a dedup key, if any."""
    return (
        db.query(QueueEntry)
        .filter(
            QueueEntry.module == key.module,
            QueueEntry.reference_id == key.reference_id,
            QueueEntry.kind == key.kind,
            QueueEntry.scope == (key.scope or ""),
            QueueEntry.status != QueueStatus.CANCELLED,
        )
        .first()
    )


def get_entry(db: Session, entry_id: UUID) -> QueueEntry | None:
    return db.query(QueueEntry).filter(QueueEntry.id == entry_id).first()


def list_entries(
    db: Session,
    status: QueueStatus | None = None,
    module: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[QueueEntry]:
    """Operator listing, newest first."""
    query = db.query(QueueEntry)
    if status is not None:
        query = query.filter(QueueEntry.status == status)
    if module:
        query = query.filter(QueueEntry.module == module)
    return query.order_by(QueueEntry.created_at.desc()).offset(offset).limit(limit).all()


def queue_stats(db: Session) -> dict[str, int]:
    counts = dict(db.query(QueueEntry.status, func.count(QueueEntry.id)).group_by(QueueEntry.status).all())
    return {s.value: int(counts.get(s, 0)) for s in QueueStatus}


def select_eligible(db: Session, limit: int, now: datetime | None = None) -> list[QueueEntry]:
    """Pending, due, unleased entries by (priority desc, scheduled_at asc)."""
    now = now or utcnow()
    rank = case(PRIORITY_RANK, value=QueueEntry.priority, else_=0)
    return (
        db.query(QueueEntry)
        .filter(
            QueueEntry.status == QueueStatus.PENDING,
            QueueEntry.scheduled_at <= now,
            _lease_free(now),
        )
        .order_by(rank.desc(), QueueEntry.scheduled_at.asc(), QueueEntry.created_at.asc())
        .limit(limit)
        .all()
    )


# ── Creation ───────────────────────────────────────────────────────────


def enqueue(
    db: Session,
    key: DedupKey,
    *,
    recipients: dict,
    payload: dict,
    priority: Priority = Priority.NORMAL,
    subject: str = "",
    max_retries: int | None = None,
    scheduled_at: datetime | None = None,
    created_by: UUID | None = None,
    failure: NotificationError | None = None,
) -> QueueEntry:
    """Create the queue entry for a dedup key.

    Raises DuplicateSuppressed when a non-cancelled entry already exists,
    whether found up front or by losing the unique-index race. With
    ``failure`` the entry is recorded directly as ``failed``.
    """
    existing = find_active(db, key)
    if existing is not None:
        raise DuplicateSuppressed(key, existing.id)

    now = utcnow()
    entry = QueueEntry(
        module=key.module,
        reference_id=key.reference_id,
        kind=key.kind,
        scope=key.scope or "",
        priority=priority,
        subject=subject or "",
        recipients=recipients,
        payload=payload,
        status=QueueStatus.PENDING,
        retry_count=0,
        max_retries=settings.default_max_retries if max_retries is None else max_retries,
        scheduled_at=scheduled_at or now,
        created_by=created_by,
        error_history=[],
    )
    if failure is not None:
        entry.status = QueueStatus.FAILED
        entry.processed_at = now
        entry.error_history = [error_record(failure, 0, now)]
        entry.last_error = entry.error_history[0]["message"]

    try:
        with db.begin_nested():
            db.add(entry)
    except IntegrityError:
        raise DuplicateSuppressed(key) from None

    logger.info("Enqueued %s entry=%s status=%s priority=%s", key, entry.id, entry.status, entry.priority)
    return entry


# ── Transitions ────────────────────────────────────────────────────────


def claim(
    db: Session,
    entry_id: UUID,
    worker_id: str,
    now: datetime | None = None,
    lease_seconds: int | None = None,
) -> bool:
    """Atomically take the lease on a pending, due entry. False if someone else has it."""
    now = now or utcnow()
    lease = settings.claim_lease_seconds if lease_seconds is None else lease_seconds
    result = db.execute(
        update(QueueEntry)
        .where(
            QueueEntry.id == entry_id,
            QueueEntry.status == QueueStatus.PENDING,
            QueueEntry.scheduled_at <= now,
            _lease_free(now),
        )
        .values(claimed_by=worker_id, lease_expires_at=now + timedelta(seconds=lease), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    _expire_cached(db, entry_id)
    return result.rowcount == 1


def mark_sent(db: Session, entry_id: UUID, worker_id: str, now: datetime | None = None) -> bool:
    """pending -> sent, only for the worker holding the claim."""
    now = now or utcnow()
    result = db.execute(
        update(QueueEntry)
        .where(
            QueueEntry.id == entry_id,
            QueueEntry.status == QueueStatus.PENDING,
            QueueEntry.claimed_by == worker_id,
        )
        .values(
            status=QueueStatus.SENT,
            processed_at=now,
            lease_expires_at=None,
            last_error="",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached(db, entry_id)
    return result.rowcount == 1


def record_failure(
    db: Session,
    entry: QueueEntry,
    worker_id: str,
    error: Exception,
    now: datetime | None = None,
) -> QueueStatus | None:
    """Apply a failed attempt to a claimed entry.

    Terminal errors go straight to ``failed``. Retryable ones bump
    ``retry_count`` and either reschedule with backoff or, at the cap, fail.
    Returns the new status, or None if the claim was lost meanwhile.
    """
    now = now or utcnow()
    retry_count = entry.retry_count or 0
    max_retries = entry.max_retries or 0
    record = error_record(error, retry_count + 1, now)
    history = [*(entry.error_history or []), record]

    values = {
        "error_history": history,
        "last_error": record["message"],
        "lease_expires_at": None,
        "updated_at": now,
    }
    if record["retryable"] and retry_count < max_retries:
        values["retry_count"] = retry_count + 1
        if retry_count + 1 >= max_retries:
            values["status"] = QueueStatus.FAILED
            values["processed_at"] = now
        else:
            values["status"] = QueueStatus.PENDING
            values["scheduled_at"] = now + backoff_delay(retry_count + 1)
    else:
        values["status"] = QueueStatus.FAILED
        values["processed_at"] = now

    result = db.execute(
        update(QueueEntry)
        .where(
            QueueEntry.id == entry.id,
            QueueEntry.status == QueueStatus.PENDING,
            QueueEntry.claimed_by == worker_id,
            QueueEntry.retry_count == retry_count,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    _expire_cached(db, entry.id)
    if result.rowcount != 1:
        logger.warning("Lost claim on entry=%s before recording failure", entry.id)
        return None
    return values["status"]


def cancel_entries(
    db: Session,
    module: str,
    reference_id: str,
    *,
    kind: str | None = None,
    scope: str | None = None,
    now: datetime | None = None,
) -> int:
    """pending -> cancelled for unleased entries of a record. Returns the count."""
    now = now or utcnow()
    criteria = [
        QueueEntry.module == module,
        QueueEntry.reference_id == reference_id,
        QueueEntry.status == QueueStatus.PENDING,
        _lease_free(now),
    ]
    if kind is not None:
        criteria.append(QueueEntry.kind == kind)
    if scope is not None:
        criteria.append(QueueEntry.scope == scope)

    result = db.execute(
        update(QueueEntry)
        .where(*criteria)
        .values(status=QueueStatus.CANCELLED, processed_at=now, lease_expires_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    for obj in list(db.identity_map.values()):
        if isinstance(obj, QueueEntry):
            db.expire(obj)
    if result.rowcount:
        logger.info("Cancelled %d entries for %s:%s", result.rowcount, module, reference_id)
    return result.rowcount


def requeue(db: Session, entry_id: UUID, now: datetime | None = None) -> bool:
    """Operator action: failed -> pending with a fresh retry budget."""
    now = now or utcnow()
    entry = get_entry(db, entry_id)
    if entry is None or entry.status != QueueStatus.FAILED:
        return False

    history = [
        *(entry.error_history or []),
        {"at": now.isoformat(), "event": "requeued", "previous_retry_count": entry.retry_count},
    ]
    result = db.execute(
        update(QueueEntry)
        .where(QueueEntry.id == entry_id, QueueEntry.status == QueueStatus.FAILED)
        .values(
            status=QueueStatus.PENDING,
            retry_count=0,
            scheduled_at=now,
            claimed_by=None,
            lease_expires_at=None,
            processed_at=None,
            error_history=history,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached(db, entry_id)
    if result.rowcount == 1:
        logger.info("Requeued failed entry=%s", entry_id)
    return result.rowcount == 1
