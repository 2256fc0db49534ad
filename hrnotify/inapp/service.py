"""In-app notification writer and the read-side operations behind the bell icon.

``notify`` is synchronous and never raises: a failure is logged and returned
to the caller, and nothing is retried automatically. The write runs inside a
SAVEPOINT, so a failed insert leaves the caller's transaction usable.
"""

import logging
from collections.abc import Mapping
from typing import NamedTuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database.types import utcnow
from ..errors import NotificationError
from ..rendering.service import TemplateRenderer
from .models import InAppNotification

logger = logging.getLogger(__name__)


class NotifyResult(NamedTuple):
    ok: bool
    notification_id: UUID | None = None
    error: str = ""
    created: bool = False


def find_existing(
    db: Session, recipient_id: UUID, kind: str, module: str, reference_id: str, scope: str = ""
) -> InAppNotification | None:
    return (
        db.query(InAppNotification)
        .filter(
            InAppNotification.recipient_id == recipient_id,
            InAppNotification.module == module,
            InAppNotification.reference_id == reference_id,
            InAppNotification.kind == kind,
            InAppNotification.scope == (scope or ""),
        )
        .first()
    )


def notify(
    db: Session,
    renderer: TemplateRenderer,
    recipient_id: UUID,
    kind: str,
    payload: Mapping,
    *,
    module: str = "",
    reference_id: str = "",
    scope: str = "",
) -> NotifyResult:
    """Write one in-app notification, once per recipient and dedup key."""
    try:
        with db.begin_nested():
            if module and reference_id:
                existing = find_existing(db, recipient_id, kind, module, reference_id, scope)
                if existing is not None:
                    return NotifyResult(ok=True, notification_id=existing.id)

            title, message = renderer.render_inapp(kind, payload)
            notification = InAppNotification(
                recipient_id=recipient_id,
                module=module,
                reference_id=reference_id,
                kind=kind,
                scope=scope or "",
                title=title[:255],
                message=message,
                payload=dict(payload or {}),
            )
            db.add(notification)
            db.flush()
    except (SQLAlchemyError, NotificationError) as e:
        logger.error("In-app notification failed recipient=%s kind=%s: %s", recipient_id, kind, e)
        return NotifyResult(ok=False, error=str(e))

    logger.debug("In-app notification %s written for recipient=%s kind=%s", notification.id, recipient_id, kind)
    return NotifyResult(ok=True, notification_id=notification.id, created=True)


# ── Read side ──────────────────────────────────────────────────────────


def list_notifications(
    db: Session, recipient_id: UUID, unread_only: bool = False, limit: int = 50, offset: int = 0
) -> list[InAppNotification]:
    query = db.query(InAppNotification).filter(InAppNotification.recipient_id == recipient_id)
    if unread_only:
        query = query.filter(InAppNotification.is_read.is_(False))
    return query.order_by(InAppNotification.created_at.desc()).offset(offset).limit(limit).all()


def unread_count(db: Session, recipient_id: UUID) -> int:
    return (
        db.query(InAppNotification)
        .filter(InAppNotification.recipient_id == recipient_id, InAppNotification.is_read.is_(False))
        .count()
    )


def mark_read(db: Session, notification_id: UUID) -> InAppNotification | None:
    notification = db.query(InAppNotification).filter(InAppNotification.id == notification_id).first()
    if notification is None:
        return None
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.flush()
    return notification


def mark_all_read(db: Session, recipient_id: UUID) -> int:
    count = (
        db.query(InAppNotification)
        .filter(InAppNotification.recipient_id == recipient_id, InAppNotification.is_read.is_(False))
        .update({"is_read": True, "read_at": utcnow()}, synchronize_session="fetch")
    )
    db.flush()
    return count


def delete_read(db: Session, recipient_id: UUID) -> int:
    """Remove notifications the recipient has already read."""
    count = (
        db.query(InAppNotification)
        .filter(InAppNotification.recipient_id == recipient_id, InAppNotification.is_read.is_(True))
        .delete(synchronize_session="fetch")
    )
    db.flush()
    return count
