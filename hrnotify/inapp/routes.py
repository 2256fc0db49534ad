"""In-app notification routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database.base import get_db
from .schemas import NotificationResponse
from .service import delete_read, list_notifications, mark_all_read, mark_read, unread_count

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/{recipient_id}")
def list_for_recipient(
    recipient_id: UUID,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    notifications = list_notifications(db, recipient_id, unread_only=unread_only, limit=limit, offset=offset)
    return JSONResponse(
        {
            "notifications": [NotificationResponse.model_validate(n).model_dump(mode="json") for n in notifications],
            "unread": unread_count(db, recipient_id),
        }
    )


@router.get("/{recipient_id}/unread-count")
def get_unread_count(recipient_id: UUID, db: Session = Depends(get_db)):
    return JSONResponse({"unread": unread_count(db, recipient_id)})


@router.post("/{notification_id}/read")
def read_one(notification_id: UUID, db: Session = Depends(get_db)):
    notification = mark_read(db, notification_id)
    if notification is None:
        return JSONResponse({"error": "Notification not found"}, status_code=404)
    db.commit()
    return JSONResponse({"ok": True})


@router.post("/{recipient_id}/read-all")
def read_all(recipient_id: UUID, db: Session = Depends(get_db)):
    count = mark_all_read(db, recipient_id)
    db.commit()
    return JSONResponse({"ok": True, "updated": count})


@router.delete("/{recipient_id}/read")
def remove_read(recipient_id: UUID, db: Session = Depends(get_db)):
    count = delete_read(db, recipient_id)
    db.commit()
    return JSONResponse({"ok": True, "deleted": count})
