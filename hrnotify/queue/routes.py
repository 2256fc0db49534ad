"""Queue routes: scheduler trigger and operator views."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..config import settings
from ..database.base import get_db
from ..dependencies import get_dispatcher
from ..dispatcher.service import Dispatcher
from ..rate_limit import limiter
from .models import QueueStatus
from .schemas import ProcessRequest, QueueEntryDetail, QueueEntryResponse
from .service import get_entry, list_entries, queue_stats, requeue

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/process")
@limiter.limit(settings.rate_limit_process)
def process_queue(
    request: Request,
    body: ProcessRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    body = body or ProcessRequest()
    try:
        outcomes = dispatcher.process_batch(db, limit=body.limit, status_filter=body.status_filter)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    audit(db, request, "queue_process", f"processed={len(outcomes)}")
    db.commit()
    return JSONResponse(
        {
            "ok": True,
            "processed": len(outcomes),
            "outcomes": [
                {"entry_id": str(o.entry_id), "status": o.status.value, "error": o.error} for o in outcomes
            ],
        }
    )


@router.get("")
def list_queue(
    status: QueueStatus | None = None,
    module: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    entries = list_entries(db, status=status, module=module, limit=limit, offset=offset)
    return JSONResponse(
        {"entries": [QueueEntryResponse.model_validate(e).model_dump(mode="json") for e in entries]}
    )


@router.get("/stats")
def stats(db: Session = Depends(get_db)):
    return JSONResponse({"stats": queue_stats(db)})


@router.get("/{entry_id}")
def get_queue_entry(entry_id: UUID, db: Session = Depends(get_db)):
    entry = get_entry(db, entry_id)
    if entry is None:
        return JSONResponse({"error": "Queue entry not found"}, status_code=404)
    return JSONResponse({"entry": QueueEntryDetail.model_validate(entry).model_dump(mode="json")})


@router.post("/{entry_id}/requeue")
def requeue_entry(entry_id: UUID, request: Request, db: Session = Depends(get_db)):
    entry = get_entry(db, entry_id)
    if entry is None:
        return JSONResponse({"error": "Queue entry not found"}, status_code=404)
    if not requeue(db, entry_id):
        return JSONResponse({"error": f"Only failed entries can be requeued (status={entry.status})"}, status_code=409)

    audit(db, request, "queue_requeue", f"entry={entry_id}")
    db.commit()
    return JSONResponse({"ok": True, "entry_id": str(entry_id)})
