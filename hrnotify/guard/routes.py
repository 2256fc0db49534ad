"""Event routes: producers report sub-updates and cancellations here."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..catalog import CATALOG, build_event
from ..database.base import get_db
from ..dependencies import get_guard
from .schemas import CancelRequest, EventRequest
from .service import CompletionGuard

router = APIRouter(prefix="/events", tags=["events"])


class CatalogEventRequest(BaseModel):
    reference_id: str = Field(..., min_length=1, max_length=100)
    scope: str = Field("", max_length=50)
    payload: dict = Field(default_factory=dict)
    subject_id: UUID | None = None
    acting_user_id: UUID | None = None
    acting_user_email: str | None = Field(None, max_length=255)
    manager_id: UUID | None = None
    is_last_expected_part: bool = True


@router.post("")
def submit_event(body: EventRequest, db: Session = Depends(get_db), guard: CompletionGuard = Depends(get_guard)):
    outcome = guard.on_sub_update(db, body.event, body.is_last_expected_part)
    db.commit()
    return JSONResponse(outcome.model_dump(mode="json"))


@router.get("/kinds")
def list_kinds():
    return JSONResponse(
        {
            "kinds": [
                {
                    "kind": kind,
                    "module": d.module,
                    "priority": d.priority.value,
                    "to_tags": list(d.to_tags),
                    "cc_static_context": d.cc_static_context,
                    "cc_dynamic": list(d.cc_dynamic),
                }
                for kind, d in sorted(CATALOG.items())
            ]
        }
    )


@router.post("/kinds/{kind}")
def submit_catalog_event(
    kind: str,
    body: CatalogEventRequest,
    db: Session = Depends(get_db),
    guard: CompletionGuard = Depends(get_guard),
):
    try:
        event = build_event(
            kind,
            body.reference_id,
            payload=body.payload,
            scope=body.scope,
            subject_id=body.subject_id,
            acting_user_id=body.acting_user_id,
            acting_user_email=body.acting_user_email,
            manager_id=body.manager_id,
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=404)

    outcome = guard.on_sub_update(db, event, body.is_last_expected_part)
    db.commit()
    return JSONResponse(outcome.model_dump(mode="json"))


@router.post("/cancel")
def cancel_event(
    body: CancelRequest,
    request: Request,
    db: Session = Depends(get_db),
    guard: CompletionGuard = Depends(get_guard),
):
    count = guard.cancel(db, body.module, body.reference_id, scope=body.scope, kind=body.kind)
    audit(
        db, request, "queue_cancel", f"{body.module}:{body.reference_id} kind={body.kind} scope={body.scope} n={count}"
    )
    db.commit()
    return JSONResponse({"ok": True, "cancelled": count})
