from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..schemas.events import AssignmentUpsert, ExtraPanelCreate, parse_event
from ..services import event_log


router = APIRouter(tags=["events"])


@router.post("/events", status_code=status.HTTP_201_CREATED)
def post_event(payload: dict, response: Response, db: Session = Depends(get_db)):
    try:
        event = parse_event(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    row, created = event_log.append_event(db, event)
    if not created:
        response.status_code = status.HTTP_200_OK
    return event_log.serialize_event(row)


@router.get("/events/recent")
def get_recent_events(limit: int = settings.recent_events_limit, db: Session = Depends(get_db)):
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return [event_log.serialize_event(row) for row in event_log.recent_events(db, limit=limit)]


@router.get("/status/latest")
def get_latest_status(limit: int = settings.latest_status_limit, db: Session = Depends(get_db)):
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return event_log.latest_combined_status(db, limit=limit)


@router.put("/assignments")
def put_assignment(payload: AssignmentUpsert, db: Session = Depends(get_db)):
    row = event_log.upsert_assignment(db, payload.panel_id, payload.assigned_to, payload.assigned_at)
    return event_log.serialize_assignment(row)


@router.get("/extra-panels")
def get_extra_panels(limit: int = settings.extra_panels_limit, db: Session = Depends(get_db)):
    return [event_log.serialize_extra_panel(row) for row in event_log.list_extra_panels(db, limit=limit)]


@router.post("/extra-panels", status_code=status.HTTP_201_CREATED)
def post_extra_panel(payload: ExtraPanelCreate, db: Session = Depends(get_db)):
    row = event_log.create_extra_panel(db, payload)
    return event_log.serialize_extra_panel(row)
