from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopfloor.core.errors import ValidationError
from shopfloor.db.session import get_db
from weighing import commands
from weighing.responses import to_response

router = APIRouter(prefix="/weighing", tags=["weighing"])

def _timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))

@router.post("/shifts/start")
def start_shift(payload: dict, db: Session = Depends(get_db)):
    result = commands.start_shift(
        db,
        operator_id=payload.get("operator_id"),
        batch_number=payload.get("batch_number"),
        starting_counter=payload.get("starting_counter"),
    )
    return to_response(result, created=True)

@router.post("/shifts/end")
def end_shift(payload: dict, db: Session = Depends(get_db)):
    result = commands.end_shift(
        db,
        ending_counter=payload.get("ending_counter"),
        session_id=payload.get("session_id"),
        operator_id=payload.get("operator_id"),
        batch_number=payload.get("batch_number"),
    )
    return to_response(result)

@router.get("/shifts/active")
def active_shift(operator_id: str, db: Session = Depends(get_db)):
    return to_response(commands.get_shift_overview(db, operator_id=operator_id))

@router.get("/batches/{batch_number}/status")
def batch_status(batch_number: str, db: Session = Depends(get_db)):
    return to_response(commands.get_batch_status(db, batch_number=batch_number))

@router.get("/sessions/{session_id}")
def get_session(session_id: str, db: Session = Depends(get_db)):
    return to_response(commands.get_session(db, session_id=session_id))

@router.post("/sessions/{session_id}/close")
def close_session(session_id: str, payload: dict, db: Session = Depends(get_db)):
    result = commands.end_shift(db, ending_counter=payload.get("ending_counter"), session_id=session_id)
    return to_response(result)

@router.get("/sessions/{session_id}/entries")
def list_entries(session_id: str, db: Session = Depends(get_db)):
    return to_response(commands.list_entries(db, session_id=session_id))

@router.post("/entries")
def add_entry(payload: dict, db: Session = Depends(get_db)):
    try:
        weighed_at = _timestamp(payload.get("weighed_at"))
    except ValueError:
        return to_response(commands.CommandResult.failure(ValidationError("weighed_at must be an ISO-8601 timestamp", field="weighed_at")))
    result = commands.add_entry(
        db,
        session_id=payload.get("session_id"),
        weight_grams=payload.get("weight_grams"),
        category=payload.get("category"),
        box_no=payload.get("box_no"),
        scale_name=payload.get("scale_name"),
        weighed_at=weighed_at,
        actor=payload.get("operator_id"),
    )
    return to_response(result, created=True)

@router.put("/entries/{entry_id}")
def update_entry(entry_id: str, payload: dict, db: Session = Depends(get_db)):
    result = commands.update_entry(
        db,
        entry_id=entry_id,
        weight_grams=payload.get("weight_grams"),
        category=payload.get("category"),
        actor=payload.get("operator_id"),
    )
    return to_response(result)

@router.delete("/entries/{entry_id}")
def delete_entry(entry_id: str, operator_id: str | None = None, db: Session = Depends(get_db)):
    return to_response(commands.delete_entry(db, entry_id=entry_id, actor=operator_id))
