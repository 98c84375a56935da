from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfloor.core.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.db.models.production import ProductionOrder
from shopfloor.db.models.weighing import SessionStatus, WeighingSession

LOGGER = logging.getLogger(__name__)

OPEN = SessionStatus.OPEN.value
CLOSED = SessionStatus.CLOSED.value


def _counter(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer >= 0", field=field)
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer >= 0", field=field) from None
    if number < 0:
        raise ValidationError(f"{field} must be an integer >= 0", field=field)
    return number

def _required(value: Any, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    return text

def get_active(db: Session, operator_id: str) -> WeighingSession | None:
    return db.execute(
        select(WeighingSession).where(WeighingSession.operator_id == operator_id, WeighingSession.status == OPEN)
    ).scalars().first()

def get_active_for_batch(db: Session, batch_number: str) -> WeighingSession | None:
    return db.execute(
        select(WeighingSession).where(WeighingSession.batch_number == batch_number, WeighingSession.status == OPEN)
    ).scalars().first()

def get_session(db: Session, session_id: str, *, for_update: bool = False) -> WeighingSession:
    stmt = select(WeighingSession).where(WeighingSession.id == session_id)
    if for_update:
        stmt = stmt.with_for_update()
    s = db.execute(stmt).scalars().first()
    if not s:
        raise NotFoundError("Session not found", session_id=session_id)
    return s

def require_open(db: Session, session_id: str) -> WeighingSession:
    """Lock the session row and check it still accepts entry mutations."""
    s = get_session(db, session_id, for_update=True)
    if not s.is_open:
        raise ConflictError("Shift session is closed. Entries can no longer change.", session_id=s.id, status=s.status)
    return s

def _conflict_for_existing(db: Session, operator_id: str, batch_number: str) -> ConflictError | None:
    mine = get_active(db, operator_id)
    if mine:
        return ConflictError(
            "You already have an active shift session. Please end it first.",
            session_id=mine.id,
            batch_number=mine.batch_number,
            started_at=mine.created_at,
        )
    held = get_active_for_batch(db, batch_number)
    if held:
        return ConflictError(
            "This batch already has an active shift session.",
            session_id=held.id,
            active_operator=held.operator_id,
        )
    return None

def start_shift(db: Session, *, operator_id: str, batch_number: str, starting_counter: Any) -> WeighingSession:
    """Open a session for (operator, batch).

    Raises:
        ValidationError: missing ids or a negative/non-integer counter.
        ConflictError: the operator or the batch already has an open session.
        NotFoundError: the batch has no production order.
    """
    operator_id = _required(operator_id, "operator_id")
    batch_number = _required(batch_number, "batch_number")
    counter = _counter(starting_counter, "starting_counter")

    conflict = _conflict_for_existing(db, operator_id, batch_number)
    if conflict:
        raise conflict

    po = db.execute(select(ProductionOrder).where(ProductionOrder.batch_number == batch_number)).scalars().first()
    if not po:
        raise NotFoundError("Production order not found", batch_number=batch_number)

    s = WeighingSession(
        operator_id=operator_id,
        batch_number=batch_number,
        starting_counter=counter,
        status=OPEN,
        weight_uom="GR",
        material_desc=po.material_desc,
        machine_name=po.machine_name,
    )
    try:
        # Partial unique indexes catch a concurrent start that passed the check above;
        # only the savepoint is rolled back, the session stays usable for the lookup below.
        with db.begin_nested():
            db.add(s)
            db.flush()
    except IntegrityError:
        conflict = _conflict_for_existing(db, operator_id, batch_number)
        raise conflict or ConflictError(
            "A concurrent shift start won for this operator or batch.",
            operator_id=operator_id,
            batch_number=batch_number,
        ) from None
    LOGGER.info("Shift started session_id=%s batch=%s operator=%s counter=%s", s.id, batch_number, operator_id, counter)
    return s

def end_shift(
    db: Session,
    *,
    ending_counter: Any,
    session_id: str | None = None,
    operator_id: str | None = None,
    batch_number: str | None = None,
) -> WeighingSession:
    """Close a session, addressed by id or by (operator, batch).

    Raises:
        ValidationError: bad counter or no way to address the session.
        NotFoundError: no matching session (no open one, when addressed by operator and batch).
        ConflictError: the addressed session is already closed.
    """
    counter = _counter(ending_counter, "ending_counter")
    if session_id:
        s = get_session(db, session_id, for_update=True)
        if not s.is_open:
            raise ConflictError("Session is already closed", session_id=s.id, ended_at=s.ended_at)
    else:
        operator_id = _required(operator_id, "operator_id")
        batch_number = _required(batch_number, "batch_number")
        s = db.execute(
            select(WeighingSession)
            .where(
                WeighingSession.operator_id == operator_id,
                WeighingSession.batch_number == batch_number,
                WeighingSession.status == OPEN,
            )
            .with_for_update()
        ).scalars().first()
        if not s:
            raise NotFoundError("Active shift not found", operator_id=operator_id, batch_number=batch_number)

    s.ending_counter = counter
    s.status = CLOSED
    s.ended_at = datetime.now(timezone.utc)
    db.flush()
    LOGGER.info("Shift ended session_id=%s batch=%s ending_counter=%s", s.id, s.batch_number, counter)
    return s

def batch_status(db: Session, batch_number: str) -> dict:
    batch_number = _required(batch_number, "batch_number")
    s = get_active_for_batch(db, batch_number)
    return {
        "batch_number": batch_number,
        "has_active_session": s is not None,
        "session_status": OPEN if s else CLOSED,
        "session_details": {
            "session_id": s.id,
            "operator_id": s.operator_id,
            "started_at": s.created_at,
            "starting_counter": s.starting_counter,
        } if s else None,
    }
