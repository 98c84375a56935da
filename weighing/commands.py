"""Command/query surface used by the HTTP routers.

Each command runs in one transaction: the service call and the aggregate
refresh commit together or not at all. Domain errors become a failed
CommandResult; anything else is rolled back and re-raised. Audit records are
written after commit and never affect the outcome.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session

from shopfloor.core.audit import audit
from shopfloor.core.errors import DomainError, ErrorKind
from shopfloor.db.models.weighing import WeighingSession
from weighing.ledger import service as ledger
from weighing.sessions import service as sessions
from weighing.telemetry.pipeline import TelemetryPipeline

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CommandResult:
    success: bool
    message: str
    data: Any = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "CommandResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, exc: DomainError) -> "CommandResult":
        return cls(success=False, message=exc.message, data=exc.context or None, error_kind=exc.kind)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "data": self.data,
        }


def session_to_dict(s: WeighingSession) -> dict:
    return {
        "id": s.id,
        "operator_id": s.operator_id,
        "batch_number": s.batch_number,
        "status": s.status,
        "weight_uom": s.weight_uom,
        "starting_counter": s.starting_counter,
        "ending_counter": s.ending_counter,
        "material_desc": s.material_desc,
        "machine_name": s.machine_name,
        "created_at": s.created_at,
        "ended_at": s.ended_at,
        **s.totals(),
    }


def _run(db: Session, work: Callable[[], T]) -> T:
    try:
        result = work()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


def _attempt(db: Session, work: Callable[[], T]) -> tuple[T | None, CommandResult | None]:
    try:
        return _run(db, work), None
    except DomainError as exc:
        LOGGER.info("Command rejected (%s): %s", exc.kind.value, exc.message)
        return None, CommandResult.failure(exc)


def start_shift(db: Session, *, operator_id: str, batch_number: str, starting_counter: Any) -> CommandResult:
    s, failed = _attempt(
        db,
        lambda: sessions.start_shift(
            db, operator_id=operator_id, batch_number=batch_number, starting_counter=starting_counter
        ),
    )
    if failed:
        return failed
    audit(
        db,
        actor=s.operator_id,
        action="weighing.shift.start",
        entity_type="weighing_session",
        entity_id=s.id,
        payload={"batch_number": s.batch_number, "starting_counter": s.starting_counter},
    )
    return CommandResult.ok("Shift started successfully. You can now access digital scales.", session_to_dict(s))


def end_shift(
    db: Session,
    *,
    ending_counter: Any,
    session_id: str | None = None,
    operator_id: str | None = None,
    batch_number: str | None = None,
) -> CommandResult:
    s, failed = _attempt(
        db,
        lambda: sessions.end_shift(
            db,
            ending_counter=ending_counter,
            session_id=session_id,
            operator_id=operator_id,
            batch_number=batch_number,
        ),
    )
    if failed:
        return failed
    audit(
        db,
        actor=operator_id or s.operator_id,
        action="weighing.shift.end",
        entity_type="weighing_session",
        entity_id=s.id,
        payload={"ending_counter": s.ending_counter, "totals": s.totals()},
    )
    return CommandResult.ok("Shift ended successfully", session_to_dict(s))


def add_entry(
    db: Session,
    *,
    session_id: str,
    weight_grams: Any,
    category: Any,
    box_no: Any = None,
    scale_name: str | None = None,
    weighed_at: datetime | None = None,
    actor: str | None = None,
) -> CommandResult:
    def work():
        e = ledger.add_entry(
            db,
            session_id=session_id,
            weight_grams=weight_grams,
            category=category,
            box_no=box_no,
            scale_name=scale_name,
            weighed_at=weighed_at,
        )
        return e, e.session

    result, failed = _attempt(db, work)
    if failed:
        return failed
    e, s = result
    audit(
        db,
        actor=actor or s.operator_id,
        action="weighing.entry.add",
        entity_type="box_entry",
        entity_id=e.id,
        payload={"session_id": s.id, **e.to_dict()},
    )
    return CommandResult.ok("Weight entry saved successfully", {"entry": e.to_dict(), "session": session_to_dict(s)})


def update_entry(
    db: Session,
    *,
    entry_id: str,
    weight_grams: Any = None,
    category: Any = None,
    actor: str | None = None,
) -> CommandResult:
    def work():
        e, previous = ledger.update_entry(db, entry_id=entry_id, weight_grams=weight_grams, category=category)
        return e, previous, e.session

    result, failed = _attempt(db, work)
    if failed:
        return failed
    e, previous, s = result
    audit(
        db,
        actor=actor or s.operator_id,
        action="weighing.entry.update",
        entity_type="box_entry",
        entity_id=e.id,
        payload={"session_id": s.id, "old": previous, "new": {k: getattr(e, k) for k in previous}},
    )
    return CommandResult.ok("Entry updated successfully", {"entry": e.to_dict(), "session": session_to_dict(s)})


def delete_entry(db: Session, *, entry_id: str, actor: str | None = None) -> CommandResult:
    def work():
        e = ledger.delete_entry(db, entry_id=entry_id)
        return e.to_dict(), sessions.get_session(db, e.session_id)

    result, failed = _attempt(db, work)
    if failed:
        return failed
    removed, s = result
    audit(
        db,
        actor=actor or s.operator_id,
        action="weighing.entry.delete",
        entity_type="box_entry",
        entity_id=removed["id"],
        payload={"old": removed},
    )
    return CommandResult.ok("Entry deleted successfully", {"entry_id": removed["id"], "session": session_to_dict(s)})


def get_session(db: Session, *, session_id: str) -> CommandResult:
    s, failed = _attempt(db, lambda: sessions.get_session(db, session_id))
    if failed:
        return failed
    return CommandResult.ok("Session found", session_to_dict(s))


def list_entries(db: Session, *, session_id: str) -> CommandResult:
    entries, failed = _attempt(db, lambda: [e.to_dict() for e in ledger.list_entries(db, session_id)])
    if failed:
        return failed
    return CommandResult.ok(f"{len(entries)} entries", entries)


def get_shift_overview(db: Session, *, operator_id: str) -> CommandResult:
    def work():
        s = sessions.get_active(db, operator_id)
        if s is None:
            return None
        return {"session": session_to_dict(s), **ledger.shift_overview(db, s)}

    overview, failed = _attempt(db, work)
    if failed:
        return failed
    if overview is None:
        return CommandResult.ok("No active shift found. Please start a shift first.", {"has_active_shift": False})
    return CommandResult.ok("Active shift found. Digital scales ready.", {"has_active_shift": True, **overview})


def get_batch_status(db: Session, *, batch_number: str) -> CommandResult:
    status, failed = _attempt(db, lambda: sessions.batch_status(db, batch_number))
    if failed:
        return failed
    message = "Batch has an active session" if status["has_active_session"] else "Batch is available for new session"
    return CommandResult.ok(message, status)


def publish_telemetry(pipeline: TelemetryPipeline, *, scale: str, weight_kg: Any, stable: Any = True) -> CommandResult:
    try:
        sample = pipeline.publish(scale, weight_kg, True if stable is None else bool(stable))
    except DomainError as exc:
        return CommandResult.failure(exc)
    return CommandResult.ok("Weight data saved", sample.to_dict())


def get_latest_telemetry(pipeline: TelemetryPipeline, *, scale: str) -> CommandResult:
    try:
        sample = pipeline.get_latest(scale)
    except DomainError as exc:
        return CommandResult.failure(exc)
    return CommandResult.ok("Current weight", sample.to_dict())
