from __future__ import annotations
import logging
from datetime import datetime, timezone
from decimal import Decimal, DecimalException
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfloor.core.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.db.models.weighing import BoxCategory, BoxEntry, WeighingSession
from weighing.ledger.aggregates import recompute_session_totals
from weighing.sessions.service import get_session, require_open
from weighing.units import MAX_GRAMS, PRECISION

LOGGER = logging.getLogger(__name__)


def _weight(value: Any) -> Decimal:
    message = "weight_grams must be a number > 0"
    if isinstance(value, bool) or value is None:
        raise ValidationError(message, field="weight_grams")
    try:
        w = Decimal(str(value).strip()).quantize(PRECISION)
    except DecimalException:
        raise ValidationError(message, field="weight_grams") from None
    if not w.is_finite():
        raise ValidationError(message, field="weight_grams")
    # compared after rounding: the column keeps five decimals
    if w <= 0:
        raise ValidationError(f"weight_grams must be at least {PRECISION} g", field="weight_grams")
    if w > MAX_GRAMS:
        raise ValidationError(f"weight_grams must be at most {MAX_GRAMS} g", field="weight_grams")
    return w

def _category(value: Any) -> BoxCategory:
    try:
        return BoxCategory.parse(value)
    except ValueError:
        allowed = ", ".join(c.value for c in BoxCategory)
        raise ValidationError(f"category must be one of: {allowed}", field="category") from None

def _box_no(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("box_no must be an integer >= 1", field="box_no")
    try:
        n = int(str(value).strip())
    except ValueError:
        raise ValidationError("box_no must be an integer >= 1", field="box_no") from None
    if n < 1:
        raise ValidationError("box_no must be an integer >= 1", field="box_no")
    return n

def _scale_name(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None

def get_entry(db: Session, entry_id: str) -> BoxEntry:
    e = db.execute(select(BoxEntry).where(BoxEntry.id == entry_id)).scalars().first()
    if not e:
        raise NotFoundError("Entry not found", entry_id=entry_id)
    return e

def list_entries(db: Session, session_id: str) -> list[BoxEntry]:
    get_session(db, session_id)
    return list(
        db.execute(select(BoxEntry).where(BoxEntry.session_id == session_id).order_by(BoxEntry.box_no.asc())).scalars()
    )

def last_box_no(db: Session, session_id: str) -> int:
    return db.execute(select(func.max(BoxEntry.box_no)).where(BoxEntry.session_id == session_id)).scalar() or 0

def _entry_with_box_no(db: Session, session_id: str, box_no: int) -> str | None:
    return db.execute(
        select(BoxEntry.id).where(BoxEntry.session_id == session_id, BoxEntry.box_no == box_no)
    ).scalar()

def _duplicate_box(session_id: str, box_no: int, entry_id: str) -> ConflictError:
    return ConflictError(
        f"Box number {box_no} already exists for this session.",
        session_id=session_id,
        box_no=box_no,
        entry_id=entry_id,
    )

def add_entry(
    db: Session,
    *,
    session_id: str,
    weight_grams: Any,
    category: Any,
    box_no: Any = None,
    scale_name: str | None = None,
    weighed_at: datetime | None = None,
) -> BoxEntry:
    """Book one weighed box against an open session and refresh its totals.

    Without ``box_no`` the next number is max(existing) + 1, or 1 for an empty session.

    Raises:
        ValidationError: non-positive weight, unknown category or bad box number.
        NotFoundError: no such session.
        ConflictError: session closed, or the box number is already used in it.
    """
    weight = _weight(weight_grams)
    cat = _category(category)
    explicit_box = _box_no(box_no) if box_no is not None else None

    # Row lock: one writer per session for numbering and totals.
    s = require_open(db, session_id)

    if explicit_box is not None:
        taken = _entry_with_box_no(db, s.id, explicit_box)
        if taken:
            raise _duplicate_box(s.id, explicit_box, taken)
        number = explicit_box
    else:
        number = last_box_no(db, s.id) + 1

    e = BoxEntry(
        session_id=s.id,
        box_no=number,
        weight_grams=weight,
        category=cat.value,
        scale_name=_scale_name(scale_name),
        weighed_at=weighed_at or datetime.now(timezone.utc),
    )
    try:
        # only the savepoint rolls back if a concurrent writer took the number
        with db.begin_nested():
            db.add(e)
            db.flush()
    except IntegrityError:
        taken = _entry_with_box_no(db, s.id, number)
        if taken is None:
            raise
        raise _duplicate_box(s.id, number, taken) from None

    recompute_session_totals(db, s)
    LOGGER.info("Box added session_id=%s box_no=%s weight=%s category=%s", s.id, number, weight, cat.value)
    return e

def update_entry(
    db: Session,
    *,
    entry_id: str,
    weight_grams: Any = None,
    category: Any = None,
) -> tuple[BoxEntry, dict]:
    """Correct weight and/or category of an entry in an open session.

    Returns the entry and the previous values of the changed fields.

    Raises:
        NotFoundError: no such entry.
        ConflictError: the owning session is closed.
        ValidationError: bad weight/category, or nothing to change.
    """
    if weight_grams is None and category is None:
        raise ValidationError("Nothing to update: provide weight_grams and/or category")
    weight = _weight(weight_grams) if weight_grams is not None else None
    cat = _category(category) if category is not None else None

    e = get_entry(db, entry_id)
    s = require_open(db, e.session_id)

    previous: dict = {}
    if weight is not None and weight != e.weight_grams:
        previous["weight_grams"] = e.weight_grams
        e.weight_grams = weight
    if cat is not None and cat.value != e.category:
        previous["category"] = e.category
        e.category = cat.value

    recompute_session_totals(db, s)
    LOGGER.info("Box corrected entry_id=%s session_id=%s changed=%s", e.id, s.id, sorted(previous))
    return e, previous

def delete_entry(db: Session, *, entry_id: str) -> BoxEntry:
    """Remove an entry from an open session and refresh its totals.

    Raises:
        NotFoundError: no such entry.
        ConflictError: the owning session is closed.
    """
    e = get_entry(db, entry_id)
    s = require_open(db, e.session_id)
    db.delete(e)
    recompute_session_totals(db, s)
    LOGGER.info("Box deleted entry_id=%s session_id=%s box_no=%s", e.id, s.id, e.box_no)
    return e

def shift_overview(db: Session, session: WeighingSession) -> dict:
    count = db.execute(select(func.count(BoxEntry.id)).where(BoxEntry.session_id == session.id)).scalar() or 0
    last = last_box_no(db, session.id)
    return {
        "total_entries": count,
        "last_box_no": last,
        "next_box_no": last + 1,
    }
