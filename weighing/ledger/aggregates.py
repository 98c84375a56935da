"""Session totals derived from the box ledger.

Totals are always rebuilt from the live entries, never adjusted by deltas.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from shopfloor.db.models.common import utcnow
from shopfloor.db.models.weighing import AGGREGATE_KEYS, BoxCategory, BoxEntry, WeighingSession

ZERO = Decimal("0")


@dataclass
class SessionTotals:
    weight_all: Decimal = ZERO
    weights: dict[BoxCategory, Decimal] = field(default_factory=lambda: {c: ZERO for c in BoxCategory})
    counts: dict[BoxCategory, int] = field(default_factory=lambda: {c: 0 for c in BoxCategory})

    def as_columns(self) -> dict:
        values: dict = {"total_weight_all": self.weight_all}
        for category, key in AGGREGATE_KEYS.items():
            values[f"total_weight_{key}"] = self.weights[category]
            values[f"total_qty_{key}"] = self.counts[category]
        return values


def compute_totals(entries: Iterable[BoxEntry]) -> SessionTotals:
    totals = SessionTotals()
    for entry in entries:
        category = BoxCategory.parse(entry.category)
        weight = Decimal(entry.weight_grams)
        totals.weight_all += weight
        totals.weights[category] += weight
        totals.counts[category] += 1
    return totals


def recompute_session_totals(db: Session, session: WeighingSession) -> SessionTotals:
    """Rescan the session's live entries and write all totals back in one update."""
    db.flush()
    entries = db.execute(select(BoxEntry).where(BoxEntry.session_id == session.id)).scalars().all()
    totals = compute_totals(entries)
    for name, value in totals.as_columns().items():
        setattr(session, name, value)
    session.updated_at = utcnow()
    # one UPDATE carrying every total column
    db.flush()
    return totals
