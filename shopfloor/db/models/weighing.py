from __future__ import annotations
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, ForeignKey, Numeric, Index, UniqueConstraint, CheckConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from shopfloor.db.base import Base
from shopfloor.db.models.common import HasId, HasCreatedAt, HasUpdatedAt, utcnow

GRAMS = Numeric(18, 5)


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class BoxCategory(str, enum.Enum):
    RUNNER = "Runner"
    SAPUAN = "Sapuan"
    PURGING = "Purging"
    DEFECT = "Defect"
    FINISHED_GOOD = "Finished Good"

    @property
    def aggregate_key(self) -> str:
        return AGGREGATE_KEYS[self]

    @classmethod
    def parse(cls, value: "BoxCategory | str") -> "BoxCategory":
        """Accept the display name ("Finished Good"), the member name or the aggregate key ("fg")."""
        if isinstance(value, cls):
            return value
        raw = str(value).strip()
        for member in cls:
            if raw.lower() in (member.value.lower(), member.name.lower(), AGGREGATE_KEYS[member]):
                return member
        raise ValueError(f"unknown category: {value!r}")


AGGREGATE_KEYS: dict[BoxCategory, str] = {
    BoxCategory.RUNNER: "runner",
    BoxCategory.SAPUAN: "sapuan",
    BoxCategory.PURGING: "purging",
    BoxCategory.DEFECT: "defect",
    BoxCategory.FINISHED_GOOD: "fg",
}


class WeighingSession(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "weighing_sessions"
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), default=SessionStatus.OPEN.value, nullable=False, index=True)  # open|closed
    weight_uom: Mapped[str] = mapped_column(String(8), default="GR", nullable=False)
    starting_counter: Mapped[int] = mapped_column(Integer, nullable=False)
    ending_counter: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # snapshot of the production order at shift start
    material_desc: Mapped[str | None] = mapped_column(String(256), nullable=True)
    machine_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    total_weight_all: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_weight_runner: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_weight_sapuan: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_weight_purging: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_weight_defect: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_weight_fg: Mapped[Decimal] = mapped_column(GRAMS, default=Decimal("0"), nullable=False)
    total_qty_runner: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_qty_sapuan: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_qty_purging: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_qty_defect: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_qty_fg: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    entries: Mapped[list["BoxEntry"]] = relationship(back_populates="session", order_by="BoxEntry.box_no")

    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="ck_weighing_session_status"),
        CheckConstraint(
            "(status = 'open' AND ending_counter IS NULL) OR (status = 'closed' AND ending_counter IS NOT NULL)",
            name="ck_weighing_session_ending_counter",
        ),
        CheckConstraint("starting_counter >= 0", name="ck_weighing_session_starting_counter"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN.value

    def totals(self) -> dict:
        out: dict = {"total_weight_all": self.total_weight_all}
        for key in AGGREGATE_KEYS.values():
            out[f"total_weight_{key}"] = getattr(self, f"total_weight_{key}")
            out[f"total_qty_{key}"] = getattr(self, f"total_qty_{key}")
        return out


# One open session per operator and per batch. Enforced in the database so two
# concurrent starts cannot both commit.
Index(
    "uq_weighing_session_open_operator",
    WeighingSession.operator_id,
    unique=True,
    postgresql_where=text("status = 'open'"),
    sqlite_where=text("status = 'open'"),
)
Index(
    "uq_weighing_session_open_batch",
    WeighingSession.batch_number,
    unique=True,
    postgresql_where=text("status = 'open'"),
    sqlite_where=text("status = 'open'"),
)


class BoxEntry(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "box_entries"
    session_id: Mapped[str] = mapped_column(ForeignKey("weighing_sessions.id"), nullable=False, index=True)
    box_no: Mapped[int] = mapped_column(Integer, nullable=False)
    weight_grams: Mapped[Decimal] = mapped_column(GRAMS, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    scale_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    weighed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    session: Mapped[WeighingSession] = relationship(back_populates="entries")

    __table_args__ = (
        UniqueConstraint("session_id", "box_no", name="uq_box_entry_session_box_no"),
        CheckConstraint("weight_grams > 0", name="ck_box_entry_weight_positive"),
        CheckConstraint("box_no >= 1", name="ck_box_entry_box_no"),
        CheckConstraint(
            "category IN ('Runner', 'Sapuan', 'Purging', 'Defect', 'Finished Good')",
            name="ck_box_entry_category",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "box_no": self.box_no,
            "weight_grams": self.weight_grams,
            "category": self.category,
            "scale_name": self.scale_name,
            "weighed_at": self.weighed_at,
        }
