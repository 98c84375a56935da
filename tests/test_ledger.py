from __future__ import annotations

import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from shopfloor.core.errors import ConflictError, ErrorKind, NotFoundError, ValidationError
from shopfloor.db.models.weighing import AGGREGATE_KEYS, BoxCategory, BoxEntry, WeighingSession
from weighing import commands
from weighing.ledger import service as ledger
from weighing.ledger.aggregates import compute_totals
from weighing.sessions import service as sessions

pytestmark = pytest.mark.ledger


@pytest.fixture()
def open_session(db: Session, production_orders: list[str]) -> WeighingSession:
    s = sessions.start_shift(db, operator_id="op-a", batch_number="B100", starting_counter=10)
    db.commit()
    return s


def _assert_totals_match_entries(db: Session, s: WeighingSession) -> None:
    db.refresh(s)
    live = ledger.list_entries(db, s.id)
    assert s.total_weight_all == sum((e.weight_grams for e in live), Decimal("0"))
    for category, key in AGGREGATE_KEYS.items():
        mine = [e for e in live if e.category == category.value]
        assert getattr(s, f"total_weight_{key}") == sum((e.weight_grams for e in mine), Decimal("0"))
        assert getattr(s, f"total_qty_{key}") == len(mine)


def test_shift_scenario(db: Session, open_session: WeighingSession) -> None:
    s = open_session

    first = ledger.add_entry(db, session_id=s.id, weight_grams=500, category="Finished Good")
    db.commit()
    assert s.total_weight_fg == Decimal("500")
    assert s.total_weight_all == Decimal("500")
    assert s.total_qty_fg == 1

    ledger.add_entry(db, session_id=s.id, weight_grams=300, category="Defect")
    db.commit()
    assert s.total_weight_defect == Decimal("300")
    assert s.total_weight_all == Decimal("800")

    ledger.delete_entry(db, entry_id=first.id)
    db.commit()
    assert s.total_weight_fg == Decimal("0")
    assert s.total_qty_fg == 0
    assert s.total_weight_all == Decimal("300")

    sessions.end_shift(db, ending_counter=15, session_id=s.id)
    db.commit()
    assert s.status == "closed"

    with pytest.raises(ConflictError, match="closed"):
        ledger.add_entry(db, session_id=s.id, weight_grams=100, category="Runner")
    db.rollback()
    _assert_totals_match_entries(db, s)
    assert s.total_weight_all == Decimal("300")


def test_totals_follow_random_mutations(db: Session, open_session: WeighingSession) -> None:
    rng = random.Random(1234)
    s = open_session
    live: list[str] = []

    for _ in range(40):
        action = rng.choice(["add", "add", "update", "delete"]) if live else "add"
        if action == "add":
            e = ledger.add_entry(
                db,
                session_id=s.id,
                weight_grams=Decimal(rng.randint(1, 500000)) / 100,
                category=rng.choice(list(BoxCategory)),
            )
            live.append(e.id)
        elif action == "update":
            ledger.update_entry(
                db,
                entry_id=rng.choice(live),
                weight_grams=Decimal(rng.randint(1, 500000)) / 100,
                category=rng.choice(list(BoxCategory)).value,
            )
        else:
            entry_id = live.pop(rng.randrange(len(live)))
            ledger.delete_entry(db, entry_id=entry_id)
        db.commit()
        _assert_totals_match_entries(db, s)


def test_auto_box_numbers_increase_without_gaps(db: Session, open_session: WeighingSession) -> None:
    numbers = [
        ledger.add_entry(db, session_id=open_session.id, weight_grams=100 + i, category="Runner").box_no
        for i in range(5)
    ]
    db.commit()
    assert numbers == [1, 2, 3, 4, 5]


def test_auto_box_number_follows_highest_existing(db: Session, open_session: WeighingSession) -> None:
    ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Runner", box_no=7)
    db.commit()

    e = ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Runner")
    assert e.box_no == 8


def test_deleted_box_number_may_be_reused_explicitly(db: Session, open_session: WeighingSession) -> None:
    first = ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Sapuan")
    ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Sapuan")
    ledger.delete_entry(db, entry_id=first.id)
    db.commit()

    again = ledger.add_entry(db, session_id=open_session.id, weight_grams=90, category="Sapuan", box_no=1)
    db.commit()
    assert again.box_no == 1
    assert [e.box_no for e in ledger.list_entries(db, open_session.id)] == [1, 2]


def test_duplicate_explicit_box_number(db: Session, open_session: WeighingSession) -> None:
    existing = ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Purging", box_no=3)
    db.commit()

    with pytest.raises(ConflictError, match="Box number 3 already exists") as info:
        ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Purging", box_no=3)
    assert info.value.context["entry_id"] == existing.id


def test_entry_fields(db: Session, open_session: WeighingSession) -> None:
    at = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
    e = ledger.add_entry(
        db,
        session_id=open_session.id,
        weight_grams="1234.567891",
        category="fg",
        scale_name=" tbg01 ",
        weighed_at=at,
    )
    db.commit()

    assert e.category == BoxCategory.FINISHED_GOOD.value
    assert e.weight_grams == Decimal("1234.56789")
    assert e.scale_name == "TBG01"
    assert e.weighed_at == at


@pytest.mark.parametrize(
    ("weight", "category", "box_no"),
    [
        (0, "Runner", None),
        (-5, "Runner", None),
        ("heavy", "Runner", None),
        (None, "Runner", None),
        (100, "Scrap", None),
        (100, "Runner", 0),
        (100, "Runner", "x"),
    ],
)
def test_add_entry_validation(db: Session, open_session: WeighingSession, weight, category, box_no) -> None:
    with pytest.raises(ValidationError):
        ledger.add_entry(db, session_id=open_session.id, weight_grams=weight, category=category, box_no=box_no)


def test_add_entry_unknown_session(db: Session) -> None:
    with pytest.raises(NotFoundError, match="Session not found"):
        ledger.add_entry(db, session_id="missing", weight_grams=1, category="Runner")


def test_update_entry_reports_previous_values(db: Session, open_session: WeighingSession) -> None:
    e = ledger.add_entry(db, session_id=open_session.id, weight_grams=400, category="Runner")
    db.commit()

    updated, previous = ledger.update_entry(db, entry_id=e.id, weight_grams=450, category="Defect")
    db.commit()

    assert previous == {"weight_grams": Decimal("400"), "category": "Runner"}
    assert updated.category == "Defect"
    assert open_session.total_qty_runner == 0
    assert open_session.total_qty_defect == 1
    assert open_session.total_weight_defect == Decimal("450")


def test_update_entry_requires_a_change(db: Session, open_session: WeighingSession) -> None:
    e = ledger.add_entry(db, session_id=open_session.id, weight_grams=400, category="Runner")
    db.commit()

    with pytest.raises(ValidationError, match="Nothing to update"):
        ledger.update_entry(db, entry_id=e.id)


def test_unknown_entry(db: Session, open_session: WeighingSession) -> None:
    with pytest.raises(NotFoundError, match="Entry not found"):
        ledger.update_entry(db, entry_id="missing", weight_grams=1)
    with pytest.raises(NotFoundError, match="Entry not found"):
        ledger.delete_entry(db, entry_id="missing")


def test_closed_session_rejects_corrections(db: Session, open_session: WeighingSession) -> None:
    e = ledger.add_entry(db, session_id=open_session.id, weight_grams=400, category="Runner")
    sessions.end_shift(db, ending_counter=11, session_id=open_session.id)
    db.commit()
    before = open_session.totals()

    with pytest.raises(ConflictError):
        ledger.update_entry(db, entry_id=e.id, weight_grams=1)
    db.rollback()
    with pytest.raises(ConflictError):
        ledger.delete_entry(db, entry_id=e.id)
    db.rollback()

    db.refresh(open_session)
    assert open_session.totals() == before
    assert db.get(BoxEntry, e.id) is not None


def test_shift_overview(db: Session, open_session: WeighingSession) -> None:
    assert ledger.shift_overview(db, open_session) == {"total_entries": 0, "last_box_no": 0, "next_box_no": 1}

    ledger.add_entry(db, session_id=open_session.id, weight_grams=1, category="Runner")
    ledger.add_entry(db, session_id=open_session.id, weight_grams=1, category="Runner", box_no=4)
    db.commit()

    assert ledger.shift_overview(db, open_session) == {"total_entries": 2, "last_box_no": 4, "next_box_no": 5}


def test_compute_totals_without_database() -> None:
    entries = [
        BoxEntry(box_no=1, weight_grams=Decimal("1.5"), category="Runner"),
        BoxEntry(box_no=2, weight_grams=Decimal("2.25"), category="Finished Good"),
        BoxEntry(box_no=3, weight_grams=Decimal("0.25"), category="Finished Good"),
    ]

    columns = compute_totals(entries).as_columns()

    assert columns["total_weight_all"] == Decimal("4.00")
    assert columns["total_weight_fg"] == Decimal("2.50")
    assert columns["total_qty_fg"] == 2
    assert columns["total_qty_runner"] == 1
    assert columns["total_qty_defect"] == 0


def test_box_number_race_loser_gets_conflict(
    db: Session, open_session: WeighingSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    first = ledger.add_entry(db, session_id=open_session.id, weight_grams=100, category="Runner")
    db.commit()
    # a stale max() read, as when another writer inserted box 1 meanwhile
    monkeypatch.setattr(ledger, "last_box_no", lambda db, session_id: 0)

    result = commands.add_entry(db, session_id=open_session.id, weight_grams=200, category="Runner")

    assert result.error_kind is ErrorKind.CONFLICT
    assert result.message == "Box number 1 already exists for this session."
    assert result.data["entry_id"] == first.id
    assert [e.box_no for e in ledger.list_entries(db, open_session.id)] == [1]
    db.refresh(open_session)
    assert open_session.total_weight_all == Decimal("100")


@pytest.mark.parametrize("weight", ["0.000001", "0.000004", "1e30", "10000000000000", "1e999999999", "NaN", "Infinity"])
def test_add_entry_rejects_weights_the_column_cannot_hold(
    db: Session, open_session: WeighingSession, weight: str
) -> None:
    result = commands.add_entry(db, session_id=open_session.id, weight_grams=weight, category="Defect")

    assert result.success is False
    assert result.error_kind is ErrorKind.VALIDATION
    assert ledger.list_entries(db, open_session.id) == []


def test_smallest_and_largest_weights_are_kept(db: Session, open_session: WeighingSession) -> None:
    small = ledger.add_entry(db, session_id=open_session.id, weight_grams="0.000006", category="Runner")
    large = ledger.add_entry(db, session_id=open_session.id, weight_grams="9999999999999.99999", category="Runner")
    db.commit()

    assert small.weight_grams == Decimal("0.00001")
    assert large.weight_grams == Decimal("9999999999999.99999")


@pytest.mark.parametrize("weight", ["0.000001", "1e30"])
def test_update_entry_rejects_out_of_range_weights(db: Session, open_session: WeighingSession, weight: str) -> None:
    e = ledger.add_entry(db, session_id=open_session.id, weight_grams=400, category="Runner")
    db.commit()

    result = commands.update_entry(db, entry_id=e.id, weight_grams=weight)

    assert result.error_kind is ErrorKind.VALIDATION
    db.refresh(e)
    assert e.weight_grams == Decimal("400")
