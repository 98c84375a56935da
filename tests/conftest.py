from __future__ import annotations

import os
import pathlib
from datetime import datetime, timedelta, timezone

# The application module builds its engine at import; keep it off Postgres in tests.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from shopfloor.db import models  # noqa: F401
from shopfloor.db.base import Base
from shopfloor.db.models.production import ProductionOrder
from shopfloor.db.session import make_engine
from weighing.telemetry.cache import SnapshotCache
from weighing.telemetry.pipeline import TelemetryPipeline


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture()
def test_db_path(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "test.sqlite"


@pytest.fixture()
def engine(test_db_path: pathlib.Path) -> Engine:
    eng = make_engine(f"sqlite:///{test_db_path}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


@pytest.fixture()
def db(session_factory: sessionmaker) -> Session:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture()
def production_orders(session_factory: sessionmaker) -> list[str]:
    with session_factory() as seed:
        seed.add_all(
            [
                ProductionOrder(
                    batch_number="B100",
                    material_code="PP-CAP-28",
                    material_desc="PP cap 28mm natural",
                    machine_name="INJ-07",
                ),
                ProductionOrder(
                    batch_number="B200",
                    material_code="HD-PAIL-5L",
                    material_desc="HDPE pail 5L",
                    machine_name="INJ-12",
                ),
            ]
        )
        seed.commit()
    return ["B100", "B200"]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def pipeline(clock: FakeClock) -> TelemetryPipeline:
    return TelemetryPipeline(
        SnapshotCache(30, clock=clock),
        topic_filter="scales/+/weight",
        default_scale="TBG01",
    )
