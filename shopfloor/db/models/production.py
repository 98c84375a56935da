from __future__ import annotations
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from shopfloor.db.base import Base
from shopfloor.db.models.common import HasId, HasCreatedAt

class ProductionOrder(Base, HasId, HasCreatedAt):
    """Batch master data. Maintained elsewhere; the weighing core only reads it."""
    __tablename__ = "production_orders"
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    material_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    material_desc: Mapped[str | None] = mapped_column(String(256), nullable=True)
    machine_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="RELEASED", nullable=False)
