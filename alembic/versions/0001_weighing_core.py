"""weighing sessions, box entries, production orders, audit log

Revision ID: 0001_weighing_core
Revises:
Create Date: 2026-10-18T09:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_weighing_core"
down_revision = None
branch_labels = None
depends_on = None

GRAMS = sa.Numeric(18, 5)


def _created_updated():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "production_orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("batch_number", sa.String(length=64), nullable=False),
        sa.Column("material_code", sa.String(length=64), nullable=True),
        sa.Column("material_desc", sa.String(length=256), nullable=True),
        sa.Column("machine_name", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="RELEASED"),
    )
    op.create_index("ix_production_orders_batch_number", "production_orders", ["batch_number"], unique=True)

    totals = [sa.Column("total_weight_all", GRAMS, nullable=False, server_default="0")]
    for key in ("runner", "sapuan", "purging", "defect", "fg"):
        totals.append(sa.Column(f"total_weight_{key}", GRAMS, nullable=False, server_default="0"))
    for key in ("runner", "sapuan", "purging", "defect", "fg"):
        totals.append(sa.Column(f"total_qty_{key}", sa.Integer(), nullable=False, server_default="0"))

    op.create_table(
        "weighing_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        *_created_updated(),
        sa.Column("operator_id", sa.String(length=64), nullable=False),
        sa.Column("batch_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("weight_uom", sa.String(length=8), nullable=False, server_default="GR"),
        sa.Column("starting_counter", sa.Integer(), nullable=False),
        sa.Column("ending_counter", sa.Integer(), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("material_desc", sa.String(length=256), nullable=True),
        sa.Column("machine_name", sa.String(length=128), nullable=True),
        *totals,
        sa.CheckConstraint("status IN ('open', 'closed')", name="ck_weighing_session_status"),
        sa.CheckConstraint(
            "(status = 'open' AND ending_counter IS NULL) OR (status = 'closed' AND ending_counter IS NOT NULL)",
            name="ck_weighing_session_ending_counter",
        ),
        sa.CheckConstraint("starting_counter >= 0", name="ck_weighing_session_starting_counter"),
    )
    op.create_index("ix_weighing_sessions_operator_id", "weighing_sessions", ["operator_id"])
    op.create_index("ix_weighing_sessions_batch_number", "weighing_sessions", ["batch_number"])
    op.create_index("ix_weighing_sessions_status", "weighing_sessions", ["status"])
    op.create_index(
        "uq_weighing_session_open_operator",
        "weighing_sessions",
        ["operator_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )
    op.create_index(
        "uq_weighing_session_open_batch",
        "weighing_sessions",
        ["batch_number"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "box_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        *_created_updated(),
        sa.Column("session_id", sa.String(length=36), sa.ForeignKey("weighing_sessions.id"), nullable=False),
        sa.Column("box_no", sa.Integer(), nullable=False),
        sa.Column("weight_grams", GRAMS, nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("scale_name", sa.String(length=64), nullable=True),
        sa.Column("weighed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "box_no", name="uq_box_entry_session_box_no"),
        sa.CheckConstraint("weight_grams > 0", name="ck_box_entry_weight_positive"),
        sa.CheckConstraint("box_no >= 1", name="ck_box_entry_box_no"),
        sa.CheckConstraint(
            "category IN ('Runner', 'Sapuan', 'Purging', 'Defect', 'Finished Good')",
            name="ck_box_entry_category",
        ),
    )
    op.create_index("ix_box_entries_session_id", "box_entries", ["session_id"])

    op.create_table(
        "sys_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sys_audit_log_actor", "sys_audit_log", ["actor"])
    op.create_index("ix_sys_audit_log_action", "sys_audit_log", ["action"])
    op.create_index("ix_sys_audit_log_entity_type", "sys_audit_log", ["entity_type"])
    op.create_index("ix_sys_audit_log_entity_id", "sys_audit_log", ["entity_id"])
    op.create_index("ix_audit_entity_time", "sys_audit_log", ["entity_type", "entity_id", "created_at"])


def downgrade():
    op.drop_table("sys_audit_log")
    op.drop_table("box_entries")
    op.drop_index("uq_weighing_session_open_batch", table_name="weighing_sessions")
    op.drop_index("uq_weighing_session_open_operator", table_name="weighing_sessions")
    op.drop_table("weighing_sessions")
    op.drop_table("production_orders")
