"""diecut_core

Creates the diecut lifecycle tables:
  - diecuts                 — catalog (soft delete via status)
  - diecut_serials          — SN ledger, PK is the SN string
  - diecut_modifications    — blade change / repair / order / type-change cycles
  - production_logs         — usage events written by production
  - diecut_reset_history    — wear counter resets
  - multi_blade_reasons     — reason code master
  - diecut_type_master      — operational type master
  - sql_templates           — parameterized report SQL

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c4e7d9b201
Revises:
Create Date: 2026-10-19 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c4e7d9b201'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Master data ───────────────────────────────────────────────────────
    if "multi_blade_reasons" not in existing:
        op.create_table(
            "multi_blade_reasons",
            sa.Column("reason_code", sa.String(length=20), nullable=False),
            sa.Column("reason_desc", sa.String(length=200), nullable=False),
            sa.PrimaryKeyConstraint("reason_code"),
        )

    if "diecut_type_master" not in existing:
        op.create_table(
            "diecut_type_master",
            sa.Column("type_code", sa.String(length=20), nullable=False),
            sa.Column("type_desc", sa.String(length=200), nullable=False),
            sa.PrimaryKeyConstraint("type_code"),
        )

    if "sql_templates" not in existing:
        op.create_table(
            "sql_templates",
            sa.Column("sql_no", sa.Integer(), autoincrement=False, nullable=False),
            sa.Column("sql_stmt", sa.Text(), nullable=False),
            sa.Column("description", sa.String(length=200), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("sql_no"),
        )

    # ── Diecut ────────────────────────────────────────────────────────────
    if "diecuts" not in existing:
        op.create_table(
            "diecuts",
            sa.Column("diecut_id", sa.String(length=30), nullable=False),
            sa.Column("diecut_name", sa.String(length=200), nullable=False),
            sa.Column(
                "diecut_type", sa.String(length=20), nullable=True,
                comment="Default type for new SNs",
            ),
            sa.Column("diecut_desc", sa.Text(), nullable=True),
            sa.Column(
                "image_path", sa.String(length=500), nullable=True,
                comment="Filesystem path of the uploaded image",
            ),
            sa.Column("blank_size_x", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("blank_size_y", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="ACTIVE"),
            sa.Column("created_by", sa.String(length=30), nullable=True),
            sa.Column("updated_by", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("diecut_id"),
        )
        op.create_index("ix_diecuts_status", "diecuts", ["status"])

    # ── DiecutSerial ──────────────────────────────────────────────────────
    if "diecut_serials" not in existing:
        op.create_table(
            "diecut_serials",
            sa.Column("diecut_sn", sa.String(length=40), nullable=False),
            sa.Column("diecut_id", sa.String(length=30), nullable=False),
            sa.Column(
                "diecut_type", sa.String(length=20), nullable=True,
                comment="Operational type code",
            ),
            sa.Column(
                "diecut_age", sa.Integer(), nullable=False, server_default="0",
                comment="Wear budget in usage units",
            ),
            sa.Column(
                "status", sa.String(length=10), nullable=True,
                comment="'F' = retired; anything else in use",
            ),
            sa.Column("tool_status", sa.String(length=10), nullable=False, server_default="GOOD"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("job_id", sa.String(length=30), nullable=True),
            sa.Column("prod_id", sa.String(length=30), nullable=True),
            sa.Column("revision", sa.String(length=10), nullable=True),
            sa.Column("prod_desc", sa.String(length=300), nullable=True),
            sa.Column("blade_change_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("cr_org_id", sa.String(length=30), nullable=True),
            sa.Column("cr_user_id", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["diecut_id"], ["diecuts.diecut_id"]),
            sa.PrimaryKeyConstraint("diecut_sn"),
        )
        op.create_index("ix_diecut_serials_diecut_id", "diecut_serials", ["diecut_id"])

    # ── DiecutModification ────────────────────────────────────────────────
    if "diecut_modifications" not in existing:
        op.create_table(
            "diecut_modifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("diecut_sn", sa.String(length=40), nullable=False),
            sa.Column(
                "cycle_state", sa.String(length=12), nullable=False,
                server_default="OPEN", comment="OPEN | CLOSED | CANCELLED",
            ),
            sa.Column("start_time", sa.Date(), nullable=True),
            sa.Column("end_time", sa.Date(), nullable=True),
            sa.Column(
                "modify_type", sa.String(length=10), nullable=True,
                comment="N none | B blade change | E repair",
            ),
            sa.Column("blade_type", sa.String(length=2), nullable=True, comment="M multi | S single"),
            sa.Column(
                "multi_blade_reason", sa.String(length=200), nullable=True,
                comment="Reason code or free text",
            ),
            sa.Column("multi_blade_remark", sa.Text(), nullable=True),
            sa.Column("prob_desc", sa.Text(), nullable=True, comment="Required when modify_type = E"),
            sa.Column("remark", sa.Text(), nullable=True),
            sa.Column("cancel_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("order_date", sa.Date(), nullable=True),
            sa.Column("order_by", sa.String(length=30), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("due_by", sa.String(length=30), nullable=True),
            sa.Column("cancel_by", sa.String(length=30), nullable=True),
            sa.Column("cancel_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("modify_type_req_from", sa.String(length=20), nullable=True),
            sa.Column("modify_type_req_to", sa.String(length=20), nullable=True),
            sa.Column(
                "modify_type_appv_flag", sa.String(length=1), nullable=True,
                comment="NULL none | P pending | A approved",
            ),
            sa.Column("change_reason", sa.Text(), nullable=True),
            sa.Column("req_by", sa.String(length=30), nullable=True),
            sa.Column("req_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("appv_by", sa.String(length=30), nullable=True),
            sa.Column("appv_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cr_org_id", sa.String(length=30), nullable=True),
            sa.Column("cr_user_id", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "cycle_state IN ('OPEN','CLOSED','CANCELLED')",
                name="ck_diecut_modification_cycle_state",
            ),
            sa.ForeignKeyConstraint(["diecut_sn"], ["diecut_serials.diecut_sn"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_diecut_modifications_diecut_sn", "diecut_modifications", ["diecut_sn"])
        op.create_index(
            "ix_diecut_modification_sn_state", "diecut_modifications", ["diecut_sn", "cycle_state"],
        )

    # ── Usage & resets ────────────────────────────────────────────────────
    if "production_logs" not in existing:
        op.create_table(
            "production_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("diecut_sn", sa.String(length=40), nullable=False),
            sa.Column(
                "counter_qty", sa.Integer(), nullable=True,
                comment="Usage units consumed by this event",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["diecut_sn"], ["diecut_serials.diecut_sn"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_production_logs_diecut_sn", "production_logs", ["diecut_sn"])

    if "diecut_reset_history" not in existing:
        op.create_table(
            "diecut_reset_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("diecut_sn", sa.String(length=40), nullable=False),
            sa.Column("reset_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("reset_by", sa.String(length=30), nullable=True),
            sa.ForeignKeyConstraint(["diecut_sn"], ["diecut_serials.diecut_sn"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_diecut_reset_history_diecut_sn", "diecut_reset_history", ["diecut_sn"])


def downgrade():
    for table in (
        "diecut_reset_history",
        "production_logs",
        "diecut_modifications",
        "diecut_serials",
        "diecuts",
        "sql_templates",
        "diecut_type_master",
        "multi_blade_reasons",
    ):
        op.drop_table(table)
