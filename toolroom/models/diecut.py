"""
Toolroom — diecut domain models.

Models:
    - Diecut:              catalog entry for a die-cutting tool (soft delete via status)
    - DiecutSerial:        one physical instance of a diecut ("SN") with its wear budget
    - DiecutModification:  blade change / repair / order / type-change cycle of an SN
    - ProductionLogEntry:  usage event written by the production floor (read-only here)
    - ResetEvent:          wear-counter reset history of an SN
    - MultiBladeReason:    master list of multi-blade reason codes
    - DiecutTypeMaster:    master list of operational diecut type codes

Architecture:
    Diecut ──1:N──▶ DiecutSerial ──1:N──▶ DiecutModification
    DiecutSerial ──1:N──▶ ProductionLogEntry
    DiecutSerial ──1:N──▶ ResetEvent

Lifecycle states:
    Diecut:                 ACTIVE → INACTIVE (soft delete)
    DiecutSerial.status:    free-form code; 'F' = retired
    Modification cycle:     (none) → OPEN → CLOSED | CANCELLED
    Type-change request:    NO_REQUEST → PENDING_APPROVAL → APPROVED
                            PENDING_APPROVAL → NO_REQUEST (cancel)
                            APPROVED → PENDING_APPROVAL (new request)
"""

from datetime import date, datetime, timezone

from toolroom.models import db
from toolroom.models.lifecycle import ActiveStatusMixin


# ── Constants ────────────────────────────────────────────────────────────────

SN_STATUS_RETIRED = "F"
TOOL_STATUS_GOOD = "GOOD"

MODIFY_TYPE_NONE = "N"
MODIFY_TYPE_BLADE_CHANGE = "B"
MODIFY_TYPE_REPAIR = "E"

BLADE_TYPE_LABELS = {
    "M": "Multi blade",
    "S": "Single blade",
}

# Default START_TIME values used when no start is supplied
BATCH_START_SENTINEL = date(1900, 1, 1)
MODIFY_START_SENTINEL = date(1900, 1, 2)

# ── Modification cycle state machine ─────────────────────────────────────────

CYCLE_NONE = "NONE"
CYCLE_OPEN = "OPEN"
CYCLE_CLOSED = "CLOSED"
CYCLE_CANCELLED = "CANCELLED"

CYCLE_TRANSITIONS = {
    CYCLE_NONE:      [CYCLE_OPEN],
    CYCLE_OPEN:      [CYCLE_OPEN, CYCLE_CLOSED, CYCLE_CANCELLED],
    CYCLE_CLOSED:    [CYCLE_OPEN],
    CYCLE_CANCELLED: [CYCLE_OPEN],
}

# ── Type-change approval state machine ───────────────────────────────────────

APPV_FLAG_PENDING = "P"
APPV_FLAG_APPROVED = "A"

TYPE_CHANGE_NO_REQUEST = "NO_REQUEST"
TYPE_CHANGE_PENDING = "PENDING_APPROVAL"
TYPE_CHANGE_APPROVED = "APPROVED"

APPV_FLAG_TO_STATE = {
    None: TYPE_CHANGE_NO_REQUEST,
    APPV_FLAG_PENDING: TYPE_CHANGE_PENDING,
    APPV_FLAG_APPROVED: TYPE_CHANGE_APPROVED,
}

TYPE_CHANGE_TRANSITIONS = {
    TYPE_CHANGE_NO_REQUEST: [TYPE_CHANGE_PENDING],
    TYPE_CHANGE_PENDING:    [TYPE_CHANGE_PENDING, TYPE_CHANGE_APPROVED, TYPE_CHANGE_NO_REQUEST],
    TYPE_CHANGE_APPROVED:   [TYPE_CHANGE_PENDING],
}


def validate_cycle_transition(old_state, new_state):
    """Return True if a modification cycle transition is valid."""
    return new_state in CYCLE_TRANSITIONS.get(old_state, [])


def validate_type_change_transition(old_state, new_state):
    """Return True if a type-change approval transition is valid."""
    return new_state in TYPE_CHANGE_TRANSITIONS.get(old_state, [])


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Diecut
# ═════════════════════════════════════════════════════════════════════════════


class Diecut(ActiveStatusMixin, db.Model):
    """
    Catalog entry for a die-cutting tool.
    The id is assigned by the user (e.g. "DC-1001"), never generated.
    """

    __tablename__ = "diecuts"

    diecut_id = db.Column(db.String(30), primary_key=True)
    diecut_name = db.Column(db.String(200), nullable=False, default="")
    diecut_type = db.Column(db.String(20), nullable=True, comment="Default type for new SNs")
    diecut_desc = db.Column(db.Text, nullable=True)
    image_path = db.Column(db.String(500), nullable=True, comment="Filesystem path of the uploaded image")

    blank_size_x = db.Column(db.Numeric(10, 2), nullable=True)
    blank_size_y = db.Column(db.Numeric(10, 2), nullable=True)

    created_by = db.Column(db.String(30), nullable=True)
    updated_by = db.Column(db.String(30), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    serials = db.relationship(
        "DiecutSerial", backref="diecut", lazy="dynamic",
        order_by="DiecutSerial.diecut_sn",
    )

    def to_dict(self):
        return {
            "diecut_id": self.diecut_id,
            "diecut_name": self.diecut_name,
            "diecut_type": self.diecut_type,
            "diecut_desc": self.diecut_desc,
            "image_path": self.image_path,
            "blank_size_x": float(self.blank_size_x) if self.blank_size_x is not None else None,
            "blank_size_y": float(self.blank_size_y) if self.blank_size_y is not None else None,
            "status": self.status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Diecut {self.diecut_id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. DiecutSerial
# ═════════════════════════════════════════════════════════════════════════════


class DiecutSerial(db.Model):
    """
    A physical instance of a diecut.
    SN format: "{diecut_id}-{sequence:04d}" (see serial_service.next_serial).
    """

    __tablename__ = "diecut_serials"

    diecut_sn = db.Column(db.String(40), primary_key=True)
    diecut_id = db.Column(
        db.String(30), db.ForeignKey("diecuts.diecut_id"),
        nullable=False, index=True,
    )
    diecut_type = db.Column(db.String(20), nullable=True, comment="Operational type code")
    diecut_age = db.Column(db.Integer, nullable=False, default=0, comment="Wear budget in usage units")
    status = db.Column(db.String(10), nullable=True, comment="'F' = retired; anything else in use")
    tool_status = db.Column(db.String(10), nullable=False, default=TOOL_STATUS_GOOD)
    due_date = db.Column(db.Date, nullable=True)

    job_id = db.Column(db.String(30), nullable=True)
    prod_id = db.Column(db.String(30), nullable=True)
    revision = db.Column(db.String(10), nullable=True)
    prod_desc = db.Column(db.String(300), nullable=True)

    blade_change_count = db.Column(db.Integer, nullable=False, default=0)

    cr_org_id = db.Column(db.String(30), nullable=True)
    cr_user_id = db.Column(db.String(30), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    modifications = db.relationship(
        "DiecutModification", backref="serial", lazy="dynamic",
        order_by="DiecutModification.id",
    )

    def to_dict(self):
        return {
            "diecut_sn": self.diecut_sn,
            "diecut_id": self.diecut_id,
            "diecut_type": self.diecut_type,
            "diecut_age": self.diecut_age,
            "status": self.status,
            "tool_status": self.tool_status,
            "due_date": _iso(self.due_date),
            "job_id": self.job_id,
            "prod_id": self.prod_id,
            "revision": self.revision,
            "prod_desc": self.prod_desc,
            "blade_change_count": self.blade_change_count,
            "cr_org_id": self.cr_org_id,
            "cr_user_id": self.cr_user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DiecutSerial {self.diecut_sn} status={self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. DiecutModification
# ═════════════════════════════════════════════════════════════════════════════


class DiecutModification(db.Model):
    """
    One modification / order cycle of an SN.

    Business rules:
    - At most one OPEN row per SN (enforced in modification_service).
    - cycle_state is stored explicitly; cancel_flag and end_time are kept
      for reporting compatibility and always agree with it.
    - The type-change triple (req_from, req_to, appv_flag) moves
      independently of the cycle state.
    """

    __tablename__ = "diecut_modifications"

    id = db.Column(db.Integer, primary_key=True)
    diecut_sn = db.Column(
        db.String(40), db.ForeignKey("diecut_serials.diecut_sn"),
        nullable=False, index=True,
    )
    cycle_state = db.Column(
        db.String(12), nullable=False, default=CYCLE_OPEN,
        comment="OPEN | CLOSED | CANCELLED",
    )

    start_time = db.Column(db.Date, nullable=True)
    end_time = db.Column(db.Date, nullable=True)
    modify_type = db.Column(db.String(10), nullable=True, comment="N none | B blade change | E repair")
    blade_type = db.Column(db.String(2), nullable=True, comment="M multi | S single")
    multi_blade_reason = db.Column(db.String(200), nullable=True, comment="Reason code or free text")
    multi_blade_remark = db.Column(db.Text, nullable=True)
    prob_desc = db.Column(db.Text, nullable=True, comment="Required when modify_type = E")
    remark = db.Column(db.Text, nullable=True)
    cancel_flag = db.Column(db.Boolean, nullable=False, default=False)

    order_date = db.Column(db.Date, nullable=True)
    order_by = db.Column(db.String(30), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    due_by = db.Column(db.String(30), nullable=True)
    cancel_by = db.Column(db.String(30), nullable=True)
    cancel_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Type-change request / approval
    modify_type_req_from = db.Column(db.String(20), nullable=True)
    modify_type_req_to = db.Column(db.String(20), nullable=True)
    modify_type_appv_flag = db.Column(db.String(1), nullable=True, comment="NULL none | P pending | A approved")
    change_reason = db.Column(db.Text, nullable=True)
    req_by = db.Column(db.String(30), nullable=True)
    req_date = db.Column(db.DateTime(timezone=True), nullable=True)
    appv_by = db.Column(db.String(30), nullable=True)
    appv_date = db.Column(db.DateTime(timezone=True), nullable=True)

    cr_org_id = db.Column(db.String(30), nullable=True)
    cr_user_id = db.Column(db.String(30), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "cycle_state IN ('OPEN','CLOSED','CANCELLED')",
            name="ck_diecut_modification_cycle_state",
        ),
        db.Index("ix_diecut_modification_sn_state", "diecut_sn", "cycle_state"),
    )

    @property
    def is_open(self):
        return self.cycle_state == CYCLE_OPEN

    @property
    def type_change_state(self):
        return APPV_FLAG_TO_STATE.get(self.modify_type_appv_flag, TYPE_CHANGE_NO_REQUEST)

    def to_dict(self):
        return {
            "id": self.id,
            "diecut_sn": self.diecut_sn,
            "cycle_state": self.cycle_state,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "modify_type": self.modify_type,
            "blade_type": self.blade_type,
            "multi_blade_reason": self.multi_blade_reason,
            "multi_blade_remark": self.multi_blade_remark,
            "prob_desc": self.prob_desc,
            "remark": self.remark,
            "cancel_flag": self.cancel_flag,
            "order_date": _iso(self.order_date),
            "order_by": self.order_by,
            "due_date": _iso(self.due_date),
            "due_by": self.due_by,
            "cancel_by": self.cancel_by,
            "cancel_date": _iso(self.cancel_date),
            "modify_type_req_from": self.modify_type_req_from,
            "modify_type_req_to": self.modify_type_req_to,
            "modify_type_appv_flag": self.modify_type_appv_flag,
            "type_change_state": self.type_change_state,
            "change_reason": self.change_reason,
            "req_by": self.req_by,
            "req_date": _iso(self.req_date),
            "appv_by": self.appv_by,
            "appv_date": _iso(self.appv_date),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<DiecutModification #{self.id} {self.diecut_sn} {self.cycle_state}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. Production log & reset history
# ═════════════════════════════════════════════════════════════════════════════


class ProductionLogEntry(db.Model):
    """Usage event written by production. Only aggregated by the wear report."""

    __tablename__ = "production_logs"

    id = db.Column(db.Integer, primary_key=True)
    diecut_sn = db.Column(
        db.String(40), db.ForeignKey("diecut_serials.diecut_sn"),
        nullable=False, index=True,
    )
    counter_qty = db.Column(db.Integer, nullable=True, comment="Usage units consumed by this event")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<ProductionLogEntry #{self.id} {self.diecut_sn} qty={self.counter_qty}>"


class ResetEvent(db.Model):
    """Wear counter reset of an SN. Usage before the latest reset is ignored."""

    __tablename__ = "diecut_reset_history"

    id = db.Column(db.Integer, primary_key=True)
    diecut_sn = db.Column(
        db.String(40), db.ForeignKey("diecut_serials.diecut_sn"),
        nullable=False, index=True,
    )
    reset_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    reset_by = db.Column(db.String(30), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "diecut_sn": self.diecut_sn,
            "reset_date": _iso(self.reset_date),
            "reset_by": self.reset_by,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 5. Master data
# ═════════════════════════════════════════════════════════════════════════════


class MultiBladeReason(db.Model):
    __tablename__ = "multi_blade_reasons"

    reason_code = db.Column(db.String(20), primary_key=True)
    reason_desc = db.Column(db.String(200), nullable=False)


class DiecutTypeMaster(db.Model):
    __tablename__ = "diecut_type_master"

    type_code = db.Column(db.String(20), primary_key=True)
    type_desc = db.Column(db.String(200), nullable=False)

    def to_dict(self):
        return {"type_code": self.type_code, "type_desc": self.type_desc}
