"""
Wear status report.

Gathers qualifying production usage for every SN, feeds it through the pure
calculations in ``toolroom.services.wear`` and returns one row per in-use SN.

Qualifying usage: ``counter_qty > 0`` and logged strictly after the SN's most
recent reset (or after WEAR_EPOCH when the SN was never reset). The running
window is built from the usage of *all* SNs, before the report filters are
applied, so narrowing the report never changes a threshold.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, func, select

from toolroom.core.exceptions import ValidationError
from toolroom.models import db
from toolroom.models.diecut import (
    CYCLE_OPEN,
    SN_STATUS_RETIRED,
    TOOL_STATUS_GOOD,
    Diecut,
    DiecutModification,
    DiecutSerial,
    ProductionLogEntry,
    ResetEvent,
)
from toolroom.services import wear
from toolroom.utils.helpers import storage_guard

logger = logging.getLogger(__name__)

WEAR_EPOCH = datetime(2018, 9, 1)


@dataclass
class StatusFilter:
    """Optional report filters, AND-ed together."""

    diecut_id: str | None = None
    diecut_types: set[str] = field(default_factory=set)
    priority: str | None = None

    def __post_init__(self):
        if isinstance(self.diecut_types, str):
            self.diecut_types = {self.diecut_types}
        self.diecut_types = {t.strip() for t in self.diecut_types or () if t and t.strip()}
        if self.priority is not None:
            self.priority = str(self.priority).strip() or None
        if self.priority and self.priority not in wear.PRIORITY_LABELS:
            raise ValidationError(
                "priority must be one of 1, 2, 3",
                details={"priority": self.priority},
            )


def _last_reset_subquery():
    return (
        select(
            ResetEvent.diecut_sn.label("diecut_sn"),
            func.max(ResetEvent.reset_date).label("last_reset"),
        )
        .group_by(ResetEvent.diecut_sn)
        .subquery()
    )


def _usage_by_sn() -> dict:
    """``{sn: [qty, ...]}`` of qualifying usage for every SN on file."""
    last_reset = _last_reset_subquery()
    stmt = (
        select(ProductionLogEntry.diecut_sn, ProductionLogEntry.counter_qty)
        .join(DiecutSerial, DiecutSerial.diecut_sn == ProductionLogEntry.diecut_sn)
        .outerjoin(last_reset, last_reset.c.diecut_sn == ProductionLogEntry.diecut_sn)
        .where(
            ProductionLogEntry.counter_qty > 0,
            ProductionLogEntry.created_at > func.coalesce(last_reset.c.last_reset, WEAR_EPOCH),
        )
    )
    usage = defaultdict(list)
    for sn, qty in db.session.execute(stmt):
        usage[sn].append(qty)
    return usage


def _report_statement(filters: StatusFilter):
    last_reset = _last_reset_subquery()
    stmt = (
        select(DiecutSerial, DiecutModification, Diecut, last_reset.c.last_reset)
        .outerjoin(
            DiecutModification,
            and_(
                DiecutModification.diecut_sn == DiecutSerial.diecut_sn,
                DiecutModification.cycle_state == CYCLE_OPEN,
            ),
        )
        .outerjoin(Diecut, Diecut.diecut_id == DiecutSerial.diecut_id)
        .outerjoin(last_reset, last_reset.c.diecut_sn == DiecutSerial.diecut_sn)
        .where(
            DiecutSerial.status.is_not(None),
            DiecutSerial.status != SN_STATUS_RETIRED,
            DiecutSerial.tool_status == TOOL_STATUS_GOOD,
        )
        .order_by(DiecutSerial.diecut_id, DiecutSerial.diecut_sn)
    )
    if filters.diecut_id:
        stmt = stmt.where(DiecutSerial.diecut_id == filters.diecut_id)
    if filters.diecut_types:
        stmt = stmt.where(DiecutSerial.diecut_type.in_(sorted(filters.diecut_types)))
    return stmt


def _dimensions(diecut):
    if diecut is None or (diecut.blank_size_x is None and diecut.blank_size_y is None):
        return None
    return {
        "blank_size_x": float(diecut.blank_size_x) if diecut.blank_size_x is not None else None,
        "blank_size_y": float(diecut.blank_size_y) if diecut.blank_size_y is not None else None,
    }


def _row(serial, open_mod, diecut, last_reset, usage, windows) -> dict:
    metrics = wear.assess(serial.diecut_age or 0, usage.get(serial.diecut_sn, []),
                          windows.get(serial.diecut_sn))
    return {
        "diecut_id": serial.diecut_id,
        "diecut_sn": serial.diecut_sn,
        "age": metrics["age"],
        "used": metrics["used"],
        "remain": metrics["remain"],
        "near_expiry_threshold": metrics["near_expiry_threshold"],
        "priority": metrics["priority"],
        "status": serial.status,
        "diecut_type": serial.diecut_type,
        "last_modified": last_reset.isoformat() if last_reset else None,
        "due_date": serial.due_date.isoformat() if serial.due_date else None,
        "open_modify_type": open_mod.modify_type if open_mod is not None else None,
        "physical_dimensions": _dimensions(diecut),
        "current_job": {
            "job_id": serial.job_id,
            "prod_id": serial.prod_id,
            "revision": serial.revision,
            "prod_desc": serial.prod_desc,
        },
    }


def status_report(filters: StatusFilter | None = None) -> list[dict]:
    """Wear/priority rows for every in-use SN matching ``filters``."""
    filters = filters or StatusFilter()
    with storage_guard("status_report", diecut_id=filters.diecut_id):
        usage = _usage_by_sn()
        windows = wear.running_windows(usage)
        rows = [
            _row(serial, open_mod, diecut, last_reset, usage, windows)
            for serial, open_mod, diecut, last_reset in db.session.execute(_report_statement(filters)).all()
        ]

    if filters.priority:
        rows = [r for r in rows if r["priority"] == filters.priority]

    logger.info(
        "Status report built: %d rows", len(rows),
        extra={"diecut_id": filters.diecut_id, "operation": "status_report"},
    )
    return rows


def status_summary() -> dict:
    """Count of in-use SNs per priority."""
    rows = status_report()
    counts = {label: 0 for label in wear.PRIORITY_LABELS.values()}
    for row in rows:
        counts[wear.PRIORITY_LABELS[row["priority"]]] += 1
    return {"total": len(rows), "priorities": counts}
