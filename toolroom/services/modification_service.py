"""
Modification Workflow — Service Layer.

Blade change / repair / order / type-change events against a diecut SN.

State machines (see toolroom.models.diecut):
    cycle:        NONE → OPEN → CLOSED | CANCELLED   (CLOSED/CANCELLED → OPEN on reuse)
    type change:  NO_REQUEST → PENDING_APPROVAL → APPROVED | NO_REQUEST
                  APPROVED → PENDING_APPROVAL

Invariants:
    - At most one OPEN modification per SN: a row is only inserted when the
      SN has no OPEN row.
    - save_modification edits "the" modification of an SN, i.e. its latest
      row whatever its state.
    - Type-change operations act on the OPEN row, else the latest row.

Transactions:
    Every operation commits once. approve_type_change writes the approval
    flag and the SN's live type in the same commit, so a failure in either
    step leaves both untouched.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select

from toolroom.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from toolroom.core.identity import ANONYMOUS, Actor
from toolroom.models import db
from toolroom.models.diecut import (
    APPV_FLAG_APPROVED,
    APPV_FLAG_PENDING,
    CYCLE_CANCELLED,
    CYCLE_CLOSED,
    CYCLE_NONE,
    CYCLE_OPEN,
    MODIFY_START_SENTINEL,
    MODIFY_TYPE_BLADE_CHANGE,
    MODIFY_TYPE_NONE,
    MODIFY_TYPE_REPAIR,
    SN_STATUS_RETIRED,
    TYPE_CHANGE_APPROVED,
    TYPE_CHANGE_NO_REQUEST,
    TYPE_CHANGE_PENDING,
    DiecutModification,
    DiecutSerial,
    validate_cycle_transition,
    validate_type_change_transition,
)
from toolroom.services import catalog_service, serial_service
from toolroom.utils.helpers import parse_date_input, require_fields, storage_guard

logger = logging.getLogger(__name__)

# Modification attributes written by save_modification
MODIFICATION_FIELDS = (
    "blade_type",
    "multi_blade_reason",
    "multi_blade_remark",
    "prob_desc",
    "remark",
)


def _utcnow():
    return datetime.now(timezone.utc)


# ── Private helpers ──────────────────────────────────────────────────────────


def _open_modification(diecut_sn: str) -> DiecutModification | None:
    return db.session.execute(
        select(DiecutModification)
        .where(
            DiecutModification.diecut_sn == diecut_sn,
            DiecutModification.cycle_state == CYCLE_OPEN,
        )
        .order_by(DiecutModification.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _current_modification(diecut_sn: str) -> DiecutModification | None:
    """The OPEN row if there is one, else the latest row."""
    return _open_modification(diecut_sn) or serial_service.latest_modification(diecut_sn)


def _new_modification(serial: DiecutSerial, actor: Actor, **values) -> DiecutModification:
    values.setdefault("start_time", MODIFY_START_SENTINEL)
    mod = DiecutModification(
        diecut_sn=serial.diecut_sn,
        cycle_state=CYCLE_OPEN,
        cr_org_id=actor.org_id,
        cr_user_id=actor.user_id,
        **values,
    )
    db.session.add(mod)
    return mod


def _open_or_new(serial: DiecutSerial, actor: Actor) -> DiecutModification:
    return _open_modification(serial.diecut_sn) or _new_modification(serial, actor)


def _set_cycle(mod: DiecutModification, target: str) -> None:
    current = mod.cycle_state or CYCLE_NONE
    if current == target:
        return
    if not validate_cycle_transition(current, target):
        raise InvalidTransitionError("modification cycle", current, target)
    mod.cycle_state = target
    if target == CYCLE_OPEN:
        mod.cancel_flag = False


def _set_type_change(mod: DiecutModification, target: str) -> None:
    current = mod.type_change_state
    if not validate_type_change_transition(current, target):
        raise InvalidTransitionError("type change", current, target)


def _sibling_type(diecut_id: str) -> str | None:
    """Type of the first SN of the diecut that has one."""
    return db.session.execute(
        select(DiecutSerial.diecut_type)
        .where(
            DiecutSerial.diecut_id == diecut_id,
            DiecutSerial.diecut_type.is_not(None),
        )
        .order_by(DiecutSerial.diecut_sn)
        .limit(1)
    ).scalar_one_or_none()


def _ensure_serial(diecut_id: str, diecut_sn: str, actor: Actor) -> tuple[DiecutSerial, bool]:
    serial = db.session.get(DiecutSerial, diecut_sn)
    if serial is not None:
        if serial.diecut_id != diecut_id:
            raise NotFoundError(resource="DiecutSerial", resource_id=diecut_sn)
        return serial, False

    catalog_service.get_by_id(diecut_id)
    serial = DiecutSerial(
        diecut_sn=diecut_sn,
        diecut_id=diecut_id,
        diecut_type=_sibling_type(diecut_id),
        diecut_age=0,
        status=MODIFY_TYPE_NONE,
        cr_org_id=actor.org_id,
        cr_user_id=actor.user_id,
    )
    db.session.add(serial)
    logger.info("SN created on first modification", extra={"diecut_id": diecut_id, "diecut_sn": diecut_sn})
    return serial, True


# ── Blade / repair modifications ─────────────────────────────────────────────


def save_modification(diecut_id: str, diecut_sn: str, fields: dict, actor: Actor = ANONYMOUS) -> dict:
    """Upsert the SN's modification row.

    - SN missing → created (type taken from a sibling SN, else NULL)
    - ``diecut_age`` in fields → SN age updated
    - latest modification row updated, or a new OPEN row inserted
    - ``start_time`` defaults to 1900-01-02; an ``end_time`` closes the cycle
    """
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    fields = fields or {}
    start_time = parse_date_input(fields.get("start_time"), field="startTime") or MODIFY_START_SENTINEL
    end_time = parse_date_input(fields.get("end_time"), field="endTime")
    age = serial_service.parse_age(fields["diecut_age"]) if fields.get("diecut_age") not in (None, "") else None

    with storage_guard("save_modification", diecut_id=diecut_id, diecut_sn=diecut_sn):
        serial, serial_created = _ensure_serial(diecut_id, diecut_sn, actor)
        if age is not None:
            serial.diecut_age = age

        mod = None if serial_created else serial_service.latest_modification(diecut_sn)
        mod_created = mod is None
        if mod_created:
            mod = _new_modification(serial, actor)

        mod.start_time = start_time
        mod.end_time = end_time
        for key in MODIFICATION_FIELDS:
            if key in fields:
                setattr(mod, key, fields[key])
        _set_cycle(mod, CYCLE_CLOSED if end_time else CYCLE_OPEN)
        db.session.commit()

    logger.info(
        "Modification %s", "created" if mod_created else "updated",
        extra={"diecut_id": diecut_id, "diecut_sn": diecut_sn, "user_id": actor.user_id},
    )
    return {
        "created": mod_created,
        "serial": serial.to_dict(),
        "modification": mod.to_dict(),
    }


def save_modifications(items: list[dict], actor: Actor = ANONYMOUS) -> list[dict]:
    """Bulk variant of save_modification; every item is validated up front."""
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one modification is required")
    for item in items:
        require_fields(diecutId=item.get("diecut_id"), diecutSn=item.get("diecut_sn"))

    results = []
    for item in items:
        result = save_modification(item["diecut_id"], item["diecut_sn"], item, actor)
        results.append({"diecut_sn": item["diecut_sn"], "result": result})
    return results


# ── Orders ───────────────────────────────────────────────────────────────────


def order_change(diecut_id: str, diecut_sn: str, modify_type: str, problem_desc: str | None = None,
                 due_date=None, actor: Actor = ANONYMOUS) -> DiecutSerial:
    """Put an SN on order for a modification.

    The SN's status becomes ``modify_type``. A repair ('E') requires a
    problem description; a blade change ('B') increments the SN's
    blade_change_count.
    """
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn, modifyType=modify_type)
    if modify_type == MODIFY_TYPE_REPAIR and not (problem_desc or "").strip():
        raise ValidationError(
            "Problem description is required for repair (E) type",
            details={"problemDesc": "required"},
        )
    parsed_due = parse_date_input(due_date, field="dueDate")

    serial = serial_service.get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("order_change", diecut_id=diecut_id, diecut_sn=diecut_sn):
        serial.status = modify_type
        if parsed_due is not None:
            serial.due_date = parsed_due
        if modify_type == MODIFY_TYPE_BLADE_CHANGE:
            serial.blade_change_count = (serial.blade_change_count or 0) + 1

        mod = _open_or_new(serial, actor)
        mod.modify_type = modify_type
        if problem_desc:
            mod.prob_desc = problem_desc
        mod.order_date = date.today()
        mod.order_by = actor.user_id
        if parsed_due is not None:
            mod.due_date = parsed_due
            mod.due_by = actor.user_id
        db.session.commit()

    logger.info(
        "Order placed: %s", modify_type,
        extra={"diecut_id": diecut_id, "diecut_sn": diecut_sn, "user_id": actor.user_id},
    )
    return serial


def update_order_info(diecut_sn: str, order_date=None, due_date=None, job_id=None, prod_id=None,
                      revision=None, prod_desc=None, actor: Actor = ANONYMOUS,
                      diecut_id: str | None = None) -> dict:
    """Stamp order/due dates on the open modification and the SN.

    Job fields are only written when supplied.
    """
    require_fields(diecutSn=diecut_sn)
    parsed_order = parse_date_input(order_date, field="orderDate")
    parsed_due = parse_date_input(due_date, field="dueDate")

    serial = serial_service.get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("update_order_info", diecut_sn=diecut_sn):
        mod = _open_or_new(serial, actor)
        if parsed_order is not None:
            mod.order_date = parsed_order
            mod.order_by = actor.user_id
        if parsed_due is not None:
            mod.due_date = parsed_due
            mod.due_by = actor.user_id
            serial.due_date = parsed_due
        for key, value in (("job_id", job_id), ("prod_id", prod_id),
                           ("revision", revision), ("prod_desc", prod_desc)):
            if value is not None:
                setattr(serial, key, value)
        db.session.commit()

    return {"serial": serial.to_dict(), "modification": mod.to_dict()}


def cancel_order(diecut_id: str, diecut_sn: str, actor: Actor = ANONYMOUS) -> DiecutModification:
    """Cancel the SN's open modification and retire the SN."""
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    serial = serial_service.get_serial(diecut_sn, diecut_id=diecut_id)

    with storage_guard("cancel_order", diecut_id=diecut_id, diecut_sn=diecut_sn):
        mod = _open_modification(diecut_sn)
        if mod is None:
            raise NotFoundError(resource="Open modification", resource_id=diecut_sn)

        _set_cycle(mod, CYCLE_CANCELLED)
        mod.cancel_flag = True
        mod.cancel_by = actor.user_id
        mod.cancel_date = _utcnow()
        mod.order_date = None
        mod.due_date = None

        serial.status = SN_STATUS_RETIRED
        serial.due_date = None
        db.session.commit()

    logger.info("Order cancelled", extra={"diecut_sn": diecut_sn, "user_id": actor.user_id})
    return mod


# ── Type change ──────────────────────────────────────────────────────────────


def request_type_change(diecut_id: str, diecut_sn: str, from_type: str | None, to_type: str,
                        reason: str | None = None, actor: Actor = ANONYMOUS) -> DiecutModification:
    """Record a pending type change. The SN's live type is not touched."""
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn, modifyType=to_type)
    serial = serial_service.get_serial(diecut_sn, diecut_id=diecut_id)

    with storage_guard("request_type_change", diecut_id=diecut_id, diecut_sn=diecut_sn):
        mod = _current_modification(diecut_sn) or _new_modification(serial, actor)
        _set_type_change(mod, TYPE_CHANGE_PENDING)
        mod.modify_type_req_from = from_type if from_type is not None else serial.diecut_type
        mod.modify_type_req_to = to_type
        mod.modify_type_appv_flag = APPV_FLAG_PENDING
        mod.change_reason = reason
        mod.req_by = actor.user_id
        mod.req_date = _utcnow()
        mod.appv_by = None
        mod.appv_date = None
        db.session.commit()

    logger.info(
        "Type change requested: %s → %s", mod.modify_type_req_from, to_type,
        extra={"diecut_sn": diecut_sn, "user_id": actor.user_id},
    )
    return mod


def _pending_request(diecut_sn: str, target: str) -> DiecutModification:
    mod = _current_modification(diecut_sn)
    current = mod.type_change_state if mod is not None else TYPE_CHANGE_NO_REQUEST
    if current != TYPE_CHANGE_PENDING:
        raise InvalidTransitionError("type change", current, target)
    return mod


def _mark_approved(mod: DiecutModification, actor: Actor) -> None:
    _set_type_change(mod, TYPE_CHANGE_APPROVED)
    mod.modify_type_appv_flag = APPV_FLAG_APPROVED
    mod.appv_by = actor.user_id
    mod.appv_date = _utcnow()


def _apply_type(serial: DiecutSerial, approved_type: str) -> None:
    serial.diecut_type = approved_type
    serial.status = approved_type


def approve_type_change(diecut_id: str, diecut_sn: str, approved_type: str | None = None,
                        actor: Actor = ANONYMOUS) -> DiecutSerial:
    """Approve the pending request and apply the type to the SN.

    ``approved_type`` defaults to the requested target. The flag and the SN
    update are committed together.
    """
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    serial = serial_service.get_serial(diecut_sn, diecut_id=diecut_id)

    with storage_guard("approve_type_change", diecut_id=diecut_id, diecut_sn=diecut_sn):
        mod = _pending_request(diecut_sn, TYPE_CHANGE_APPROVED)
        approved_type = approved_type or mod.modify_type_req_to
        require_fields(approvedType=approved_type)
        _mark_approved(mod, actor)
        _apply_type(serial, approved_type)
        db.session.commit()

    logger.info(
        "Type change approved: %s", approved_type,
        extra={"diecut_sn": diecut_sn, "user_id": actor.user_id},
    )
    return serial


def cancel_type_change(diecut_id: str, diecut_sn: str, actor: Actor = ANONYMOUS) -> dict:
    """Withdraw a pending request. Requested values stay on the row."""
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    serial_service.get_serial(diecut_sn, diecut_id=diecut_id)

    with storage_guard("cancel_type_change", diecut_id=diecut_id, diecut_sn=diecut_sn):
        mod = _pending_request(diecut_sn, TYPE_CHANGE_NO_REQUEST)
        _set_type_change(mod, TYPE_CHANGE_NO_REQUEST)
        mod.modify_type_appv_flag = None
        original_type = mod.modify_type_req_from
        db.session.commit()

    logger.info("Type change cancelled", extra={"diecut_sn": diecut_sn, "user_id": actor.user_id})
    return {"original_type": original_type}
