"""
Serial Number Ledger — Service Layer.

Business logic for diecut serial numbers (SNs):
    - SN generation:     "{diecut_id}-0001", "{diecut_id}-0002", ... (diecut-scoped)
    - Batch registration: idempotent by skip, one commit per item
    - Listing / detail:   SN rows joined with their latest modification
    - Job assignment, due date, wear reset, blade-change counter

Concurrency:
    next_serial() reads the current maximum suffix, so two callers can
    compute the same value. issue_next() relies on the diecut_serials primary
    key as the serialization point: the losing insert fails with a duplicate
    key, the suffix is recomputed and the insert retried.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import FlushError

from toolroom.core.exceptions import ConflictError, NotFoundError, ValidationError
from toolroom.core.identity import ANONYMOUS, Actor
from toolroom.models import db
from toolroom.models.diecut import (
    BATCH_START_SENTINEL,
    BLADE_TYPE_LABELS,
    CYCLE_OPEN,
    MODIFY_TYPE_NONE,
    DiecutModification,
    DiecutSerial,
    DiecutTypeMaster,
    MultiBladeReason,
    ResetEvent,
)
from toolroom.services import catalog_service
from toolroom.utils.helpers import parse_date_input, require_fields, storage_guard

logger = logging.getLogger(__name__)

ISSUE_MAX_ATTEMPTS = 3

# Modification columns merged into SN list/detail rows
_MODIFICATION_FIELDS = (
    "start_time",
    "end_time",
    "blade_type",
    "multi_blade_reason",
    "multi_blade_remark",
    "prob_desc",
    "remark",
    "modify_type",
    "cycle_state",
    "modify_type_req_from",
    "modify_type_req_to",
    "modify_type_appv_flag",
)


# ── SN generation ────────────────────────────────────────────────────────────


def format_serial(diecut_id: str, sequence: int) -> str:
    return f"{diecut_id}-{sequence:04d}"


def _max_suffix(diecut_id: str) -> int:
    """Largest numeric suffix among the diecut's SNs; 0 when there are none.

    SNs whose suffix is not numeric (legacy hand-entered values) are ignored.
    """
    prefix_len = len(diecut_id) + 1
    rows = db.session.execute(
        select(DiecutSerial.diecut_sn).where(DiecutSerial.diecut_id == diecut_id)
    ).scalars()
    best = 0
    for sn in rows:
        suffix = sn[prefix_len:]
        if sn.startswith(f"{diecut_id}-") and suffix.isdigit():
            best = max(best, int(suffix))
    return best


def next_serial(diecut_id: str) -> str:
    """Return the SN the next issue_next() call would try to insert."""
    require_fields(diecutId=diecut_id)
    with storage_guard("next_serial", diecut_id=diecut_id):
        return format_serial(diecut_id, _max_suffix(diecut_id) + 1)


def issue_next(diecut_id: str, diecut_age: int = 0, actor: Actor = ANONYMOUS) -> DiecutSerial:
    """Generate and persist the next SN for an ACTIVE diecut.

    The new SN inherits the diecut's type and starts with status 'N'.
    Duplicate-key collisions with a concurrent issuer are retried up to
    ISSUE_MAX_ATTEMPTS times.
    """
    diecut = catalog_service.get_by_id(diecut_id)
    age = parse_age(diecut_age)

    sn = None
    for attempt in range(1, ISSUE_MAX_ATTEMPTS + 1):
        with storage_guard("issue_next", diecut_id=diecut_id):
            sn = format_serial(diecut_id, _max_suffix(diecut_id) + 1)
            serial = DiecutSerial(
                diecut_sn=sn,
                diecut_id=diecut_id,
                diecut_type=diecut.diecut_type,
                diecut_age=age,
                status=MODIFY_TYPE_NONE,
                cr_org_id=actor.org_id,
                cr_user_id=actor.user_id,
            )
            db.session.add(serial)
            try:
                db.session.commit()
            except (IntegrityError, FlushError):
                db.session.rollback()
                logger.warning(
                    "SN collision on %s (attempt %d/%d), retrying",
                    sn, attempt, ISSUE_MAX_ATTEMPTS,
                    extra={"diecut_id": diecut_id, "diecut_sn": sn},
                )
                continue
        logger.info("SN issued", extra={"diecut_id": diecut_id, "diecut_sn": sn})
        return serial

    raise ConflictError(resource="DiecutSerial", field="diecut_sn", value=sn)


def parse_age(value) -> int:
    if value in (None, ""):
        return 0
    try:
        age = int(value)
    except (TypeError, ValueError):
        raise ValidationError("diecutAge must be an integer", details={"diecutAge": str(value)})
    if age < 0:
        raise ValidationError("diecutAge cannot be negative", details={"diecutAge": str(value)})
    return age


# ── Batch registration ───────────────────────────────────────────────────────


def _sn_value(entry) -> str:
    if isinstance(entry, dict):
        entry = entry.get("diecut_sn") or entry.get("DIECUT_SN") or entry.get("diecutSn")
    return (entry or "").strip() if isinstance(entry, str) else ""


def register_batch(
    diecut_id: str,
    sn_list: list,
    diecut_type: str | None,
    initial_status: str | None,
    actor: Actor = ANONYMOUS,
) -> dict:
    """Register a list of SNs for a diecut.

    Per entry:
      - blank SN → ignored
      - SN already on file → skipped_count += 1
      - otherwise insert the SN plus a zero-usage OPEN modification whose
        modify_type equals the initial status; both rows commit together.

    The diecut must exist and be ACTIVE (NotFoundError otherwise).
    Items are independent: a storage failure on item k propagates as
    StorageError and leaves items 0..k-1 committed.
    """
    require_fields(diecutId=diecut_id)
    if not isinstance(sn_list, list) or not sn_list:
        raise ValidationError("SNList must be a non-empty array", details={"SNList": "required"})
    catalog_service.get_by_id(diecut_id)

    status = (initial_status or "").strip() or MODIFY_TYPE_NONE
    saved = modified = skipped = 0

    logger.info("Registering %d SN entries", len(sn_list), extra={"diecut_id": diecut_id})
    for entry in sn_list:
        sn = _sn_value(entry)
        if not sn:
            logger.warning("Skipping entry with missing DIECUT_SN", extra={"diecut_id": diecut_id})
            continue

        with storage_guard("register_batch", diecut_id=diecut_id, diecut_sn=sn):
            if db.session.get(DiecutSerial, sn) is not None:
                logger.warning("Skipping duplicate DIECUT_SN %s", sn, extra={"diecut_sn": sn})
                skipped += 1
                continue

            db.session.add(DiecutSerial(
                diecut_sn=sn,
                diecut_id=diecut_id,
                diecut_type=diecut_type,
                diecut_age=0,
                status=status,
                cr_org_id=actor.org_id,
                cr_user_id=actor.user_id,
            ))
            db.session.add(DiecutModification(
                diecut_sn=sn,
                cycle_state=CYCLE_OPEN,
                start_time=BATCH_START_SENTINEL,
                modify_type=status,
                cr_org_id=actor.org_id,
                cr_user_id=actor.user_id,
            ))
            db.session.commit()
        saved += 1
        modified += 1

    result = {"saved_count": saved, "modify_count": modified, "skipped_count": skipped}
    logger.info("SN batch registered", extra={"diecut_id": diecut_id, **result})
    return result


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_serial(diecut_sn: str, diecut_id: str | None = None) -> DiecutSerial:
    """Fetch an SN (optionally checking it belongs to diecut_id)."""
    require_fields(diecutSn=diecut_sn)
    with storage_guard("get_serial", diecut_sn=diecut_sn):
        serial = db.session.get(DiecutSerial, diecut_sn)
    if serial is None or (diecut_id and serial.diecut_id != diecut_id):
        raise NotFoundError(resource="DiecutSerial", resource_id=diecut_sn)
    return serial


def latest_modification(diecut_sn: str) -> DiecutModification | None:
    return db.session.execute(
        select(DiecutModification)
        .where(DiecutModification.diecut_sn == diecut_sn)
        .order_by(DiecutModification.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _merge_row(serial: DiecutSerial, modification: DiecutModification | None) -> dict:
    row = serial.to_dict()
    mod = modification.to_dict() if modification is not None else {}
    for key in _MODIFICATION_FIELDS:
        row[key] = mod.get(key)
    return row


def get_by_diecut(diecut_id: str) -> list[dict]:
    """All SNs of a diecut (any status) with their latest modification, by SN."""
    require_fields(diecutId=diecut_id)
    latest = (
        select(
            DiecutModification.diecut_sn.label("diecut_sn"),
            func.max(DiecutModification.id).label("mod_id"),
        )
        .group_by(DiecutModification.diecut_sn)
        .subquery()
    )
    stmt = (
        select(DiecutSerial, DiecutModification)
        .outerjoin(latest, latest.c.diecut_sn == DiecutSerial.diecut_sn)
        .outerjoin(DiecutModification, DiecutModification.id == latest.c.mod_id)
        .where(DiecutSerial.diecut_id == diecut_id)
        .order_by(DiecutSerial.diecut_sn.asc())
    )
    with storage_guard("get_by_diecut", diecut_id=diecut_id):
        return [_merge_row(serial, mod) for serial, mod in db.session.execute(stmt).all()]


def _reason_text(reason: str | None) -> str | None:
    """Translate a reason code into its description; free text passes through."""
    if not reason:
        return None
    master = db.session.get(MultiBladeReason, reason)
    return master.reason_desc if master is not None else reason


def get_detail(diecut_id: str, diecut_sn: str) -> dict:
    """One SN with its latest modification, labels and modification history."""
    require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    serial = get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("get_detail", diecut_id=diecut_id, diecut_sn=diecut_sn):
        history = list(serial.modifications.order_by(DiecutModification.id.asc()))
        current = history[-1] if history else None
        row = _merge_row(serial, current)
        row["blade_type_label"] = BLADE_TYPE_LABELS.get(row.get("blade_type"))
        row["multi_blade_reason_desc"] = _reason_text(row.get("multi_blade_reason"))
        row["history"] = [m.to_dict() for m in history]
    return row


def blade_change_count(diecut_id: str | None, diecut_sn: str) -> int:
    return get_serial(diecut_sn, diecut_id=diecut_id).blade_change_count or 0


def list_types() -> list[dict]:
    with storage_guard("list_types"):
        rows = db.session.execute(
            select(DiecutTypeMaster).order_by(DiecutTypeMaster.type_code)
        ).scalars()
        return [t.to_dict() for t in rows]


# ── Assignment / schedule updates ────────────────────────────────────────────


def update_job_info(diecut_sn: str, job_id=None, prod_id=None, revision=None,
                    prod_desc=None, diecut_id=None) -> DiecutSerial:
    """Record the production job currently assigned to an SN."""
    serial = get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("update_job_info", diecut_sn=diecut_sn):
        serial.job_id = job_id
        serial.prod_id = prod_id
        serial.revision = revision
        serial.prod_desc = prod_desc
        db.session.commit()
    logger.info("SN job assignment updated", extra={"diecut_sn": diecut_sn, "job_id": job_id})
    return serial


def update_due_date(diecut_sn: str, due_date, diecut_id=None) -> DiecutSerial:
    parsed = parse_date_input(due_date, field="dueDate")
    serial = get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("update_due_date", diecut_sn=diecut_sn):
        serial.due_date = parsed
        db.session.commit()
    return serial


def reset_wear(diecut_sn: str, actor: Actor = ANONYMOUS, diecut_id=None) -> ResetEvent:
    """Start a new wear period: usage logged before now stops counting."""
    get_serial(diecut_sn, diecut_id=diecut_id)
    with storage_guard("reset_wear", diecut_sn=diecut_sn):
        event = ResetEvent(
            diecut_sn=diecut_sn,
            reset_date=datetime.now(timezone.utc),
            reset_by=actor.user_id,
        )
        db.session.add(event)
        db.session.commit()
    logger.info("Wear counter reset", extra={"diecut_sn": diecut_sn, "user_id": actor.user_id})
    return event
