"""
Diecut Blueprint — catalog and serial number ledger.

Endpoints (all under /api/v1/diecuts):
    GET    /                          list ACTIVE diecuts
    POST   /                          create (JSON or multipart with "image")
    GET    /<diecut_id>               one ACTIVE diecut
    PUT    /<diecut_id>               partial update (JSON or multipart)
    DELETE /<diecut_id>               soft delete
    POST   /<diecut_id>/serial        issue the next SN
    POST   /<diecut_id>/serials/batch register a list of SNs
    GET    /<diecut_id>/serials       SN list with latest modification
    GET    /<diecut_id>/serials/<sn>  SN detail with history
    GET    /types                     operational type master
    POST   /openjobs                  open job orders for a diecut
    POST   /serials/<sn>/job          job assignment
    POST   /serials/<sn>/due-date     due date
    POST   /serials/<sn>/reset        wear counter reset
    GET    /serials/<sn>/blade-changes

Layer contract:
    - Blueprint: parse payload (camelCase accepted), call service, wrap envelope.
    - NO db.session calls here; services own every write.
"""

import logging

from flask import Blueprint, request

from toolroom.middleware.identity_context import current_actor
from toolroom.services import catalog_service, serial_service, sql_template_service
from toolroom.utils.errors import api_ok
from toolroom.utils.helpers import pick

logger = logging.getLogger(__name__)

diecut_bp = Blueprint("diecut", __name__, url_prefix="/api/v1/diecuts")

# payload key → catalog attribute
_CATALOG_KEYS = {
    "diecutName": "diecut_name",
    "diecut_name": "diecut_name",
    "diecutType": "diecut_type",
    "diecut_type": "diecut_type",
    "diecutDesc": "diecut_desc",
    "diecut_desc": "diecut_desc",
    "blankSizeX": "blank_size_x",
    "blank_size_x": "blank_size_x",
    "blankSizeY": "blank_size_y",
    "blank_size_y": "blank_size_y",
}


def _payload():
    """JSON body, or the form fields of a multipart upload."""
    if request.mimetype == "multipart/form-data":
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def _catalog_attributes(data: dict) -> dict:
    attrs = {}
    for key, attr in _CATALOG_KEYS.items():
        if key in data:
            value = data[key]
            if attr.startswith("blank_size") and value == "":
                value = None
            attrs[attr] = value
    return attrs


# ── Catalog ──────────────────────────────────────────────────────────────────


@diecut_bp.route("", methods=["GET"])
def list_diecuts():
    diecuts = catalog_service.list_active()
    return api_ok("Diecuts retrieved successfully", {"diecuts": [d.to_dict() for d in diecuts]})


@diecut_bp.route("", methods=["POST"])
def create_diecut():
    data = _payload()
    actor = current_actor()
    diecut = catalog_service.create(
        pick(data, "diecutId", "diecut_id"),
        _catalog_attributes(data),
        actor.user_id,
        image=request.files.get("image"),
    )
    return api_ok("Diecut created successfully", {"diecut": diecut.to_dict()}, status=201)


@diecut_bp.route("/<diecut_id>", methods=["GET"])
def get_diecut(diecut_id):
    diecut = catalog_service.get_by_id(diecut_id)
    return api_ok("Diecut retrieved successfully", {"diecut": diecut.to_dict()})


@diecut_bp.route("/<diecut_id>", methods=["PUT"])
def update_diecut(diecut_id):
    data = _payload()
    diecut = catalog_service.update(
        diecut_id,
        _catalog_attributes(data),
        current_actor().user_id,
        image=request.files.get("image"),
    )
    return api_ok("Diecut updated successfully", {"diecut": diecut.to_dict()})


@diecut_bp.route("/<diecut_id>", methods=["DELETE"])
def delete_diecut(diecut_id):
    catalog_service.soft_delete(diecut_id, current_actor().user_id)
    return api_ok("Diecut deleted successfully")


# ── Serial numbers ───────────────────────────────────────────────────────────


@diecut_bp.route("/<diecut_id>/serial", methods=["POST"])
def issue_serial(diecut_id):
    data = request.get_json(silent=True) or {}
    serial = serial_service.issue_next(
        diecut_id,
        diecut_age=pick(data, "diecutAge", "diecut_age", default=0),
        actor=current_actor(),
    )
    return api_ok("Diecut SN created successfully", {"serial": serial.to_dict()}, status=201)


@diecut_bp.route("/<diecut_id>/serials/batch", methods=["POST"])
def register_serials(diecut_id):
    data = request.get_json(silent=True) or {}
    result = serial_service.register_batch(
        diecut_id,
        pick(data, "SNList", "snList", "sn_list"),
        pick(data, "diecutType", "DIECUT_TYPE", "diecut_type"),
        pick(data, "status", "STATUS"),
        actor=current_actor(),
    )
    return api_ok(
        "Diecut SN list saved successfully",
        {"diecut_id": diecut_id, **result},
        status=201 if result["saved_count"] else 200,
    )


@diecut_bp.route("/<diecut_id>/serials", methods=["GET"])
def list_serials(diecut_id):
    rows = serial_service.get_by_diecut(diecut_id)
    return api_ok("Diecut SN list retrieved successfully", {"diecut_id": diecut_id, "serials": rows})


@diecut_bp.route("/<diecut_id>/serials/<diecut_sn>", methods=["GET"])
def get_serial(diecut_id, diecut_sn):
    row = serial_service.get_detail(diecut_id, diecut_sn)
    return api_ok("Diecut SN retrieved successfully", {"serial": row})


@diecut_bp.route("/types", methods=["GET"])
def list_types():
    return api_ok("Diecut types retrieved successfully", {"types": serial_service.list_types()})


@diecut_bp.route("/openjobs", methods=["POST"])
def open_jobs():
    data = request.get_json(silent=True) or {}
    diecut_id = pick(data, "diecutId", "diecut_id")
    jobs = sql_template_service.open_jobs(
        diecut_id,
        diecut_type=pick(data, "diecutType", "DIECUT_TYPE"),
        diecut_sn=pick(data, "diecutSn", "diecutSN", "DIECUT_SN"),
    )
    return api_ok("Open jobs retrieved successfully", {"diecut_id": diecut_id, "jobs": jobs})


@diecut_bp.route("/serials/<diecut_sn>/job", methods=["POST"])
def update_job(diecut_sn):
    data = request.get_json(silent=True) or {}
    serial = serial_service.update_job_info(
        diecut_sn,
        job_id=pick(data, "jobId", "job_id"),
        prod_id=pick(data, "prodId", "prod_id"),
        revision=pick(data, "revision", "REVISION"),
        prod_desc=pick(data, "prodDesc", "prod_desc"),
        diecut_id=pick(data, "diecutId", "diecut_id"),
    )
    return api_ok("Job information saved successfully", {"serial": serial.to_dict()})


@diecut_bp.route("/serials/<diecut_sn>/due-date", methods=["POST"])
def update_due_date(diecut_sn):
    data = request.get_json(silent=True) or {}
    serial = serial_service.update_due_date(
        diecut_sn,
        pick(data, "dueDate", "due_date"),
        diecut_id=pick(data, "diecutId", "diecut_id"),
    )
    return api_ok("Due date saved successfully", {"serial": serial.to_dict()})


@diecut_bp.route("/serials/<diecut_sn>/reset", methods=["POST"])
def reset_wear(diecut_sn):
    data = request.get_json(silent=True) or {}
    event = serial_service.reset_wear(
        diecut_sn,
        actor=current_actor(),
        diecut_id=pick(data, "diecutId", "diecut_id"),
    )
    return api_ok("Wear counter reset", {"reset": event.to_dict()}, status=201)


@diecut_bp.route("/serials/<diecut_sn>/blade-changes", methods=["GET"])
def blade_changes(diecut_sn):
    count = serial_service.blade_change_count(request.args.get("diecutId"), diecut_sn)
    return api_ok(
        "Blade change count retrieved successfully",
        {"diecut_sn": diecut_sn, "blade_change_count": count},
    )
