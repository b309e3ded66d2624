"""
Modification Workflow Blueprint.

Endpoints (all POST, under /api/v1/diecuts):
    /modifications          save one modification, or a JSON array of them
    /orders/change          order a blade change / repair / other modification
    /orders/cancel          cancel the open order and retire the SN
    /orders/info            order/due dates and job fields
    /type-change/request    request a type change (pending approval)
    /type-change/approve    approve and apply to the SN
    /type-change/cancel     withdraw a pending request
"""

import logging

from flask import Blueprint, request

from toolroom.middleware.identity_context import current_actor
from toolroom.services import modification_service
from toolroom.utils.errors import api_ok
from toolroom.utils.helpers import pick

logger = logging.getLogger(__name__)

modification_bp = Blueprint("modification", __name__, url_prefix="/api/v1/diecuts")

# payload key → modification field, for keys that are passed through as-is
_MODIFICATION_KEYS = {
    "diecutAge": "diecut_age",
    "startTime": "start_time",
    "endTime": "end_time",
    "bladeType": "blade_type",
    "multiBladeReason": "multi_blade_reason",
    "multiBladeRemark": "multi_blade_remark",
    "probDesc": "prob_desc",
    "remark": "remark",
}


def _ids(data):
    return (
        pick(data, "diecutId", "diecut_id"),
        pick(data, "diecutSn", "diecutSN", "diecut_sn"),
    )


def _modification_item(data: dict) -> dict:
    diecut_id, diecut_sn = _ids(data)
    item = {"diecut_id": diecut_id, "diecut_sn": diecut_sn}
    for key, field in _MODIFICATION_KEYS.items():
        if key in data:
            item[field] = data[key]
        elif field in data:
            item[field] = data[field]
    return item


@modification_bp.route("/modifications", methods=["POST"])
def save_modifications():
    data = request.get_json(silent=True)
    actor = current_actor()
    if isinstance(data, list):
        results = modification_service.save_modifications(
            [_modification_item(d or {}) for d in data], actor=actor,
        )
        return api_ok(
            f"Blade modification{'s' if len(results) > 1 else ''} saved successfully",
            {"results": results},
        )

    item = _modification_item(data or {})
    result = modification_service.save_modification(item["diecut_id"], item["diecut_sn"], item, actor=actor)
    return api_ok(
        "Blade data created" if result["created"] else "Blade data updated",
        result,
        status=201 if result["created"] else 200,
    )


@modification_bp.route("/orders/change", methods=["POST"])
def order_change():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    serial = modification_service.order_change(
        diecut_id,
        diecut_sn,
        pick(data, "modifyType", "modify_type"),
        problem_desc=pick(data, "problemDesc", "probDesc", "prob_desc"),
        due_date=pick(data, "dueDate", "due_date"),
        actor=current_actor(),
    )
    return api_ok("Diecut saved successfully", {"serial": serial.to_dict()})


@modification_bp.route("/orders/cancel", methods=["POST"])
def cancel_order():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    mod = modification_service.cancel_order(diecut_id, diecut_sn, actor=current_actor())
    return api_ok("Order cancelled successfully", {"diecut_sn": diecut_sn, "modification": mod.to_dict()})


@modification_bp.route("/orders/info", methods=["POST"])
def update_order_info():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    result = modification_service.update_order_info(
        diecut_sn,
        order_date=pick(data, "orderDate", "order_date"),
        due_date=pick(data, "dueDate", "due_date"),
        job_id=pick(data, "jobId", "job_id"),
        prod_id=pick(data, "prodId", "prod_id"),
        revision=pick(data, "revision", "REVISION"),
        prod_desc=pick(data, "prodDesc", "prod_desc"),
        actor=current_actor(),
        diecut_id=diecut_id,
    )
    return api_ok("Order information saved successfully", result)


@modification_bp.route("/type-change/request", methods=["POST"])
def request_type_change():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    mod = modification_service.request_type_change(
        diecut_id,
        diecut_sn,
        from_type=pick(data, "modifyTypeBefore", "fromType"),
        to_type=pick(data, "modifyType", "toType"),
        reason=pick(data, "changeReason", "reason"),
        actor=current_actor(),
    )
    return api_ok("Type change requested", {"modification": mod.to_dict()})


@modification_bp.route("/type-change/approve", methods=["POST"])
def approve_type_change():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    serial = modification_service.approve_type_change(
        diecut_id,
        diecut_sn,
        approved_type=pick(data, "modifyType", "approvedType"),
        actor=current_actor(),
    )
    return api_ok("Type change approved", {"serial": serial.to_dict()})


@modification_bp.route("/type-change/cancel", methods=["POST"])
def cancel_type_change():
    data = request.get_json(silent=True) or {}
    diecut_id, diecut_sn = _ids(data)
    result = modification_service.cancel_type_change(diecut_id, diecut_sn, actor=current_actor())
    return api_ok("Type change cancelled", result)
