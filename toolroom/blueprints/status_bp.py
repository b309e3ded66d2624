"""
Wear status report endpoints.

    GET /api/v1/diecuts/status?diecutId=&diecutType=&priority=
        diecutType may repeat or be comma-separated.
    GET /api/v1/diecuts/status/summary
"""

from flask import Blueprint, request

from toolroom.services import wear_service
from toolroom.utils.errors import api_ok

status_bp = Blueprint("status", __name__, url_prefix="/api/v1/diecuts")


def _types_arg():
    types = set()
    for raw in request.args.getlist("diecutType"):
        types.update(t for t in raw.split(",") if t.strip())
    return types


@status_bp.route("/status", methods=["GET"])
def status_report():
    filters = wear_service.StatusFilter(
        diecut_id=request.args.get("diecutId") or None,
        diecut_types=_types_arg(),
        priority=request.args.get("priority") or None,
    )
    rows = wear_service.status_report(filters)
    return api_ok("Diecut status report retrieved successfully", {"rows": rows, "count": len(rows)})


@status_bp.route("/status/summary", methods=["GET"])
def status_summary():
    return api_ok("Diecut status summary retrieved successfully", wear_service.status_summary())
