"""
Liveness/readiness check.

    GET /api/v1/health
        200 {"status": "ok", "checks": {...}}
        503 {"status": "degraded", ...} when the database cannot be reached

The image directory is reported but does not fail the check; catalog reads
and the wear report work without it.
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from toolroom.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Database check failed: %s", exc, extra={"operation": "health"})
        return {"status": "error"}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_image_dir():
    path = current_app.config.get("DIECUT_IMAGE_DIR")
    if path and os.path.isdir(path) and os.access(path, os.W_OK):
        return {"status": "ok"}
    return {"status": "missing"}


@health_bp.route("", methods=["GET"])
def health():
    checks = {
        "database": _check_database(),
        "image_dir": _check_image_dir(),
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
