"""
Per-request timing and correlation ids.

Every response carries ``X-Request-ID`` (echoed from the caller when sent)
and ``X-Request-Duration-Ms``. Finished requests are logged at a level
picked from the outcome; health checks are not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

UNLOGGED_PATHS = frozenset({"/api/v1/health"})


def _log_level(status_code: int, duration_ms: float, slow_ms: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > slow_ms:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path not in UNLOGGED_PATHS:
            route_args = request.view_args or {}
            logger.log(
                _log_level(response.status_code, elapsed, slow_ms),
                "%s %s -> %d",
                request.method, request.path, response.status_code,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed,
                    "remote_addr": request.remote_addr,
                    "diecut_id": route_args.get("diecut_id"),
                    "diecut_sn": route_args.get("diecut_sn"),
                },
            )
        return response
