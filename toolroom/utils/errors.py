"""Standard JSON envelope and error handlers.

Every endpoint answers with::

    {"success": bool, "message": str, "data": {...}}   # data only on success

Usage
-----
    from toolroom.utils.errors import api_ok, api_error, E

    return api_ok("Diecut created successfully", {"diecut": d}, status=201)
    return api_error(E.VALIDATION_REQUIRED, "diecutSn is required")
"""

from __future__ import annotations

import logging

from flask import current_app, jsonify, request

from toolroom.core.exceptions import (
    ConflictError,
    DeadlineExceededError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500 / 504
    DATABASE = "ERR_DATABASE"
    DEADLINE = "ERR_DEADLINE_EXCEEDED"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.DEADLINE: 504,
    E.INTERNAL: 500,
}


def api_ok(message: str, data: dict | None = None, *, status: int = 200):
    """Return a success envelope. ``data`` is omitted when None."""
    body: dict = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a failure envelope.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``, then 400.
    details : dict, optional
        Field-level breakdown for validation failures.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "message": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def init_error_handlers(app):
    """Register envelope renderers for the service exception hierarchy."""

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @app.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        return api_error(E.CONFLICT_STATE, str(error))

    @app.errorhandler(DeadlineExceededError)
    def _handle_deadline(error: DeadlineExceededError):
        return api_error(E.DEADLINE, str(error))

    @app.errorhandler(StorageError)
    def _handle_storage(error: StorageError):
        message = str(error)
        if not current_app.debug:
            message = "Database error"
        return api_error(E.DATABASE, message)

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, f"Not found: {request.path}")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429)

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error on %s: %s", request.path, e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
