"""
Identity Context Middleware — resolves the acting user into ``g.actor``.

Authentication happens upstream; this service only reads the result.

Priority order:
  1. JWT (Authorization: Bearer <token>, HS256 signed with SECRET_KEY)
     claims ORG_ID / EMP_ID, or org_id / sub
  2. Trusted gateway headers X-Org-Id / X-User-Id
  3. Anonymous

When IDENTITY_REQUIRED is set, mutating API requests without a user get 401.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from toolroom.core.identity import ANONYMOUS, Actor
from toolroom.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that never need an identity
IDENTITY_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _claim(payload, *names):
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def actor_from_token(token):
    """Decode a bearer token into an Actor, or None when it is not valid."""
    try:
        payload = pyjwt.decode(
            token,
            current_app.config["SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired bearer token ignored")
        return None
    except pyjwt.InvalidTokenError as exc:
        logger.info("Invalid bearer token ignored: %s", exc)
        return None
    return Actor(
        org_id=_claim(payload, "ORG_ID", "org_id"),
        user_id=_claim(payload, "EMP_ID", "sub"),
    )


def _resolve_actor():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        actor = actor_from_token(auth_header[7:])
        if actor is not None:
            return actor

    user_id = request.headers.get("X-User-Id")
    if user_id:
        return Actor(org_id=request.headers.get("X-Org-Id"), user_id=user_id)
    return ANONYMOUS


def current_actor() -> Actor:
    return getattr(g, "actor", None) or ANONYMOUS


def init_identity_context(app):
    """Register the identity resolver as a before_request hook."""

    @app.before_request
    def _identity_context():
        g.actor = ANONYMOUS

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in IDENTITY_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        g.actor = _resolve_actor()

        if (
            current_app.config.get("IDENTITY_REQUIRED")
            and request.method in MUTATING_METHODS
            and g.actor.is_anonymous
        ):
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return None
