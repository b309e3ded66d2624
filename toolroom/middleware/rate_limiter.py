"""
Per-area request limits (Flask-Limiter).

The limiter object lives in ``toolroom/__init__.py`` with no default limit;
``init_rate_limits`` attaches one limit per blueprint from ``BLUEPRINT_LIMITS``.
Requests are counted per acting user, or per client address when anonymous.
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

# blueprint name -> limit; None means exempt
BLUEPRINT_LIMITS = {
    "diecut": "60/minute",
    "modification": "60/minute",
    "status": "200/minute",   # dashboards poll the wear report
    "health": None,
}


def actor_rate_limit_key():
    actor = getattr(g, "actor", None)
    if actor is not None and actor.user_id:
        return f"{actor.org_id or '-'}:{actor.user_id}"
    return request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        return

    applied = {}
    for name, limit in BLUEPRINT_LIMITS.items():
        blueprint = app.blueprints.get(name)
        if blueprint is None:
            continue
        if limit is None:
            limiter.exempt(blueprint)
        else:
            limiter.limit(limit, key_func=actor_rate_limit_key)(blueprint)
        applied[name] = limit or "exempt"

    logger.info("Rate limits applied: %s", applied)
