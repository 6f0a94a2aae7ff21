"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in fieldsync/__init__.py with no default limits; this module applies
limits per route category, keyed by caller identity when one is present.

Usage:
    from fieldsync.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

FIELD_APP_LIMIT = "120/minute"


def caller_rate_limit_key():
    """Rate limit key: authenticated user if available, else remote IP."""
    user_id = getattr(g, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Field app endpoints: 120/minute per caller (sync, download, uploads)
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("field_app")
    if bp:
        limiter.limit(FIELD_APP_LIMIT, key_func=caller_rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — field app: %s", FIELD_APP_LIMIT)
