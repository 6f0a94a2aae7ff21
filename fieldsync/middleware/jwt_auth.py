"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.user_id / g.organization_id.

Authentication itself lives in an external service; this service only
verifies the Bearer token it issued and exposes the caller identity.
Requests without a valid token keep an empty identity; blueprints decide
whether that is acceptable (see ``require_identity``).
"""

import logging

import jwt as pyjwt
from flask import g, request

from fieldsync.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.user_id = None
        g.organization_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
            return

        try:
            g.user_id = int(payload["sub"])
            g.organization_id = int(payload["organization_id"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Access token missing identity claims on %s", path)
            g.user_id = None
            g.organization_id = None
