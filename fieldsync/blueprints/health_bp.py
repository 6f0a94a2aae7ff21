"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (database, upload folder)
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from fieldsync.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error"}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Upload storage ───────────────────────────────────────────────
    upload_root = current_app.config.get("UPLOAD_FOLDER", "")
    if os.path.isdir(upload_root):
        writable = os.access(upload_root, os.W_OK)
        checks["uploads"] = {"status": "ok" if writable else "read_only"}
        overall = overall and writable
    else:
        # Created lazily on first upload
        checks["uploads"] = {"status": "not_created"}

    checks["app"] = {
        "name": "Field Sync Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
