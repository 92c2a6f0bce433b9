"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database, object store and realtime status
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from app.models import db
from app.services.realtime import get_change_bus

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check: always 200 while the app is running."""
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
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Object store ─────────────────────────────────────────────────
    upload_root = current_app.config.get("UPLOAD_FOLDER", "")
    if upload_root and os.path.isdir(upload_root):
        writable = os.access(upload_root, os.W_OK)
        checks["storage"] = {"status": "ok" if writable else "read_only"}
    else:
        # Created lazily on first upload
        checks["storage"] = {"status": "not_created"}

    # ── Realtime bus ─────────────────────────────────────────────────
    checks["realtime"] = {"status": "ok", "subscribers": get_change_bus().subscriber_count}

    checks["app"] = {
        "name": "Notice Board",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
