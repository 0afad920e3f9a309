"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database, job registry and request stats
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from compliance_desk.middleware.timing import get_recent_metrics
from compliance_desk.models import db
from compliance_desk.services.scheduler_service import get_registered_jobs

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


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
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Document store ───────────────────────────────────────────────
    store = current_app.extensions.get("document_store")
    checks["document_store"] = {
        "status": "ok" if store is not None else "not_configured",
        "backend": current_app.config.get("DOCUMENT_STORE_BACKEND", "local"),
    }

    # ── Jobs & traffic ───────────────────────────────────────────────
    checks["jobs"] = {"registered": sorted(get_registered_jobs())}
    recent = get_recent_metrics(300)
    errors = sum(1 for m in recent if m["status"] >= 500)
    checks["requests_5m"] = {"count": len(recent), "server_errors": errors}

    checks["app"] = {
        "name": "Compliance Desk",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
