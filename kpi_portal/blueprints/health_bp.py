"""
Health Blueprint.

Endpoints:
    GET /api/v1/health/ready  — process is up (no I/O)
    GET /api/v1/health/live   — state store reachable; reports backend and document version
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from kpi_portal.models import db
from kpi_portal.services.portal import get_portal
from kpi_portal.services.state_store import SqlStateStore

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _ping_database():
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok"}


def _timed(check):
    started = time.perf_counter()
    result = check()
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 1)
    return result


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


@health_bp.route("/live", methods=["GET"])
def live():
    store = get_portal().store
    checks = {}

    if isinstance(store, SqlStateStore):
        try:
            checks["database"] = _timed(_ping_database)
        except Exception as exc:
            db.session.rollback()
            logger.error("Health check: database unreachable: %s", exc)
            checks["database"] = {"status": "error", "detail": str(exc)}

    try:
        checks["state"] = _timed(lambda: {
            "status": "ok",
            "backend": current_app.config.get("STATE_BACKEND", "sql"),
            "key": store.key,
            "version": store.current_version(),
        })
    except Exception as exc:
        logger.error("Health check: state document unreadable: %s", exc)
        checks["state"] = {"status": "error", "detail": str(exc)}

    healthy = all(c["status"] == "ok" for c in checks.values())
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
