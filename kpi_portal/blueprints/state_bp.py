"""
KPI Portal
State Blueprint — aggregate snapshot and the admin preview cursor.

Endpoints:
    GET  /api/v1/state                  — whole aggregate (password hashes stripped)
    PUT  /api/v1/state/preview          — set previewDepartmentCode (admin)
    POST /api/v1/state/purge-orphans    — drop dangling notification/activity refs (admin)
    POST /api/v1/state/reset            — restore seed data (admin)
"""

import logging

from flask import Blueprint, jsonify

from kpi_portal.auth import require_role
from kpi_portal.blueprints import json_body
from kpi_portal.services.portal import get_portal

logger = logging.getLogger(__name__)

state_bp = Blueprint("state_bp", __name__, url_prefix="/api/v1")


@state_bp.route("/state", methods=["GET"])
def get_state():
    return jsonify(get_portal().state.to_dict(include_secrets=False))


@state_bp.route("/state/preview", methods=["PUT"])
@require_role("admin")
def set_preview():
    data = json_body()
    state = get_portal().set_preview_department(data.get("departmentCode"))
    return jsonify({"previewDepartmentCode": state.preview_department_code, "version": state.version})


@state_bp.route("/state/purge-orphans", methods=["POST"])
@require_role("admin")
def purge_orphans():
    portal = get_portal()
    before = portal.state
    after = portal.purge_orphaned_references()
    return jsonify({
        "notificationsRemoved": len(before.notifications) - len(after.notifications),
        "activitiesRemoved": len(before.activities) - len(after.activities),
        "historyRemoved": len(before.kpi_history) - len(after.kpi_history),
        "version": after.version,
    })


@state_bp.route("/state/reset", methods=["POST"])
@require_role("admin")
def reset_state():
    state = get_portal().reset_to_seed()
    logger.warning("State reset to seed data", extra={"state_version": state.version})
    return jsonify({"version": state.version})
