"""
KPI Portal
KPI Blueprint.

Endpoints:
    GET    /api/v1/kpis                 — list (?departmentCode=)
    POST   /api/v1/kpis                 — create (manager/admin)
    GET    /api/v1/kpis/<id>            — detail incl. progress
    PUT    /api/v1/kpis/<id>            — update, records history (manager/admin)
    DELETE /api/v1/kpis/<id>            — delete (manager/admin)
    GET    /api/v1/kpis/<id>/history    — field-level change history
"""

import logging
from dataclasses import replace

from flask import Blueprint, jsonify, request

from kpi_portal.auth import current_actor, require_role
from kpi_portal.blueprints import json_body, number_field, paginate_list
from kpi_portal.core.exceptions import NotFoundError, ValidationError
from kpi_portal.services import repository
from kpi_portal.services.portal import get_portal

logger = logging.getLogger(__name__)

kpi_bp = Blueprint("kpi_bp", __name__, url_prefix="/api/v1")


def _kpi_dict(kpi):
    data = kpi.to_dict()
    data["progress"] = kpi.progress
    data["isAchieved"] = kpi.is_achieved
    return data


def _get_kpi_or_404(kpi_id):
    kpi = repository.find_kpi(get_portal().state, kpi_id)
    if kpi is None:
        raise NotFoundError("KPI", kpi_id)
    return kpi


@kpi_bp.route("/kpis", methods=["GET"])
def list_kpis():
    code = request.args.get("departmentCode")
    kpis = [k for k in get_portal().state.kpis if not code or k.department_code == code.upper()]
    items, total = paginate_list(kpis)
    return jsonify({"items": [_kpi_dict(k) for k in items], "total": total})


@kpi_bp.route("/kpis", methods=["POST"])
@require_role("manager", "admin")
def create_kpi():
    data = json_body()
    target = number_field(data, "target", required=True)
    kpi = get_portal().add_kpi(
        department_code=data.get("departmentCode"),
        name=data.get("name"),
        unit=data.get("unit", ""),
        target=target,
        current_value=number_field(data, "currentValue", 0, required=True),
        description=data.get("description"),
        owner_user_id=data.get("ownerUserId"),
    )
    logger.info("KPI %s created", kpi.id, extra={"department_code": kpi.department_code})
    return jsonify(_kpi_dict(kpi)), 201


@kpi_bp.route("/kpis/<kpi_id>", methods=["GET"])
def get_kpi(kpi_id):
    return jsonify(_kpi_dict(_get_kpi_or_404(kpi_id)))


@kpi_bp.route("/kpis/<kpi_id>", methods=["PUT"])
@require_role("manager", "admin")
def update_kpi(kpi_id):
    kpi = _get_kpi_or_404(kpi_id)
    data = json_body()

    changes = {}
    if "name" in data:
        changes["name"] = data["name"]
    if "unit" in data:
        changes["unit"] = data["unit"] or ""
    if "description" in data:
        changes["description"] = data["description"] or None
    if "ownerUserId" in data:
        changes["owner_user_id"] = data["ownerUserId"] or None
    if "target" in data:
        changes["target"] = number_field(data, "target", required=True)
    if "currentValue" in data:
        changes["current_value"] = number_field(data, "currentValue", required=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("name is required", details={"name": "required"})

    state = get_portal().update_kpi(replace(kpi, **changes), actor_id=current_actor().user_id)
    return jsonify(_kpi_dict(repository.find_kpi(state, kpi_id)))


@kpi_bp.route("/kpis/<kpi_id>", methods=["DELETE"])
@require_role("manager", "admin")
def delete_kpi(kpi_id):
    _get_kpi_or_404(kpi_id)
    get_portal().delete_kpi(kpi_id)
    return jsonify({"deleted": kpi_id})


@kpi_bp.route("/kpis/<kpi_id>/history", methods=["GET"])
def kpi_history(kpi_id):
    _get_kpi_or_404(kpi_id)
    entries = repository.kpi_history_for(get_portal().state, kpi_id)
    items, total = paginate_list(entries)
    return jsonify({"items": [h.to_dict() for h in items], "total": total})
