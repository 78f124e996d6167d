"""
KPI Portal
Directory Blueprint — departments, members, credentials.

Endpoints:
    GET    /api/v1/departments
    POST   /api/v1/departments                    — admin
    PUT    /api/v1/departments/<id>               — admin
    DELETE /api/v1/departments/<id>               — admin, cascades
    PUT    /api/v1/departments/<id>/manager       — admin, {userId}

    GET    /api/v1/users                          — ?departmentCode=
    POST   /api/v1/users                          — manager/admin
    PUT    /api/v1/users/<id>                     — manager/admin
    DELETE /api/v1/users/<id>                     — manager/admin
    PUT    /api/v1/users/<id>/status              — manager/admin, {status}
    PUT    /api/v1/users/<id>/can-create-tasks    — manager/admin, {canCreateTasks}
    PUT    /api/v1/users/<id>/password            — self or admin, {password}

    POST   /api/v1/auth/login                     — {username, password}
"""

import logging

from flask import Blueprint, g, jsonify, request

from kpi_portal.auth import current_actor, require_actor, require_role
from kpi_portal.blueprints import json_body, paginate_list, pick_fields
from kpi_portal.core.exceptions import NotFoundError, PermissionDeniedError
from kpi_portal.services import repository
from kpi_portal.services.portal import get_portal
from kpi_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

directory_bp = Blueprint("directory_bp", __name__, url_prefix="/api/v1")

_USER_FIELDS = {
    "username": "username",
    "displayName": "display_name",
    "role": "role",
    "departmentCode": "department_code",
    "status": "status",
    "canCreateTasks": "can_create_tasks",
    "specialty": "specialty",
}


def _department_or_404(state, department_id):
    department = repository.find_department(state, department_id)
    if department is None:
        raise NotFoundError("Department", department_id)
    return department


def _user_or_404(state, user_id):
    user = repository.find_user(state, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


# ═══════════════════════════════════════════════════════════════════════════
#  DEPARTMENTS
# ═══════════════════════════════════════════════════════════════════════════

@directory_bp.route("/departments", methods=["GET"])
def list_departments():
    return jsonify({"items": [d.to_dict() for d in get_portal().state.departments]})


@directory_bp.route("/departments", methods=["POST"])
@require_role("admin")
def create_department():
    data = json_body()
    department = get_portal().add_department(code=data.get("code"), name=data.get("name"))
    return jsonify(department.to_dict()), 201


@directory_bp.route("/departments/<department_id>", methods=["PUT"])
@require_role("admin")
def update_department(department_id):
    portal = get_portal()
    _department_or_404(portal.state, department_id)
    state = portal.update_department(department_id, **pick_fields(json_body(), {
        "code": "code", "name": "name", "status": "status",
    }))
    return jsonify(repository.find_department(state, department_id).to_dict())


@directory_bp.route("/departments/<department_id>", methods=["DELETE"])
@require_role("admin")
def delete_department(department_id):
    portal = get_portal()
    department = _department_or_404(portal.state, department_id)
    state = portal.delete_department(department_id)
    return jsonify({
        "deleted": department_id,
        "code": department.code,
        "previewDepartmentCode": state.preview_department_code,
    })


@directory_bp.route("/departments/<department_id>/manager", methods=["PUT"])
@require_role("admin")
def assign_manager(department_id):
    data = json_body()
    state = get_portal().assign_department_manager(department_id, data.get("userId"))
    return jsonify(repository.find_department(state, department_id).to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  MEMBERS
# ═══════════════════════════════════════════════════════════════════════════

@directory_bp.route("/users", methods=["GET"])
def list_users():
    code = request.args.get("departmentCode")
    users = [u for u in get_portal().state.users if not code or u.department_code == code.upper()]
    items, total = paginate_list(users)
    return jsonify({"items": [u.to_dict(include_secrets=False) for u in items], "total": total})


@directory_bp.route("/users", methods=["POST"])
@require_role("manager", "admin")
def create_user():
    data = json_body()
    fields = pick_fields(data, _USER_FIELDS)
    fields.pop("status", None)
    if "password" in data:
        fields["password"] = data["password"]
    # Managers may only add plain members to their own department.
    actor = current_actor()
    if actor.role == "manager":
        if fields.get("role", "member") != "member":
            raise PermissionDeniedError("create non-member users", actor.role)
        fields["department_code"] = g.actor_user.department_code
    user = get_portal().add_member(**fields)
    return jsonify(user.to_dict(include_secrets=False)), 201


@directory_bp.route("/users/<user_id>", methods=["PUT"])
@require_role("manager", "admin")
def update_user(user_id):
    portal = get_portal()
    _user_or_404(portal.state, user_id)
    state = portal.update_member(user_id, **pick_fields(json_body(), _USER_FIELDS))
    return jsonify(repository.find_user(state, user_id).to_dict(include_secrets=False))


@directory_bp.route("/users/<user_id>", methods=["DELETE"])
@require_role("manager", "admin")
def delete_user(user_id):
    portal = get_portal()
    _user_or_404(portal.state, user_id)
    if user_id == current_actor().user_id:
        raise PermissionDeniedError("delete their own account", current_actor().role)
    portal.delete_member(user_id)
    return jsonify({"deleted": user_id})


@directory_bp.route("/users/<user_id>/status", methods=["PUT"])
@require_role("manager", "admin")
def set_status(user_id):
    portal = get_portal()
    _user_or_404(portal.state, user_id)
    state = portal.set_user_status(user_id, json_body().get("status"))
    return jsonify(repository.find_user(state, user_id).to_dict(include_secrets=False))


@directory_bp.route("/users/<user_id>/can-create-tasks", methods=["PUT"])
@require_role("manager", "admin")
def set_can_create_tasks(user_id):
    portal = get_portal()
    _user_or_404(portal.state, user_id)
    state = portal.set_can_create_tasks(user_id, bool(json_body().get("canCreateTasks")))
    return jsonify(repository.find_user(state, user_id).to_dict(include_secrets=False))


@directory_bp.route("/users/<user_id>/password", methods=["PUT"])
@require_actor
def change_password(user_id):
    actor = current_actor()
    if actor.user_id != user_id and actor.role != "admin":
        raise PermissionDeniedError("change another user's password", actor.role)
    state = get_portal().set_password(user_id, json_body().get("password"))
    return jsonify(repository.find_user(state, user_id).to_dict(include_secrets=False))


# ═══════════════════════════════════════════════════════════════════════════
#  LOGIN
# ═══════════════════════════════════════════════════════════════════════════

@directory_bp.route("/auth/login", methods=["POST"])
def login():
    data = json_body()
    user = get_portal().authenticate(data.get("username"), data.get("password"))
    if user is None:
        logger.warning("Failed login for %r", data.get("username"))
        return api_error(E.UNAUTHENTICATED, "Invalid username or password")
    return jsonify({
        "user": user.to_dict(include_secrets=False),
        "requirePasswordChange": user.require_password_change,
    })
