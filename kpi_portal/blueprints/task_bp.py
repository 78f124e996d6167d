"""
KPI Portal
Task Blueprint — CRUD and lifecycle actions.

Endpoints:
    GET    /api/v1/tasks                      — list (?departmentCode=&status=&assigneeUserId=)
    POST   /api/v1/tasks                      — create (members need canCreateTasks)
    GET    /api/v1/tasks/<id>                 — detail
    PUT    /api/v1/tasks/<id>                 — edit; status changes go through the gate (manager/admin)
    DELETE /api/v1/tasks/<id>                 — delete (manager/admin)
    POST   /api/v1/tasks/<id>/transition      — {status, comment?, attachments?}
    POST   /api/v1/tasks/<id>/start
    POST   /api/v1/tasks/<id>/submit          — {comment?, attachments?}
    POST   /api/v1/tasks/<id>/approve         — manager/admin
    POST   /api/v1/tasks/<id>/reject          — manager/admin
    POST   /api/v1/tasks/<id>/comments        — {text}
"""

import logging

from flask import Blueprint, g, jsonify, request

from kpi_portal.auth import current_actor, require_actor, require_role
from kpi_portal.blueprints import json_body, number_field, paginate_list, pick_fields
from kpi_portal.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from kpi_portal.services import repository
from kpi_portal.services.portal import get_portal

logger = logging.getLogger(__name__)

task_bp = Blueprint("task_bp", __name__, url_prefix="/api/v1")

_TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "assigneeUserIds": "assignee_user_ids",
    "dueDate": "due_date",
    "priority": "priority",
    "relatedKpiId": "related_kpi_id",
}


def _task_response(task_id, status=200):
    task = repository.find_task(get_portal().state, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return jsonify(task.to_dict()), status


def _attachments(data):
    attachments = data.get("attachments") or []
    if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
        raise ValidationError("attachments must be a list of objects", details={"attachments": "invalid"})
    return attachments


@task_bp.route("/tasks", methods=["GET"])
def list_tasks():
    code = request.args.get("departmentCode")
    status = request.args.get("status")
    assignee = request.args.get("assigneeUserId")
    tasks = [
        t for t in get_portal().state.tasks
        if (not code or t.department_code == code.upper())
        and (not status or t.status == status)
        and (not assignee or assignee in t.assignee_user_ids)
    ]
    items, total = paginate_list(tasks)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@task_bp.route("/tasks", methods=["POST"])
@require_actor
def create_task():
    actor_user = g.actor_user
    if actor_user.role == "member" and not actor_user.can_create_tasks:
        raise PermissionDeniedError("create tasks", actor_user.role)

    data = json_body()
    fields = pick_fields(data, _TASK_FIELDS)
    fields.setdefault("department_code", data.get("departmentCode") or actor_user.department_code)
    task = get_portal().create_task(current_actor(), **fields)
    return _task_response(task.id, 201)


@task_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id):
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>", methods=["PUT"])
@require_role("manager", "admin")
def edit_task(task_id):
    data = json_body()
    changes = pick_fields(data, _TASK_FIELDS)
    if "status" in data:
        changes["status"] = data["status"]
    if "progressPercent" in data:
        changes["progress_percent"] = number_field(data, "progressPercent")
    get_portal().edit_task(task_id, current_actor(), **changes)
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>", methods=["DELETE"])
@require_role("manager", "admin")
def delete_task(task_id):
    if repository.find_task(get_portal().state, task_id) is None:
        raise NotFoundError("Task", task_id)
    get_portal().remove_task(task_id, current_actor())
    return jsonify({"deleted": task_id})


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks/<task_id>/transition", methods=["POST"])
@require_actor
def transition(task_id):
    data = json_body()
    target = data.get("status")
    if not target:
        raise ValidationError("status is required", details={"status": "required"})
    get_portal().transition_task(
        task_id, target, current_actor(),
        attachments=_attachments(data), comment=data.get("comment"),
    )
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>/start", methods=["POST"])
@require_actor
def start(task_id):
    get_portal().start_task(task_id, current_actor())
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>/submit", methods=["POST"])
@require_actor
def submit(task_id):
    data = json_body()
    get_portal().submit_for_approval(
        task_id, current_actor(), attachments=_attachments(data), comment=data.get("comment"),
    )
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>/approve", methods=["POST"])
@require_role("manager", "admin")
def approve(task_id):
    get_portal().approve_task(task_id, current_actor())
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>/reject", methods=["POST"])
@require_role("manager", "admin")
def reject(task_id):
    get_portal().reject_task(task_id, current_actor())
    return _task_response(task_id)


@task_bp.route("/tasks/<task_id>/comments", methods=["POST"])
@require_actor
def add_comment(task_id):
    data = json_body()
    get_portal().add_task_comment(task_id, current_actor(), data.get("text"))
    return _task_response(task_id, 201)
