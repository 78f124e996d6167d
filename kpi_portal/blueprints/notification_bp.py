"""
KPI Portal
Notification & Activity Blueprint.

Endpoints:
    GET    /api/v1/notifications                     — actor's inbox (?unread=true)
    PUT    /api/v1/notifications/<id>/read
    PUT    /api/v1/notifications/read-all
    DELETE /api/v1/notifications/<id>
    GET    /api/v1/notifications/<id>/push-payload   — {title, body, url}
    POST   /api/v1/notifications/scan-due            — due-soon / overdue scan (manager/admin)
    GET    /api/v1/activities                        — ?departmentCode=&limit=
"""

import logging

from flask import Blueprint, jsonify, request

from kpi_portal.auth import current_actor, require_actor, require_role
from kpi_portal.blueprints import paginate_list
from kpi_portal.core.exceptions import NotFoundError
from kpi_portal.services.activity import activities_for_department
from kpi_portal.services.notification import list_for_user, unread_count
from kpi_portal.services.portal import get_portal

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


def _own_notification_or_404(notification_id):
    actor = current_actor()
    notification = next(
        (n for n in get_portal().state.notifications if n.id == notification_id), None,
    )
    if notification is None or (notification.user_id != actor.user_id and actor.role != "admin"):
        raise NotFoundError("Notification", notification_id)
    return notification


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
@require_actor
def list_notifications():
    actor = current_actor()
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    state = get_portal().state
    items, total = paginate_list(list_for_user(state, actor.user_id, unread_only=unread_only))
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unreadCount": unread_count(state, actor.user_id),
    })


@notification_bp.route("/notifications/<notification_id>/read", methods=["PUT"])
@require_actor
def mark_read(notification_id):
    _own_notification_or_404(notification_id)
    get_portal().mark_notification_as_read(notification_id)
    notification = _own_notification_or_404(notification_id)
    return jsonify(notification.to_dict())


@notification_bp.route("/notifications/read-all", methods=["PUT"])
@require_actor
def mark_all_read():
    actor = current_actor()
    state = get_portal().mark_all_notifications_as_read(actor.user_id)
    return jsonify({"unreadCount": unread_count(state, actor.user_id)})


@notification_bp.route("/notifications/<notification_id>", methods=["DELETE"])
@require_actor
def delete_notification(notification_id):
    _own_notification_or_404(notification_id)
    get_portal().remove_notification(notification_id)
    return jsonify({"deleted": notification_id})


@notification_bp.route("/notifications/<notification_id>/push-payload", methods=["GET"])
@require_actor
def push_payload(notification_id):
    return jsonify(_own_notification_or_404(notification_id).to_push_payload())


@notification_bp.route("/notifications/scan-due", methods=["POST"])
@require_role("manager", "admin")
def scan_due():
    summary = get_portal().scan_due_tasks()
    return jsonify(summary)


# ═══════════════════════════════════════════════════════════════════════════
#  ACTIVITIES
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/activities", methods=["GET"])
def list_activities():
    code = request.args.get("departmentCode")
    activities = activities_for_department(get_portal().state, code.upper() if code else None)
    items, total = paginate_list(activities, default_limit=20, max_limit=100)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})
