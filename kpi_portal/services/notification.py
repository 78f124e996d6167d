"""
KPI Portal
Notification Dispatcher.

Builds typed notifications for concrete recipients and fans them out into
the aggregate. The dispatcher never infers a recipient from context: every
Notification carries the user id it was addressed to.

Functions:
    notify           — build one Notification for one recipient
    fan_out          — prepend one Notification per recipient id
    scan_due_tasks   — due-soon / overdue reminders for open tasks
    list_for_user    — newest-first inbox query
"""

import logging
from dataclasses import replace
from datetime import timedelta

from kpi_portal.core.exceptions import ValidationError
from kpi_portal.models.notification import NOTIFICATION_TYPES, Notification
from kpi_portal.models.state import AppState
from kpi_portal.utils.helpers import isoformat, new_id, parse_datetime, utc_now

logger = logging.getLogger(__name__)


# ── Create ───────────────────────────────────────────────────────────────────

def notify(type, title, message, recipient_user_id, related_task_id=None,
           related_kpi_id=None, now=None) -> Notification:
    """
    Build one unread notification addressed to *recipient_user_id*.

    Raises:
        ValidationError: unknown type or missing recipient.
    """
    if type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {type}", details={"type": type})
    if not recipient_user_id:
        raise ValidationError("Notification recipient is required", details={"userId": "required"})

    return Notification(
        id=new_id("n"),
        user_id=recipient_user_id,
        type=type,
        title=title,
        message=message,
        timestamp=isoformat(now),
        is_read=False,
        related_task_id=related_task_id,
        related_kpi_id=related_kpi_id,
    )


def fan_out(state: AppState, *, type, title, message, recipient_ids,
            related_task_id=None, related_kpi_id=None, now=None) -> AppState:
    """
    Prepend one notification per recipient, in recipient order.

    Ids that do not resolve to a user are skipped. Duplicate ids are not
    collapsed; each occurrence receives its own notification.
    """
    known = {u.id for u in state.users}
    created = []
    for user_id in recipient_ids:
        if user_id not in known:
            logger.warning("Skipping notification %s for unknown user %s", type, user_id,
                           extra={"task_id": related_task_id})
            continue
        created.append(notify(type, title, message, user_id, related_task_id=related_task_id,
                              related_kpi_id=related_kpi_id, now=now))
    if not created:
        return state
    logger.debug("Dispatched %d %s notification(s)", len(created), type,
                 extra={"task_id": related_task_id})
    # Newest first: the last recipient's record ends up at the front.
    return replace(state, notifications=tuple(reversed(created)) + state.notifications)


# ── Due-date scan ────────────────────────────────────────────────────────────

def scan_due_tasks(state: AppState, *, now=None, due_soon_days: int = 2) -> tuple[AppState, dict]:
    """
    Create ``task_due_soon`` / ``task_overdue`` notifications for open tasks.

    A task is overdue once its due date has passed and due soon when it falls
    within ``due_soon_days`` from *now*. A (task, type, user) triple that
    already has an unread notification is skipped.

    Returns:
        (new_state, summary) — summary counts tasks and notifications created.
    """
    now = now or utc_now()
    window_end = now + timedelta(days=due_soon_days)
    summary = {"tasks_due_soon": 0, "tasks_overdue": 0, "notifications_created": 0}

    pending = {
        (n.related_task_id, n.type, n.user_id)
        for n in state.notifications if not n.is_read
    }

    for task in state.tasks:
        if not task.is_open:
            continue
        due = parse_datetime(task.due_date)
        if due is None:
            continue

        if due < now:
            kind = "task_overdue"
            summary["tasks_overdue"] += 1
            title = "Task Overdue"
            message = f'Task "{task.title}" is overdue (Due: {task.due_date[:10]})'
        elif due <= window_end:
            kind = "task_due_soon"
            summary["tasks_due_soon"] += 1
            title = "Task Due Soon"
            message = f'Task "{task.title}" is due soon (Due: {task.due_date[:10]})'
        else:
            continue

        recipients = [u for u in task.assignee_user_ids if (task.id, kind, u) not in pending]
        if not recipients:
            continue
        before = len(state.notifications)
        state = fan_out(state, type=kind, title=title, message=message,
                        recipient_ids=recipients, related_task_id=task.id, now=now)
        summary["notifications_created"] += len(state.notifications) - before
        pending.update((task.id, kind, u) for u in recipients)

    logger.info("Due-date scan: %s", summary)
    return state, summary


# ── Query ────────────────────────────────────────────────────────────────────

def list_for_user(state: AppState, user_id: str, unread_only: bool = False) -> list[Notification]:
    return [
        n for n in state.notifications
        if n.user_id == user_id and (not unread_only or not n.is_read)
    ]


def unread_count(state: AppState, user_id: str) -> int:
    return sum(1 for n in state.notifications if n.user_id == user_id and not n.is_read)
