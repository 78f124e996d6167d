"""
KPI Portal
Task Lifecycle Engine.

Every change of ``Task.status`` after creation goes through
``transition_task``, which validates the edge against TASK_TRANSITIONS,
checks the approver role and folds all side effects (KPI increment,
activities, notifications) into the single AppState it returns.

Transitions:
    start               backlog          → in_progress
    submit_for_approval backlog          → pending_approval
                        in_progress      → pending_approval
    move_to_backlog     in_progress      → backlog
    approve             pending_approval → completed     (manager/admin)
    reject              pending_approval → in_progress   (manager/admin)

``completed`` is terminal: a second approve raises TransitionError instead
of incrementing the related KPI twice.

Usage:
    from kpi_portal.services.task_lifecycle import approve_task

    state = approve_task(state, "t_pitch", actor)
"""

import logging
from dataclasses import replace

from kpi_portal.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from kpi_portal.models.directory import Actor
from kpi_portal.models.state import AppState
from kpi_portal.models.task import (
    APPROVAL_ACTIONS,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskAttachment,
    TaskComment,
    transition_action,
)
from kpi_portal.services.activity import add_activity
from kpi_portal.services.notification import fan_out
from kpi_portal.services.repository import (
    delete_task,
    find_department_by_code,
    find_kpi,
    find_task,
    update_kpi,
    upsert_task,
)
from kpi_portal.utils.helpers import isoformat, new_id

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = {"title", "description", "assignee_user_ids", "due_date", "priority",
                    "related_kpi_id", "progress_percent", "status"}


def _status_label(status):
    return status.replace("_", " ")


def _due_suffix(task):
    return f" (Due: {task.due_date[:10]})" if task.due_date else ""


def _require_task(state, task_id):
    task = find_task(state, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def _normalise_assignees(assignee_user_ids):
    if assignee_user_ids is None:
        return ()
    if isinstance(assignee_user_ids, str):
        raise ValidationError("assigneeUserIds must be a list", details={"assigneeUserIds": "invalid"})
    return tuple(str(u) for u in assignee_user_ids if u)


def _check_priority(priority):
    if priority not in TASK_PRIORITIES:
        raise ValidationError(
            f"priority must be one of {', '.join(TASK_PRIORITIES)}",
            details={"priority": "invalid"},
        )


def _as_attachment(item):
    if isinstance(item, TaskAttachment):
        return item
    file_name = (item.get("fileName") or item.get("file_name") or "").strip()
    if not file_name:
        raise ValidationError("Attachment fileName is required", details={"fileName": "required"})
    return TaskAttachment(id=item.get("id") or new_id("att"), file_name=file_name, url=item.get("url", ""))


# ═════════════════════════════════════════════════════════════════════════════
# Create / delete
# ═════════════════════════════════════════════════════════════════════════════

def create_task(state: AppState, actor: Actor, *, department_code=None, title=None, description=None,
                assignee_user_ids=(), due_date=None, priority="Medium", related_kpi_id=None,
                now=None) -> tuple[AppState, Task]:
    """
    Create a backlog task, log ``task_created`` and notify every assignee.

    Raises:
        ValidationError: missing title, unknown department, bad priority.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    department = find_department_by_code(state, department_code)
    if department is None:
        raise ValidationError(f"Unknown department: {department_code}",
                              details={"departmentCode": "invalid"})
    _check_priority(priority)

    task = Task(
        id=new_id("t"),
        department_code=department.code,
        title=title,
        description=description or None,
        assignee_user_ids=_normalise_assignees(assignee_user_ids),
        due_date=due_date or None,
        priority=priority,
        status="backlog",
        related_kpi_id=related_kpi_id or None,
    )

    state = upsert_task(state, task)
    state = add_activity(
        state, department_code=task.department_code, user_id=actor.user_id,
        type="task_created", description=f'Created task: "{task.title}"',
        related_task_id=task.id, now=now,
    )
    state = fan_out(
        state, type="task_assigned", title="New Task Assigned",
        message=f'You have been assigned a new task: "{task.title}"{_due_suffix(task)}',
        recipient_ids=task.assignee_user_ids, related_task_id=task.id, now=now,
    )
    logger.info("Task %s created in %s", task.id, task.department_code,
                extra={"task_id": task.id, "department_code": task.department_code,
                       "actor_id": actor.user_id})
    return state, task


def remove_task(state: AppState, task_id, actor: Actor, now=None) -> AppState:
    """Delete a task and log it. Related notifications/activities stay as weak references."""
    task = find_task(state, task_id)
    if task is None:
        return state
    state = delete_task(state, task_id)
    return add_activity(
        state, department_code=task.department_code, user_id=actor.user_id,
        type="task_status_changed", description=f'Deleted task: "{task.title}"',
        related_task_id=task.id, now=now,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Transition gate
# ═════════════════════════════════════════════════════════════════════════════

def transition_task(state: AppState, task_id, target_status, actor: Actor, *,
                    attachments=(), comment=None, expected_action=None, now=None) -> AppState:
    """
    Move a task to *target_status* along a valid lifecycle edge.

    With *expected_action* the edge must also be that action: ``reject`` and
    ``start`` share the ``in_progress`` target but not the source status.

    Attachments and a non-empty comment are appended to the task before the
    side effects are applied.

    Raises:
        NotFoundError: unknown task.
        TransitionError: *target_status* is not reachable from the current status,
            or the edge is not *expected_action*.
        PermissionDeniedError: approve/reject by a role other than manager/admin.
    """
    task = _require_task(state, task_id)
    if target_status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status: {target_status}", details={"status": "invalid"})

    action = transition_action(task.status, target_status)
    if action is None:
        reason = "task is completed" if task.status == "completed" else "not a lifecycle edge"
        raise TransitionError(task.id, task.status, target_status, reason)
    if expected_action is not None and action != expected_action:
        raise TransitionError(task.id, task.status, target_status,
                              f"{expected_action} is not valid from {task.status}")
    if action in APPROVAL_ACTIONS and not actor.can_approve:
        raise PermissionDeniedError(f"{action} task", actor.role)

    timestamp = isoformat(now)
    new_comments = task.comments
    if comment and comment.strip():
        new_comments += (TaskComment(id=new_id("c"), user_id=actor.user_id,
                                     timestamp=timestamp, text=comment.strip()),)
    new_attachments = task.attachments + tuple(_as_attachment(a) for a in attachments or ())

    moved = replace(task, status=target_status, comments=new_comments, attachments=new_attachments)
    state = upsert_task(state, moved)

    log_extra = {"task_id": task.id, "department_code": task.department_code,
                 "actor_id": actor.user_id}
    logger.info("Task %s: %s (%s → %s)", task.id, action, task.status, target_status, extra=log_extra)

    if action == "submit_for_approval":
        return add_activity(
            state, department_code=task.department_code, user_id=actor.user_id,
            type="task_completed",
            description=f'Completed task: "{task.title}" and submitted for approval',
            related_task_id=task.id, now=now,
        )
    if action == "approve":
        return _apply_approval(state, moved, actor, now)
    if action == "reject":
        state = add_activity(
            state, department_code=task.department_code, user_id=actor.user_id,
            type="task_status_changed",
            description=f'Rejected task: "{task.title}" - returned for revision',
            related_task_id=task.id, now=now,
        )
        return fan_out(
            state, type="task_rejected", title="Task Needs Revision",
            message=f'Your task "{task.title}" has been returned for revision. Please review and resubmit.',
            recipient_ids=task.assignee_user_ids, related_task_id=task.id, now=now,
        )

    # start / move_to_backlog
    return add_activity(
        state, department_code=task.department_code, user_id=actor.user_id,
        type="task_status_changed",
        description=(f'Changed "{task.title}" status from {_status_label(task.status)} '
                     f'to {_status_label(target_status)}'),
        related_task_id=task.id, now=now,
    )


def _apply_approval(state, task, actor, now):
    """KPI increment, then the approval activity, then one notification per assignee."""
    kpi = find_kpi(state, task.related_kpi_id)
    if kpi is not None:
        new_value = kpi.current_value + 1
        state = update_kpi(state, replace(kpi, current_value=new_value), actor_id=actor.user_id, now=now)
        state = add_activity(
            state, department_code=task.department_code, user_id=actor.user_id,
            type="kpi_updated",
            description=f'KPI "{kpi.name}" increased to {new_value} after task completion',
            related_task_id=task.id, related_kpi_id=kpi.id, now=now,
        )
    elif task.related_kpi_id:
        logger.warning("Task %s references missing KPI %s, no increment", task.id,
                       task.related_kpi_id, extra={"task_id": task.id})

    state = add_activity(
        state, department_code=task.department_code, user_id=actor.user_id,
        type="task_status_changed", description=f'Approved task: "{task.title}"',
        related_task_id=task.id, now=now,
    )
    return fan_out(
        state, type="task_approved", title="Task Approved",
        message=f'Your task "{task.title}" has been approved and marked as completed!',
        recipient_ids=task.assignee_user_ids, related_task_id=task.id, now=now,
    )


def start_task(state, task_id, actor, now=None):
    return transition_task(state, task_id, "in_progress", actor, expected_action="start", now=now)


def submit_for_approval(state, task_id, actor, *, attachments=(), comment=None, now=None):
    return transition_task(state, task_id, "pending_approval", actor,
                           attachments=attachments, comment=comment,
                           expected_action="submit_for_approval", now=now)


def approve_task(state, task_id, actor, now=None):
    return transition_task(state, task_id, "completed", actor, expected_action="approve", now=now)


def reject_task(state, task_id, actor, now=None):
    return transition_task(state, task_id, "in_progress", actor, expected_action="reject", now=now)


# ═════════════════════════════════════════════════════════════════════════════
# Edit / comment
# ═════════════════════════════════════════════════════════════════════════════

def edit_task(state: AppState, task_id, actor: Actor, *, now=None, **changes) -> AppState:
    """
    Apply field edits; a changed ``status`` is routed through the transition gate.

    Field edits log a generic "Updated task" activity and send a
    ``task_assigned`` "Task Updated" notification to the (new) assignees.
    """
    task = _require_task(state, task_id)
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

    target_status = changes.pop("status", task.status)
    if "title" in changes:
        changes["title"] = (changes["title"] or "").strip()
        if not changes["title"]:
            raise ValidationError("title is required", details={"title": "required"})
    if "priority" in changes:
        _check_priority(changes["priority"])
    if "assignee_user_ids" in changes:
        changes["assignee_user_ids"] = _normalise_assignees(changes["assignee_user_ids"])
    for optional in ("description", "due_date", "related_kpi_id"):
        if optional in changes:
            changes[optional] = changes[optional] or None

    edited = replace(task, **changes)
    if edited != task:
        state = upsert_task(state, edited)
        state = add_activity(
            state, department_code=edited.department_code, user_id=actor.user_id,
            type="task_status_changed", description=f'Updated task: "{edited.title}"',
            related_task_id=edited.id, now=now,
        )
        state = fan_out(
            state, type="task_assigned", title="Task Updated",
            message=f'Task "{edited.title}" has been updated. Please review the changes.',
            recipient_ids=edited.assignee_user_ids, related_task_id=edited.id, now=now,
        )

    if target_status != task.status:
        state = transition_task(state, task_id, target_status, actor, now=now)
    return state


def add_task_comment(state: AppState, task_id, actor: Actor, text, now=None) -> AppState:
    task = _require_task(state, task_id)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required", details={"text": "required"})

    comment = TaskComment(id=new_id("c"), user_id=actor.user_id, timestamp=isoformat(now), text=text)
    state = upsert_task(state, replace(task, comments=task.comments + (comment,)))
    return add_activity(
        state, department_code=task.department_code, user_id=actor.user_id,
        type="task_comment", description=f'Commented on "{task.title}"',
        related_task_id=task.id, now=now,
    )
