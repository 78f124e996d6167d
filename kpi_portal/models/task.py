"""
KPI Portal
Task domain model.

Models:
    - Task: department work item with an approval lifecycle
    - TaskComment, TaskAttachment: append-only sequences on a task

Lifecycle (TASK_TRANSITIONS, keyed by current status → {target: action}):
    backlog          → in_progress (start) | pending_approval (submit_for_approval)
    in_progress      → pending_approval (submit_for_approval) | backlog (move_to_backlog)
    pending_approval → completed (approve) | in_progress (reject)
    completed        → (terminal)
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import as_float, as_records, as_tuple, compact

# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = ("backlog", "in_progress", "pending_approval", "completed")
TASK_PRIORITIES = ("Low", "Medium", "High")

TASK_TRANSITIONS = {
    "backlog":          {"in_progress": "start", "pending_approval": "submit_for_approval"},
    "in_progress":      {"pending_approval": "submit_for_approval", "backlog": "move_to_backlog"},
    "pending_approval": {"completed": "approve", "in_progress": "reject"},
    "completed":        {},
}

APPROVAL_ACTIONS = frozenset({"approve", "reject"})


def validate_task_transition(old_status, new_status):
    """Return True if the Task status transition is a valid lifecycle edge."""
    return new_status in TASK_TRANSITIONS.get(old_status, {})


def transition_action(old_status, new_status):
    """Return the lifecycle action name for an edge, or None if invalid."""
    return TASK_TRANSITIONS.get(old_status, {}).get(new_status)


@dataclass(frozen=True)
class TaskComment:
    id: str
    user_id: str
    timestamp: str
    text: str

    def to_dict(self) -> dict:
        return {"id": self.id, "userId": self.user_id, "timestamp": self.timestamp, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskComment":
        return cls(
            id=data["id"],
            user_id=data.get("userId", ""),
            timestamp=data.get("timestamp", ""),
            text=data.get("text", ""),
        )


@dataclass(frozen=True)
class TaskAttachment:
    id: str
    file_name: str
    url: str

    def to_dict(self) -> dict:
        return {"id": self.id, "fileName": self.file_name, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskAttachment":
        return cls(id=data["id"], file_name=data.get("fileName", ""), url=data.get("url", ""))


@dataclass(frozen=True)
class Task:
    """
    Department task.

    ``assignee_user_ids`` is treated as a set by the domain (order carries no
    meaning) but is stored as a tuple to keep the document stable.
    ``progress_percent`` is member-reported and independent of KPI progress.
    """

    id: str
    department_code: str
    title: str
    description: str | None = None
    assignee_user_ids: tuple[str, ...] = ()
    due_date: str | None = None
    priority: str = "Medium"
    status: str = "backlog"
    related_kpi_id: str | None = None
    comments: tuple[TaskComment, ...] = ()
    attachments: tuple[TaskAttachment, ...] = ()
    progress_percent: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status != "completed"

    def to_dict(self) -> dict:
        return compact({
            "id": self.id,
            "departmentCode": self.department_code,
            "title": self.title,
            "description": self.description,
            "assigneeUserIds": list(self.assignee_user_ids),
            "dueDate": self.due_date,
            "priority": self.priority,
            "status": self.status,
            "relatedKpiId": self.related_kpi_id,
            "comments": [c.to_dict() for c in self.comments],
            "attachments": [a.to_dict() for a in self.attachments],
            "progressPercent": self.progress_percent,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        progress = data.get("progressPercent")
        return cls(
            id=data["id"],
            department_code=data["departmentCode"],
            title=data["title"],
            description=data.get("description"),
            assignee_user_ids=tuple(str(u) for u in as_tuple(data.get("assigneeUserIds"))),
            due_date=data.get("dueDate") or None,
            priority=data.get("priority", "Medium"),
            status=data.get("status", "backlog"),
            related_kpi_id=data.get("relatedKpiId") or None,
            comments=as_records(data.get("comments"), TaskComment.from_dict),
            attachments=as_records(data.get("attachments"), TaskAttachment.from_dict),
            progress_percent=None if progress is None else as_float(progress),
        )

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"
