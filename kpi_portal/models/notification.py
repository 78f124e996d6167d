"""
KPI Portal
Notification domain model.

Models:
    - Notification: in-app notification, one record per recipient per event.
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import compact

# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "task_assigned",
    "task_due_soon",
    "task_overdue",
    "task_approved",
    "task_rejected",
}


@dataclass(frozen=True)
class Notification:
    """
    In-app notification.

    ``user_id`` is always the concrete recipient chosen by the dispatcher.
    Only ``is_read`` changes after creation.
    """

    id: str
    user_id: str
    type: str
    title: str
    message: str
    timestamp: str
    is_read: bool = False
    related_task_id: str | None = None
    related_kpi_id: str | None = None

    def to_push_payload(self) -> dict:
        """Shape consumed by the external push delivery service."""
        url = f"/tasks?task={self.related_task_id}" if self.related_task_id else "/dashboard"
        return {"title": self.title, "body": self.message, "url": url}

    def to_dict(self) -> dict:
        return compact({
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
            "isRead": self.is_read,
            "relatedTaskId": self.related_task_id,
            "relatedKpiId": self.related_kpi_id,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        return cls(
            id=data["id"],
            user_id=data["userId"],
            type=data["type"],
            title=data.get("title", ""),
            message=data.get("message", ""),
            timestamp=data["timestamp"],
            is_read=bool(data.get("isRead", False)),
            related_task_id=data.get("relatedTaskId") or None,
            related_kpi_id=data.get("relatedKpiId") or None,
        )

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
