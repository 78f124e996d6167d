"""
KPI Portal
Activity domain model.

Models:
    - ActivityLog: append-only, human-readable department event.
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import compact

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_TYPES = {
    "task_created",
    "task_completed",
    "task_comment",
    "task_status_changed",
    "kpi_updated",
}

# Capacity of the activity log; the oldest entries are evicted first.
ACTIVITY_LOG_LIMIT = 100


@dataclass(frozen=True)
class ActivityLog:
    """
    One activity entry.

    ``related_task_id`` / ``related_kpi_id`` are weak references: they may
    point at entities deleted since the entry was recorded.
    """

    id: str
    department_code: str
    user_id: str
    type: str
    timestamp: str
    description: str
    related_task_id: str | None = None
    related_kpi_id: str | None = None

    def to_dict(self) -> dict:
        return compact({
            "id": self.id,
            "departmentCode": self.department_code,
            "userId": self.user_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "description": self.description,
            "relatedTaskId": self.related_task_id,
            "relatedKpiId": self.related_kpi_id,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityLog":
        return cls(
            id=data["id"],
            department_code=data.get("departmentCode", ""),
            user_id=data.get("userId", ""),
            type=data["type"],
            timestamp=data["timestamp"],
            description=data.get("description", ""),
            related_task_id=data.get("relatedTaskId") or None,
            related_kpi_id=data.get("relatedKpiId") or None,
        )

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.type}>"
