"""
KPI Portal
Aggregate root — AppState.

AppState holds every entity of the portal as one immutable value. It is the
unit of persistence and atomicity: services derive a new AppState from the
old one and the state store replaces the persisted document wholesale.

``version`` is the persisted version the value was read from (0 = never
saved). Stores use it for optimistic concurrency.
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import as_records, as_tuple
from kpi_portal.models.activity import ActivityLog
from kpi_portal.models.directory import Department, User
from kpi_portal.models.kpi import KPI, KPIHistoryEntry
from kpi_portal.models.notification import Notification
from kpi_portal.models.task import Task

# Collections that older documents may lack; defaulted to [] on load.
_OPTIONAL_COLLECTIONS = ("activities", "notifications", "kpiHistory")


@dataclass(frozen=True)
class AppState:
    users: tuple[User, ...] = ()
    departments: tuple[Department, ...] = ()
    kpis: tuple[KPI, ...] = ()
    kpi_history: tuple[KPIHistoryEntry, ...] = ()
    tasks: tuple[Task, ...] = ()
    activities: tuple[ActivityLog, ...] = ()
    notifications: tuple[Notification, ...] = ()
    preview_department_code: str | None = None
    version: int = 0

    def to_dict(self, *, include_secrets: bool = True) -> dict:
        data = {
            "version": self.version,
            "users": [u.to_dict(include_secrets=include_secrets) for u in self.users],
            "departments": [d.to_dict() for d in self.departments],
            "kpis": [k.to_dict() for k in self.kpis],
            "kpiHistory": [h.to_dict() for h in self.kpi_history],
            "tasks": [t.to_dict() for t in self.tasks],
            "activities": [a.to_dict() for a in self.activities],
            "notifications": [n.to_dict() for n in self.notifications],
        }
        if self.preview_department_code is not None:
            data["previewDepartmentCode"] = self.preview_department_code
        return data

    def content_dict(self) -> dict:
        """Document without the version counter, for equality across saves."""
        data = self.to_dict()
        data.pop("version")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AppState":
        """Build an AppState from a document.

        Raises KeyError / TypeError / ValueError when the document is malformed.
        """
        if not isinstance(data, dict):
            raise TypeError("State document must be a JSON object")
        return cls(
            users=as_records(data["users"], User.from_dict),
            departments=as_records(data["departments"], Department.from_dict),
            kpis=as_records(data["kpis"], KPI.from_dict),
            kpi_history=as_records(data.get("kpiHistory"), KPIHistoryEntry.from_dict),
            tasks=as_records(data["tasks"], Task.from_dict),
            activities=as_records(data.get("activities"), ActivityLog.from_dict),
            notifications=as_records(data.get("notifications"), Notification.from_dict),
            preview_department_code=data.get("previewDepartmentCode") or None,
            version=int(data.get("version") or 0),
        )

    def __repr__(self):
        return (
            f"<AppState v{self.version}: {len(self.users)} users, "
            f"{len(self.departments)} departments, {len(self.tasks)} tasks>"
        )


def upgrade_document(data: dict) -> tuple[dict, bool]:
    """
    Bring a document written by an older schema up to the current shape.

    - missing ``activities`` / ``notifications`` / ``kpiHistory`` → []
    - users without ``requirePasswordChange`` → True (fail-secure)

    Returns:
        (document, changed) — *changed* is True when any default was applied,
        in which case the caller re-persists the corrected document.
    """
    if not isinstance(data, dict):
        raise TypeError("State document must be a JSON object")

    upgraded = dict(data)
    changed = False

    for key in _OPTIONAL_COLLECTIONS:
        if upgraded.get(key) is None:
            upgraded[key] = []
            changed = True

    users = []
    for user in as_tuple(upgraded.get("users")):
        if isinstance(user, dict) and user.get("requirePasswordChange") is None:
            user = {**user, "requirePasswordChange": True}
            changed = True
        users.append(user)
    upgraded["users"] = users

    return upgraded, changed
