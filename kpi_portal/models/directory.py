"""
KPI Portal
Directory domain model.

Models:
    - User: portal account (admin / manager / member)
    - Department: organisational unit, referenced by KPIs and tasks via ``code``
    - Actor: the acting identity supplied by the session layer
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import compact

# ── Constants ────────────────────────────────────────────────────────────────

ROLES = ("admin", "manager", "member")
USER_STATUSES = ("active", "disabled")
DEPARTMENT_STATUSES = ("active", "archived")

APPROVER_ROLES = frozenset({"manager", "admin"})


@dataclass(frozen=True)
class User:
    """
    Portal user.

    ``department_code`` is a weak reference to ``Department.code``; it is
    cleared (not dangling) when the department is deleted.
    """

    id: str
    username: str
    display_name: str
    role: str = "member"
    department_code: str | None = None
    status: str = "active"
    can_create_tasks: bool = False
    require_password_change: bool = True
    specialty: str | None = None
    password_hash: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self, *, include_secrets: bool = True) -> dict:
        data = compact({
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "role": self.role,
            "departmentCode": self.department_code,
            "status": self.status,
            "canCreateTasks": self.can_create_tasks,
            "requirePasswordChange": self.require_password_change,
            "specialty": self.specialty,
            "passwordHash": self.password_hash if include_secrets else None,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        require_change = data.get("requirePasswordChange")
        return cls(
            id=data["id"],
            username=data["username"],
            display_name=data.get("displayName") or data["username"],
            role=data.get("role", "member"),
            department_code=data.get("departmentCode") or None,
            status=data.get("status", "active"),
            can_create_tasks=bool(data.get("canCreateTasks", False)),
            # Missing flag means "must change": fail-secure default.
            require_password_change=require_change is not False,
            specialty=data.get("specialty"),
            password_hash=data.get("passwordHash"),
        )

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"


@dataclass(frozen=True)
class Department:
    """Organisational unit. ``code`` is the stable key used by KPIs and tasks."""

    id: str
    code: str
    name: str
    manager_user_id: str | None = None
    status: str = "active"

    def to_dict(self) -> dict:
        return compact({
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "managerUserId": self.manager_user_id,
            "status": self.status,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Department":
        return cls(
            id=data["id"],
            code=data["code"],
            name=data.get("name") or data["code"],
            manager_user_id=data.get("managerUserId") or None,
            status=data.get("status", "active"),
        )


@dataclass(frozen=True)
class Actor:
    """Identity performing an operation, as vouched for by the session layer."""

    user_id: str
    role: str

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id="system", role="admin")

    @classmethod
    def for_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)
