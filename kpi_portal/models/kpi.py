"""
KPI Portal
KPI domain model.

Models:
    - KPI: department key performance indicator with target/current value
    - KPIHistoryEntry: one field-level change of a KPI
"""

from dataclasses import dataclass

from kpi_portal.models._serialization import as_float, compact

# ── Constants ────────────────────────────────────────────────────────────────

KPI_HISTORY_FIELDS = ("name", "unit", "target", "currentValue", "ownerUserId")

# dataclass attribute → document key for the tracked fields
_HISTORY_ATTRS = {
    "name": "name",
    "unit": "unit",
    "target": "target",
    "current_value": "currentValue",
    "owner_user_id": "ownerUserId",
}


def compute_progress(current: float, target: float) -> int:
    """Progress in percent, rounded; 0 when the target is not positive.

    Values are not clamped: 120 means the target was exceeded by 20%.
    """
    if target <= 0:
        return 0
    return round(current / target * 100)


@dataclass(frozen=True)
class KPI:
    id: str
    department_code: str
    name: str
    unit: str
    target: float
    current_value: float = 0
    description: str | None = None
    owner_user_id: str | None = None
    last_updated: str | None = None

    @property
    def progress(self) -> int:
        return compute_progress(self.current_value, self.target)

    @property
    def is_achieved(self) -> bool:
        return self.target > 0 and self.current_value >= self.target

    def changed_fields(self, other: "KPI") -> list[tuple[str, object, object]]:
        """Return ``(field, old, new)`` for tracked fields that differ in *other*."""
        changes = []
        for attr, field_name in _HISTORY_ATTRS.items():
            old, new = getattr(self, attr), getattr(other, attr)
            if old != new:
                changes.append((field_name, old, new))
        return changes

    def to_dict(self) -> dict:
        data = compact({
            "id": self.id,
            "departmentCode": self.department_code,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "target": self.target,
            "currentValue": self.current_value,
            "ownerUserId": self.owner_user_id,
            "lastUpdated": self.last_updated,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "KPI":
        return cls(
            id=data["id"],
            department_code=data["departmentCode"],
            name=data["name"],
            unit=data.get("unit", ""),
            target=as_float(data.get("target")),
            current_value=as_float(data.get("currentValue")),
            description=data.get("description"),
            owner_user_id=data.get("ownerUserId") or None,
            last_updated=data.get("lastUpdated"),
        )

    def __repr__(self):
        return f"<KPI {self.id}: {self.current_value}/{self.target} {self.unit}>"


@dataclass(frozen=True)
class KPIHistoryEntry:
    id: str
    kpi_id: str
    timestamp: str
    user_id: str
    field: str
    old_value: str
    new_value: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kpiId": self.kpi_id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "KPIHistoryEntry":
        return cls(
            id=data["id"],
            kpi_id=data["kpiId"],
            timestamp=data["timestamp"],
            user_id=data.get("userId", "system"),
            field=data["field"],
            old_value=str(data.get("oldValue", "")),
            new_value=str(data.get("newValue", "")),
        )
