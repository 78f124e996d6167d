"""
KPI Portal
Entity Repository — pure functions over AppState.

Every function takes the current aggregate and returns the next one; nothing
is mutated in place. Updates and deletes of unknown ids are fail-soft: the
*same* AppState object is returned, so callers can detect a no-op with
``next_state is state``.

No cross-entity validation happens here (e.g. ``upsert_task`` does not check
that ``related_kpi_id`` exists); that belongs to the caller.
KPI numbers are the exception: a non-numeric ``target`` or ``current_value``
would break every later progress computation, so it raises ValidationError.
"""

import logging
import math
from dataclasses import replace

from kpi_portal.core.exceptions import ValidationError
from kpi_portal.models.kpi import KPI, KPIHistoryEntry
from kpi_portal.models.state import AppState
from kpi_portal.models.task import Task
from kpi_portal.services.notification import notify
from kpi_portal.utils.helpers import isoformat, new_id

logger = logging.getLogger(__name__)


# ── Lookups (weak references: None on a miss) ───────────────────────────────

def _find(items, entity_id):
    if not entity_id:
        return None
    return next((item for item in items if item.id == entity_id), None)


def find_user(state: AppState, user_id):
    return _find(state.users, user_id)


def find_user_by_username(state: AppState, username):
    if not username:
        return None
    wanted = username.strip().lower()
    return next((u for u in state.users if u.username.lower() == wanted), None)


def find_department(state: AppState, department_id):
    return _find(state.departments, department_id)


def find_department_by_code(state: AppState, code):
    if not code:
        return None
    wanted = code.strip().upper()
    return next((d for d in state.departments if d.code.upper() == wanted), None)


def find_kpi(state: AppState, kpi_id):
    return _find(state.kpis, kpi_id)


def find_task(state: AppState, task_id):
    return _find(state.tasks, task_id)


def _replace_by_id(items, entity):
    """Replace the element with ``entity.id`` in place; None if absent."""
    for index, item in enumerate(items):
        if item.id == entity.id:
            return items[:index] + (entity,) + items[index + 1:]
    return None


def _without_id(items, entity_id):
    kept = tuple(item for item in items if item.id != entity_id)
    return None if len(kept) == len(items) else kept


# ── KPIs ─────────────────────────────────────────────────────────────────────

_KPI_NUMBERS = {"target": "target", "current_value": "currentValue"}


def _check_kpi_numbers(kpi):
    for attr, key in _KPI_NUMBERS.items():
        value = getattr(kpi, attr)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(f"{key} must be a number", details={key: "invalid"})


def add_kpi(state: AppState, kpi: KPI, now=None) -> AppState:
    _check_kpi_numbers(kpi)
    if kpi.last_updated is None:
        kpi = replace(kpi, last_updated=isoformat(now))
    return replace(state, kpis=state.kpis + (kpi,))


def update_kpi(state: AppState, kpi: KPI, actor_id: str = "system", now=None) -> AppState:
    """
    Replace a KPI, recording one history entry per changed tracked field.

    Unknown id or no change: returns *state* unchanged.
    """
    current = find_kpi(state, kpi.id)
    if current is None:
        logger.debug("update_kpi: unknown KPI %s ignored", kpi.id)
        return state
    _check_kpi_numbers(kpi)

    changes = current.changed_fields(kpi)
    if not changes and current.description == kpi.description and current.department_code == kpi.department_code:
        return state

    timestamp = isoformat(now)
    updated = replace(kpi, last_updated=timestamp)
    history = tuple(
        KPIHistoryEntry(
            id=new_id("h"), kpi_id=kpi.id, timestamp=timestamp, user_id=actor_id,
            field=field, old_value="" if old is None else str(old), new_value="" if new is None else str(new),
        )
        for field, old, new in changes
    )
    return replace(
        state,
        kpis=_replace_by_id(state.kpis, updated),
        kpi_history=history + state.kpi_history,
    )


def delete_kpi(state: AppState, kpi_id: str) -> AppState:
    kpis = _without_id(state.kpis, kpi_id)
    if kpis is None:
        return state
    return replace(state, kpis=kpis)


def kpi_history_for(state: AppState, kpi_id: str):
    return [h for h in state.kpi_history if h.kpi_id == kpi_id]


# ── Tasks ────────────────────────────────────────────────────────────────────

def upsert_task(state: AppState, task: Task) -> AppState:
    """Insert a new task at the front, or replace an existing one in place."""
    tasks = _replace_by_id(state.tasks, task)
    if tasks is None:
        tasks = (task,) + state.tasks
    return replace(state, tasks=tasks)


def delete_task(state: AppState, task_id: str) -> AppState:
    tasks = _without_id(state.tasks, task_id)
    if tasks is None:
        return state
    return replace(state, tasks=tasks)


# ── Notifications ────────────────────────────────────────────────────────────

def add_notification(state: AppState, *, user_id, type, title, message,
                     related_task_id=None, related_kpi_id=None, now=None) -> AppState:
    """Prepend one unread notification with a fresh id and timestamp."""
    notification = notify(type, title, message, user_id, related_task_id=related_task_id,
                          related_kpi_id=related_kpi_id, now=now)
    return replace(state, notifications=(notification,) + state.notifications)


def mark_notification_as_read(state: AppState, notification_id: str) -> AppState:
    for index, n in enumerate(state.notifications):
        if n.id == notification_id:
            if n.is_read:
                return state
            notifications = (
                state.notifications[:index]
                + (replace(n, is_read=True),)
                + state.notifications[index + 1:]
            )
            return replace(state, notifications=notifications)
    return state


def mark_all_notifications_as_read(state: AppState, user_id: str) -> AppState:
    if not any(n.user_id == user_id and not n.is_read for n in state.notifications):
        return state
    return replace(state, notifications=tuple(
        replace(n, is_read=True) if n.user_id == user_id and not n.is_read else n
        for n in state.notifications
    ))


def remove_notification(state: AppState, notification_id: str) -> AppState:
    notifications = _without_id(state.notifications, notification_id)
    if notifications is None:
        return state
    return replace(state, notifications=notifications)


# ── UI cursor ────────────────────────────────────────────────────────────────

def set_preview_department(state: AppState, code: str | None) -> AppState:
    code = code or None
    if state.preview_department_code == code:
        return state
    return replace(state, preview_department_code=code)
