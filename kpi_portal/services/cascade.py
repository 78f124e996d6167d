"""
KPI Portal
Cascade Rules — referential cleanup on department removal.

delete_department(state, department_id):
    1. resolve the department's code
    2. drop the department
    3. drop every KPI and Task with that department code
    4. clear ``department_code`` on every User who held it
       (role and status untouched)

Notifications and activities that point at removed KPIs/Tasks are left in
place as weak references. ``purge_orphaned_references`` removes them on
explicit request only.

The admin preview cursor lives outside the entity graph; resetting it is the
caller's job (see PortalService.delete_department).
"""

import logging
from dataclasses import replace

from kpi_portal.models.state import AppState

logger = logging.getLogger(__name__)


def delete_department(state: AppState, department_id: str) -> AppState:
    department = next((d for d in state.departments if d.id == department_id), None)
    if department is None:
        return state

    code = department.code
    kpis = tuple(k for k in state.kpis if k.department_code != code)
    tasks = tuple(t for t in state.tasks if t.department_code != code)
    users = tuple(
        replace(u, department_code=None) if u.department_code == code else u
        for u in state.users
    )

    logger.info(
        "Department %s deleted: %d KPI(s), %d task(s) removed, %d user(s) unassigned",
        code,
        len(state.kpis) - len(kpis),
        len(state.tasks) - len(tasks),
        sum(1 for u in state.users if u.department_code == code),
        extra={"department_code": code},
    )
    return replace(
        state,
        departments=tuple(d for d in state.departments if d.id != department_id),
        kpis=kpis,
        tasks=tasks,
        users=users,
    )


def purge_orphaned_references(state: AppState) -> AppState:
    """
    Drop notifications, activities and KPI history entries that reference a
    task or KPI no longer present in the aggregate.
    """
    task_ids = {t.id for t in state.tasks}
    kpi_ids = {k.id for k in state.kpis}

    def _alive(entry):
        if entry.related_task_id and entry.related_task_id not in task_ids:
            return False
        if entry.related_kpi_id and entry.related_kpi_id not in kpi_ids:
            return False
        return True

    notifications = tuple(n for n in state.notifications if _alive(n))
    activities = tuple(a for a in state.activities if _alive(a))
    history = tuple(h for h in state.kpi_history if h.kpi_id in kpi_ids)

    removed = (
        len(state.notifications) - len(notifications)
        + len(state.activities) - len(activities)
        + len(state.kpi_history) - len(history)
    )
    if not removed:
        return state
    logger.info("Purged %d orphaned reference(s)", removed)
    return replace(state, notifications=notifications, activities=activities, kpi_history=history)
