"""
KPI Portal
Activity Recorder — bounded, newest-first department event log.

Usage:
    from kpi_portal.services.activity import add_activity

    state = add_activity(
        state,
        department_code="BD",
        user_id=actor.user_id,
        type="task_created",
        description='Created task: "Weekly pipeline review"',
        related_task_id=task.id,
    )
"""

import logging
from dataclasses import replace

from kpi_portal.core.exceptions import ValidationError
from kpi_portal.models.activity import ACTIVITY_LOG_LIMIT, ACTIVITY_TYPES, ActivityLog
from kpi_portal.models.state import AppState
from kpi_portal.utils.helpers import isoformat, new_id

logger = logging.getLogger(__name__)


def add_activity(
    state: AppState,
    *,
    department_code: str,
    user_id: str,
    type: str,
    description: str,
    related_task_id: str | None = None,
    related_kpi_id: str | None = None,
    limit: int = ACTIVITY_LOG_LIMIT,
    now=None,
) -> AppState:
    """
    Prepend one entry (fresh id and timestamp) and evict the oldest past *limit*.

    Raises:
        ValidationError: unknown activity type.
    """
    if type not in ACTIVITY_TYPES:
        raise ValidationError(f"Unknown activity type: {type}", details={"type": type})

    entry = ActivityLog(
        id=new_id("a"),
        department_code=department_code,
        user_id=user_id,
        type=type,
        timestamp=isoformat(now),
        description=description,
        related_task_id=related_task_id,
        related_kpi_id=related_kpi_id,
    )
    activities = (entry,) + state.activities
    if len(activities) > limit:
        logger.debug("Activity log over capacity, evicting %d entries", len(activities) - limit)
        activities = activities[:limit]
    return replace(state, activities=activities)


def activities_for_department(state: AppState, department_code: str | None = None, limit: int | None = None):
    """Newest-first activities, optionally restricted to one department."""
    items = [a for a in state.activities if department_code is None or a.department_code == department_code]
    return items[:limit] if limit else items
