"""
Notification Dispatcher tests.

Covers:
    - notify() validation
    - fan_out(): one record per recipient, unknown ids skipped, newest first
    - scan_due_tasks(): overdue / due soon / completed skipped / no repeats
    - push payload shape
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from kpi_portal.core.exceptions import ValidationError
from kpi_portal.services.notification import fan_out, list_for_user, notify, scan_due_tasks, unread_count
from kpi_portal.services.repository import find_task, mark_notification_as_read, upsert_task

NOW = datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc)


def _set_due(state, task_id, due_date, status=None):
    task = find_task(state, task_id)
    return upsert_task(state, replace(task, due_date=due_date, status=status or task.status))


# ═════════════════════════════════════════════════════════════════════════════
# notify / fan_out
# ═════════════════════════════════════════════════════════════════════════════


class TestNotify:
    def test_builds_unread_record(self):
        n = notify("task_assigned", "New Task Assigned", "msg", "m1", related_task_id="t1", now=NOW)
        assert n.user_id == "m1"
        assert n.is_read is False
        assert n.id.startswith("n_")
        assert n.timestamp == NOW.isoformat()

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            notify("task_exploded", "x", "y", "m1")

    def test_recipient_required(self):
        with pytest.raises(ValidationError):
            notify("task_assigned", "x", "y", "")


class TestFanOut:
    def test_one_record_per_recipient(self, scenario_state):
        state = fan_out(scenario_state, type="task_approved", title="Task Approved", message="ok",
                        recipient_ids=["m1", "m2"], related_task_id="t1")
        assert [n.user_id for n in state.notifications] == ["m2", "m1"]
        assert all(n.related_task_id == "t1" for n in state.notifications)

    def test_unknown_recipient_skipped(self, scenario_state):
        state = fan_out(scenario_state, type="task_assigned", title="x", message="y",
                        recipient_ids=["ghost", "m1"])
        assert [n.user_id for n in state.notifications] == ["m1"]

    def test_no_recipients_returns_same_state(self, scenario_state):
        assert fan_out(scenario_state, type="task_assigned", title="x", message="y",
                       recipient_ids=[]) is scenario_state

    def test_prepends_to_existing(self, scenario_state):
        state = fan_out(scenario_state, type="task_assigned", title="first", message="",
                        recipient_ids=["m1"])
        state = fan_out(state, type="task_assigned", title="second", message="",
                        recipient_ids=["m1"])
        assert [n.title for n in state.notifications] == ["second", "first"]


class TestQueries:
    def test_list_and_unread_count(self, scenario_state):
        state = fan_out(scenario_state, type="task_assigned", title="x", message="y",
                        recipient_ids=["m1", "m1", "m2"])
        assert len(list_for_user(state, "m1")) == 2
        assert unread_count(state, "m1") == 2

        state = mark_notification_as_read(state, list_for_user(state, "m1")[0].id)
        assert unread_count(state, "m1") == 1
        assert len(list_for_user(state, "m1", unread_only=True)) == 1
        assert unread_count(state, "m2") == 1


# ═════════════════════════════════════════════════════════════════════════════
# Due-date scan
# ═════════════════════════════════════════════════════════════════════════════


class TestScanDueTasks:
    def test_overdue(self, scenario_state):
        state = _set_due(scenario_state, "t_hr", "2026-03-01")
        state, summary = scan_due_tasks(state, now=NOW)
        assert summary["tasks_overdue"] == 1
        overdue = [n for n in state.notifications if n.type == "task_overdue"]
        assert [(n.user_id, n.related_task_id, n.title) for n in overdue] == [("m2", "t_hr", "Task Overdue")]

    def test_due_soon(self, scenario_state):
        state = _set_due(scenario_state, "t_hr", "2026-03-10")
        state, summary = scan_due_tasks(state, now=NOW)
        assert summary["tasks_due_soon"] == 2  # t1 is also due 2026-03-10
        assert {n.user_id for n in state.notifications if n.type == "task_due_soon"} == {"m1", "m2"}

    def test_far_future_and_undated_ignored(self, scenario_state):
        state = _set_due(scenario_state, "t1", "2026-06-01")
        state, summary = scan_due_tasks(state, now=NOW)
        assert summary == {"tasks_due_soon": 0, "tasks_overdue": 0, "notifications_created": 0}
        assert state.notifications == ()

    def test_completed_tasks_skipped(self, scenario_state):
        state = _set_due(scenario_state, "t1", "2026-03-01", status="completed")
        state, summary = scan_due_tasks(state, now=NOW)
        assert summary["tasks_overdue"] == 0

    def test_rerun_does_not_duplicate(self, scenario_state):
        state = _set_due(scenario_state, "t_hr", "2026-03-01")
        state, first = scan_due_tasks(state, now=NOW)
        state, second = scan_due_tasks(state, now=NOW)
        assert first["notifications_created"] == 2
        assert second["notifications_created"] == 0

    def test_read_reminder_is_sent_again(self, scenario_state):
        state = _set_due(scenario_state, "t_hr", "2026-03-01")
        state, _ = scan_due_tasks(state, now=NOW)
        for n in list_for_user(state, "m2"):
            state = mark_notification_as_read(state, n.id)
        state, summary = scan_due_tasks(state, now=NOW)
        assert summary["notifications_created"] == 1

    def test_window_is_configurable(self, scenario_state):
        state = _set_due(scenario_state, "t1", "2026-03-15")
        _, narrow = scan_due_tasks(state, now=NOW, due_soon_days=2)
        _, wide = scan_due_tasks(state, now=NOW, due_soon_days=7)
        assert narrow["tasks_due_soon"] == 0
        assert wide["tasks_due_soon"] == 1


class TestPushPayload:
    def test_task_link(self):
        n = notify("task_approved", "Task Approved", "Well done", "m1", related_task_id="t1")
        assert n.to_push_payload() == {"title": "Task Approved", "body": "Well done", "url": "/tasks?task=t1"}

    def test_dashboard_fallback(self):
        n = notify("task_due_soon", "Due", "Soon", "m1")
        assert n.to_push_payload()["url"] == "/dashboard"
