"""
Cascade Rules tests.

Department removal must leave no KPI or Task with the removed code and no
User still holding it, while untouched departments keep everything.
"""

import pytest

from kpi_portal.services import task_lifecycle
from kpi_portal.services.cascade import delete_department, purge_orphaned_references
from kpi_portal.services.portal import PortalService
from kpi_portal.services.seed import seed_initial_state
from kpi_portal.services.state_store import MemoryStateStore


class TestDeleteDepartment:
    def test_bd_removal_scenario(self, scenario_state):
        state = delete_department(scenario_state, "d_bd")

        assert [d.code for d in state.departments] == ["HR"]
        assert [k.id for k in state.kpis] == ["k_hr"]
        assert [t.id for t in state.tasks] == ["t_hr"]

        users = {u.id: u for u in state.users}
        assert users["m1"].department_code is None
        assert users["mgr"].department_code is None
        # Role and status are not touched.
        assert users["mgr"].role == "manager"
        assert users["m1"].status == "active"
        assert users["m2"].department_code == "HR"

    @pytest.mark.parametrize("department", seed_initial_state().departments, ids=lambda d: d.code)
    def test_no_dangling_code_for_any_seed_department(self, department):
        before = seed_initial_state()
        state = delete_department(before, department.id)
        code = department.code

        assert all(k.department_code != code for k in state.kpis)
        assert all(t.department_code != code for t in state.tasks)
        assert all(u.department_code != code for u in state.users)
        assert len(state.users) == len(before.users)
        others = [k for k in before.kpis if k.department_code != code]
        assert list(state.kpis) == others

    def test_unknown_department_returns_same_state(self, scenario_state):
        assert delete_department(scenario_state, "d_nope") is scenario_state

    def test_preview_cursor_left_to_caller(self, scenario_state):
        state = delete_department(scenario_state, "d_bd")
        assert state.preview_department_code == "BD"

    def test_weak_references_survive(self, scenario_state, manager):
        state = task_lifecycle.approve_task(scenario_state, "t1", manager)
        state = delete_department(state, "d_bd")
        assert any(n.related_task_id == "t1" for n in state.notifications)
        assert any(a.related_kpi_id == "k1" for a in state.activities)
        assert state.kpi_history


class TestPurgeOrphans:
    def test_removes_dangling_entries(self, scenario_state, manager):
        state = task_lifecycle.approve_task(scenario_state, "t1", manager)
        state = task_lifecycle.start_task(state, "t_hr", manager)
        state = delete_department(state, "d_bd")

        purged = purge_orphaned_references(state)
        assert purged.notifications == ()
        assert [a.related_task_id for a in purged.activities] == ["t_hr"]
        assert purged.kpi_history == ()

    def test_nothing_to_purge(self, scenario_state):
        assert purge_orphaned_references(scenario_state) is scenario_state


class TestPortalPreviewReset:
    def test_preview_moves_to_first_remaining(self, scenario_state):
        store = MemoryStateStore(seed_factory=lambda: scenario_state)
        portal = PortalService(store)
        state = portal.delete_department("d_bd")
        assert state.preview_department_code == "HR"

    def test_preview_cleared_when_last_department_goes(self, scenario_state):
        portal = PortalService(MemoryStateStore(seed_factory=lambda: scenario_state))
        portal.delete_department("d_bd")
        state = portal.delete_department("d_hr")
        assert state.departments == ()
        assert state.preview_department_code is None

    def test_other_preview_untouched(self, scenario_state):
        portal = PortalService(MemoryStateStore(seed_factory=lambda: scenario_state))
        portal.set_preview_department("HR")
        state = portal.delete_department("d_bd")
        assert state.preview_department_code == "HR"
