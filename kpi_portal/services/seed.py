"""
KPI Portal
Seed state — demo aggregate written on first use.

One admin, the Business Development department with a manager and two
members, five further departments, department KPIs and three BD tasks.
"""

from datetime import timedelta

from kpi_portal.models.directory import Department, User
from kpi_portal.models.kpi import KPI, KPIHistoryEntry
from kpi_portal.models.state import AppState
from kpi_portal.models.task import Task, TaskComment
from kpi_portal.utils.helpers import isoformat, new_id, utc_now


def seed_initial_state(now=None) -> AppState:
    """Return the demo aggregate (version 0, not yet persisted)."""
    now = now or utc_now()
    today = isoformat(now)

    admin = User(id="u_admin", username="admin", display_name="Admin", role="admin")
    bd_manager = User(
        id="u_bd_manager", username="BDmanager", display_name="BD Manager",
        role="manager", department_code="BD", can_create_tasks=True,
    )
    bd_member1 = User(
        id="u_bd_m1", username="BDmember1", display_name="BD Member 1",
        role="member", department_code="BD", can_create_tasks=True, specialty="Sales",
    )
    bd_member2 = User(
        id="u_bd_m2", username="BDmember2", display_name="BD Member 2",
        role="member", department_code="BD", can_create_tasks=False, specialty="Marketing",
    )

    departments = (
        Department(id="d_bd", code="BD", name="Business Development", manager_user_id=bd_manager.id),
        Department(id="d_bs", code="BS", name="Business Solutions"),
        Department(id="d_cy", code="CY", name="Cybersecurity"),
        Department(id="d_ps", code="PS", name="Partnerships"),
        Department(id="d_hr", code="HR", name="Human Resources"),
        Department(id="d_pm", code="PM", name="Project Management"),
    )

    bd_kpis = (
        KPI(id="k_leads", department_code="BD", name="Leads Generated (Q1)", unit="count",
            target=50, current_value=32, owner_user_id=bd_manager.id, last_updated=today),
        KPI(id="k_qualified", department_code="BD", name="Qualified Opportunities", unit="count",
            target=12, current_value=9, owner_user_id=bd_manager.id, last_updated=today),
        KPI(id="k_closed", department_code="BD", name="Closed Deals", unit="count",
            target=5, current_value=3, owner_user_id=bd_manager.id, last_updated=today),
    )
    other_kpis = (
        KPI(id="k_bs_uptime", department_code="BS", name="Solution Uptime", unit="%",
            target=99, current_value=97, last_updated=today),
        KPI(id="k_cy_incidents", department_code="CY", name="Incidents Resolved", unit="count",
            target=20, current_value=15, last_updated=today),
        KPI(id="k_ps_partners", department_code="PS", name="New Partners", unit="count",
            target=10, current_value=6, last_updated=today),
        KPI(id="k_hr_hires", department_code="HR", name="Monthly Hires", unit="count",
            target=8, current_value=5, last_updated=today),
        KPI(id="k_pm_on_time", department_code="PM", name="On-time Milestones", unit="%",
            target=90, current_value=76, last_updated=today),
    )

    history = tuple(
        KPIHistoryEntry(
            id=new_id("h"), kpi_id=kpi_id, timestamp=today, user_id=bd_manager.id,
            field="currentValue", old_value=old, new_value=new,
        )
        for kpi_id, old, new in (("k_leads", "30", "32"), ("k_qualified", "8", "9"), ("k_closed", "2", "3"))
    )

    tasks = (
        Task(
            id="t_pitch", department_code="BD", title="Prepare enterprise pitch",
            description="Draft tailored enterprise deck",
            assignee_user_ids=(bd_member1.id,), due_date=isoformat(now + timedelta(days=7)),
            priority="High", status="in_progress", related_kpi_id="k_closed",
            comments=(TaskComment(id=new_id("c"), user_id=bd_member1.id, timestamp=today,
                                  text="Drafted first outline."),),
            progress_percent=30,
        ),
        Task(
            id="t_prospect", department_code="BD", title="Prospect list refinement",
            assignee_user_ids=(bd_member2.id,), due_date=isoformat(now + timedelta(days=5)),
            priority="Medium", status="backlog", related_kpi_id="k_leads",
            comments=(TaskComment(id=new_id("c"), user_id=bd_member2.id, timestamp=today,
                                  text="Gathered sources to start."),),
        ),
        Task(
            id="t_pipeline", department_code="BD", title="Weekly pipeline review",
            assignee_user_ids=(bd_member1.id, bd_member2.id),
            due_date=isoformat(now + timedelta(days=3)), priority="Low", status="backlog",
        ),
    )

    return AppState(
        users=(admin, bd_manager, bd_member1, bd_member2),
        departments=departments,
        kpis=bd_kpis + other_kpis,
        kpi_history=history,
        tasks=tasks,
        preview_department_code="BD",
    )
