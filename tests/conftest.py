"""
Shared pytest fixtures for the KPI Portal test suite.

Provides:
    - app: Flask application (session-scoped, ``testing`` config, in-memory SQLite)
    - _setup_db: Table creation/teardown (session-scoped)
    - session: Per-test app context, table recreation and portal snapshot reset (autouse)
    - client: Flask test client
    - portal: the app's PortalService
    - scenario_state: BD department, KPI k1 (32/50), task t1 pending approval for m1
    - manager / member / admin: Actors for the scenario users
"""

import pytest

from kpi_portal import create_app
from kpi_portal.models import db as _db
from kpi_portal.models.directory import Actor, Department, User
from kpi_portal.models.kpi import KPI
from kpi_portal.models.state import AppState
from kpi_portal.models.task import Task
from kpi_portal.services.portal import get_portal


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, forget the cached aggregate, recreate tables."""
    with app.app_context():
        get_portal().invalidate()
        yield
        get_portal().invalidate()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def portal(app):
    return get_portal()


# ── Scenario fixtures ────────────────────────────────────────────────────


def build_scenario_state() -> AppState:
    """BD owns k1 (32/50) and t1 (pending approval, assigned to m1); HR is a bystander."""
    return AppState(
        users=(
            User(id="admin", username="admin", display_name="Admin", role="admin",
                 require_password_change=False),
            User(id="mgr", username="BDmanager", display_name="BD Manager", role="manager",
                 department_code="BD", can_create_tasks=True),
            User(id="m1", username="BDmember1", display_name="BD Member 1", role="member",
                 department_code="BD", can_create_tasks=True),
            User(id="m2", username="HRmember", display_name="HR Member", role="member",
                 department_code="HR"),
        ),
        departments=(
            Department(id="d_bd", code="BD", name="Business Development", manager_user_id="mgr"),
            Department(id="d_hr", code="HR", name="Human Resources"),
        ),
        kpis=(
            KPI(id="k1", department_code="BD", name="Leads Generated", unit="count",
                target=50, current_value=32, owner_user_id="mgr"),
            KPI(id="k_hr", department_code="HR", name="Monthly Hires", unit="count",
                target=8, current_value=5),
        ),
        tasks=(
            Task(id="t1", department_code="BD", title="Close ACME deal",
                 assignee_user_ids=("m1",), status="pending_approval", related_kpi_id="k1",
                 due_date="2026-03-10"),
            Task(id="t_hr", department_code="HR", title="Onboard new hire",
                 assignee_user_ids=("m2",), status="backlog"),
        ),
        preview_department_code="BD",
    )


@pytest.fixture()
def scenario_state():
    return build_scenario_state()


@pytest.fixture()
def admin():
    return Actor(user_id="admin", role="admin")


@pytest.fixture()
def manager():
    return Actor(user_id="mgr", role="manager")


@pytest.fixture()
def member():
    return Actor(user_id="m1", role="member")
