"""
HTTP API tests against the seeded portal (SQL backend, in-memory SQLite).

Seed actors:
    u_admin       admin
    u_bd_manager  BD manager
    u_bd_m1       BD member, may create tasks
    u_bd_m2       BD member, may not create tasks
"""

import pytest

ADMIN = {"X-User-Id": "u_admin"}
MANAGER = {"X-User-Id": "u_bd_manager"}
MEMBER = {"X-User-Id": "u_bd_m1"}
MEMBER_NO_CREATE = {"X-User-Id": "u_bd_m2"}


def _kpi_value(client, kpi_id):
    return client.get(f"/api/v1/kpis/{kpi_id}").get_json()["currentValue"]


# ═════════════════════════════════════════════════════════════════════════════
# Health & state
# ═════════════════════════════════════════════════════════════════════════════


class TestHealthAndState:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live_reports_state_version(self, client):
        client.get("/api/v1/state")
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["state"]["version"] >= 1

    def test_state_hides_password_hashes(self, client):
        client.post("/api/v1/users", json={"username": "newbie"}, headers=ADMIN)
        data = client.get("/api/v1/state").get_json()
        assert all("passwordHash" not in u for u in data["users"])
        assert data["previewDepartmentCode"] == "BD"

    def test_unknown_actor_is_401(self, client):
        res = client.get("/api/v1/notifications", headers={"X-User-Id": "ghost"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_missing_actor_on_protected_route(self, client):
        assert client.post("/api/v1/tasks/t_pitch/start").status_code == 401

    def test_preview_requires_admin(self, client):
        res = client.put("/api/v1/state/preview", json={"departmentCode": "HR"}, headers=MANAGER)
        assert res.status_code == 403
        res = client.put("/api/v1/state/preview", json={"departmentCode": "HR"}, headers=ADMIN)
        assert res.get_json()["previewDepartmentCode"] == "HR"


# ═════════════════════════════════════════════════════════════════════════════
# Task lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskLifecycleApi:
    def test_submit_approve_flow(self, client):
        res = client.post("/api/v1/tasks/t_pitch/submit", json={
            "comment": "Deck ready",
            "attachments": [{"fileName": "deck.pdf", "url": "https://files.example/deck.pdf"}],
        }, headers=MEMBER)
        assert res.status_code == 200
        task = res.get_json()
        assert task["status"] == "pending_approval"
        assert task["attachments"][0]["fileName"] == "deck.pdf"

        res = client.post("/api/v1/tasks/t_pitch/approve", headers=MANAGER)
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"
        assert _kpi_value(client, "k_closed") == 4

        inbox = client.get("/api/v1/notifications", headers=MEMBER).get_json()
        assert inbox["unreadCount"] == 1
        assert inbox["items"][0]["type"] == "task_approved"

    def test_member_cannot_approve(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        res = client.post("/api/v1/tasks/t_pitch/approve", headers=MEMBER)
        assert res.status_code == 403
        assert _kpi_value(client, "k_closed") == 3

    def test_member_cannot_complete_via_transition(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        res = client.post("/api/v1/tasks/t_pitch/transition", json={"status": "completed"}, headers=MEMBER)
        assert res.status_code == 403

    def test_double_approve_is_409(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        client.post("/api/v1/tasks/t_pitch/approve", headers=MANAGER)
        res = client.post("/api/v1/tasks/t_pitch/approve", headers=MANAGER)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["currentStatus"] == "completed"
        assert _kpi_value(client, "k_closed") == 4

    def test_backlog_cannot_jump_to_completed(self, client):
        res = client.put("/api/v1/tasks/t_prospect", json={"status": "completed"}, headers=MANAGER)
        assert res.status_code == 409

    def test_reject_returns_to_in_progress(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        res = client.post("/api/v1/tasks/t_pitch/reject", headers=MANAGER)
        assert res.get_json()["status"] == "in_progress"
        inbox = client.get("/api/v1/notifications", headers=MEMBER).get_json()
        assert inbox["items"][0]["type"] == "task_rejected"

    @pytest.mark.parametrize("task_id,action", [
        ("t_prospect", "reject"),
        ("t_pitch", "reject"),
        ("t_prospect", "approve"),
        ("t_pitch", "approve"),
        ("t_pitch", "start"),
    ])
    def test_action_from_wrong_status_is_409(self, client, task_id, action):
        before = client.get(f"/api/v1/tasks/{task_id}").get_json()["status"]
        res = client.post(f"/api/v1/tasks/{task_id}/{action}", headers=MANAGER)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
        assert client.get(f"/api/v1/tasks/{task_id}").get_json()["status"] == before

    def test_start_on_pending_task_does_not_reject(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        res = client.post("/api/v1/tasks/t_pitch/start", headers=MANAGER)
        assert res.status_code == 409
        assert client.get("/api/v1/tasks/t_pitch").get_json()["status"] == "pending_approval"
        inbox = client.get("/api/v1/notifications", headers=MEMBER).get_json()["items"]
        assert "task_rejected" not in [n["type"] for n in inbox]

    def test_submit_completed_task_is_409(self, client):
        client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        client.post("/api/v1/tasks/t_pitch/approve", headers=MANAGER)
        res = client.post("/api/v1/tasks/t_pitch/submit", headers=MEMBER)
        assert res.status_code == 409
        assert _kpi_value(client, "k_closed") == 4

    def test_unknown_task_is_404(self, client):
        assert client.post("/api/v1/tasks/ghost/start", headers=MEMBER).status_code == 404

    def test_create_task_defaults_to_actor_department(self, client):
        res = client.post("/api/v1/tasks", json={
            "title": "Call ACME", "assigneeUserIds": ["u_bd_m2"], "dueDate": "2026-04-01",
        }, headers=MEMBER)
        assert res.status_code == 201
        task = res.get_json()
        assert (task["departmentCode"], task["status"]) == ("BD", "backlog")

        inbox = client.get("/api/v1/notifications", headers=MEMBER_NO_CREATE).get_json()
        assert inbox["items"][0]["message"] == 'You have been assigned a new task: "Call ACME" (Due: 2026-04-01)'

    def test_member_without_permission_cannot_create(self, client):
        res = client.post("/api/v1/tasks", json={"title": "x"}, headers=MEMBER_NO_CREATE)
        assert res.status_code == 403

    def test_comment(self, client):
        res = client.post("/api/v1/tasks/t_pitch/comments", json={"text": "On it"}, headers=MEMBER)
        assert res.status_code == 201
        assert res.get_json()["comments"][-1]["text"] == "On it"
        activities = client.get("/api/v1/activities?departmentCode=bd").get_json()["items"]
        assert activities[0]["type"] == "task_comment"


# ═════════════════════════════════════════════════════════════════════════════
# KPIs
# ═════════════════════════════════════════════════════════════════════════════


class TestKpiApi:
    def test_update_records_history(self, client):
        res = client.put("/api/v1/kpis/k_leads", json={"currentValue": 40}, headers=MANAGER)
        assert res.status_code == 200
        assert res.get_json()["progress"] == 80
        history = client.get("/api/v1/kpis/k_leads/history").get_json()["items"]
        assert (history[0]["field"], history[0]["oldValue"], history[0]["newValue"]) == (
            "currentValue", "32", "40",
        )

    def test_member_cannot_edit_kpi(self, client):
        assert client.put("/api/v1/kpis/k_leads", json={"target": 1}, headers=MEMBER).status_code == 403

    def test_create_kpi(self, client):
        res = client.post("/api/v1/kpis", json={
            "departmentCode": "HR", "name": "Attrition", "unit": "%", "target": 5,
        }, headers=ADMIN)
        assert res.status_code == 201
        assert res.get_json()["departmentCode"] == "HR"

    @pytest.mark.parametrize("body", [
        {"target": None},
        {"currentValue": None},
        {"target": "lots"},
    ])
    def test_update_rejects_null_or_non_numeric(self, client, body):
        res = client.put("/api/v1/kpis/k_leads", json=body, headers=MANAGER)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION"

        listing = client.get("/api/v1/kpis")
        assert listing.status_code == 200
        assert _kpi_value(client, "k_leads") == 32
        assert client.get("/api/v1/kpis/k_leads/history").get_json()["total"] == 1

    @pytest.mark.parametrize("body", [
        {"departmentCode": "HR", "name": "Attrition", "unit": "%"},
        {"departmentCode": "HR", "name": "Attrition", "unit": "%", "target": None},
        {"departmentCode": "HR", "name": "Attrition", "unit": "%", "target": 5, "currentValue": None},
    ])
    def test_create_requires_numbers(self, client, body):
        res = client.post("/api/v1/kpis", json=body, headers=ADMIN)
        assert res.status_code == 422
        assert client.get("/api/v1/kpis?departmentCode=HR").get_json()["total"] == 1

    def test_negative_limit_falls_back_to_default(self, client):
        everything = client.get("/api/v1/kpis").get_json()
        res = client.get("/api/v1/kpis?limit=-5").get_json()
        assert len(res["items"]) == everything["total"]


# ═════════════════════════════════════════════════════════════════════════════
# Directory & login
# ═════════════════════════════════════════════════════════════════════════════


class TestDirectoryApi:
    def test_delete_department_cascades_and_moves_preview(self, client):
        res = client.delete("/api/v1/departments/d_bd", headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["previewDepartmentCode"] == "BS"

        state = client.get("/api/v1/state").get_json()
        assert all(k["departmentCode"] != "BD" for k in state["kpis"])
        assert state["tasks"] == []
        assert all(u.get("departmentCode") != "BD" for u in state["users"])

    def test_duplicate_department_is_409(self, client):
        res = client.post("/api/v1/departments", json={"code": "bd", "name": "Dup"}, headers=ADMIN)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_manager_adds_member_to_own_department(self, client):
        res = client.post("/api/v1/users", json={"username": "newbie", "departmentCode": "HR"},
                          headers=MANAGER)
        assert res.status_code == 201
        assert res.get_json()["departmentCode"] == "BD"

    def test_login_and_change_password(self, client):
        user = client.post("/api/v1/users", json={"username": "newbie"}, headers=ADMIN).get_json()

        res = client.post("/api/v1/auth/login", json={"username": "NEWBIE", "password": "123"})
        assert res.status_code == 200
        assert res.get_json()["requirePasswordChange"] is True

        res = client.put(f"/api/v1/users/{user['id']}/password", json={"password": "better"},
                         headers={"X-User-Id": user["id"]})
        assert res.status_code == 200
        assert res.get_json()["requirePasswordChange"] is False

        res = client.post("/api/v1/auth/login", json={"username": "newbie", "password": "better"})
        assert res.get_json()["requirePasswordChange"] is False

    def test_bad_login_is_401(self, client):
        res = client.post("/api/v1/auth/login", json={"username": "admin", "password": "nope"})
        assert res.status_code == 401

    def test_disabled_actor_is_403(self, client):
        client.put("/api/v1/users/u_bd_m1/status", json={"status": "disabled"}, headers=MANAGER)
        res = client.get("/api/v1/notifications", headers=MEMBER)
        assert res.status_code == 403
