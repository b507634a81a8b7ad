"""
Care Audit Service
Tests — HTTP surface (templates, runs, action plans, dashboards, notifications).

Covers:
    - Template CRUD + archive / cascade delete over HTTP
    - Draft find-or-create, autosave, complete, 409 on completed runs
    - Action plan create / transition / lists with caller identity headers
    - Dashboard endpoints
    - Notification list / mark-read
    - Error mapping (404 / 409 / 422) and request-id headers
"""

import pytest

NURSE = {"X-User-Email": "nurse@x", "X-User-Name": "Nora Nurse"}
MANAGER = {"X-User-Email": "manager@x", "X-User-Name": "Mia Manager"}


def _create_template(client, **kw):
    payload = {
        "category": "environment",
        "name": "Fire safety walk",
        "frequency": "quarterly",
        "organization_id": "org-1",
        "items": [
            {"item_id": "A", "label": "Fire doors closed"},
            {"item_id": "B", "label": "Extinguishers serviced"},
        ],
    }
    payload.update(kw)
    res = client.post("/api/v1/audits/templates", json=payload, headers=MANAGER)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _completed_run(client, template):
    res = client.post(f"/api/v1/audits/templates/{template['id']}/runs/draft",
                      json={"team_id": "team-1"}, headers=MANAGER)
    assert res.status_code == 200
    run = res.get_json()
    res = client.post(f"/api/v1/audits/runs/{run['id']}/complete", json={
        "items": [{"item_id": "A", "status": "non-compliant"}, {"item_id": "B", "status": "compliant"}],
        "overall_notes": "one door wedged open",
    }, headers=MANAGER)
    assert res.status_code == 200
    return res.get_json()


def _create_plan(client, run, **kw):
    payload = {
        "run_id": run["id"],
        "template_id": run["template_id"],
        "item_id": "A",
        "description": "Remove door wedge and brief staff",
        "assigned_to": "nurse@x",
        "assigned_to_name": "Nora Nurse",
        "priority": "High",
        "due_date": "2030-01-01",
    }
    payload.update(kw)
    res = client.post("/api/v1/audits/action-plans", json=payload, headers=MANAGER)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═════════════════════════════════════════════════════════════════════════════

class TestTemplateAPI:
    def test_create_and_get(self, client):
        t = _create_template(client)
        assert t["created_by"] == "manager@x"
        res = client.get(f"/api/v1/audits/templates/{t['id']}")
        assert res.status_code == 200
        assert res.get_json()["name"] == "Fire safety walk"

    def test_create_validation_error_is_422(self, client):
        res = client.post("/api/v1/audits/templates", json={"category": "environment", "name": "x",
                                                              "frequency": "monthly", "organization_id": "o",
                                                              "items": []})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"items": "required"}

    def test_get_missing_is_404(self, client):
        res = client.get("/api/v1/audits/templates/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_by_category(self, client):
        _create_template(client)
        _create_template(client, category="clinical", frequency="monthly")
        res = client.get("/api/v1/audits/templates?organization_id=org-1&category=environment")
        assert res.get_json()["total"] == 1

    def test_update(self, client):
        t = _create_template(client)
        res = client.put(f"/api/v1/audits/templates/{t['id']}", json={"name": "Night fire walk"})
        assert res.status_code == 200
        assert res.get_json()["name"] == "Night fire walk"

    def test_delete_archives_by_default(self, client):
        t = _create_template(client)
        run = _completed_run(client, t)
        res = client.delete(f"/api/v1/audits/templates/{t['id']}")
        assert res.get_json() == {"template_id": t["id"], "archived": True}
        assert client.get(f"/api/v1/audits/runs/{run['id']}").status_code == 200
        assert client.get(f"/api/v1/audits/templates/{t['id']}").get_json()["is_active"] is False

    def test_cascade_delete(self, client):
        t = _create_template(client)
        run = _completed_run(client, t)
        _create_plan(client, run)
        impact = client.get(f"/api/v1/audits/templates/{t['id']}/deletion-impact").get_json()
        assert impact == {"audit_count": 1, "action_plan_count": 1}

        res = client.delete(f"/api/v1/audits/templates/{t['id']}?cascade=true")
        assert res.get_json() == {"template_id": t["id"], "deleted_action_plans": 1, "deleted_runs": 1}
        assert client.get(f"/api/v1/audits/runs/{run['id']}").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# RUNS
# ═════════════════════════════════════════════════════════════════════════════

class TestRunAPI:
    def test_draft_is_reused(self, client):
        t = _create_template(client)
        url = f"/api/v1/audits/templates/{t['id']}/runs/draft"
        first = client.post(url, json={}, headers=MANAGER).get_json()
        second = client.post(url, json={}, headers=NURSE).get_json()
        assert first["id"] == second["id"]
        assert first["audited_by"] == "manager@x"

    def test_autosave_then_complete(self, client):
        t = _create_template(client)
        run = client.post(f"/api/v1/audits/templates/{t['id']}/runs/draft", json={}).get_json()
        res = client.put(f"/api/v1/audits/runs/{run['id']}", json={
            "items": [{"item_id": "A", "status": "compliant"}], "status": "in-progress",
        })
        assert res.status_code == 200
        assert res.get_json()["status"] == "in-progress"

        res = client.post(f"/api/v1/audits/runs/{run['id']}/complete", json={})
        body = res.get_json()
        assert body["status"] == "completed"
        assert body["frequency"] == "quarterly"
        assert body["next_audit_due"] is not None

    def test_completed_run_is_409(self, client):
        t = _create_template(client)
        run = _completed_run(client, t)
        res = client.put(f"/api/v1/audits/runs/{run['id']}", json={"items": []})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "completed"
        assert client.post(f"/api/v1/audits/runs/{run['id']}/complete", json={}).status_code == 409
        assert client.delete(f"/api/v1/audits/runs/{run['id']}").status_code == 409

    def test_history_lists(self, client):
        t = _create_template(client)
        run = _completed_run(client, t)
        draft = client.post(f"/api/v1/audits/templates/{t['id']}/runs/draft", json={}).get_json()

        completed = client.get(f"/api/v1/audits/templates/{t['id']}/runs?state=completed").get_json()
        assert [r["id"] for r in completed["items"]] == [run["id"]]
        open_runs = client.get(f"/api/v1/audits/templates/{t['id']}/runs").get_json()
        assert [r["id"] for r in open_runs["items"]] == [draft["id"]]
        latest = client.get(f"/api/v1/audits/templates/{t['id']}/runs/latest").get_json()
        assert latest["id"] == run["id"]
        assert client.get(f"/api/v1/audits/templates/{t['id']}/runs?state=bogus").status_code == 422
        assert client.get(f"/api/v1/audits/templates/{t['id']}/runs?state=completed&limit=-1").status_code == 422

    def test_delete_draft(self, client):
        t = _create_template(client)
        draft = client.post(f"/api/v1/audits/templates/{t['id']}/runs/draft", json={}).get_json()
        res = client.delete(f"/api/v1/audits/runs/{draft['id']}")
        assert res.get_json() == {"deleted": draft["id"]}

    def test_resident_items(self, client):
        res = client.put("/api/v1/audits/residents/res-1/items", json={
            "item_name": "Care plan", "status": "pending", "due_date": "2020-01-01",
            "team_id": "team-1", "organization_id": "org-1",
        }, headers=NURSE)
        assert res.status_code == 200
        assert res.get_json()["auditor_name"] == "Nora Nurse"

        items = client.get("/api/v1/audits/residents/res-1/items").get_json()
        assert items["total"] == 1
        overdue = client.get("/api/v1/audits/dashboard/residents/res-1/overdue-items").get_json()
        assert overdue["overdue_count"] == 1


# ═════════════════════════════════════════════════════════════════════════════
# ACTION PLANS
# ═════════════════════════════════════════════════════════════════════════════

class TestActionPlanAPI:
    def test_create_uses_caller_as_creator(self, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        assert plan["created_by"] == "manager@x"
        assert plan["status"] == "pending"
        assert plan["is_new"] is True
        assert plan["status_history"] == []

    def test_create_missing_description_is_422(self, client):
        run = _completed_run(client, _create_template(client))
        res = client.post("/api/v1/audits/action-plans", json={
            "run_id": run["id"], "template_id": run["template_id"], "assigned_to": "nurse@x",
        }, headers=MANAGER)
        assert res.status_code == 422
        assert res.get_json()["details"]["description"] == "required"

    def test_out_of_range_due_date_is_422(self, client):
        run = _completed_run(client, _create_template(client))
        res = client.post("/api/v1/audits/action-plans", json={
            "run_id": run["id"], "template_id": run["template_id"], "description": "Fix",
            "assigned_to": "nurse@x", "due_date": 10**20,
        }, headers=MANAGER)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"due_date": "invalid date"}

    def test_transition_flow(self, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        url = f"/api/v1/audits/action-plans/{plan['id']}/transition"

        res = client.post(url, json={"status": "in_progress", "comment": "ordering signs"}, headers=NURSE)
        assert res.status_code == 200
        res = client.post(url, json={"status": "completed", "comment": "done"}, headers=NURSE)
        body = res.get_json()
        assert body["status"] == "completed"
        assert body["completed_by"] == "nurse@x"
        assert [h["status"] for h in body["status_history"]] == ["in_progress", "completed"]

        assert client.post(url, json={"status": "completed"}, headers=NURSE).status_code == 409

    def test_overdue_status_is_409(self, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        res = client.post(f"/api/v1/audits/action-plans/{plan['id']}/transition",
                          json={"status": "overdue"}, headers=NURSE)
        assert res.status_code == 409

    def test_assigned_and_created_views(self, client):
        run = _completed_run(client, _create_template(client))
        _create_plan(client, run, priority="Low")
        _create_plan(client, run, priority="High", due_date="2020-01-01")

        assigned = client.get("/api/v1/audits/action-plans/assigned", headers=NURSE).get_json()
        assert assigned["total"] == 2
        assert assigned["items"][0]["is_overdue"] is True
        created = client.get("/api/v1/audits/action-plans/created", headers=MANAGER).get_json()
        assert created["total"] == 2
        assert client.get("/api/v1/audits/action-plans/assigned").status_code == 422

    def test_unread_and_viewed(self, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        _create_plan(client, run)
        count = client.get("/api/v1/audits/action-plans/unread-count", headers=NURSE).get_json()
        assert count["unread_count"] == 2

        res = client.post(f"/api/v1/audits/action-plans/{plan['id']}/viewed")
        assert res.get_json()["is_new"] is False
        res = client.post("/api/v1/audits/action-plans/viewed", json={}, headers=NURSE)
        assert res.get_json() == {"marked_viewed": 1}

    def test_detail_update_delete(self, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        detail = client.get(f"/api/v1/audits/action-plans/{plan['id']}").get_json()
        assert detail["template_name"] == "Fire safety walk"

        res = client.put(f"/api/v1/audits/action-plans/{plan['id']}", json={"priority": "Low"})
        assert res.get_json()["priority"] == "Low"

        listed = client.get(f"/api/v1/audits/runs/{run['id']}/action-plans").get_json()
        assert listed["total"] == 1
        by_template = client.get(f"/api/v1/audits/templates/{run['template_id']}/action-plans").get_json()
        assert by_template["total"] == 1

        assert client.delete(f"/api/v1/audits/action-plans/{plan['id']}").status_code == 200
        assert client.get(f"/api/v1/audits/action-plans/{plan['id']}").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# DASHBOARD + NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestDashboardAPI:
    def test_overdue_plans_and_stats(self, client):
        run = _completed_run(client, _create_template(client))
        _create_plan(client, run, due_date="2020-01-01", team_id="team-1")
        _create_plan(client, run, team_id="team-1")

        overdue = client.get("/api/v1/audits/dashboard/overdue-action-plans?team_id=team-1").get_json()
        assert overdue["total"] == 1
        stats = client.get("/api/v1/audits/dashboard/action-plan-stats?team_id=team-1").get_json()
        assert stats["total"] == 2
        assert stats["overdue"] == 1
        assert stats["high_priority_open"] == 2

    def test_stats_without_team_is_422(self, client):
        assert client.get("/api/v1/audits/dashboard/action-plan-stats").status_code == 422

    def test_run_views(self, client):
        t = _create_template(client)
        run = _completed_run(client, t)
        latest = client.get("/api/v1/audits/dashboard/latest-runs?organization_id=org-1").get_json()
        assert [r["id"] for r in latest["items"]] == [run["id"]]
        overdue = client.get("/api/v1/audits/dashboard/overdue-runs?organization_id=org-1").get_json()
        assert overdue["total"] == 0
        upcoming = client.get(
            "/api/v1/audits/dashboard/upcoming-runs?organization_id=org-1&window_days=120",
        ).get_json()
        assert upcoming["total"] == 1
        assert upcoming["window_days"] == 120


class TestNotificationAPI:
    def test_list_and_mark_read(self, client):
        run = _completed_run(client, _create_template(client))
        _create_plan(client, run)

        res = client.get("/api/v1/notifications", headers=NURSE)
        body = res.get_json()
        assert body["total"] == 1
        n = body["items"][0]
        assert n["type"] == "action_plan"
        assert n["metadata"]["audit_category"] == "environment"

        assert client.get("/api/v1/notifications/unread-count", headers=NURSE).get_json() == {"unread_count": 1}
        res = client.patch(f"/api/v1/notifications/{n['id']}/read")
        assert res.get_json()["is_read"] is True
        res = client.post("/api/v1/notifications/mark-all-read", json={}, headers=NURSE)
        assert res.get_json() == {"marked_read": 0}

    def test_identity_required(self, client):
        assert client.get("/api/v1/notifications").status_code == 422

    def test_non_positive_limit_is_422(self, client):
        res = client.get("/api/v1/notifications?limit=-1", headers=NURSE)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"limit": "integer >= 1"}

    def test_mark_missing_is_404(self, client):
        assert client.patch("/api/v1/notifications/77/read").status_code == 404


class TestAppSurface:
    def test_health_and_request_id(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.status_code == 200
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    @pytest.mark.parametrize("path", ["/api/v1/nope", "/api/v1/audits/runs/abc"])
    def test_unknown_route(self, client, path):
        assert client.get(path).status_code == 404


class TestMaintenanceCommands:
    def test_notify_overdue_action_plans(self, app, client):
        run = _completed_run(client, _create_template(client))
        _create_plan(client, run, due_date="2020-01-01")
        _create_plan(client, run)

        result = app.test_cli_runner().invoke(args=["notify-overdue-action-plans"])
        assert result.exit_code == 0
        assert "Notified 1 overdue action plan(s)." in result.output

        types = [n["type"] for n in client.get("/api/v1/notifications", headers=NURSE).get_json()["items"]]
        assert "action_plan_overdue" in types
        manager = [n["type"] for n in client.get("/api/v1/notifications", headers=MANAGER).get_json()["items"]]
        assert manager == ["action_plan_overdue_manager"]

        # already notified plans are skipped
        result = app.test_cli_runner().invoke(args=["notify-overdue-action-plans"])
        assert "Notified 0 overdue action plan(s)." in result.output

    def test_archive_completed_action_plans(self, app, client):
        run = _completed_run(client, _create_template(client))
        plan = _create_plan(client, run)
        _create_plan(client, run)
        client.post(f"/api/v1/audits/action-plans/{plan['id']}/transition",
                    json={"status": "completed"}, headers=NURSE)

        runner = app.test_cli_runner()
        assert "Archived 0" in runner.invoke(args=["archive-completed-action-plans"]).output
        result = runner.invoke(args=["archive-completed-action-plans", "--older-than-days", "-1"])
        assert "Archived 1 completed action plan(s)." in result.output
        assert client.get(f"/api/v1/audits/action-plans/{plan['id']}").status_code == 404

    def test_cleanup_stale_drafts(self, app, client):
        t = _create_template(client)
        draft = client.post(f"/api/v1/audits/templates/{t['id']}/runs/draft", json={}).get_json()

        runner = app.test_cli_runner()
        assert "Deleted 0 stale draft run(s)." in runner.invoke(args=["cleanup-stale-drafts"]).output
        result = runner.invoke(args=["cleanup-stale-drafts", "--older-than-days", "0"])
        assert "Deleted 1 stale draft run(s)." in result.output
        assert client.get(f"/api/v1/audits/runs/{draft['id']}").status_code == 404
