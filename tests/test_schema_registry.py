"""
Schema registry API tests — checklists, categories, questions, reference data.

Tests cover:
  - CRUD through /api/checklists, /api/categories, /api/questions
  - Question option / validation / dashboard rules
  - Work-task associations of questions
  - Reference data: work tasks, work stations (per task), shifts
  - Tenant isolation (cross-tenant ids are 404)
  - Icons: closed set on write, fallback on read
  - Snapshot loading for the composer
"""

import pytest

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.checklists import Checklist, ChecklistResponse
from app.services import schema_registry as registry
from app.services.user_service import create_user


# ═══════════════════════════════════════════════════════════════
# Checklists
# ═══════════════════════════════════════════════════════════════

class TestChecklistApi:
    def test_create_and_get(self, client, admin_headers):
        res = client.post("/api/checklists", json={
            "name": "Morning round", "icon": "factory", "include_shifts": False,
        }, headers=admin_headers)
        assert res.status_code == 201
        created = res.get_json()
        assert created["icon"] == "factory"
        assert created["include_shifts"] is False
        assert created["include_work_tasks"] is True

        res = client.get(f"/api/checklists/{created['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["name"] == "Morning round"

    def test_name_required(self, client, admin_headers):
        res = client.post("/api/checklists", json={"name": "  "}, headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_RULE"

    def test_unknown_icon_rejected(self, client, admin_headers):
        res = client.post("/api/checklists", json={"name": "X", "icon": "unicorn"}, headers=admin_headers)
        assert res.status_code == 422
        assert "icon" in res.get_json()["details"]

    def test_legacy_icon_resolves_to_fallback(self, client, admin_headers, tenant):
        checklist = Checklist(tenant_id=tenant.id, name="Old", icon="ClipboardCheckLegacy")
        db.session.add(checklist)
        db.session.commit()
        res = client.get(f"/api/checklists/{checklist.id}", headers=admin_headers)
        assert res.get_json()["icon"] == "clipboard-list"

    def test_active_listing(self, client, admin_headers, tenant):
        registry.create_checklist(tenant.id, {"name": "On"})
        registry.create_checklist(tenant.id, {"name": "Off", "is_active": False})
        names = [c["name"] for c in client.get("/api/checklists/active", headers=admin_headers).get_json()]
        assert names == ["On"]
        assert len(client.get("/api/checklists", headers=admin_headers).get_json()) == 2

    def test_update_flags(self, client, admin_headers, tenant):
        checklist = registry.create_checklist(tenant.id, {"name": "Round"})
        res = client.put(f"/api/checklists/{checklist.id}", json={
            "has_dashboard": True, "show_in_menu": "true",
        }, headers=admin_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["has_dashboard"] is True
        assert body["show_in_menu"] is True
        assert body["name"] == "Round"

    def test_delete_refused_with_responses(self, client, admin_headers, safety_round, tenant):
        checklist = safety_round["checklist"]
        db.session.add(ChecklistResponse(tenant_id=tenant.id, checklist_id=checklist.id, responses={}))
        db.session.commit()
        res = client.delete(f"/api/checklists/{checklist.id}", headers=admin_headers)
        assert res.status_code == 422

    def test_delete_cascades_schema(self, client, admin_headers, safety_round):
        checklist_id = safety_round["checklist"].id
        assert client.delete(f"/api/checklists/{checklist_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/checklists/{checklist_id}", headers=admin_headers).status_code == 404

    def test_cross_tenant_is_404(self, client, other_tenant, auth_headers, safety_round):
        outsider = create_user(other_tenant.id, "x@other.test", "outsider-pass", role="admin")
        res = client.get(f"/api/checklists/{safety_round['checklist'].id}", headers=auth_headers(outsider))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════
# Categories & questions
# ═══════════════════════════════════════════════════════════════

class TestCategoryQuestionApi:
    def test_categories_ordered(self, client, admin_headers, safety_round):
        res = client.get(f"/api/categories?checklist_id={safety_round['checklist'].id}", headers=admin_headers)
        assert [c["name"] for c in res.get_json()] == ["Safety", "Quality"]

    def test_categories_require_checklist_id(self, client, admin_headers):
        assert client.get("/api/categories", headers=admin_headers).status_code == 400
        assert client.get("/api/categories?checklist_id=abc", headers=admin_headers).status_code == 400

    def test_category_needs_existing_checklist(self, client, admin_headers):
        res = client.post("/api/categories", json={"checklist_id": 999, "name": "Orphan"}, headers=admin_headers)
        assert res.status_code == 422

    def test_create_select_question(self, client, admin_headers, safety_round):
        res = client.post("/api/questions", json={
            "category_id": safety_round["safety"].id,
            "text": "Floor state",
            "type": "select",
            "options": ["Clean", "Dirty"],
        }, headers=admin_headers)
        assert res.status_code == 201
        assert res.get_json()["options"] == ["Clean", "Dirty"]

    @pytest.mark.parametrize("payload", [
        {"type": "select", "options": []},
        {"type": "select", "options": ["A", "A"]},
        {"type": "unknown"},
        {"type": "number", "validation": {"min": 10, "max": 1}},
        {"type": "text", "dashboard_display_type": "average"},
    ])
    def test_invalid_question_definitions(self, client, admin_headers, safety_round, payload):
        body = {"category_id": safety_round["safety"].id, "text": "Q", **payload}
        res = client.post("/api/questions", json=body, headers=admin_headers)
        assert res.status_code == 422

    def test_count_display_allowed_for_boolean(self, client, admin_headers, safety_round):
        res = client.post("/api/questions", json={
            "category_id": safety_round["safety"].id, "text": "Gloves?", "type": "checkbox",
            "show_in_dashboard": True, "dashboard_display_type": "count",
        }, headers=admin_headers)
        assert res.status_code == 201

    def test_question_work_tasks(self, client, admin_headers, safety_round):
        question_id = safety_round["condition"].id
        task_b = safety_round["task_b"].id

        res = client.put(f"/api/questions/{question_id}/work-tasks",
                         json={"work_task_ids": [task_b]}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["work_task_ids"] == [task_b]

        res = client.get(f"/api/questions/{question_id}/work-tasks", headers=admin_headers)
        assert [t["id"] for t in res.get_json()] == [task_b]

        res = client.put(f"/api/questions/{question_id}/work-tasks",
                         json={"work_task_ids": [9999]}, headers=admin_headers)
        assert res.status_code == 422

    @pytest.mark.parametrize("ids", [["abc"], [None], [{"id": 1}]])
    def test_malformed_work_task_ids_422(self, client, admin_headers, safety_round, ids):
        res = client.put(f"/api/questions/{safety_round['condition'].id}/work-tasks",
                         json={"work_task_ids": ids}, headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"work_task_ids": "integers"}

    @pytest.mark.parametrize("alias", ["progress-bar", "progressbar", "Progress-Bar"])
    def test_progress_display_aliases(self, client, admin_headers, safety_round, alias):
        res = client.post("/api/questions", json={
            "category_id": safety_round["quality"].id, "text": "Fill level", "type": "number",
            "show_in_dashboard": True, "dashboard_display_type": alias,
        }, headers=admin_headers)
        assert res.status_code == 201
        assert res.get_json()["dashboard_display_type"] == "progress"

    def test_delete_answered_question_refused(self, client, admin_headers, safety_round, tenant):
        exits = safety_round["exits"]
        db.session.add(ChecklistResponse(
            tenant_id=tenant.id, checklist_id=safety_round["checklist"].id, responses={str(exits.id): True},
        ))
        db.session.commit()
        assert client.delete(f"/api/questions/{exits.id}", headers=admin_headers).status_code == 422
        assert client.delete(f"/api/categories/{safety_round['safety'].id}", headers=admin_headers).status_code == 422
        assert client.delete(f"/api/questions/{safety_round['notes'].id}", headers=admin_headers).status_code == 200


# ═══════════════════════════════════════════════════════════════
# Reference data
# ═══════════════════════════════════════════════════════════════

class TestReferenceDataApi:
    def test_stations_filtered_by_task(self, client, admin_headers, plant):
        res = client.get(f"/api/work-stations?work_task_id={plant['task_a'].id}", headers=admin_headers)
        assert [s["name"] for s in res.get_json()] == ["Line 1"]
        res = client.get(f"/api/work-stations?work_task_id={plant['task_b'].id}", headers=admin_headers)
        assert res.get_json() == []

    def test_station_unknown_task(self, client, admin_headers):
        res = client.post("/api/work-stations", json={"name": "S", "work_task_id": 404}, headers=admin_headers)
        assert res.status_code == 422

    def test_shift_time_format(self, client, admin_headers):
        ok = client.post("/api/shifts", json={"name": "Late", "start_time": "14:00"}, headers=admin_headers)
        assert ok.status_code == 201
        bad = client.post("/api/shifts", json={"name": "Late", "start_time": "25:00"}, headers=admin_headers)
        assert bad.status_code == 422

    def test_inactive_hidden_unless_requested(self, client, admin_headers, plant):
        client.put(f"/api/shifts/{plant['night'].id}", json={"is_active": False}, headers=admin_headers)
        names = [s["name"] for s in client.get("/api/shifts", headers=admin_headers).get_json()]
        assert names == ["Day"]
        res = client.get("/api/shifts?include_inactive=true", headers=admin_headers)
        assert len(res.get_json()) == 2

    def test_work_task_update(self, client, admin_headers, plant):
        res = client.put(f"/api/work-tasks/{plant['task_b'].id}",
                         json={"has_stations": True}, headers=admin_headers)
        assert res.get_json()["has_stations"] is True

    def test_operator_may_read_reference_data(self, client, operator_headers, plant):
        assert client.get("/api/work-tasks", headers=operator_headers).status_code == 200
        res = client.post("/api/work-tasks", json={"name": "Nope"}, headers=operator_headers)
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════
# Icons & snapshot
# ═══════════════════════════════════════════════════════════════

class TestIconsAndSnapshot:
    def test_icon_catalogue(self, client, operator_headers):
        icons = client.get("/api/icons", headers=operator_headers).get_json()["icons"]
        assert "clipboard-list" in icons
        assert len(icons) == len(set(icons))

    def test_snapshot_contents(self, tenant, safety_round):
        schema = registry.load_snapshot(tenant.id, safety_round["checklist"].id)
        assert [c.name for c in schema.categories] == ["Safety", "Quality"]
        torque = schema.question(safety_round["torque"].id)
        assert torque.work_task_ids == frozenset({safety_round["task_a"].id})
        assert torque.validation == {"min": 0, "max": 200}
        assert len(schema.work_tasks) == 2
        assert len(schema.shifts) == 2

    def test_snapshot_skips_inactive_categories(self, tenant, safety_round):
        registry.update_category(tenant.id, safety_round["quality"].id, {"is_active": False})
        schema = registry.load_snapshot(tenant.id, safety_round["checklist"].id)
        assert [c.name for c in schema.categories] == ["Safety"]
        assert schema.question(safety_round["condition"].id) is None

        full = registry.load_snapshot(tenant.id, safety_round["checklist"].id, include_inactive=True)
        assert full.question(safety_round["condition"].id) is not None

    def test_inactive_checklist_not_loadable(self, tenant, safety_round):
        registry.update_checklist(tenant.id, safety_round["checklist"].id, {"is_active": False})
        with pytest.raises(NotFoundError):
            registry.load_snapshot(tenant.id, safety_round["checklist"].id)

    def test_snapshot_tenant_scoped(self, other_tenant, safety_round):
        with pytest.raises(NotFoundError):
            registry.load_snapshot(other_tenant.id, safety_round["checklist"].id)
