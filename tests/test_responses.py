"""
Response collector tests — POST/GET /api/responses and the write-once store.

Tests cover:
  - Round-trip of stored answers (keys and JSON types unchanged)
  - Work-task scoping: scoped answers dropped, scoped questions not required
  - Unknown question ids and type mismatches -> 422
  - Required answers with is_completed true/false
  - Identification rules (station per task, shifts optional when excluded)
  - Listing filters, search and pagination
  - Write-once enforcement at the storage layer
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ImmutableRecordError
from app.models import db
from app.models.checklists import Category, Checklist, ChecklistResponse, Question
from app.services import response_service
from app.services.form_composer import RequestContext


@pytest.fixture()
def plain_checklist(tenant):
    """Checklist without identification dimensions and fixed question ids 12 / 15."""
    checklist = Checklist(
        tenant_id=tenant.id, name="Plain",
        include_work_tasks=False, include_work_stations=False, include_shifts=False,
    )
    db.session.add(checklist)
    db.session.flush()
    category = Category(tenant_id=tenant.id, checklist_id=checklist.id, name="Main")
    db.session.add(category)
    db.session.flush()
    db.session.add_all([
        Question(id=12, tenant_id=tenant.id, category_id=category.id, text="Door closed?", type="yes_no"),
        Question(id=15, tenant_id=tenant.id, category_id=category.id, text="Rating", type="stars", order=1),
    ])
    db.session.commit()
    return checklist


def _full_answers(sr):
    return {str(sr["exits"].id): True, str(sr["condition"].id): 4}


def _ident(sr, task="task_a"):
    ident = {"work_task_id": sr[task].id, "shift_id": sr["day"].id}
    if task == "task_a":
        ident["work_station_id"] = sr["station"].id
    return ident


# ═══════════════════════════════════════════════════════════════
# Submit
# ═══════════════════════════════════════════════════════════════

class TestSubmit:
    def test_roundtrip_keeps_keys_and_types(self, client, operator_headers, plain_checklist):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id,
            "responses": {"12": True, "15": 4},
        }, headers=operator_headers)
        assert res.status_code == 201
        response_id = res.get_json()["id"]

        fetched = client.get(f"/api/responses/{response_id}", headers=operator_headers).get_json()
        assert fetched["responses"] == {"12": True, "15": 4}
        assert fetched["responses"]["12"] is True
        assert type(fetched["responses"]["15"]) is int

    def test_list_form_accepted(self, client, operator_headers, plain_checklist):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id,
            "responses": [{"question_id": 12, "value": False}, {"question_id": 15, "value": "5"}],
        }, headers=operator_headers)
        assert res.status_code == 201
        assert res.get_json()["responses"] == {"12": False, "15": 5}

    def test_operator_name_defaults_to_user(self, client, operator_headers, plain_checklist, operator):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id, "responses": {"12": True},
        }, headers=operator_headers)
        body = res.get_json()
        assert body["operator_name"] == "Olle Operator"
        assert body["user_id"] == operator.id

    def test_scoped_answer_dropped_for_other_task(self, client, operator_headers, safety_round):
        sr = safety_round
        answers = {**_full_answers(sr), str(sr["torque"].id): 50}
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr, "task_b"), "responses": answers,
        }, headers=operator_headers)
        assert res.status_code == 201
        assert str(sr["torque"].id) not in res.get_json()["responses"]

    def test_scoped_answer_kept_for_matching_task(self, client, operator_headers, safety_round):
        sr = safety_round
        answers = {**_full_answers(sr), str(sr["torque"].id): "50"}
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr), "responses": answers,
        }, headers=operator_headers)
        assert res.status_code == 201
        assert res.get_json()["responses"][str(sr["torque"].id)] == 50

    def test_scoped_invalid_answer_ignored_for_other_task(self, client, operator_headers, safety_round):
        sr = safety_round
        answers = {**_full_answers(sr), str(sr["torque"].id): 999}  # out of bounds, but not applicable
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr, "task_b"), "responses": answers,
        }, headers=operator_headers)
        assert res.status_code == 201

    def test_unknown_question_422(self, client, operator_headers, plain_checklist):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id, "responses": {"12": True, "999": "x"},
        }, headers=operator_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"999": "unknown question"}

    def test_type_mismatch_422(self, client, operator_headers, plain_checklist):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id, "responses": {"12": "perhaps", "15": 9},
        }, headers=operator_headers)
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"12", "15"}

    @pytest.mark.parametrize("raw", ["nan", "inf", "-inf"])
    def test_non_finite_rating_422(self, client, operator_headers, plain_checklist, raw):
        res = client.post("/api/responses", json={
            "checklist_id": plain_checklist.id, "responses": {"12": True, "15": raw},
        }, headers=operator_headers)
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"15"}

    def test_non_finite_number_not_stored(self, client, operator_headers, safety_round):
        sr = safety_round
        answers = {**_full_answers(sr), str(sr["torque"].id): "nan"}
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr), "responses": answers,
        }, headers=operator_headers)
        assert res.status_code == 422
        assert client.get("/api/responses", headers=operator_headers).get_json()["total"] == 0

    def test_missing_required_lists_labels(self, client, operator_headers, safety_round):
        sr = safety_round
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr), "responses": {str(sr["exits"].id): False},
        }, headers=operator_headers)
        assert res.status_code == 422
        body = res.get_json()
        assert "Overall line condition" in body["error"]
        assert body["details"] == {str(sr["condition"].id): "required"}

    def test_incomplete_response_skips_required(self, client, operator_headers, safety_round):
        sr = safety_round
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, "responses": {}, "is_completed": False,
        }, headers=operator_headers)
        assert res.status_code == 201
        assert res.get_json()["is_completed"] is False

    def test_station_required_for_task_with_stations(self, client, operator_headers, safety_round):
        sr = safety_round
        ident = _ident(sr)
        del ident["work_station_id"]
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **ident, "responses": _full_answers(sr),
        }, headers=operator_headers)
        assert res.status_code == 422
        assert "Work station" in res.get_json()["details"]

    def test_invalid_identification_choice(self, client, operator_headers, safety_round):
        sr = safety_round
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr), "shift_id": 4040,
            "responses": _full_answers(sr),
        }, headers=operator_headers)
        assert res.status_code == 422
        assert "shift_id" in res.get_json()["details"]

    def test_shift_not_needed_when_excluded(self, client, operator_headers, admin_headers, safety_round):
        sr = safety_round
        client.put(f"/api/checklists/{sr['checklist'].id}", json={"include_shifts": False}, headers=admin_headers)
        ident = _ident(sr, "task_b")
        ident.pop("shift_id")
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **ident, "responses": _full_answers(sr),
        }, headers=operator_headers)
        assert res.status_code == 201
        assert res.get_json()["shift_id"] is None

    def test_checklist_id_required(self, client, operator_headers):
        res = client.post("/api/responses", json={"responses": {}}, headers=operator_headers)
        assert res.status_code == 400

    def test_inactive_checklist_404(self, client, operator_headers, admin_headers, safety_round):
        sr = safety_round
        client.put(f"/api/checklists/{sr['checklist'].id}", json={"is_active": False}, headers=admin_headers)
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, "responses": {}, "is_completed": False,
        }, headers=operator_headers)
        assert res.status_code == 404


# ═══════════════════════════════════════════════════════════════
# Listing
# ═══════════════════════════════════════════════════════════════

class TestListResponses:
    def _submit(self, tenant, checklist_id, name, created_at=None, **extra):
        response = ChecklistResponse(
            tenant_id=tenant.id, checklist_id=checklist_id, operator_name=name, responses={}, **extra,
        )
        if created_at is not None:
            response.created_at = created_at
        db.session.add(response)
        db.session.commit()
        return response

    def test_newest_first_with_total(self, client, operator_headers, tenant, plain_checklist):
        now = datetime.now(timezone.utc)
        for i in range(3):
            self._submit(tenant, plain_checklist.id, f"op{i}", created_at=now - timedelta(hours=3 - i))
        res = client.get("/api/responses?limit=2", headers=operator_headers)
        body = res.get_json()
        assert body["total"] == 3
        assert [r["operator_name"] for r in body["items"]] == ["op2", "op1"]
        assert body["items"][0]["checklist_name"] == "Plain"

    def test_date_range_inclusive(self, client, operator_headers, tenant, plain_checklist):
        self._submit(tenant, plain_checklist.id, "early", created_at=datetime(2024, 3, 1, 8, tzinfo=timezone.utc))
        self._submit(tenant, plain_checklist.id, "late", created_at=datetime(2024, 3, 5, 23, tzinfo=timezone.utc))
        self._submit(tenant, plain_checklist.id, "out", created_at=datetime(2024, 3, 6, 0, 30, tzinfo=timezone.utc))
        res = client.get("/api/responses?start_date=2024-03-01&end_date=2024-03-05", headers=operator_headers)
        assert sorted(r["operator_name"] for r in res.get_json()["items"]) == ["early", "late"]

    def test_search_operator_or_checklist(self, client, operator_headers, tenant, plain_checklist):
        self._submit(tenant, plain_checklist.id, "Kim Svensson")
        self._submit(tenant, plain_checklist.id, "Alex")
        assert client.get("/api/responses?search=svens", headers=operator_headers).get_json()["total"] == 1
        assert client.get("/api/responses?search=plain", headers=operator_headers).get_json()["total"] == 2

    def test_bad_filter_400(self, client, operator_headers):
        assert client.get("/api/responses?checklist_id=x", headers=operator_headers).status_code == 400
        assert client.get("/api/responses?start_date=yesterday", headers=operator_headers).status_code == 400

    def test_tenant_isolation(self, client, auth_headers, other_tenant, tenant, plain_checklist):
        from app.services.user_service import create_user

        response = self._submit(tenant, plain_checklist.id, "mine")
        outsider = create_user(other_tenant.id, "o@other.test", "outsider-pass")
        headers = auth_headers(outsider)
        assert client.get(f"/api/responses/{response.id}", headers=headers).status_code == 404
        assert client.get("/api/responses", headers=headers).get_json()["total"] == 0


# ═══════════════════════════════════════════════════════════════
# Write-once
# ═══════════════════════════════════════════════════════════════

class TestWriteOnce:
    def _stored(self, tenant, plain_checklist):
        ctx = RequestContext(tenant_id=tenant.id)
        return response_service.submit_response(ctx, {
            "checklist_id": plain_checklist.id, "responses": {"12": True},
        })

    def test_update_refused(self, tenant, plain_checklist):
        response = self._stored(tenant, plain_checklist)
        response.operator_name = "tampered"
        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

    def test_delete_refused(self, tenant, plain_checklist):
        response = self._stored(tenant, plain_checklist)
        db.session.delete(response)
        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

    def test_referenced_identification_not_deletable(self, client, operator_headers, admin_headers, safety_round):
        sr = safety_round
        res = client.post("/api/responses", json={
            "checklist_id": sr["checklist"].id, **_ident(sr), "responses": _full_answers(sr),
        }, headers=operator_headers)
        response_id = res.get_json()["id"]

        for path in (f"/api/shifts/{sr['day'].id}",
                     f"/api/work-tasks/{sr['task_a'].id}",
                     f"/api/work-stations/{sr['station'].id}"):
            res = client.delete(path, headers=admin_headers)
            assert res.status_code == 422, path

        stored = client.get(f"/api/responses/{response_id}", headers=operator_headers).get_json()
        assert stored["shift_id"] == sr["day"].id
        assert stored["work_task_id"] == sr["task_a"].id
        assert stored["work_station_id"] == sr["station"].id

        # Unreferenced rows still delete
        assert client.delete(f"/api/shifts/{sr['night'].id}", headers=admin_headers).status_code == 200
        assert client.delete(f"/api/work-tasks/{sr['task_b'].id}", headers=admin_headers).status_code == 200

    def test_no_update_route(self, client, operator_headers, tenant, plain_checklist):
        response = self._stored(tenant, plain_checklist)
        res = client.put(f"/api/responses/{response.id}", json={"responses": {}}, headers=operator_headers)
        assert res.status_code == 405
