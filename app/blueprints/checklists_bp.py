"""
Checklists Blueprint — schema registry, responses, wizard and dashboards.

Schema registry (writes require admin):
  GET/POST            /api/checklists
  GET                 /api/checklists/active
  GET/PUT/DELETE      /api/checklists/<id>
  GET/POST            /api/categories            (?checklist_id=)
  PUT/DELETE          /api/categories/<id>
  GET/POST            /api/questions             (?category_id=)
  GET/PUT/DELETE      /api/questions/<id>
  GET/PUT             /api/questions/<id>/work-tasks
  GET/POST            /api/work-tasks,  PUT/DELETE /api/work-tasks/<id>
  GET/POST            /api/work-stations,  PUT/DELETE /api/work-stations/<id>
  GET/POST            /api/shifts,  PUT/DELETE /api/shifts/<id>

Responses (write-once):
  GET/POST            /api/responses
  GET                 /api/responses/<id>
  GET                 /api/responses/<id>/view

Wizard & dashboards:
  GET                 /api/checklists/<id>/wizard
  POST                /api/checklists/<id>/wizard/validate
  GET                 /api/dashboard/stats
  GET                 /api/checklists/<id>/dashboard
  GET                 /api/checklists/<id>/dashboard/questions
  GET                 /api/icons

Module guard: tenant module "checklists" (app/middleware/module_access.py).
"""

import logging

from flask import Blueprint, jsonify, request

from app.middleware.module_access import require_role
from app.services import dashboard_service, response_service
from app.services import schema_registry as registry
from app.services.form_composer import FormComposer, Identification
from app.services.icons import list_icons
from app.services.response_viewer import render_response
from app.utils.errors import E, api_error
from app.utils.helpers import bool_field, int_arg, parse_date_input

from . import json_body, register_error_handlers, request_context

logger = logging.getLogger(__name__)

checklists_bp = Blueprint("checklists", __name__, url_prefix="/api")
register_error_handlers(checklists_bp)


def _tenant_id() -> int:
    return request_context().tenant_id


def _include_inactive() -> bool:
    return bool_field(request.args.get("include_inactive"))


# ═══════════════════════════════════════════════════════════════
# Checklists
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/checklists", methods=["GET"])
def list_checklists():
    items = registry.list_checklists(
        _tenant_id(),
        active_only=bool_field(request.args.get("active_only")),
        menu_only=bool_field(request.args.get("menu_only")),
    )
    return jsonify([c.to_dict() for c in items]), 200


@checklists_bp.route("/checklists/active", methods=["GET"])
def list_active_checklists():
    items = registry.list_checklists(_tenant_id(), active_only=True)
    return jsonify([c.to_dict() for c in items]), 200


@checklists_bp.route("/checklists", methods=["POST"])
@require_role("admin")
def create_checklist():
    checklist = registry.create_checklist(_tenant_id(), json_body())
    return jsonify(checklist.to_dict()), 201


@checklists_bp.route("/checklists/<int:checklist_id>", methods=["GET"])
def get_checklist(checklist_id):
    return jsonify(registry.get_checklist(_tenant_id(), checklist_id).to_dict()), 200


@checklists_bp.route("/checklists/<int:checklist_id>", methods=["PUT"])
@require_role("admin")
def update_checklist(checklist_id):
    checklist = registry.update_checklist(_tenant_id(), checklist_id, json_body())
    return jsonify(checklist.to_dict()), 200


@checklists_bp.route("/checklists/<int:checklist_id>", methods=["DELETE"])
@require_role("admin")
def delete_checklist(checklist_id):
    registry.delete_checklist(_tenant_id(), checklist_id)
    return jsonify({"message": "Checklist deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/categories", methods=["GET"])
def list_categories():
    try:
        checklist_id = int_arg("checklist_id")
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    if checklist_id is None:
        return api_error(E.VALIDATION_REQUIRED, "checklist_id is required")
    items = registry.list_categories(_tenant_id(), checklist_id)
    return jsonify([c.to_dict() for c in items]), 200


@checklists_bp.route("/categories", methods=["POST"])
@require_role("admin")
def create_category():
    category = registry.create_category(_tenant_id(), json_body())
    return jsonify(category.to_dict()), 201


@checklists_bp.route("/categories/<int:category_id>", methods=["PUT"])
@require_role("admin")
def update_category(category_id):
    category = registry.update_category(_tenant_id(), category_id, json_body())
    return jsonify(category.to_dict()), 200


@checklists_bp.route("/categories/<int:category_id>", methods=["DELETE"])
@require_role("admin")
def delete_category(category_id):
    registry.delete_category(_tenant_id(), category_id)
    return jsonify({"message": "Category deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Questions
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/questions", methods=["GET"])
def list_questions():
    try:
        category_id = int_arg("category_id")
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    if category_id is None:
        return api_error(E.VALIDATION_REQUIRED, "category_id is required")
    items = registry.list_questions(_tenant_id(), category_id)
    return jsonify([q.to_dict() for q in items]), 200


@checklists_bp.route("/questions", methods=["POST"])
@require_role("admin")
def create_question():
    question = registry.create_question(_tenant_id(), json_body())
    return jsonify(question.to_dict()), 201


@checklists_bp.route("/questions/<int:question_id>", methods=["GET"])
def get_question(question_id):
    return jsonify(registry.get_question(_tenant_id(), question_id).to_dict()), 200


@checklists_bp.route("/questions/<int:question_id>", methods=["PUT"])
@require_role("admin")
def update_question(question_id):
    question = registry.update_question(_tenant_id(), question_id, json_body())
    return jsonify(question.to_dict()), 200


@checklists_bp.route("/questions/<int:question_id>", methods=["DELETE"])
@require_role("admin")
def delete_question(question_id):
    registry.delete_question(_tenant_id(), question_id)
    return jsonify({"message": "Question deleted"}), 200


@checklists_bp.route("/questions/<int:question_id>/work-tasks", methods=["GET"])
def get_question_work_tasks(question_id):
    question = registry.get_question(_tenant_id(), question_id)
    return jsonify([t.to_dict() for t in question.work_tasks]), 200


@checklists_bp.route("/questions/<int:question_id>/work-tasks", methods=["PUT"])
@require_role("admin")
def set_question_work_tasks(question_id):
    ids = json_body().get("work_task_ids")
    if ids is None:
        return api_error(E.VALIDATION_REQUIRED, "work_task_ids is required")
    question = registry.set_question_work_tasks(_tenant_id(), question_id, ids)
    return jsonify(question.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Work tasks, work stations, shifts
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/work-tasks", methods=["GET"])
def list_work_tasks():
    items = registry.list_work_tasks(_tenant_id(), active_only=not _include_inactive())
    return jsonify([t.to_dict() for t in items]), 200


@checklists_bp.route("/work-tasks", methods=["POST"])
@require_role("admin")
def create_work_task():
    return jsonify(registry.create_work_task(_tenant_id(), json_body()).to_dict()), 201


@checklists_bp.route("/work-tasks/<int:work_task_id>", methods=["PUT"])
@require_role("admin")
def update_work_task(work_task_id):
    task = registry.update_work_task(_tenant_id(), work_task_id, json_body())
    return jsonify(task.to_dict()), 200


@checklists_bp.route("/work-tasks/<int:work_task_id>", methods=["DELETE"])
@require_role("admin")
def delete_work_task(work_task_id):
    registry.delete_work_task(_tenant_id(), work_task_id)
    return jsonify({"message": "Work task deleted"}), 200


@checklists_bp.route("/work-stations", methods=["GET"])
def list_work_stations():
    try:
        work_task_id = int_arg("work_task_id")
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    items = registry.list_work_stations(_tenant_id(), work_task_id, active_only=not _include_inactive())
    return jsonify([s.to_dict() for s in items]), 200


@checklists_bp.route("/work-stations", methods=["POST"])
@require_role("admin")
def create_work_station():
    return jsonify(registry.create_work_station(_tenant_id(), json_body()).to_dict()), 201


@checklists_bp.route("/work-stations/<int:work_station_id>", methods=["PUT"])
@require_role("admin")
def update_work_station(work_station_id):
    station = registry.update_work_station(_tenant_id(), work_station_id, json_body())
    return jsonify(station.to_dict()), 200


@checklists_bp.route("/work-stations/<int:work_station_id>", methods=["DELETE"])
@require_role("admin")
def delete_work_station(work_station_id):
    registry.delete_work_station(_tenant_id(), work_station_id)
    return jsonify({"message": "Work station deleted"}), 200


@checklists_bp.route("/shifts", methods=["GET"])
def list_shifts():
    items = registry.list_shifts(_tenant_id(), active_only=not _include_inactive())
    return jsonify([s.to_dict() for s in items]), 200


@checklists_bp.route("/shifts", methods=["POST"])
@require_role("admin")
def create_shift():
    return jsonify(registry.create_shift(_tenant_id(), json_body()).to_dict()), 201


@checklists_bp.route("/shifts/<int:shift_id>", methods=["PUT"])
@require_role("admin")
def update_shift(shift_id):
    return jsonify(registry.update_shift(_tenant_id(), shift_id, json_body()).to_dict()), 200


@checklists_bp.route("/shifts/<int:shift_id>", methods=["DELETE"])
@require_role("admin")
def delete_shift(shift_id):
    registry.delete_shift(_tenant_id(), shift_id)
    return jsonify({"message": "Shift deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/responses", methods=["GET"])
def list_responses():
    """
    Query params: checklist_id, work_task_id, work_station_id, shift_id,
    start_date, end_date (YYYY-MM-DD, inclusive), search, limit, offset.
    """
    try:
        filters = {
            name: int_arg(name)
            for name in ("checklist_id", "work_task_id", "work_station_id", "shift_id", "limit", "offset")
        }
        filters["start_date"] = parse_date_input(request.args.get("start_date"))
        filters["end_date"] = parse_date_input(request.args.get("end_date"))
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    filters["search"] = request.args.get("search")

    items, total = response_service.list_responses(_tenant_id(), filters)
    return jsonify({"items": [r.to_dict(include_refs=True) for r in items], "total": total}), 200


@checklists_bp.route("/responses", methods=["POST"])
def submit_response():
    """
    Body: {
        checklist_id, operator_name?, work_task_id?, work_station_id?, shift_id?,
        responses: {"<question_id>": value} | [{question_id, value}],
        is_completed?: bool (default true)
    }
    """
    data = json_body()
    if data.get("checklist_id") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "checklist_id is required")
    response = response_service.submit_response(request_context(), data)
    return jsonify(response.to_dict()), 201


@checklists_bp.route("/responses/<int:response_id>", methods=["GET"])
def get_response(response_id):
    response = response_service.get_response(_tenant_id(), response_id)
    return jsonify(response.to_dict(include_refs=True)), 200


@checklists_bp.route("/responses/<int:response_id>/view", methods=["GET"])
def view_response(response_id):
    ctx = request_context()
    response = response_service.get_response(ctx.tenant_id, response_id)
    schema = registry.load_snapshot(ctx.tenant_id, response.checklist_id, include_inactive=True)
    return jsonify(render_response(schema, response.to_dict(), ctx.locale)), 200


# ═══════════════════════════════════════════════════════════════
# Wizard
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/checklists/<int:checklist_id>/wizard", methods=["GET"])
def get_wizard(checklist_id):
    """Schema snapshot plus the step layout for the given identification.

    Query params: work_task_id, work_station_id, shift_id (all optional).
    """
    ctx = request_context()
    schema = registry.load_snapshot(ctx.tenant_id, checklist_id)
    composer = FormComposer(schema, ctx)
    identification = Identification.from_dict(request.args.to_dict())
    return jsonify({
        "schema": schema.to_dict(),
        "steps": [s.to_dict() for s in composer.steps(identification)],
    }), 200


@checklists_bp.route("/checklists/<int:checklist_id>/wizard/validate", methods=["POST"])
def validate_wizard(checklist_id):
    """
    Body: { identification: {...}, answers: {"<question_id>": value}, step_index?: int }

    With step_index, validates that step only; otherwise every step.
    """
    ctx = request_context()
    data = json_body()
    schema = registry.load_snapshot(ctx.tenant_id, checklist_id)
    composer = FormComposer(schema, ctx)
    identification = Identification.from_dict(data.get("identification"))
    answers = data.get("answers") or {}
    if not isinstance(answers, dict):
        return api_error(E.VALIDATION_INVALID, "answers must be an object")

    if data.get("step_index") is not None:
        try:
            result = composer.validate_step(int(data["step_index"]), identification, answers)
        except (TypeError, ValueError, IndexError) as e:
            return api_error(E.VALIDATION_INVALID, f"Invalid step_index: {e}")
        return jsonify({"ok": result.ok, "results": [result.to_dict()]}), 200

    failures = composer.validate_all(identification, answers)
    return jsonify({"ok": not failures, "results": [r.to_dict() for r in failures]}), 200


# ═══════════════════════════════════════════════════════════════
# Dashboards & icons
# ═══════════════════════════════════════════════════════════════
@checklists_bp.route("/dashboard/stats", methods=["GET"])
def dashboard_stats():
    try:
        checklist_id = int_arg("checklist_id")
        days = int_arg("days") or 30
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    return jsonify(dashboard_service.get_dashboard_stats(_tenant_id(), checklist_id, days)), 200


@checklists_bp.route("/checklists/<int:checklist_id>/dashboard", methods=["GET"])
def checklist_dashboard(checklist_id):
    try:
        days = int_arg("days")
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    return jsonify(dashboard_service.get_dashboard(_tenant_id(), checklist_id, days=days)), 200


@checklists_bp.route("/checklists/<int:checklist_id>/dashboard/questions", methods=["GET"])
def checklist_dashboard_questions(checklist_id):
    questions = dashboard_service.dashboard_questions(_tenant_id(), checklist_id)
    return jsonify([q.to_dict() for q in questions]), 200


@checklists_bp.route("/icons", methods=["GET"])
def icons():
    return jsonify({"icons": list_icons()}), 200
