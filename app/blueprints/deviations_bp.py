"""
Deviations Blueprint.

  GET/POST            /api/deviations
  GET                 /api/deviations/stats
  GET/PATCH/DELETE    /api/deviations/<id>
  GET                 /api/deviations/<id>/timeline
  GET/POST            /api/deviations/<id>/comments
  DELETE              /api/deviations/<id>/comments/<comment_id>
  GET/POST            /api/deviation-types            (POST admin)
  PUT/DELETE          /api/deviation-types/<id>       (admin)
  GET                 /api/deviation-types/<id>/custom-fields
  GET/POST            /api/custom-fields              (POST admin)
  GET/PUT/DELETE      /api/custom-fields/<id>         (PUT/DELETE admin)

Module guard: tenant module "deviations".
"""

import logging

from flask import Blueprint, jsonify, request

from app.middleware.module_access import require_role
from app.services import deviation_service as svc
from app.utils.errors import E, api_error
from app.utils.helpers import bool_field, int_arg

from . import json_body, register_error_handlers, request_context

logger = logging.getLogger(__name__)

deviations_bp = Blueprint("deviations", __name__, url_prefix="/api")
register_error_handlers(deviations_bp)


# ═══════════════════════════════════════════════════════════════
# Deviations
# ═══════════════════════════════════════════════════════════════
@deviations_bp.route("/deviations", methods=["GET"])
def list_deviations():
    """
    Query params: status, priority, assigned_to_user_id, created_by_user_id,
    work_task_id, deviation_type_id, search, limit, offset.
    """
    try:
        filters = {
            name: int_arg(name)
            for name in (
                "assigned_to_user_id", "created_by_user_id", "work_task_id",
                "deviation_type_id", "limit", "offset",
            )
        }
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    for name in ("status", "priority", "search"):
        filters[name] = request.args.get(name)

    items, total = svc.list_deviations(request_context().tenant_id, filters)
    return jsonify({"items": [d.to_dict() for d in items], "total": total}), 200


@deviations_bp.route("/deviations/stats", methods=["GET"])
def deviation_stats():
    return jsonify(svc.get_stats(request_context().tenant_id)), 200


@deviations_bp.route("/deviations", methods=["POST"])
def create_deviation():
    data = json_body()
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    deviation = svc.create_deviation(request_context(), data)
    return jsonify(deviation.to_dict()), 201


@deviations_bp.route("/deviations/<int:deviation_id>", methods=["GET"])
def get_deviation(deviation_id):
    return jsonify(svc.get_deviation(request_context().tenant_id, deviation_id).to_dict()), 200


@deviations_bp.route("/deviations/<int:deviation_id>", methods=["PATCH"])
def update_deviation(deviation_id):
    deviation = svc.update_deviation(request_context(), deviation_id, json_body())
    return jsonify(deviation.to_dict()), 200


@deviations_bp.route("/deviations/<int:deviation_id>", methods=["DELETE"])
def delete_deviation(deviation_id):
    svc.delete_deviation(request_context(), deviation_id)
    return jsonify({"message": "Deviation deleted"}), 200


@deviations_bp.route("/deviations/<int:deviation_id>/timeline", methods=["GET"])
def deviation_timeline(deviation_id):
    return jsonify(svc.get_timeline(request_context().tenant_id, deviation_id)), 200


@deviations_bp.route("/deviations/<int:deviation_id>/comments", methods=["GET"])
def list_comments(deviation_id):
    comments = svc.list_comments(request_context().tenant_id, deviation_id)
    return jsonify([c.to_dict() for c in comments]), 200


@deviations_bp.route("/deviations/<int:deviation_id>/comments", methods=["POST"])
def add_comment(deviation_id):
    data = json_body()
    if not (data.get("comment") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "comment is required")
    comment = svc.add_comment(request_context(), deviation_id, data)
    return jsonify(comment.to_dict()), 201


@deviations_bp.route("/deviations/<int:deviation_id>/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment(deviation_id, comment_id):
    svc.delete_comment(request_context(), deviation_id, comment_id)
    return jsonify({"message": "Comment deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Deviation types
# ═══════════════════════════════════════════════════════════════
@deviations_bp.route("/deviation-types", methods=["GET"])
def list_deviation_types():
    items = svc.list_deviation_types(
        request_context().tenant_id, active_only=bool_field(request.args.get("active_only"))
    )
    return jsonify([t.to_dict() for t in items]), 200


@deviations_bp.route("/deviation-types", methods=["POST"])
@require_role("admin")
def create_deviation_type():
    dtype = svc.create_deviation_type(request_context().tenant_id, json_body())
    return jsonify(dtype.to_dict()), 201


@deviations_bp.route("/deviation-types/<int:type_id>", methods=["PUT"])
@require_role("admin")
def update_deviation_type(type_id):
    dtype = svc.update_deviation_type(request_context().tenant_id, type_id, json_body())
    return jsonify(dtype.to_dict()), 200


@deviations_bp.route("/deviation-types/<int:type_id>", methods=["DELETE"])
@require_role("admin")
def delete_deviation_type(type_id):
    svc.delete_deviation_type(request_context().tenant_id, type_id)
    return jsonify({"message": "Deviation type deleted"}), 200


@deviations_bp.route("/deviation-types/<int:type_id>/custom-fields", methods=["GET"])
def list_type_custom_fields(type_id):
    tenant_id = request_context().tenant_id
    fields = svc.list_custom_fields(tenant_id, type_id, active_only=True)
    return jsonify([f.to_dict() for f in fields]), 200


# ═══════════════════════════════════════════════════════════════
# Custom fields
# ═══════════════════════════════════════════════════════════════
@deviations_bp.route("/custom-fields", methods=["GET"])
def list_custom_fields():
    fields = svc.list_custom_fields(
        request_context().tenant_id, active_only=bool_field(request.args.get("active_only"))
    )
    return jsonify([f.to_dict() for f in fields]), 200


@deviations_bp.route("/custom-fields", methods=["POST"])
@require_role("admin")
def create_custom_field():
    field = svc.create_custom_field(request_context().tenant_id, json_body())
    return jsonify(field.to_dict()), 201


@deviations_bp.route("/custom-fields/<int:field_id>", methods=["GET"])
def get_custom_field(field_id):
    return jsonify(svc.get_custom_field(request_context().tenant_id, field_id).to_dict()), 200


@deviations_bp.route("/custom-fields/<int:field_id>", methods=["PUT"])
@require_role("admin")
def update_custom_field(field_id):
    field = svc.update_custom_field(request_context().tenant_id, field_id, json_body())
    return jsonify(field.to_dict()), 200


@deviations_bp.route("/custom-fields/<int:field_id>", methods=["DELETE"])
@require_role("admin")
def delete_custom_field(field_id):
    svc.delete_custom_field(request_context().tenant_id, field_id)
    return jsonify({"message": "Custom field deleted"}), 200
