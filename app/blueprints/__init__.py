"""
Blueprint registry and shared helpers.

    auth_bp        /api/auth/*, /api/modules, /api/health   (no module guard)
    checklists_bp  schema registry, responses, wizard, dashboards, icons
    deviations_bp  deviations, types, custom fields
    kanban_bp      boards, columns, cards, comments, attachments

register_error_handlers(bp) gives every module blueprint the same mapping
from service exceptions to HTTP responses.
"""

import logging

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    ImmutableRecordError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.services.form_composer import RequestContext
from app.services.upload_service import UploadError
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def request_context() -> RequestContext:
    """Build the explicit caller context handed to services."""
    user = getattr(g, "current_user", None)
    return RequestContext(
        tenant_id=g.tenant.id,
        user_id=getattr(g, "jwt_user_id", None),
        roles=tuple(getattr(g, "jwt_roles", None) or ()),
        user_name=(user.full_name or user.email) if user else "",
        locale=request.args.get("locale") or current_app.config.get("DEFAULT_LOCALE", "sv-SE"),
    )


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON error responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ImmutableRecordError)
    def _handle_immutable(error: ImmutableRecordError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(UploadError)
    def _handle_upload(error: UploadError):
        return api_error(error.code, error.message)

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return jsonify({"error": error.description, "code": error.name}), error.code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error"}), 500

    return bp
