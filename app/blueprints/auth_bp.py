"""
Auth Blueprint — JWT authentication and session-less platform endpoints.

  POST /api/auth/login   — email + password + tenant_slug → access token
  GET  /api/auth/me      — current user profile and tenant
  GET  /api/modules      — modules enabled for the caller's tenant
  GET  /api/health       — liveness + database check (no auth)
"""

import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy import text

from app.models import db
from app.models.auth import AVAILABLE_MODULES
from app.services.jwt_service import issue_token_response
from app.services.user_service import UserServiceError, authenticate_user, get_tenant_by_slug
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


def _current_user_or_401():
    if getattr(g, "current_user", None) is None or getattr(g, "tenant", None) is None:
        return None, api_error(E.UNAUTHENTICATED, "Authentication required")
    return g.current_user, None


# ═══════════════════════════════════════════════════════════════
# POST /api/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/auth/login", methods=["POST"])
def login():
    """
    Authenticate with email + password inside a tenant.

    Body: { "email": "...", "password": "...", "tenant_slug": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    tenant_slug = (data.get("tenant_slug") or "").strip()

    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")
    if not tenant_slug:
        return api_error(E.VALIDATION_REQUIRED, "tenant_slug is required")

    tenant = get_tenant_by_slug(tenant_slug)
    if tenant is None:
        # Same answer as a bad password: do not reveal which tenants exist
        return api_error(E.UNAUTHENTICATED, "Invalid email or password")

    try:
        user = authenticate_user(tenant.id, email, password)
    except UserServiceError as e:
        logger.info("Login failed tenant=%s email=%s: %s", tenant_slug, email, e.message)
        return jsonify({"error": e.message}), e.status_code

    logger.info("Login ok user=%s tenant=%s", user.id, tenant.id,
                extra={"tenant_id": tenant.id, "user_id": user.id})
    return jsonify(issue_token_response(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/auth/me", methods=["GET"])
def me():
    user, err = _current_user_or_401()
    if err:
        return err
    return jsonify({"user": user.to_dict(), "tenant": g.tenant.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/modules
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/modules", methods=["GET"])
def modules():
    _, err = _current_user_or_401()
    if err:
        return err
    enabled = [m for m in AVAILABLE_MODULES if g.tenant.has_module(m)]
    return jsonify({"modules": enabled, "available": list(AVAILABLE_MODULES)}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/health
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:
        logger.error("Health check database failure: %s", exc)
        db_status = "error"
    status = 200 if db_status == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": db_status}), status
