"""
Tenant Context Middleware — Enforces tenant isolation on API requests.

When a JWT-authenticated user makes a request:
  1. g.jwt_tenant_id is already set by jwt_auth middleware
  2. This middleware verifies the tenant exists and is active
  3. Sets g.tenant for easy access to the Tenant model instance
  4. All downstream DB queries filter by tenant_id

Requests without a JWT pass through with g.tenant = None; protected
blueprints reject them in module_access.py.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  module_access.py  →  route handler
"""

import logging
from flask import g, request

from app.models import db
from app.models.auth import Tenant, User
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip tenant context (unauthenticated paths only)
TENANT_SKIP_PREFIXES = (
    "/api/auth/login",
    "/api/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.current_user = None

        if not request.path.startswith("/api/"):
            return None

        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id = getattr(g, "jwt_tenant_id", None)
        if tenant_id is None:
            return None

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("JWT tenant_id %d not found in DB", tenant_id,
                           extra={"request_id": getattr(g, "request_id", None)})
            return api_error(E.FORBIDDEN, "Tenant not found")

        if not tenant.is_active:
            logger.warning("JWT tenant_id %d is deactivated", tenant_id,
                           extra={"request_id": getattr(g, "request_id", None)})
            return api_error(E.FORBIDDEN, "Tenant account is deactivated")

        user = User.query.filter_by(id=g.jwt_user_id, tenant_id=tenant.id).first()
        if user is None or not user.is_active:
            logger.info("Token for inactive or unknown user %s rejected", g.jwt_user_id)
            return api_error(E.UNAUTHENTICATED, "User account is not active")

        g.tenant = tenant
        g.current_user = user
        return None

    logger.info("Tenant context middleware installed")
