"""
Module Access Guards — per-tenant module gating and role checks.

A single app-level before_request hook resolves the current endpoint's
blueprint, looks up which tenant module it belongs to, and enforces:

    no JWT user / no tenant context   → 401 ERR_UNAUTHENTICATED
    tenant lacks the module           → 403 ERR_MODULE_DISABLED

Blueprint name → tenant module:
    checklists  : checklists
    deviations  : deviations
    kanban      : kanban

``require_role`` is the route-level companion for admin-only writes
(schema editing, deviation types, custom fields).

Usage:
    apply_module_guards(app)        # once, after blueprints are registered

    @bp.route("/checklists", methods=["POST"])
    @require_role("admin")
    def create_checklist(): ...
"""

import functools
import logging

from flask import Flask, g, request

from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

BLUEPRINT_MODULES = {
    "checklists": "checklists",
    "deviations": "deviations",
    "kanban": "kanban",
}

# Role hierarchy: a role satisfies every requirement at or below its level
_ROLE_LEVELS = {"user": 0, "admin": 1, "superadmin": 2}


def apply_module_guards(app: Flask):
    """
    Register a single app.before_request hook that enforces authentication
    and tenant module membership on all module blueprints.

    Call once in create_app() after all blueprints are registered.
    """
    protected = {name for name in app.blueprints if name in BLUEPRINT_MODULES}

    @app.before_request
    def _enforce_module_access():
        if request.method == "OPTIONS":
            return None

        endpoint = request.endpoint
        if not endpoint:
            return None

        parts = endpoint.rsplit(".", 1)
        if len(parts) < 2:
            return None  # top-level route, not a blueprint route
        bp_name = parts[0]
        if bp_name not in protected:
            return None

        if getattr(g, "jwt_user_id", None) is None or getattr(g, "tenant", None) is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")

        module_name = BLUEPRINT_MODULES[bp_name]
        if not g.tenant.has_module(module_name):
            logger.warning(
                "Module access denied: tenant=%d module=%s endpoint=%s",
                g.tenant.id, module_name, endpoint,
                extra={"tenant_id": g.tenant.id, "feature_module": module_name},
            )
            return api_error(
                E.MODULE_DISABLED,
                f"Module '{module_name}' is not enabled for this tenant",
            )
        return None

    logger.info("Module guards installed for blueprints: %s", sorted(protected))


def has_role(roles, required: str) -> bool:
    """True when any of ``roles`` is at or above ``required`` in the hierarchy."""
    needed = _ROLE_LEVELS.get(required, 0)
    return any(_ROLE_LEVELS.get(r, -1) >= needed for r in roles or [])


def require_role(role: str):
    """
    Decorator: require the JWT user to hold ``role`` or a higher one.

    Args:
        role: "user", "admin" or "superadmin"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")

            if not has_role(getattr(g, "jwt_roles", []), role):
                logger.warning(
                    "User %d denied: role '%s' required on %s",
                    user_id, role, f.__name__,
                )
                return api_error(E.FORBIDDEN, "Permission denied", details={"required_role": role})

            return f(*args, **kwargs)
        return decorated
    return decorator
