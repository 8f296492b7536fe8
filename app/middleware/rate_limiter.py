"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Login:            LOGIN_RATE_LIMIT (default 10/minute, brute-force guard)
        - Module endpoints: 300/minute reads, 120/minute writes
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    login_view = app.view_functions.get("auth.login")
    if login_view is not None:
        limiter.limit(app.config.get("LOGIN_RATE_LIMIT", "10/minute"))(login_view)

    for bp_name in ("checklists", "deviations", "kanban"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, methods=["GET"])(bp)
            limiter.limit(WRITE_LIMIT, methods=["POST", "PUT", "PATCH", "DELETE"])(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, read: %s, write: %s",
        app.config.get("LOGIN_RATE_LIMIT"), READ_LIMIT, WRITE_LIMIT,
    )
