"""
Shared pytest fixtures for the Checklist Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: Pre-created Tenant entities (all modules enabled)
    - admin_user / operator: Users of `tenant`
    - admin_headers / operator_headers: Bearer auth headers for those users
    - auth_headers: helper to build headers for any user
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services.jwt_service import generate_access_token
from app.services.user_service import create_tenant, create_user


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenants & users ──────────────────────────────────────────────────────


@pytest.fixture()
def tenant():
    return create_tenant("Acme Manufacturing", "acme")


@pytest.fixture()
def other_tenant():
    return create_tenant("Other Corp", "other")


@pytest.fixture()
def admin_user(tenant):
    return create_user(tenant.id, "admin@acme.test", "admin-pass-123", full_name="Ada Admin", role="admin")


@pytest.fixture()
def operator(tenant):
    return create_user(tenant.id, "op@acme.test", "operator-pass-1", full_name="Olle Operator")


def _headers_for(user):
    token = generate_access_token(user.id, user.tenant_id, user.role_names)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers():
    """Callable: auth_headers(user) -> {"Authorization": "Bearer ..."}."""
    return _headers_for


@pytest.fixture()
def admin_headers(admin_user):
    return _headers_for(admin_user)


@pytest.fixture()
def operator_headers(operator):
    return _headers_for(operator)


# ── Checklist schema ─────────────────────────────────────────────────────


@pytest.fixture()
def plant(tenant):
    """Reference data: task A (with stations), task B (without), one station, two shifts."""
    from app.services import schema_registry as registry

    task_a = registry.create_work_task(tenant.id, {"name": "Assembly", "has_stations": True})
    task_b = registry.create_work_task(tenant.id, {"name": "Warehouse", "has_stations": False})
    station = registry.create_work_station(tenant.id, {"name": "Line 1", "work_task_id": task_a.id})
    day = registry.create_shift(tenant.id, {"name": "Day", "start_time": "06:00", "end_time": "14:00"})
    night = registry.create_shift(tenant.id, {"name": "Night", "start_time": "22:00", "end_time": "06:00", "order": 1})
    return {"task_a": task_a, "task_b": task_b, "station": station, "day": day, "night": night}


@pytest.fixture()
def safety_round(tenant, plant):
    """Two-category checklist: Safety (order 0) and Quality (order 1).

    Safety:  exits (yes_no, required)
    Quality: condition (stars, required, dashboard average),
             torque (number 0..200, scoped to Assembly),
             notes (textarea, hidden in view)
    """
    from app.services import schema_registry as registry

    checklist = registry.create_checklist(tenant.id, {
        "name": "Daily safety round",
        "include_work_tasks": True,
        "include_work_stations": True,
        "include_shifts": True,
        "has_dashboard": True,
    })
    quality = registry.create_category(tenant.id, {"checklist_id": checklist.id, "name": "Quality", "order": 1})
    safety = registry.create_category(tenant.id, {"checklist_id": checklist.id, "name": "Safety", "order": 0})
    exits = registry.create_question(tenant.id, {
        "category_id": safety.id, "text": "Emergency exits clear?", "type": "yes_no", "is_required": True,
    })
    condition = registry.create_question(tenant.id, {
        "category_id": quality.id, "text": "Overall line condition", "type": "stars", "is_required": True,
        "show_in_dashboard": True, "dashboard_display_type": "average",
    })
    torque = registry.create_question(tenant.id, {
        "category_id": quality.id, "text": "Torque check (Nm)", "type": "number", "order": 1,
        "validation": {"min": 0, "max": 200}, "work_task_ids": [plant["task_a"].id],
    })
    notes = registry.create_question(tenant.id, {
        "category_id": quality.id, "text": "Notes", "type": "textarea", "order": 2, "hide_in_view": True,
    })
    return {
        "checklist": checklist, "safety": safety, "quality": quality,
        "exits": exits, "condition": condition, "torque": torque, "notes": notes,
        **plant,
    }
