"""
Demo data seeding for local development.

Call from the ``flask seed-demo`` CLI command. Safe to run multiple
times: an existing demo tenant is left untouched.
"""

import logging
import os

from app.services import schema_registry as registry
from app.services.user_service import create_tenant, create_user, get_tenant_by_slug

logger = logging.getLogger(__name__)

DEMO_TENANT_SLUG = "demo"
DEMO_ADMIN_EMAIL = "admin@demo.local"


def _demo_checklist(tenant_id: int) -> int:
    assembly = registry.create_work_task(tenant_id, {"name": "Assembly", "has_stations": True})
    registry.create_work_task(tenant_id, {"name": "Warehouse", "has_stations": False})
    for name in ("Line 1", "Line 2"):
        registry.create_work_station(tenant_id, {"name": name, "work_task_id": assembly.id})
    for i, (name, start, end) in enumerate((("Day", "06:00", "14:00"), ("Evening", "14:00", "22:00"))):
        registry.create_shift(tenant_id, {"name": name, "start_time": start, "end_time": end, "order": i})

    checklist = registry.create_checklist(tenant_id, {
        "name": "Daily safety round",
        "description": "Walk-through before shift start",
        "icon": "shield",
        "include_work_tasks": True,
        "include_work_stations": True,
        "include_shifts": True,
        "has_dashboard": True,
    })
    safety = registry.create_category(tenant_id, {"checklist_id": checklist.id, "name": "Safety", "order": 0})
    quality = registry.create_category(tenant_id, {"checklist_id": checklist.id, "name": "Quality", "order": 1})

    registry.create_question(tenant_id, {
        "category_id": safety.id, "text": "Emergency exits clear?", "type": "yes_no",
        "is_required": True, "order": 0, "show_in_dashboard": True, "dashboard_display_type": "count",
    })
    registry.create_question(tenant_id, {
        "category_id": safety.id, "text": "Protective equipment worn?", "type": "checkbox", "order": 1,
    })
    registry.create_question(tenant_id, {
        "category_id": quality.id, "text": "Overall line condition", "type": "stars",
        "is_required": True, "order": 0, "show_in_dashboard": True, "dashboard_display_type": "average",
    })
    registry.create_question(tenant_id, {
        "category_id": quality.id, "text": "Torque check (Nm)", "type": "number", "order": 1,
        "validation": {"min": 0, "max": 200}, "work_task_ids": [assembly.id],
        "show_in_dashboard": True, "dashboard_display_type": "chart",
    })
    registry.create_question(tenant_id, {
        "category_id": quality.id, "text": "Notes", "type": "textarea", "order": 2,
    })
    return checklist.id


def seed_demo() -> dict:
    """Create the demo tenant, an admin user and a sample checklist.

    Returns:
        Dict with tenant_slug, admin_email and checklist_id (None when the
        tenant already existed).
    """
    tenant = get_tenant_by_slug(DEMO_TENANT_SLUG)
    if tenant is not None:
        logger.info("Demo tenant already exists id=%s, skipping", tenant.id)
        return {"tenant_slug": DEMO_TENANT_SLUG, "admin_email": DEMO_ADMIN_EMAIL, "checklist_id": None}

    tenant = create_tenant("Demo Factory", DEMO_TENANT_SLUG)
    create_user(
        tenant.id,
        DEMO_ADMIN_EMAIL,
        os.getenv("DEMO_ADMIN_PASSWORD", "demo-admin-pass"),
        full_name="Demo Admin",
        role="admin",
    )
    checklist_id = _demo_checklist(tenant.id)
    logger.info("Seeded demo tenant id=%s checklist=%s", tenant.id, checklist_id)
    return {"tenant_slug": DEMO_TENANT_SLUG, "admin_email": DEMO_ADMIN_EMAIL, "checklist_id": checklist_id}
