"""Demo seed: idempotent tenant / admin / checklist creation and the CLI command."""

from app.models.auth import Tenant
from app.services import schema_registry as registry
from app.services.demo_seed import DEMO_ADMIN_EMAIL, DEMO_TENANT_SLUG, seed_demo
from app.services.user_service import authenticate_user, get_tenant_by_slug


def test_seed_creates_usable_checklist():
    result = seed_demo()
    tenant = get_tenant_by_slug(DEMO_TENANT_SLUG)
    assert result["admin_email"] == DEMO_ADMIN_EMAIL

    schema = registry.load_snapshot(tenant.id, result["checklist_id"])
    assert [c.name for c in schema.categories] == ["Safety", "Quality"]
    assert len(schema.questions) == 5
    assert {q.dashboard_display_type for q in schema.questions if q.show_in_dashboard} == {
        "count", "average", "chart",
    }
    assert authenticate_user(tenant.id, DEMO_ADMIN_EMAIL, "demo-admin-pass").is_admin


def test_seed_is_idempotent():
    seed_demo()
    again = seed_demo()
    assert again["checklist_id"] is None
    assert Tenant.query.filter_by(slug=DEMO_TENANT_SLUG).count() == 1


def test_cli_command(app):
    result = app.test_cli_runner().invoke(args=["seed-demo"])
    assert result.exit_code == 0
    assert get_tenant_by_slug(DEMO_TENANT_SLUG) is not None
