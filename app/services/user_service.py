"""
User Service — tenant lookup, user creation and login.
"""

import logging
from datetime import datetime, timezone

from app.models import db
from app.models.auth import AVAILABLE_MODULES, USER_ROLES, Tenant, User
from app.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)


class UserServiceError(Exception):
    """Custom exception for user service errors."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# Tenants
# ═══════════════════════════════════════════════════════════════
def get_tenant_by_slug(slug: str) -> Tenant | None:
    return Tenant.query.filter_by(slug=slug, is_active=True).first()


def create_tenant(name: str, slug: str, modules: list[str] | None = None) -> Tenant:
    """Create a tenant with the given enabled modules (default: all)."""
    modules = list(AVAILABLE_MODULES if modules is None else modules)
    unknown = sorted(set(modules) - set(AVAILABLE_MODULES))
    if unknown:
        raise UserServiceError(f"Unknown modules: {', '.join(unknown)}")
    if Tenant.query.filter_by(slug=slug).first():
        raise UserServiceError(f"Tenant slug '{slug}' already exists", 409)

    tenant = Tenant(name=name, slug=slug, modules=modules, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    logger.info("Created tenant id=%s slug=%s modules=%s", tenant.id, slug, modules)
    return tenant


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
def create_user(
    tenant_id: int,
    email: str,
    password: str,
    full_name: str = None,
    role: str = "user",
) -> User:
    """Create a new user in a tenant."""
    email = (email or "").strip().lower()
    if "@" not in email:
        raise UserServiceError("Invalid email")
    if role not in USER_ROLES:
        raise UserServiceError(f"Invalid role: {role}")
    if not password or len(password) < 8:
        raise UserServiceError("Password must be at least 8 characters")

    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        raise UserServiceError("Tenant not found", 404)
    if not tenant.is_active:
        raise UserServiceError("Tenant is inactive", 403)

    if get_user_by_email(tenant_id, email):
        raise UserServiceError("Email already registered in this tenant", 409)

    user = User(
        tenant_id=tenant_id,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name or email.split("@")[0],
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def get_user_by_email(tenant_id: int, email: str) -> User | None:
    return User.query.filter_by(tenant_id=tenant_id, email=email.strip().lower()).first()


def get_user_in_tenant(tenant_id: int, user_id: int) -> User | None:
    return User.query.filter_by(tenant_id=tenant_id, id=user_id).first()


def list_users(tenant_id: int) -> list[User]:
    return User.query.filter_by(tenant_id=tenant_id, is_active=True).order_by(User.full_name).all()


# ═══════════════════════════════════════════════════════════════
# Login helpers
# ═══════════════════════════════════════════════════════════════
def authenticate_user(tenant_id: int, email: str, password: str) -> User:
    """Authenticate a user with email + password. Returns User on success."""
    user = get_user_by_email(tenant_id, email)
    if not user:
        raise UserServiceError("Invalid email or password", 401)

    if not user.is_active:
        raise UserServiceError("Account is inactive", 403)

    if not verify_password(password, user.password_hash):
        raise UserServiceError("Invalid email or password", 401)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user
