"""
Auth Models — tenants and users.

A tenant is the isolation boundary for all data. The modules a tenant may
use (checklists, deviations, kanban) are stored on the tenant row and are
enforced per blueprint by app.middleware.module_access.

Roles are a single column on the user: superadmin, admin or user.
"""

from datetime import datetime, timezone

from app.models import db

AVAILABLE_MODULES = ("checklists", "deviations", "kanban")
USER_ROLES = ("superadmin", "admin", "user")
ADMIN_ROLES = frozenset({"superadmin", "admin"})


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    modules = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def has_module(self, module_name: str) -> bool:
        return module_name in (self.modules or [])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "modules": list(self.modules or []),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default="user")  # superadmin, admin, user
    is_active = db.Column(db.Boolean, default=True)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Composite unique: same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
        db.Index("ix_users_email", "email"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def role_names(self):
        """Token roles. Kept as a list so the JWT payload shape stays stable."""
        return [self.role] if self.role else []

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
