"""
Deviation models — incident records with a per-tenant custom field layer.

    DeviationType ──(custom_field_deviation_types)── CustomField
    Deviation ─┬─ DeviationLog      (append-only, one row per changed field)
               └─ DeviationComment  (append-only)

Unlike ChecklistResponse, a Deviation is mutable: status and assignment
change over time and every change is recorded in the log.
"""

from app.models import db
from app.models.base import TenantModel, _utcnow, iso

DEVIATION_PRIORITIES = ("low", "medium", "high", "critical")
DEVIATION_STATUSES = ("new", "in_progress", "done")
CUSTOM_FIELD_TYPES = ("text", "textarea", "number", "select", "checkbox", "date")


custom_field_deviation_types = db.Table(
    "custom_field_deviation_types",
    db.Column(
        "custom_field_id",
        db.Integer,
        db.ForeignKey("deviation_custom_fields.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "deviation_type_id",
        db.Integer,
        db.ForeignKey("deviation_types.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class DeviationType(TenantModel):
    __tablename__ = "deviation_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    color = db.Column(db.String(20), default="#ef4444")
    order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    custom_fields = db.relationship(
        "CustomField",
        secondary=custom_field_deviation_types,
        back_populates="deviation_types",
        order_by="[CustomField.order, CustomField.id]",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "order": self.order,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class CustomField(TenantModel):
    __tablename__ = "deviation_custom_fields"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    field_type = db.Column(db.String(20), nullable=False, default="text")
    is_required = db.Column(db.Boolean, default=False)
    order = db.Column(db.Integer, default=0)
    options = db.Column(db.JSON, default=list)  # select choices
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    deviation_types = db.relationship(
        "DeviationType",
        secondary=custom_field_deviation_types,
        back_populates="custom_fields",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "field_type": self.field_type,
            "is_required": self.is_required,
            "order": self.order,
            "options": list(self.options or []),
            "is_active": self.is_active,
            "deviation_type_ids": [dt.id for dt in self.deviation_types],
            "created_at": iso(self.created_at),
        }


class Deviation(TenantModel):
    __tablename__ = "deviations"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    deviation_type_id = db.Column(
        db.Integer, db.ForeignKey("deviation_types.id", ondelete="RESTRICT"), nullable=False
    )
    priority = db.Column(db.String(20), nullable=False, default="medium")
    status = db.Column(db.String(20), nullable=False, default="new")
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    work_task_id = db.Column(db.Integer, db.ForeignKey("work_tasks.id", ondelete="SET NULL"))
    checklist_response_id = db.Column(
        db.Integer, db.ForeignKey("checklist_responses.id", ondelete="SET NULL")
    )
    due_date = db.Column(db.Date)
    custom_field_values = db.Column(db.JSON, default=dict)  # {"<custom_field_id>": value}
    completed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        TenantModel.tenant_composite_index("deviations", "status"),
    )

    deviation_type = db.relationship("DeviationType")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_user_id])
    logs = db.relationship(
        "DeviationLog",
        back_populates="deviation",
        cascade="all, delete-orphan",
        order_by="DeviationLog.created_at",
    )
    comments = db.relationship(
        "DeviationComment",
        back_populates="deviation",
        cascade="all, delete-orphan",
        order_by="DeviationComment.created_at",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "deviation_type_id": self.deviation_type_id,
            "deviation_type_name": self.deviation_type.name if self.deviation_type else None,
            "priority": self.priority,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "assigned_to_user_id": self.assigned_to_user_id,
            "work_task_id": self.work_task_id,
            "checklist_response_id": self.checklist_response_id,
            "due_date": iso(self.due_date),
            "custom_field_values": dict(self.custom_field_values or {}),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class DeviationLog(TenantModel):
    __tablename__ = "deviation_logs"

    id = db.Column(db.Integer, primary_key=True)
    deviation_id = db.Column(
        db.Integer, db.ForeignKey("deviations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    action = db.Column(db.String(30), nullable=False)  # created | updated
    field = db.Column(db.String(50))
    old_value = db.Column(db.Text)
    new_value = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    deviation = db.relationship("Deviation", back_populates="logs")

    def to_dict(self):
        return {
            "id": self.id,
            "deviation_id": self.deviation_id,
            "user_id": self.user_id,
            "action": self.action,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "created_at": iso(self.created_at),
        }


class DeviationComment(TenantModel):
    __tablename__ = "deviation_comments"

    id = db.Column(db.Integer, primary_key=True)
    deviation_id = db.Column(
        db.Integer, db.ForeignKey("deviations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    comment = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    deviation = db.relationship("Deviation", back_populates="comments")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "deviation_id": self.deviation_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "comment": self.comment,
            "created_at": iso(self.created_at),
        }
