"""
Checklist models — the tenant-defined schema of a checklist and its responses.

Schema registry:
    Checklist ─┬─ Category ── Question ──(question_work_tasks)── WorkTask
               └─ ChecklistResponse (write-once)
    WorkTask ── WorkStation
    Shift

ChecklistResponse rows are immutable once flushed: the before_update and
before_delete mapper events below refuse any change at the ORM layer, so no
service or blueprint can edit a submitted response.
"""

from sqlalchemy import event

from app.core.exceptions import ImmutableRecordError
from app.models import db
from app.models.base import TenantModel, _utcnow, iso

QUESTION_TYPES = (
    "text",
    "textarea",
    "number",
    "yes_no",
    "select",
    "multiselect",
    "stars",
    "mood",
    "date",
    "checkbox",
)
DASHBOARD_DISPLAY_TYPES = ("average", "chart", "progress", "count")
# Accepted on input, stored as the canonical name
DASHBOARD_DISPLAY_ALIASES = {"progress-bar": "progress", "progressbar": "progress"}


question_work_tasks = db.Table(
    "question_work_tasks",
    db.Column(
        "question_id",
        db.Integer,
        db.ForeignKey("checklist_questions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "work_task_id",
        db.Integer,
        db.ForeignKey("work_tasks.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ═══════════════════════════════════════════════════════════════
# Reference data: work tasks, work stations, shifts
# ═══════════════════════════════════════════════════════════════
class WorkTask(TenantModel):
    __tablename__ = "work_tasks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    has_stations = db.Column(db.Boolean, default=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    stations = db.relationship(
        "WorkStation", back_populates="work_task", lazy="select",
        order_by="WorkStation.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "has_stations": self.has_stations,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class WorkStation(TenantModel):
    __tablename__ = "work_stations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    work_task_id = db.Column(
        db.Integer, db.ForeignKey("work_tasks.id", ondelete="SET NULL"), nullable=True
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    work_task = db.relationship("WorkTask", back_populates="stations")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "work_task_id": self.work_task_id,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class Shift(TenantModel):
    __tablename__ = "shifts"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    start_time = db.Column(db.String(5))  # "HH:MM"
    end_time = db.Column(db.String(5))
    order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "order": self.order,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# Checklist schema
# ═══════════════════════════════════════════════════════════════
class Checklist(TenantModel):
    __tablename__ = "checklists"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    icon = db.Column(db.String(50), default="clipboard-list")
    order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    show_in_menu = db.Column(db.Boolean, default=False)
    has_dashboard = db.Column(db.Boolean, default=False)
    include_work_tasks = db.Column(db.Boolean, default=True)
    include_work_stations = db.Column(db.Boolean, default=True)
    include_shifts = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    categories = db.relationship(
        "Category",
        back_populates="checklist",
        cascade="all, delete-orphan",
        order_by="[Category.order, Category.id]",
    )

    def to_dict(self):
        from app.services.icons import resolve_icon

        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": resolve_icon(self.icon).value,
            "order": self.order,
            "is_active": self.is_active,
            "show_in_menu": self.show_in_menu,
            "has_dashboard": self.has_dashboard,
            "include_work_tasks": self.include_work_tasks,
            "include_work_stations": self.include_work_stations,
            "include_shifts": self.include_shifts,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Category(TenantModel):
    __tablename__ = "checklist_categories"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    checklist = db.relationship("Checklist", back_populates="categories")
    questions = db.relationship(
        "Question",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="[Question.order, Question.id]",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class Question(TenantModel):
    __tablename__ = "checklist_questions"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = db.Column(db.String(500), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="text")
    options = db.Column(db.JSON, default=list)  # select / multiselect choices
    is_required = db.Column(db.Boolean, default=False)
    hide_in_view = db.Column(db.Boolean, default=False)
    validation = db.Column(db.JSON, default=dict)  # {"min": .., "max": ..}
    show_in_dashboard = db.Column(db.Boolean, default=False)
    dashboard_display_type = db.Column(db.String(20))  # average | chart | progress | count
    order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    category = db.relationship("Category", back_populates="questions")
    work_tasks = db.relationship(
        "WorkTask", secondary=question_work_tasks, lazy="select", order_by="WorkTask.id"
    )

    @property
    def work_task_ids(self):
        return [wt.id for wt in self.work_tasks]

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "text": self.text,
            "type": self.type,
            "options": list(self.options or []),
            "is_required": self.is_required,
            "hide_in_view": self.hide_in_view,
            "validation": dict(self.validation or {}),
            "show_in_dashboard": self.show_in_dashboard,
            "dashboard_display_type": self.dashboard_display_type,
            "order": self.order,
            "work_task_ids": self.work_task_ids,
            "created_at": iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# Responses (write-once)
# ═══════════════════════════════════════════════════════════════
class ChecklistResponse(TenantModel):
    __tablename__ = "checklist_responses"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False
    )
    operator_name = db.Column(db.String(200), default="")
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    work_task_id = db.Column(db.Integer, db.ForeignKey("work_tasks.id", ondelete="SET NULL"))
    work_station_id = db.Column(db.Integer, db.ForeignKey("work_stations.id", ondelete="SET NULL"))
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id", ondelete="SET NULL"))
    responses = db.Column(db.JSON, default=dict)  # {"<question_id>": value}
    is_completed = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    __table_args__ = (
        TenantModel.tenant_composite_index("checklist_responses", "checklist_id"),
    )

    checklist = db.relationship("Checklist")
    work_task = db.relationship("WorkTask")
    work_station = db.relationship("WorkStation")
    shift = db.relationship("Shift")

    def to_dict(self, include_refs=False):
        d = {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "operator_name": self.operator_name,
            "user_id": self.user_id,
            "work_task_id": self.work_task_id,
            "work_station_id": self.work_station_id,
            "shift_id": self.shift_id,
            "responses": dict(self.responses or {}),
            "is_completed": self.is_completed,
            "created_at": iso(self.created_at),
        }
        if include_refs:
            d["checklist_name"] = self.checklist.name if self.checklist else None
            d["work_task_name"] = self.work_task.name if self.work_task else None
            d["work_station_name"] = self.work_station.name if self.work_station else None
            d["shift_name"] = self.shift.name if self.shift else None
        return d


@event.listens_for(ChecklistResponse, "before_update")
def _refuse_response_update(mapper, connection, target):
    raise ImmutableRecordError("ChecklistResponse", target.id)


@event.listens_for(ChecklistResponse, "before_delete")
def _refuse_response_delete(mapper, connection, target):
    raise ImmutableRecordError("ChecklistResponse", target.id)
