"""
Schema Registry — tenant-defined checklists, categories, questions and the
reference data (work tasks, work stations, shifts) used for identification.

All functions take tenant_id explicitly and own their transaction
(db.session.commit()). Cross-tenant ids surface as NotFoundError (404);
ids that are well-formed but point at nothing usable surface as
ValidationError (422).

load_snapshot() is the read path used by the form composer, the response
collector and the response viewer: one immutable ChecklistSchema per call.
"""

import logging
import re

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.checklists import (
    DASHBOARD_DISPLAY_ALIASES,
    DASHBOARD_DISPLAY_TYPES,
    QUESTION_TYPES,
    Category,
    Checklist,
    ChecklistResponse,
    Question,
    Shift,
    WorkStation,
    WorkTask,
)
from app.services.answers import NUMERIC_TYPES
from app.services.form_composer import (
    CategorySpec,
    ChecklistSchema,
    ChecklistSpec,
    QuestionSpec,
    ShiftSpec,
    WorkStationSpec,
    WorkTaskSpec,
)
from app.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from app.services.icons import resolve_icon, validate_icon
from app.utils.helpers import bool_field

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

CHECKLIST_FLAGS = (
    "is_active",
    "show_in_menu",
    "has_dashboard",
    "include_work_tasks",
    "include_work_stations",
    "include_shifts",
)


def _require_name(data: dict, key: str = "name", max_len: int = 200) -> str:
    value = (data.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    if len(value) > max_len:
        raise ValidationError(f"{key} is too long", details={key: f"max {max_len} characters"})
    return value


def _int_field(data: dict, key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer", details={key: "integer"}) from exc


def _optional_id(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer", details={key: "integer"}) from exc


def _answered_question_ids(tenant_id: int, checklist_id: int) -> set[int]:
    ids = set()
    rows = db.session.execute(
        select(ChecklistResponse.responses).where(
            ChecklistResponse.tenant_id == tenant_id,
            ChecklistResponse.checklist_id == checklist_id,
        )
    ).scalars()
    for responses in rows:
        for key in (responses or {}):
            if str(key).isdigit():
                ids.add(int(key))
    return ids


# ═══════════════════════════════════════════════════════════════
# Checklists
# ═══════════════════════════════════════════════════════════════
def list_checklists(tenant_id: int, *, active_only: bool = False, menu_only: bool = False) -> list[Checklist]:
    q = Checklist.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter(Checklist.is_active.is_(True))
    if menu_only:
        q = q.filter(Checklist.show_in_menu.is_(True))
    return q.order_by(Checklist.order, Checklist.id).all()


def get_checklist(tenant_id: int, checklist_id: int) -> Checklist:
    return get_scoped(Checklist, checklist_id, tenant_id=tenant_id)


def _apply_checklist(checklist: Checklist, data: dict, *, partial: bool) -> None:
    if not partial or "name" in data:
        checklist.name = _require_name(data)
    if "description" in data:
        checklist.description = data.get("description") or ""
    if "icon" in data:
        checklist.icon = validate_icon(data.get("icon")) or resolve_icon(None).value
    if "order" in data:
        checklist.order = _int_field(data, "order")
    for flag in CHECKLIST_FLAGS:
        if flag in data:
            setattr(checklist, flag, bool_field(data[flag]))


def create_checklist(tenant_id: int, data: dict) -> Checklist:
    checklist = Checklist(tenant_id=tenant_id)
    _apply_checklist(checklist, data, partial=False)
    db.session.add(checklist)
    db.session.commit()
    logger.info("Created checklist id=%s tenant=%s", checklist.id, tenant_id)
    return checklist


def update_checklist(tenant_id: int, checklist_id: int, data: dict) -> Checklist:
    checklist = get_checklist(tenant_id, checklist_id)
    _apply_checklist(checklist, data, partial=True)
    db.session.commit()
    return checklist


def delete_checklist(tenant_id: int, checklist_id: int) -> None:
    checklist = get_checklist(tenant_id, checklist_id)
    has_responses = db.session.execute(
        select(ChecklistResponse.id).where(
            ChecklistResponse.tenant_id == tenant_id,
            ChecklistResponse.checklist_id == checklist_id,
        ).limit(1)
    ).first()
    if has_responses:
        raise ValidationError(
            "Checklist has submitted responses; deactivate it instead",
            details={"checklist_id": "has responses"},
        )
    db.session.delete(checklist)
    db.session.commit()
    logger.info("Deleted checklist id=%s tenant=%s", checklist_id, tenant_id)


# ═══════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════
def list_categories(tenant_id: int, checklist_id: int) -> list[Category]:
    get_checklist(tenant_id, checklist_id)
    return (
        Category.query_for_tenant(tenant_id)
        .filter_by(checklist_id=checklist_id)
        .order_by(Category.order, Category.id)
        .all()
    )


def create_category(tenant_id: int, data: dict) -> Category:
    checklist_id = _optional_id(data, "checklist_id")
    if checklist_id is None or get_scoped_or_none(Checklist, checklist_id, tenant_id=tenant_id) is None:
        raise ValidationError(
            "checklist_id must reference an existing checklist",
            details={"checklist_id": "unknown checklist"},
        )
    category = Category(
        tenant_id=tenant_id,
        checklist_id=checklist_id,
        name=_require_name(data),
        description=data.get("description") or "",
        order=_int_field(data, "order"),
        is_active=bool_field(data.get("is_active"), default=True),
    )
    db.session.add(category)
    db.session.commit()
    return category


def update_category(tenant_id: int, category_id: int, data: dict) -> Category:
    category = get_scoped(Category, category_id, tenant_id=tenant_id)
    if "name" in data:
        category.name = _require_name(data)
    if "description" in data:
        category.description = data.get("description") or ""
    if "order" in data:
        category.order = _int_field(data, "order")
    if "is_active" in data:
        category.is_active = bool_field(data["is_active"])
    db.session.commit()
    return category


def delete_category(tenant_id: int, category_id: int) -> None:
    category = get_scoped(Category, category_id, tenant_id=tenant_id)
    answered = _answered_question_ids(tenant_id, category.checklist_id)
    if any(q.id in answered for q in category.questions):
        raise ValidationError(
            "Category has answered questions; deactivate it instead",
            details={"category_id": "has answers"},
        )
    db.session.delete(category)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Questions
# ═══════════════════════════════════════════════════════════════
def list_questions(tenant_id: int, category_id: int) -> list[Question]:
    get_scoped(Category, category_id, tenant_id=tenant_id)
    return (
        Question.query_for_tenant(tenant_id)
        .filter_by(category_id=category_id)
        .order_by(Question.order, Question.id)
        .all()
    )


def get_question(tenant_id: int, question_id: int) -> Question:
    return get_scoped(Question, question_id, tenant_id=tenant_id)


def _clean_options(qtype: str, options) -> list[str]:
    if qtype not in ("select", "multiselect"):
        return []
    if not isinstance(options, list):
        raise ValidationError("options must be a list", details={"options": "list of strings"})
    cleaned = [str(o).strip() for o in options if str(o).strip()]
    if not cleaned:
        raise ValidationError(
            f"{qtype} questions need at least one option", details={"options": "required"}
        )
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("options must be unique", details={"options": "duplicates"})
    return cleaned


def _clean_validation(qtype: str, validation) -> dict:
    if not validation:
        return {}
    if not isinstance(validation, dict):
        raise ValidationError("validation must be an object", details={"validation": "object"})
    cleaned = {}
    for bound in ("min", "max"):
        if validation.get(bound) is None:
            continue
        value = validation[bound]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"validation.{bound} must be a number", details={"validation": bound})
        cleaned[bound] = value
    if "min" in cleaned and "max" in cleaned and cleaned["min"] > cleaned["max"]:
        raise ValidationError("validation.min must not exceed validation.max", details={"validation": "range"})
    if cleaned and qtype != "number":
        logger.debug("Ignoring numeric bounds on %s question", qtype)
        return {}
    return cleaned


def _clean_display_type(qtype: str, display_type) -> str | None:
    if display_type in (None, ""):
        return None
    if isinstance(display_type, str):
        display_type = DASHBOARD_DISPLAY_ALIASES.get(display_type.strip().lower(), display_type)
    if display_type not in DASHBOARD_DISPLAY_TYPES:
        raise ValidationError(
            f"Unknown dashboard_display_type '{display_type}'",
            details={"dashboard_display_type": f"one of {', '.join(DASHBOARD_DISPLAY_TYPES)}"},
        )
    if display_type != "count" and qtype not in NUMERIC_TYPES:
        raise ValidationError(
            f"dashboard_display_type '{display_type}' needs a number, stars or mood question",
            details={"dashboard_display_type": "numeric question required"},
        )
    return display_type


def _resolve_work_tasks(tenant_id: int, ids) -> list[WorkTask]:
    if not ids:
        return []
    if not isinstance(ids, list):
        raise ValidationError("work_task_ids must be a list", details={"work_task_ids": "list"})
    tasks = []
    for raw in ids:
        try:
            work_task_id = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Invalid work task id {raw!r}", details={"work_task_ids": "integers"}
            ) from exc
        task = get_scoped_or_none(WorkTask, work_task_id, tenant_id=tenant_id)
        if task is None:
            raise ValidationError(f"Unknown work task {raw}", details={"work_task_ids": str(raw)})
        tasks.append(task)
    return tasks


def _apply_question(tenant_id: int, question: Question, data: dict, *, partial: bool) -> None:
    if not partial or "text" in data:
        question.text = _require_name(data, "text", max_len=500)
    if not partial or "type" in data:
        qtype = data.get("type") or "text"
        if qtype not in QUESTION_TYPES:
            raise ValidationError(
                f"Unknown question type '{qtype}'",
                details={"type": f"one of {', '.join(QUESTION_TYPES)}"},
            )
        question.type = qtype
    if not partial or "options" in data or "type" in data:
        question.options = _clean_options(question.type, data.get("options", question.options or []))
    if not partial or "validation" in data or "type" in data:
        question.validation = _clean_validation(question.type, data.get("validation", question.validation))
    if not partial or "dashboard_display_type" in data or "type" in data:
        question.dashboard_display_type = _clean_display_type(
            question.type, data.get("dashboard_display_type", question.dashboard_display_type)
        )
    for flag in ("is_required", "hide_in_view", "show_in_dashboard"):
        if flag in data:
            setattr(question, flag, bool_field(data[flag]))
    if "order" in data:
        question.order = _int_field(data, "order")
    if "work_task_ids" in data:
        question.work_tasks = _resolve_work_tasks(tenant_id, data.get("work_task_ids"))


def create_question(tenant_id: int, data: dict) -> Question:
    category_id = _optional_id(data, "category_id")
    if category_id is None or get_scoped_or_none(Category, category_id, tenant_id=tenant_id) is None:
        raise ValidationError(
            "category_id must reference an existing category",
            details={"category_id": "unknown category"},
        )
    question = Question(tenant_id=tenant_id, category_id=category_id, order=0)
    _apply_question(tenant_id, question, data, partial=False)
    db.session.add(question)
    db.session.commit()
    return question


def update_question(tenant_id: int, question_id: int, data: dict) -> Question:
    question = get_question(tenant_id, question_id)
    _apply_question(tenant_id, question, data, partial=True)
    db.session.commit()
    return question


def delete_question(tenant_id: int, question_id: int) -> None:
    question = get_question(tenant_id, question_id)
    if question.id in _answered_question_ids(tenant_id, question.category.checklist_id):
        raise ValidationError(
            "Question has stored answers and cannot be deleted",
            details={"question_id": "has answers"},
        )
    db.session.delete(question)
    db.session.commit()


def set_question_work_tasks(tenant_id: int, question_id: int, work_task_ids: list) -> Question:
    question = get_question(tenant_id, question_id)
    question.work_tasks = _resolve_work_tasks(tenant_id, work_task_ids)
    db.session.commit()
    return question


# ═══════════════════════════════════════════════════════════════
# Reference data
# ═══════════════════════════════════════════════════════════════
def _refuse_if_referenced(tenant_id: int, column, value: int, key: str) -> None:
    """Stored responses keep their identification; referenced rows are deactivated, not deleted."""
    in_use = db.session.execute(
        select(ChecklistResponse.id).where(
            ChecklistResponse.tenant_id == tenant_id,
            column == value,
        ).limit(1)
    ).first()
    if in_use:
        raise ValidationError(
            f"{key} is referenced by submitted responses; deactivate it instead",
            details={key: "has responses"},
        )


def list_work_tasks(tenant_id: int, *, active_only: bool = True) -> list[WorkTask]:
    q = WorkTask.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter(WorkTask.is_active.is_(True))
    return q.order_by(WorkTask.name, WorkTask.id).all()


def create_work_task(tenant_id: int, data: dict) -> WorkTask:
    task = WorkTask(
        tenant_id=tenant_id,
        name=_require_name(data),
        description=data.get("description") or "",
        has_stations=bool_field(data.get("has_stations"), default=True),
    )
    db.session.add(task)
    db.session.commit()
    return task


def update_work_task(tenant_id: int, work_task_id: int, data: dict) -> WorkTask:
    task = get_scoped(WorkTask, work_task_id, tenant_id=tenant_id)
    if "name" in data:
        task.name = _require_name(data)
    if "description" in data:
        task.description = data.get("description") or ""
    for flag in ("has_stations", "is_active"):
        if flag in data:
            setattr(task, flag, bool_field(data[flag]))
    db.session.commit()
    return task


def delete_work_task(tenant_id: int, work_task_id: int) -> None:
    task = get_scoped(WorkTask, work_task_id, tenant_id=tenant_id)
    _refuse_if_referenced(tenant_id, ChecklistResponse.work_task_id, work_task_id, "work_task_id")
    db.session.delete(task)
    db.session.commit()


def list_work_stations(tenant_id: int, work_task_id: int | None = None, *, active_only: bool = True) -> list[WorkStation]:
    q = WorkStation.query_for_tenant(tenant_id)
    if work_task_id is not None:
        q = q.filter_by(work_task_id=work_task_id)
    if active_only:
        q = q.filter(WorkStation.is_active.is_(True))
    return q.order_by(WorkStation.name, WorkStation.id).all()


def _station_task_id(tenant_id: int, data: dict) -> int | None:
    work_task_id = _optional_id(data, "work_task_id")
    if work_task_id is not None and get_scoped_or_none(WorkTask, work_task_id, tenant_id=tenant_id) is None:
        raise ValidationError(
            "work_task_id must reference an existing work task",
            details={"work_task_id": "unknown work task"},
        )
    return work_task_id


def create_work_station(tenant_id: int, data: dict) -> WorkStation:
    station = WorkStation(
        tenant_id=tenant_id,
        name=_require_name(data),
        description=data.get("description") or "",
        work_task_id=_station_task_id(tenant_id, data),
    )
    db.session.add(station)
    db.session.commit()
    return station


def update_work_station(tenant_id: int, work_station_id: int, data: dict) -> WorkStation:
    station = get_scoped(WorkStation, work_station_id, tenant_id=tenant_id)
    if "name" in data:
        station.name = _require_name(data)
    if "description" in data:
        station.description = data.get("description") or ""
    if "work_task_id" in data:
        station.work_task_id = _station_task_id(tenant_id, data)
    if "is_active" in data:
        station.is_active = bool_field(data["is_active"])
    db.session.commit()
    return station


def delete_work_station(tenant_id: int, work_station_id: int) -> None:
    station = get_scoped(WorkStation, work_station_id, tenant_id=tenant_id)
    _refuse_if_referenced(tenant_id, ChecklistResponse.work_station_id, work_station_id, "work_station_id")
    db.session.delete(station)
    db.session.commit()


def list_shifts(tenant_id: int, *, active_only: bool = True) -> list[Shift]:
    q = Shift.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter(Shift.is_active.is_(True))
    return q.order_by(Shift.order, Shift.id).all()


def _shift_time(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value in (None, ""):
        return None
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError(f"{key} must be HH:MM", details={key: "HH:MM"})
    return value


def create_shift(tenant_id: int, data: dict) -> Shift:
    shift = Shift(
        tenant_id=tenant_id,
        name=_require_name(data, max_len=100),
        start_time=_shift_time(data, "start_time"),
        end_time=_shift_time(data, "end_time"),
        order=_int_field(data, "order"),
        is_active=bool_field(data.get("is_active"), default=True),
    )
    db.session.add(shift)
    db.session.commit()
    return shift


def update_shift(tenant_id: int, shift_id: int, data: dict) -> Shift:
    shift = get_scoped(Shift, shift_id, tenant_id=tenant_id)
    if "name" in data:
        shift.name = _require_name(data, max_len=100)
    for key in ("start_time", "end_time"):
        if key in data:
            setattr(shift, key, _shift_time(data, key))
    if "order" in data:
        shift.order = _int_field(data, "order")
    if "is_active" in data:
        shift.is_active = bool_field(data["is_active"])
    db.session.commit()
    return shift


def delete_shift(tenant_id: int, shift_id: int) -> None:
    shift = get_scoped(Shift, shift_id, tenant_id=tenant_id)
    _refuse_if_referenced(tenant_id, ChecklistResponse.shift_id, shift_id, "shift_id")
    db.session.delete(shift)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Snapshot
# ═══════════════════════════════════════════════════════════════
def load_snapshot(tenant_id: int, checklist_id: int, *, include_inactive: bool = False) -> ChecklistSchema:
    """Load one checklist and the tenant's reference data as an immutable snapshot.

    Inactive categories are left out unless include_inactive is set (the
    response viewer needs them to re-join answers given before deactivation).
    """
    checklist = get_checklist(tenant_id, checklist_id)
    if not include_inactive and not checklist.is_active:
        raise NotFoundError("Checklist", checklist_id, tenant_id)

    categories = [c for c in checklist.categories if include_inactive or c.is_active]
    questions = [q for c in categories for q in c.questions]

    return ChecklistSchema(
        tenant_id=tenant_id,
        checklist=ChecklistSpec(
            id=checklist.id,
            name=checklist.name,
            include_work_tasks=bool(checklist.include_work_tasks),
            include_work_stations=bool(checklist.include_work_stations),
            include_shifts=bool(checklist.include_shifts),
            has_dashboard=bool(checklist.has_dashboard),
            icon=resolve_icon(checklist.icon).value,
            description=checklist.description or "",
        ),
        categories=tuple(
            CategorySpec(id=c.id, name=c.name, order=c.order or 0, description=c.description or "")
            for c in categories
        ),
        questions=tuple(
            QuestionSpec(
                id=q.id,
                category_id=q.category_id,
                text=q.text,
                type=q.type,
                is_required=bool(q.is_required),
                order=q.order or 0,
                options=tuple(q.options or ()),
                validation=dict(q.validation or {}),
                hide_in_view=bool(q.hide_in_view),
                show_in_dashboard=bool(q.show_in_dashboard),
                dashboard_display_type=q.dashboard_display_type,
                work_task_ids=frozenset(q.work_task_ids),
            )
            for q in questions
        ),
        work_tasks=tuple(
            WorkTaskSpec(id=t.id, name=t.name, has_stations=bool(t.has_stations))
            for t in list_work_tasks(tenant_id, active_only=not include_inactive)
        ),
        work_stations=tuple(
            WorkStationSpec(id=s.id, name=s.name, work_task_id=s.work_task_id)
            for s in list_work_stations(tenant_id, active_only=not include_inactive)
        ),
        shifts=tuple(
            ShiftSpec(id=s.id, name=s.name)
            for s in list_shifts(tenant_id, active_only=not include_inactive)
        ),
    )
