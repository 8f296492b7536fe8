"""
Deviation Service — deviation types, custom fields, deviations, timeline.

Business logic for the deviations module:
  - Type and custom-field administration (admin routes)
  - Deviation CRUD with a per-field change log
  - Comments and the merged log/comment timeline
  - Stats (totals by status and priority, overdue count)
  - Email notifications on create / assign / status change / comment

Custom field values are parsed through the same typed-answer boundary as
checklist answers. Notifications never fail the request that triggered them.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, or_

from app.core.exceptions import PermissionDeniedError, ValidationError
from app.models import db
from app.models.auth import ADMIN_ROLES, User
from app.models.checklists import ChecklistResponse, WorkTask
from app.models.deviations import (
    CUSTOM_FIELD_TYPES,
    DEVIATION_PRIORITIES,
    DEVIATION_STATUSES,
    CustomField,
    Deviation,
    DeviationComment,
    DeviationLog,
    DeviationType,
)
from app.services.answers import parse_answer
from app.services.email_service import EmailService, deviation_context
from app.services.form_composer import RequestContext
from app.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from app.utils.helpers import bool_field, parse_date

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200

# Fields a PATCH may change; everything else in the body is ignored.
UPDATABLE_FIELDS = (
    "title",
    "description",
    "deviation_type_id",
    "priority",
    "status",
    "assigned_to_user_id",
    "work_task_id",
    "due_date",
    "custom_field_values",
)


def _require_text(data: dict, key: str, max_len: int) -> str:
    value = (data.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    if len(value) > max_len:
        raise ValidationError(f"{key} is too long", details={key: f"max {max_len} characters"})
    return value


def _as_id(value, key: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer", details={key: "integer"}) from exc


def _stringify(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


# ═══════════════════════════════════════════════════════════════
# Deviation types
# ═══════════════════════════════════════════════════════════════
def list_deviation_types(tenant_id: int, *, active_only: bool = False) -> list[DeviationType]:
    q = DeviationType.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter(DeviationType.is_active.is_(True))
    return q.order_by(DeviationType.order, DeviationType.id).all()


def create_deviation_type(tenant_id: int, data: dict) -> DeviationType:
    dtype = DeviationType(
        tenant_id=tenant_id,
        name=_require_text(data, "name", 200),
        description=data.get("description") or "",
        color=data.get("color") or "#ef4444",
        order=_as_id(data.get("order"), "order") or 0,
        is_active=bool_field(data.get("is_active"), default=True),
    )
    db.session.add(dtype)
    db.session.commit()
    return dtype


def update_deviation_type(tenant_id: int, type_id: int, data: dict) -> DeviationType:
    dtype = get_scoped(DeviationType, type_id, tenant_id=tenant_id)
    if "name" in data:
        dtype.name = _require_text(data, "name", 200)
    for key in ("description", "color"):
        if key in data:
            setattr(dtype, key, data.get(key) or "")
    if "order" in data:
        dtype.order = _as_id(data.get("order"), "order") or 0
    if "is_active" in data:
        dtype.is_active = bool_field(data["is_active"])
    db.session.commit()
    return dtype


def delete_deviation_type(tenant_id: int, type_id: int) -> None:
    dtype = get_scoped(DeviationType, type_id, tenant_id=tenant_id)
    in_use = Deviation.query_for_tenant(tenant_id).filter_by(deviation_type_id=type_id).count()
    if in_use:
        raise ValidationError(
            f"Deviation type is used by {in_use} deviation(s); deactivate it instead",
            details={"deviation_type_id": "in use"},
        )
    db.session.delete(dtype)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Custom fields
# ═══════════════════════════════════════════════════════════════
def list_custom_fields(tenant_id: int, deviation_type_id: int | None = None,
                       *, active_only: bool = False) -> list[CustomField]:
    q = CustomField.query_for_tenant(tenant_id)
    if active_only:
        q = q.filter(CustomField.is_active.is_(True))
    fields = q.order_by(CustomField.order, CustomField.id).all()
    if deviation_type_id is None:
        return fields
    return [f for f in fields if _field_applies(f, deviation_type_id)]


def _field_applies(custom_field: CustomField, deviation_type_id: int | None) -> bool:
    """A field with no type associations applies to every deviation type."""
    type_ids = {dt.id for dt in custom_field.deviation_types}
    return not type_ids or deviation_type_id in type_ids


def get_custom_field(tenant_id: int, field_id: int) -> CustomField:
    return get_scoped(CustomField, field_id, tenant_id=tenant_id)


def _apply_custom_field(tenant_id: int, custom_field: CustomField, data: dict, *, partial: bool) -> None:
    if not partial or "name" in data:
        custom_field.name = _require_text(data, "name", 200)
    if not partial or "field_type" in data:
        field_type = data.get("field_type") or "text"
        if field_type not in CUSTOM_FIELD_TYPES:
            raise ValidationError(
                f"Unknown field_type '{field_type}'",
                details={"field_type": f"one of {', '.join(CUSTOM_FIELD_TYPES)}"},
            )
        custom_field.field_type = field_type
    if not partial or "options" in data or "field_type" in data:
        options = data.get("options", custom_field.options) or []
        if custom_field.field_type == "select":
            if not isinstance(options, list) or not [o for o in options if str(o).strip()]:
                raise ValidationError("select fields need at least one option", details={"options": "required"})
            custom_field.options = [str(o).strip() for o in options if str(o).strip()]
        else:
            custom_field.options = []
    for flag in ("is_required", "is_active"):
        if flag in data:
            setattr(custom_field, flag, bool_field(data[flag]))
    if "order" in data:
        custom_field.order = _as_id(data.get("order"), "order") or 0
    if "deviation_type_ids" in data:
        types = []
        for raw in data.get("deviation_type_ids") or []:
            dtype = get_scoped_or_none(DeviationType, _as_id(raw, "deviation_type_ids"), tenant_id=tenant_id)
            if dtype is None:
                raise ValidationError(f"Unknown deviation type {raw}", details={"deviation_type_ids": str(raw)})
            types.append(dtype)
        custom_field.deviation_types = types


def create_custom_field(tenant_id: int, data: dict) -> CustomField:
    custom_field = CustomField(tenant_id=tenant_id, is_active=True)
    _apply_custom_field(tenant_id, custom_field, data, partial=False)
    db.session.add(custom_field)
    db.session.commit()
    return custom_field


def update_custom_field(tenant_id: int, field_id: int, data: dict) -> CustomField:
    custom_field = get_custom_field(tenant_id, field_id)
    _apply_custom_field(tenant_id, custom_field, data, partial=True)
    db.session.commit()
    return custom_field


def delete_custom_field(tenant_id: int, field_id: int) -> None:
    custom_field = get_custom_field(tenant_id, field_id)
    db.session.delete(custom_field)
    db.session.commit()


def _parse_custom_values(tenant_id: int, deviation_type_id: int, raw_values) -> dict:
    """Validate custom_field_values against the fields of the deviation type."""
    if raw_values in (None, ""):
        raw_values = {}
    if not isinstance(raw_values, dict):
        raise ValidationError("custom_field_values must be an object", details={"custom_field_values": "object"})

    fields = {str(f.id): f for f in list_custom_fields(tenant_id, deviation_type_id, active_only=True)}
    unknown = sorted(k for k in map(str, raw_values) if k not in fields)
    if unknown:
        raise ValidationError(
            "custom_field_values reference unknown fields",
            details={k: "unknown custom field" for k in unknown},
        )

    values = {}
    errors = {}
    for key, custom_field in fields.items():
        raw = raw_values.get(key, raw_values.get(custom_field.id))
        try:
            answer = parse_answer(custom_field.field_type, raw, options=custom_field.options, label=key)
        except ValidationError as exc:
            errors.update(exc.details)
            continue
        if answer is None:
            if custom_field.is_required:
                errors[key] = f"{custom_field.name} is required"
            continue
        values[key] = answer.to_json()
    if errors:
        raise ValidationError("Invalid custom field values", details=errors)
    return values


# ═══════════════════════════════════════════════════════════════
# Reference checks
# ═══════════════════════════════════════════════════════════════
def _check_choice(value, allowed, key):
    if value not in allowed:
        raise ValidationError(f"Invalid {key} '{value}'", details={key: f"one of {', '.join(allowed)}"})
    return value


def _check_type(tenant_id: int, value) -> int:
    type_id = _as_id(value, "deviation_type_id")
    dtype = get_scoped_or_none(DeviationType, type_id, tenant_id=tenant_id) if type_id else None
    if dtype is None or not dtype.is_active:
        raise ValidationError(
            "deviation_type_id must reference an active deviation type",
            details={"deviation_type_id": "unknown deviation type"},
        )
    return type_id


def _check_user(tenant_id: int, value, key: str) -> int | None:
    user_id = _as_id(value, key)
    if user_id is None:
        return None
    user = User.query.filter_by(id=user_id, tenant_id=tenant_id, is_active=True).first()
    if user is None:
        raise ValidationError(f"{key} must reference an active user", details={key: "unknown user"})
    return user_id


def _check_ref(tenant_id: int, model, value, key: str) -> int | None:
    ref_id = _as_id(value, key)
    if ref_id is None:
        return None
    if get_scoped_or_none(model, ref_id, tenant_id=tenant_id) is None:
        raise ValidationError(f"{key} does not exist", details={key: "not found"})
    return ref_id


def _check_due_date(value):
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("due_date must be YYYY-MM-DD", details={"due_date": "invalid date"})
    return parsed


# ═══════════════════════════════════════════════════════════════
# Deviations
# ═══════════════════════════════════════════════════════════════
def list_deviations(tenant_id: int, filters: dict | None = None) -> tuple[list[Deviation], int]:
    """Newest-first page of deviations plus the unpaged total."""
    filters = filters or {}
    q = Deviation.query_for_tenant(tenant_id)
    for key in ("status", "priority"):
        if filters.get(key):
            q = q.filter(getattr(Deviation, key) == filters[key])
    for key in ("assigned_to_user_id", "created_by_user_id", "work_task_id", "deviation_type_id"):
        if filters.get(key) is not None:
            q = q.filter(getattr(Deviation, key) == filters[key])
    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Deviation.title.ilike(pattern), Deviation.description.ilike(pattern)))

    total = q.count()
    limit = min(int(filters.get("limit") or DEFAULT_LIMIT), MAX_LIMIT)
    offset = max(int(filters.get("offset") or 0), 0)
    items = q.order_by(Deviation.created_at.desc(), Deviation.id.desc()).offset(offset).limit(limit).all()
    return items, total


def get_deviation(tenant_id: int, deviation_id: int) -> Deviation:
    return get_scoped(Deviation, deviation_id, tenant_id=tenant_id)


def create_deviation(ctx: RequestContext, data: dict) -> Deviation:
    tenant_id = ctx.tenant_id
    type_id = _check_type(tenant_id, data.get("deviation_type_id"))
    deviation = Deviation(
        tenant_id=tenant_id,
        title=_require_text(data, "title", 300),
        description=data.get("description") or "",
        deviation_type_id=type_id,
        priority=_check_choice(data.get("priority") or "medium", DEVIATION_PRIORITIES, "priority"),
        status=_check_choice(data.get("status") or "new", DEVIATION_STATUSES, "status"),
        created_by_user_id=ctx.user_id,
        assigned_to_user_id=_check_user(tenant_id, data.get("assigned_to_user_id"), "assigned_to_user_id"),
        work_task_id=_check_ref(tenant_id, WorkTask, data.get("work_task_id"), "work_task_id"),
        checklist_response_id=_check_ref(
            tenant_id, ChecklistResponse, data.get("checklist_response_id"), "checklist_response_id"
        ),
        due_date=_check_due_date(data.get("due_date")),
        custom_field_values=_parse_custom_values(tenant_id, type_id, data.get("custom_field_values")),
    )
    if deviation.status == "done":
        deviation.completed_at = datetime.now(timezone.utc)
    db.session.add(deviation)
    db.session.flush()
    db.session.add(DeviationLog(
        tenant_id=tenant_id, deviation_id=deviation.id, user_id=ctx.user_id, action="created",
    ))
    db.session.commit()
    logger.info("Deviation created id=%s tenant=%s", deviation.id, tenant_id)

    actor = _user(tenant_id, ctx.user_id)
    _notify(
        "deviation_created", deviation, actor,
        [actor, _user(tenant_id, deviation.assigned_to_user_id)],
    )
    return deviation


def update_deviation(ctx: RequestContext, deviation_id: int, data: dict) -> Deviation:
    """Apply a partial update and log one entry per changed field."""
    tenant_id = ctx.tenant_id
    deviation = get_deviation(tenant_id, deviation_id)

    changes = {}
    if "title" in data:
        changes["title"] = _require_text(data, "title", 300)
    if "description" in data:
        changes["description"] = data.get("description") or ""
    if "deviation_type_id" in data:
        changes["deviation_type_id"] = _check_type(tenant_id, data["deviation_type_id"])
    if "priority" in data:
        changes["priority"] = _check_choice(data["priority"], DEVIATION_PRIORITIES, "priority")
    if "status" in data:
        changes["status"] = _check_choice(data["status"], DEVIATION_STATUSES, "status")
    if "assigned_to_user_id" in data:
        changes["assigned_to_user_id"] = _check_user(tenant_id, data["assigned_to_user_id"], "assigned_to_user_id")
    if "work_task_id" in data:
        changes["work_task_id"] = _check_ref(tenant_id, WorkTask, data["work_task_id"], "work_task_id")
    if "due_date" in data:
        changes["due_date"] = _check_due_date(data["due_date"])
    if "custom_field_values" in data or "deviation_type_id" in changes:
        changes["custom_field_values"] = _parse_custom_values(
            tenant_id,
            changes.get("deviation_type_id", deviation.deviation_type_id),
            data.get("custom_field_values", deviation.custom_field_values),
        )

    old_status = deviation.status
    old_assignee = deviation.assigned_to_user_id
    changed = []
    for key in UPDATABLE_FIELDS:
        if key not in changes:
            continue
        old, new = getattr(deviation, key), changes[key]
        if old == new:
            continue
        setattr(deviation, key, new)
        changed.append(key)
        db.session.add(DeviationLog(
            tenant_id=tenant_id,
            deviation_id=deviation.id,
            user_id=ctx.user_id,
            action="updated",
            field=key,
            old_value=_stringify(old),
            new_value=_stringify(new),
        ))

    if "status" in changed:
        deviation.completed_at = datetime.now(timezone.utc) if deviation.status == "done" else None
    db.session.commit()

    if not changed:
        return deviation
    logger.info("Deviation %s updated fields=%s", deviation.id, changed)

    actor = _user(tenant_id, ctx.user_id)
    if "assigned_to_user_id" in changed and deviation.assigned_to_user_id:
        assignee = _user(tenant_id, deviation.assigned_to_user_id)
        _notify("deviation_assigned", deviation, actor, [assignee],
                assignee=(assignee.full_name or assignee.email) if assignee else "")
    if "status" in changed:
        recipients = [
            _user(tenant_id, deviation.created_by_user_id),
            _user(tenant_id, deviation.assigned_to_user_id),
            _user(tenant_id, old_assignee),
            *_admins(tenant_id),
        ]
        _notify("deviation_status_changed", deviation, actor, recipients,
                exclude_user_id=ctx.user_id, old_status=old_status, new_status=deviation.status)
    return deviation


def delete_deviation(ctx: RequestContext, deviation_id: int) -> None:
    deviation = get_deviation(ctx.tenant_id, deviation_id)
    if not ctx.is_admin and deviation.created_by_user_id != ctx.user_id:
        raise PermissionDeniedError("Only the reporter or an admin can delete a deviation")
    db.session.delete(deviation)
    db.session.commit()
    logger.info("Deviation deleted id=%s tenant=%s", deviation_id, ctx.tenant_id)


# ═══════════════════════════════════════════════════════════════
# Comments & timeline
# ═══════════════════════════════════════════════════════════════
def list_comments(tenant_id: int, deviation_id: int) -> list[DeviationComment]:
    return list(get_deviation(tenant_id, deviation_id).comments)


def add_comment(ctx: RequestContext, deviation_id: int, data: dict) -> DeviationComment:
    deviation = get_deviation(ctx.tenant_id, deviation_id)
    comment = DeviationComment(
        tenant_id=ctx.tenant_id,
        deviation_id=deviation.id,
        user_id=ctx.user_id,
        comment=_require_text(data, "comment", 5000),
    )
    db.session.add(comment)
    db.session.commit()

    actor = _user(ctx.tenant_id, ctx.user_id)
    _notify(
        "deviation_comment_added", deviation, actor,
        [_user(ctx.tenant_id, deviation.created_by_user_id), _user(ctx.tenant_id, deviation.assigned_to_user_id)],
        exclude_user_id=ctx.user_id, comment=comment.comment,
    )
    return comment


def delete_comment(ctx: RequestContext, deviation_id: int, comment_id: int) -> None:
    comment = get_scoped(DeviationComment, comment_id, tenant_id=ctx.tenant_id, deviation_id=deviation_id)
    if not ctx.is_admin and comment.user_id != ctx.user_id:
        raise PermissionDeniedError("Only the author or an admin can delete a comment")
    db.session.delete(comment)
    db.session.commit()


def get_timeline(tenant_id: int, deviation_id: int) -> list[dict]:
    """Logs and comments merged into one list ordered by created_at."""
    deviation = get_deviation(tenant_id, deviation_id)
    entries = [dict(log.to_dict(), kind="log") for log in deviation.logs]
    entries += [dict(c.to_dict(), kind="comment") for c in deviation.comments]
    entries.sort(key=lambda e: (e["created_at"] or "", e["kind"], e["id"]))
    return entries


# ═══════════════════════════════════════════════════════════════
# Stats
# ═══════════════════════════════════════════════════════════════
def get_stats(tenant_id: int) -> dict:
    by_status = dict(
        db.session.query(Deviation.status, func.count(Deviation.id))
        .filter(Deviation.tenant_id == tenant_id)
        .group_by(Deviation.status)
        .all()
    )
    by_priority = dict(
        db.session.query(Deviation.priority, func.count(Deviation.id))
        .filter(Deviation.tenant_id == tenant_id)
        .group_by(Deviation.priority)
        .all()
    )
    overdue = (
        Deviation.query_for_tenant(tenant_id)
        .filter(Deviation.due_date.isnot(None))
        .filter(Deviation.due_date < date.today())
        .filter(Deviation.status != "done")
        .count()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": {s: by_status.get(s, 0) for s in DEVIATION_STATUSES},
        "by_priority": {p: by_priority.get(p, 0) for p in DEVIATION_PRIORITIES},
        "overdue": overdue,
    }


# ═══════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════
def _user(tenant_id: int, user_id) -> User | None:
    if user_id is None:
        return None
    return User.query.filter_by(id=user_id, tenant_id=tenant_id).first()


def _admins(tenant_id: int) -> list[User]:
    return User.query.filter(
        User.tenant_id == tenant_id,
        User.role.in_(ADMIN_ROLES),
        User.is_active.is_(True),
    ).all()


def _notify(template_name: str, deviation: Deviation, actor, recipients,
            *, exclude_user_id=None, **extra) -> str | None:
    emails = sorted({
        u.email for u in recipients
        if u is not None and u.is_active and u.id != exclude_user_id and u.email
    })
    if not emails:
        return None
    try:
        return EmailService.send_from_template(
            to_emails=emails,
            template_name=template_name,
            context=deviation_context(deviation, actor, **extra),
        )
    except Exception:
        logger.exception("Notification %s failed for deviation %s", template_name, deviation.id)
        return None
