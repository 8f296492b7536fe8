"""
Response Collector — validate-then-submit for checklist responses.

Submission flow:
    1. load the checklist snapshot (404 for unknown / other-tenant / inactive)
    2. normalise responses (mapping or list of {question_id, value})
    3. reject keys that are not questions of this checklist (422)
    4. validate identification against the composer's rules (422)
    5. drop answers to questions excluded by work-task scoping
    6. parse every remaining value into a typed Answer (422 on mismatch)
    7. for is_completed=true, require every applicable required question
    8. persist one write-once ChecklistResponse in a single commit
"""

import logging
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import or_

from app.core.exceptions import ValidationError
from app.models import db
from app.models.checklists import Checklist, ChecklistResponse
from app.services.answers import is_empty, parse_answer
from app.services.form_composer import (
    FormComposer,
    Identification,
    RequestContext,
    truncate_label,
)
from app.services.helpers.scoped_queries import get_scoped
from app.services.schema_registry import load_snapshot
from app.utils.helpers import bool_field

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _normalize_responses(raw) -> dict:
    """Accept ``{"12": true}`` or ``[{"question_id": 12, "value": true}]``."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): v for k, v in raw.items()}
    if isinstance(raw, list):
        out = {}
        for item in raw:
            if not isinstance(item, dict) or "question_id" not in item:
                raise ValidationError(
                    "responses list items need question_id and value",
                    details={"responses": "list of {question_id, value}"},
                )
            out[str(item["question_id"])] = item.get("value")
        return out
    raise ValidationError("responses must be an object or a list", details={"responses": "invalid"})


def _checklist_id(data: dict) -> int:
    raw = data.get("checklist_id")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("checklist_id is required", details={"checklist_id": "required"}) from exc


def submit_response(ctx: RequestContext, data: dict) -> ChecklistResponse:
    """Validate and persist a checklist response. Returns the new row."""
    checklist_id = _checklist_id(data)
    schema = load_snapshot(ctx.tenant_id, checklist_id)
    composer = FormComposer(schema, ctx)
    is_completed = bool_field(data.get("is_completed"), default=True)

    raw_answers = _normalize_responses(data.get("responses"))
    unknown = sorted(k for k in raw_answers if schema.question(k) is None)
    if unknown:
        raise ValidationError(
            "Responses reference questions that are not part of this checklist",
            details={k: "unknown question" for k in unknown},
        )

    identification = Identification.from_dict(data)
    ident_check = composer.validate_identification(identification)
    if ident_check.errors:
        raise ValidationError("Invalid identification", details=dict(ident_check.errors))
    if is_completed and ident_check.missing:
        raise ValidationError(
            ident_check.message,
            details={label: "required" for label in ident_check.missing},
        )

    stored = {}
    errors = {}
    dropped = 0
    applicable = {q.key: q for q in composer.all_applicable_questions(identification.work_task_id)}
    for key, raw in raw_answers.items():
        question = applicable.get(key)
        if question is None:
            dropped += 1
            continue
        try:
            answer = parse_answer(
                question.type,
                raw,
                options=list(question.options),
                validation=question.validation,
                label=key,
            )
        except ValidationError as exc:
            errors.update(exc.details)
            continue
        if answer is not None:
            stored[key] = answer.to_json()
    if errors:
        raise ValidationError("Some answers do not match their question type", details=errors)

    if is_completed:
        missing = [q for q in applicable.values() if q.is_required and is_empty(stored.get(q.key))]
        if missing:
            labels = ", ".join(truncate_label(q.text) for q in missing)
            raise ValidationError(
                f"Please fill in the required fields: {labels}",
                details={q.key: "required" for q in missing},
            )

    response = ChecklistResponse(
        tenant_id=ctx.tenant_id,
        checklist_id=checklist_id,
        operator_name=(data.get("operator_name") or ctx.user_name or "").strip(),
        user_id=ctx.user_id,
        work_task_id=identification.work_task_id if schema.checklist.include_work_tasks else None,
        work_station_id=identification.work_station_id if schema.checklist.include_work_stations else None,
        shift_id=identification.shift_id if schema.checklist.include_shifts else None,
        responses=stored,
        is_completed=is_completed,
    )
    db.session.add(response)
    db.session.commit()
    logger.info(
        "Stored checklist response id=%s checklist=%s answers=%d dropped=%d",
        response.id, checklist_id, len(stored), dropped,
        extra={"tenant_id": ctx.tenant_id, "user_id": ctx.user_id},
    )
    return response


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def _day_start(d):
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def list_responses(tenant_id: int, filters: dict | None = None) -> tuple[list[ChecklistResponse], int]:
    """Filtered, newest-first page of responses plus the unpaged total.

    filters: checklist_id, work_task_id, work_station_id, shift_id,
    start_date, end_date (dates, inclusive), search, limit, offset.
    """
    filters = filters or {}
    q = ChecklistResponse.query_for_tenant(tenant_id)

    for column in ("checklist_id", "work_task_id", "work_station_id", "shift_id"):
        value = filters.get(column)
        if value is not None:
            q = q.filter(getattr(ChecklistResponse, column) == value)

    if filters.get("start_date"):
        q = q.filter(ChecklistResponse.created_at >= _day_start(filters["start_date"]))
    if filters.get("end_date"):
        q = q.filter(ChecklistResponse.created_at < _day_start(filters["end_date"] + timedelta(days=1)))

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        q = q.outerjoin(Checklist, Checklist.id == ChecklistResponse.checklist_id).filter(
            or_(ChecklistResponse.operator_name.ilike(pattern), Checklist.name.ilike(pattern))
        )

    total = q.count()
    limit = min(int(filters.get("limit") or DEFAULT_LIMIT), MAX_LIMIT)
    offset = max(int(filters.get("offset") or 0), 0)
    items = (
        q.order_by(ChecklistResponse.created_at.desc(), ChecklistResponse.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_response(tenant_id: int, response_id: int) -> ChecklistResponse:
    return get_scoped(ChecklistResponse, response_id, tenant_id=tenant_id)
