"""
Checklist Dashboard Service

Aggregates stored responses into per-question dashboard cards and
tenant-wide response statistics:
  - average   mean with one decimal and its ratio against the scale max
  - chart     daily averages, ascending, last 7 distinct days
  - progress  mean as a percentage of the scale max
  - count     true/false split for boolean questions, answered total otherwise
  - stats     totals, completion ratio, recent responses, responses per day

Card builders are pure; get_dashboard() and get_dashboard_stats() do the
querying. Everything here is read-only.
"""

import logging
from collections import OrderedDict, defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from app.models import db
from app.models.checklists import ChecklistResponse
from app.services.answers import BOOLEAN_TYPES, NUMERIC_TYPES, RATING_MAX, RATING_TYPES, is_empty, numeric_value
from app.services.form_composer import QuestionSpec
from app.services.schema_registry import load_snapshot
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

CHART_DAYS = 7
RECENT_LIMIT = 10
DEFAULT_NUMBER_MAX = 100


def scale_max(question: QuestionSpec):
    if question.type in RATING_TYPES:
        return RATING_MAX
    return (question.validation or {}).get("max") or DEFAULT_NUMBER_MAX


def _numbers(samples):
    return [n for n in (numeric_value(v) for _, v in samples) if n is not None]


def _base_card(question: QuestionSpec, answered: int) -> dict:
    return {
        "question_id": question.id,
        "text": question.text,
        "type": question.type,
        "display_type": question.dashboard_display_type,
        "answered": answered,
    }


# ── Card builders ────────────────────────────────────────────────────────


def average_card(question: QuestionSpec, samples) -> dict | None:
    numbers = _numbers(samples)
    if not numbers:
        return None
    mean = sum(numbers) / len(numbers)
    top = scale_max(question)
    card = _base_card(question, len(numbers))
    card.update({
        "average": round(mean, 1),
        "display": f"{mean:.1f}",
        "max": top,
        "percentage": round(mean / top * 100) if top else 0,
    })
    return card


def progress_card(question: QuestionSpec, samples) -> dict | None:
    numbers = _numbers(samples)
    if not numbers:
        return None
    mean = sum(numbers) / len(numbers)
    top = scale_max(question)
    percentage = min(100, max(0, round(mean / top * 100))) if top else 0
    card = _base_card(question, len(numbers))
    card.update({"average": round(mean, 1), "max": top, "percentage": percentage})
    return card


def chart_card(question: QuestionSpec, samples) -> dict | None:
    by_day = defaultdict(list)
    for created_at, value in samples:
        number = numeric_value(value)
        day = parse_date(created_at)
        if number is None or day is None:
            continue
        by_day[day].append(number)
    if not by_day:
        return None
    days = sorted(by_day)[-CHART_DAYS:]
    card = _base_card(question, sum(len(v) for v in by_day.values()))
    card.update({
        "max": scale_max(question),
        "points": [
            {"date": d.isoformat(), "value": round(sum(by_day[d]) / len(by_day[d]), 1)}
            for d in days
        ],
    })
    return card


def count_card(question: QuestionSpec, samples) -> dict | None:
    if not samples:
        return None
    card = _base_card(question, len(samples))
    if question.type in BOOLEAN_TYPES:
        yes = sum(1 for _, v in samples if bool(v))
        card.update({"true": yes, "false": len(samples) - yes, "total": len(samples)})
    else:
        card["total"] = len(samples)
    return card


_BUILDERS = {
    "average": average_card,
    "chart": chart_card,
    "progress": progress_card,
    "count": count_card,
}


def build_card(question: QuestionSpec, responses) -> dict | None:
    """Card for one question, or None when nothing was answered.

    ``responses`` is an iterable of (created_at, responses_map) pairs.
    """
    display_type = question.dashboard_display_type
    builder = _BUILDERS.get(display_type)
    if builder is None:
        return None
    if display_type != "count" and question.type not in NUMERIC_TYPES:
        return None
    samples = [
        (created_at, answers.get(question.key))
        for created_at, answers in responses
        if not is_empty((answers or {}).get(question.key))
    ]
    if not samples:
        return None
    return builder(question, samples)


# ── Queries ──────────────────────────────────────────────────────────────


def dashboard_questions(tenant_id: int, checklist_id: int) -> list[QuestionSpec]:
    schema = load_snapshot(tenant_id, checklist_id)
    return [q for q in schema.questions if q.show_in_dashboard and q.dashboard_display_type]


def get_dashboard(tenant_id: int, checklist_id: int, *, days: int | None = None) -> dict:
    """Cards for every dashboard question of one checklist."""
    schema = load_snapshot(tenant_id, checklist_id)
    questions = [q for q in schema.questions if q.show_in_dashboard and q.dashboard_display_type]

    q = db.session.query(ChecklistResponse.created_at, ChecklistResponse.responses).filter(
        ChecklistResponse.tenant_id == tenant_id,
        ChecklistResponse.checklist_id == checklist_id,
    )
    if days:
        q = q.filter(ChecklistResponse.created_at >= datetime.now(timezone.utc) - timedelta(days=days))
    rows = [(created_at, answers or {}) for created_at, answers in q.order_by(ChecklistResponse.created_at).all()]

    cards = []
    for question in questions:
        card = build_card(question, rows)
        if card is not None:
            cards.append(card)

    logger.debug("Dashboard checklist=%s responses=%d cards=%d", checklist_id, len(rows), len(cards))
    return {
        "checklist": schema.checklist.to_dict(),
        "response_count": len(rows),
        "cards": cards,
    }


def get_dashboard_stats(tenant_id: int, checklist_id: int | None = None, days: int = 30) -> dict:
    """Totals, completion ratio, most recent responses and responses per day."""
    base = ChecklistResponse.query_for_tenant(tenant_id)
    if checklist_id is not None:
        base = base.filter(ChecklistResponse.checklist_id == checklist_id)

    total = base.count()
    completed = base.filter(ChecklistResponse.is_completed.is_(True)).count()
    recent = (
        base.order_by(ChecklistResponse.created_at.desc(), ChecklistResponse.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )

    since = datetime.now(timezone.utc) - timedelta(days=days)
    day_rows = (
        base.with_entities(
            func.date(ChecklistResponse.created_at).label("day"),
            func.count(ChecklistResponse.id).label("count"),
        )
        .filter(ChecklistResponse.created_at >= since)
        .group_by(func.date(ChecklistResponse.created_at))
        .order_by(func.date(ChecklistResponse.created_at))
        .all()
    )
    per_day = OrderedDict((str(r.day), r.count) for r in day_rows)

    return {
        "total_responses": total,
        "completed_responses": completed,
        "completion_rate": round(completed / total, 3) if total else 0.0,
        "recent_responses": [r.to_dict(include_refs=True) for r in recent],
        "responses_per_day": [{"date": d, "count": c} for d, c in per_day.items()],
    }
