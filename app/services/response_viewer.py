"""
Response Viewer — re-joins a stored response with its checklist schema.

present_answer() is a pure mapping from (question, stored value) to a
display variant; render_response() builds the ordered, sectioned view used
by GET /api/responses/<id>/view. Both are deterministic: rendering the same
response against the same snapshot twice yields equal output.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.services.answers import BOOLEAN_TYPES, RATING_MAX, is_empty, numeric_value
from app.services.form_composer import ChecklistSchema, QuestionSpec
from app.utils.helpers import parse_date

HIDDEN_TEXT = "Hidden in view"
UNANSWERED_TEXT = "Not answered"
STAR_GLYPH = "★"
MOOD_EMOJIS = ("😞", "😐", "🙂", "😊", "😄")

DATE_FORMATS = {
    "sv-SE": "%Y-%m-%d",
    "en-GB": "%d/%m/%Y",
    "en-US": "%m/%d/%Y",
    "de-DE": "%d.%m.%Y",
    "fi-FI": "%d.%m.%Y",
    "nb-NO": "%d.%m.%Y",
}
DEFAULT_DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class PresentedAnswer:
    """Display variant for one answer.

    kind: badge | badges | rating | date | text | redacted | unanswered
    """

    kind: str
    text: str
    badges: tuple[str, ...] = ()
    tone: str = "neutral"
    score: int | None = None

    def to_dict(self) -> dict:
        d = {"kind": self.kind, "text": self.text, "tone": self.tone}
        if self.badges:
            d["badges"] = list(self.badges)
        if self.score is not None:
            d["score"] = self.score
        return d


def format_date(value, locale: str = "sv-SE") -> str | None:
    parsed = parse_date(value)
    if parsed is None:
        return None
    return parsed.strftime(DATE_FORMATS.get(locale, DEFAULT_DATE_FORMAT))


def _rating(value) -> int | None:
    number = numeric_value(value)
    if number is None:
        return None
    return max(1, min(RATING_MAX, int(round(number))))


def present_answer(question: QuestionSpec, value, locale: str = "sv-SE") -> PresentedAnswer:
    if question.hide_in_view:
        return PresentedAnswer(kind="redacted", text=HIDDEN_TEXT, tone="muted")
    if is_empty(value):
        return PresentedAnswer(kind="unanswered", text=UNANSWERED_TEXT, tone="muted")

    qtype = question.type
    if qtype in BOOLEAN_TYPES:
        truthy = bool(value)
        if qtype == "yes_no":
            text = "Yes" if truthy else "No"
        else:
            text = "Checked" if truthy else "Not checked"
        return PresentedAnswer(kind="badge", text=text, tone="positive" if truthy else "secondary")

    if qtype == "stars":
        score = _rating(value)
        if score is not None:
            glyphs = STAR_GLYPH * score
            return PresentedAnswer(kind="rating", text=f"{glyphs} ({score}/{RATING_MAX})", score=score)

    if qtype == "mood":
        score = _rating(value)
        if score is not None:
            emoji = MOOD_EMOJIS[score - 1]
            return PresentedAnswer(kind="rating", text=f"{emoji} ({score}/{RATING_MAX})", score=score)

    if qtype == "date":
        formatted = format_date(value, locale)
        if formatted is not None:
            return PresentedAnswer(kind="date", text=formatted)

    if qtype in ("select", "multiselect"):
        items = value if isinstance(value, (list, tuple)) else [value]
        badges = tuple(str(v) for v in items)
        return PresentedAnswer(kind="badges", text=", ".join(badges), badges=badges, tone="outline")

    if isinstance(value, (list, tuple)):
        return PresentedAnswer(kind="text", text=", ".join(str(v) for v in value))
    return PresentedAnswer(kind="text", text=str(value))


def render_response(schema: ChecklistSchema, response: dict, locale: str = "sv-SE") -> dict:
    """Sectioned view of a stored response.

    ``response`` is ChecklistResponse.to_dict(). Questions that do not apply
    to the response's work task are shown only if an answer was stored for
    them; keys that no longer match a question are reported under
    ``orphaned_keys``.
    """
    answers = response.get("responses") or {}
    work_task_id = response.get("work_task_id")
    tasks = {t.id: t.name for t in schema.work_tasks}
    stations = {s.id: s.name for s in schema.work_stations}
    shifts = {s.id: s.name for s in schema.shifts}

    sections = []
    seen = set()
    for category in sorted(schema.categories, key=lambda c: (c.order, c.id)):
        questions = sorted(
            (q for q in schema.questions if q.category_id == category.id),
            key=lambda q: (q.order, q.id),
        )
        items = []
        for q in questions:
            seen.add(q.key)
            if not q.applies_to(work_task_id) and q.key not in answers:
                continue
            items.append({
                "question_id": q.id,
                "text": q.text,
                "type": q.type,
                "display": present_answer(q, answers.get(q.key), locale).to_dict(),
            })
        if items:
            sections.append({"category_id": category.id, "name": category.name, "answers": items})

    return {
        "id": response.get("id"),
        "checklist": {"id": schema.checklist.id, "name": schema.checklist.name},
        "operator_name": response.get("operator_name") or "",
        "date": format_date(response.get("created_at"), locale),
        "work_task": tasks.get(work_task_id),
        "work_station": stations.get(response.get("work_station_id")),
        "shift": shifts.get(response.get("shift_id")),
        "is_completed": bool(response.get("is_completed")),
        "sections": sections,
        "orphaned_keys": sorted(k for k in answers if k not in seen),
    }
