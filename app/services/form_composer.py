"""
Form Composer — turns a checklist schema snapshot into wizard steps.

Pure module: no database, no Flask globals. The backend feeds it a
``ChecklistSchema`` loaded by schema_registry.load_snapshot(); the Python
client feeds it the same snapshot decoded from JSON, so both sides apply
identical step sequencing and validation.

Step layout:
    0      identification   work task / work station / shift selectors,
                            each present only if the checklist enables it
    1..N   one per category  ordered by (order, id); categories with no
                            question applicable to the selected work task
                            are skipped

A question applies when it has no work-task associations, or when the
selected work task is one of them. Non-applicable questions are neither
rendered, validated, nor kept in the submitted payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from app.core.exceptions import NotFoundError
from app.services.answers import is_empty

LABEL_MAX_CHARS = 30
IDENTIFICATION_STEP = "identification"
CATEGORY_STEP = "category"


def truncate_label(text: str, limit: int = LABEL_MAX_CHARS) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


# ═══════════════════════════════════════════════════════════════
# Request context
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RequestContext:
    """Who is asking: passed explicitly instead of read from request globals."""

    tenant_id: int
    user_id: int | None = None
    roles: tuple[str, ...] = ()
    user_name: str = ""
    locale: str = "sv-SE"

    @property
    def is_admin(self) -> bool:
        return any(r in ("admin", "superadmin") for r in self.roles)


# ═══════════════════════════════════════════════════════════════
# Schema snapshot
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class QuestionSpec:
    id: int
    category_id: int
    text: str
    type: str
    is_required: bool = False
    order: int = 0
    options: tuple[str, ...] = ()
    validation: dict = field(default_factory=dict, compare=False)
    hide_in_view: bool = False
    show_in_dashboard: bool = False
    dashboard_display_type: str | None = None
    work_task_ids: frozenset[int] = frozenset()

    @property
    def key(self) -> str:
        return str(self.id)

    def applies_to(self, work_task_id: int | None) -> bool:
        return not self.work_task_ids or work_task_id in self.work_task_ids

    @classmethod
    def from_dict(cls, d: dict) -> "QuestionSpec":
        return cls(
            id=int(d["id"]),
            category_id=int(d["category_id"]),
            text=d.get("text") or "",
            type=d.get("type") or "text",
            is_required=bool(d.get("is_required")),
            order=int(d.get("order") or 0),
            options=tuple(d.get("options") or ()),
            validation=dict(d.get("validation") or {}),
            hide_in_view=bool(d.get("hide_in_view")),
            show_in_dashboard=bool(d.get("show_in_dashboard")),
            dashboard_display_type=d.get("dashboard_display_type"),
            work_task_ids=frozenset(int(i) for i in d.get("work_task_ids") or ()),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "text": self.text,
            "type": self.type,
            "is_required": self.is_required,
            "order": self.order,
            "options": list(self.options),
            "validation": dict(self.validation),
            "hide_in_view": self.hide_in_view,
            "show_in_dashboard": self.show_in_dashboard,
            "dashboard_display_type": self.dashboard_display_type,
            "work_task_ids": sorted(self.work_task_ids),
        }


@dataclass(frozen=True)
class CategorySpec:
    id: int
    name: str
    order: int = 0
    description: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "CategorySpec":
        return cls(id=int(d["id"]), name=d.get("name") or "",
                   order=int(d.get("order") or 0), description=d.get("description") or "")

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "order": self.order, "description": self.description}


@dataclass(frozen=True)
class WorkTaskSpec:
    id: int
    name: str
    has_stations: bool = True


@dataclass(frozen=True)
class WorkStationSpec:
    id: int
    name: str
    work_task_id: int | None = None


@dataclass(frozen=True)
class ShiftSpec:
    id: int
    name: str


@dataclass(frozen=True)
class ChecklistSpec:
    id: int
    name: str
    include_work_tasks: bool = True
    include_work_stations: bool = True
    include_shifts: bool = True
    has_dashboard: bool = False
    icon: str = "clipboard-list"
    description: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "ChecklistSpec":
        return cls(
            id=int(d["id"]),
            name=d.get("name") or "",
            include_work_tasks=bool(d.get("include_work_tasks")),
            include_work_stations=bool(d.get("include_work_stations")),
            include_shifts=bool(d.get("include_shifts")),
            has_dashboard=bool(d.get("has_dashboard")),
            icon=d.get("icon") or "clipboard-list",
            description=d.get("description") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "include_work_tasks": self.include_work_tasks,
            "include_work_stations": self.include_work_stations,
            "include_shifts": self.include_shifts,
            "has_dashboard": self.has_dashboard,
            "icon": self.icon,
            "description": self.description,
        }


@dataclass(frozen=True)
class ChecklistSchema:
    """Immutable snapshot of one checklist and the tenant's reference data."""

    tenant_id: int
    checklist: ChecklistSpec
    categories: tuple[CategorySpec, ...] = ()
    questions: tuple[QuestionSpec, ...] = ()
    work_tasks: tuple[WorkTaskSpec, ...] = ()
    work_stations: tuple[WorkStationSpec, ...] = ()
    shifts: tuple[ShiftSpec, ...] = ()

    def question(self, question_id) -> QuestionSpec | None:
        try:
            qid = int(question_id)
        except (TypeError, ValueError):
            return None
        for q in self.questions:
            if q.id == qid:
                return q
        return None

    def work_task(self, work_task_id) -> WorkTaskSpec | None:
        return next((t for t in self.work_tasks if t.id == work_task_id), None)

    @classmethod
    def from_dict(cls, d: dict) -> "ChecklistSchema":
        return cls(
            tenant_id=int(d["tenant_id"]),
            checklist=ChecklistSpec.from_dict(d["checklist"]),
            categories=tuple(CategorySpec.from_dict(c) for c in d.get("categories", [])),
            questions=tuple(QuestionSpec.from_dict(q) for q in d.get("questions", [])),
            work_tasks=tuple(
                WorkTaskSpec(int(t["id"]), t.get("name") or "", bool(t.get("has_stations", True)))
                for t in d.get("work_tasks", [])
            ),
            work_stations=tuple(
                WorkStationSpec(int(s["id"]), s.get("name") or "", s.get("work_task_id"))
                for s in d.get("work_stations", [])
            ),
            shifts=tuple(ShiftSpec(int(s["id"]), s.get("name") or "") for s in d.get("shifts", [])),
        )

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "checklist": self.checklist.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
            "questions": [q.to_dict() for q in self.questions],
            "work_tasks": [
                {"id": t.id, "name": t.name, "has_stations": t.has_stations} for t in self.work_tasks
            ],
            "work_stations": [
                {"id": s.id, "name": s.name, "work_task_id": s.work_task_id} for s in self.work_stations
            ],
            "shifts": [{"id": s.id, "name": s.name} for s in self.shifts],
        }


# ═══════════════════════════════════════════════════════════════
# Wizard state
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Identification:
    work_task_id: int | None = None
    work_station_id: int | None = None
    shift_id: int | None = None
    operator_name: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> "Identification":
        d = d or {}

        def _id(name):
            value = d.get(name)
            if value in (None, ""):
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                return None

        return cls(
            work_task_id=_id("work_task_id"),
            work_station_id=_id("work_station_id"),
            shift_id=_id("shift_id"),
            operator_name=(d.get("operator_name") or "").strip(),
        )


@dataclass(frozen=True)
class IdentificationField:
    name: str
    label: str
    required: bool
    options: tuple[tuple[int, str], ...] = ()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "required": self.required,
            "options": [{"id": i, "name": n} for i, n in self.options],
        }


@dataclass(frozen=True)
class WizardStep:
    index: int
    kind: str
    title: str
    category_id: int | None = None
    questions: tuple[QuestionSpec, ...] = ()
    fields: tuple[IdentificationField, ...] = ()

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "kind": self.kind,
            "title": self.title,
            "category_id": self.category_id,
            "questions": [q.to_dict() for q in self.questions],
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass(frozen=True)
class StepValidation:
    step_index: int
    missing: tuple[str, ...] = ()
    errors: dict = field(default_factory=dict, compare=False)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.errors

    @property
    def message(self) -> str:
        if self.ok:
            return ""
        return "Please fill in the required fields: " + ", ".join(self.missing or self.errors)

    def to_dict(self) -> dict:
        return {
            "step_index": self.step_index,
            "ok": self.ok,
            "missing": list(self.missing),
            "errors": dict(self.errors),
            "message": self.message,
        }


# ═══════════════════════════════════════════════════════════════
# Composer
# ═══════════════════════════════════════════════════════════════
class FormComposer:
    """Step sequencing and per-step validation for one checklist schema."""

    def __init__(self, schema: ChecklistSchema, context: RequestContext):
        if schema.tenant_id != context.tenant_id:
            raise NotFoundError("Checklist", schema.checklist.id, context.tenant_id)
        self.schema = schema
        self.context = context

    @property
    def checklist(self) -> ChecklistSpec:
        return self.schema.checklist

    # ── Filtering ───────────────────────────────────────────────────────

    def ordered_categories(self) -> list[CategorySpec]:
        return sorted(self.schema.categories, key=lambda c: (c.order, c.id))

    def applicable_questions(self, category_id: int, work_task_id: int | None) -> Iterator[QuestionSpec]:
        """Lazily yield the category's questions that apply to the selected work task."""
        ordered = sorted(
            (q for q in self.schema.questions if q.category_id == category_id),
            key=lambda q: (q.order, q.id),
        )
        for question in ordered:
            if question.applies_to(work_task_id):
                yield question

    def all_applicable_questions(self, work_task_id: int | None) -> Iterator[QuestionSpec]:
        for category in self.ordered_categories():
            yield from self.applicable_questions(category.id, work_task_id)

    def station_options(self, work_task_id: int | None) -> list[WorkStationSpec]:
        """Stations selectable for the given work task.

        With work tasks in play, only stations of the selected task are offered
        (none until a task is chosen). Otherwise every station is offered.
        """
        if self.checklist.include_work_tasks and self.schema.work_tasks:
            if work_task_id is None:
                return []
            return [s for s in self.schema.work_stations if s.work_task_id == work_task_id]
        return list(self.schema.work_stations)

    def station_required(self, identification: Identification) -> bool:
        if not self.checklist.include_work_stations:
            return False
        if self.checklist.include_work_tasks and self.schema.work_tasks:
            task = self.schema.work_task(identification.work_task_id)
            return task is not None and task.has_stations
        return bool(self.schema.work_stations)

    # ── Steps ───────────────────────────────────────────────────────────

    def identification_fields(self, identification: Identification) -> tuple[IdentificationField, ...]:
        fields = []
        if self.checklist.include_work_tasks:
            fields.append(IdentificationField(
                name="work_task_id",
                label="Work task",
                required=True,
                options=tuple((t.id, t.name) for t in self.schema.work_tasks),
            ))
        if self.checklist.include_work_stations:
            fields.append(IdentificationField(
                name="work_station_id",
                label="Work station",
                required=self.station_required(identification),
                options=tuple((s.id, s.name) for s in self.station_options(identification.work_task_id)),
            ))
        if self.checklist.include_shifts:
            fields.append(IdentificationField(
                name="shift_id",
                label="Shift",
                required=True,
                options=tuple((s.id, s.name) for s in self.schema.shifts),
            ))
        return tuple(fields)

    def steps(self, identification: Identification) -> list[WizardStep]:
        steps = [WizardStep(
            index=0,
            kind=IDENTIFICATION_STEP,
            title=self.checklist.name,
            fields=self.identification_fields(identification),
        )]
        for category in self.ordered_categories():
            questions = tuple(self.applicable_questions(category.id, identification.work_task_id))
            if not questions:
                continue
            steps.append(WizardStep(
                index=len(steps),
                kind=CATEGORY_STEP,
                title=category.name,
                category_id=category.id,
                questions=questions,
            ))
        return steps

    # ── Validation ──────────────────────────────────────────────────────

    def validate_identification(self, identification: Identification) -> StepValidation:
        missing = []
        errors = {}
        for f in self.identification_fields(identification):
            value = getattr(identification, f.name)
            if value is None:
                if f.required:
                    missing.append(f.label)
                continue
            if value not in {opt_id for opt_id, _ in f.options}:
                errors[f.name] = f"{f.label} {value} is not a valid choice"
        return StepValidation(step_index=0, missing=tuple(missing), errors=errors)

    def validate_step(self, step_index: int, identification: Identification, answers: dict) -> StepValidation:
        steps = self.steps(identification)
        if not 0 <= step_index < len(steps):
            raise IndexError(f"step {step_index} out of range (0..{len(steps) - 1})")
        step = steps[step_index]
        if step.kind == IDENTIFICATION_STEP:
            return self.validate_identification(identification)

        answers = answers or {}
        missing = tuple(
            truncate_label(q.text)
            for q in step.questions
            if q.is_required and is_empty(answers.get(q.key, answers.get(q.id)))
        )
        return StepValidation(step_index=step_index, missing=missing)

    def validate_all(self, identification: Identification, answers: dict) -> list[StepValidation]:
        """Validation result for every step that currently fails."""
        results = []
        for step in self.steps(identification):
            result = self.validate_step(step.index, identification, answers)
            if not result.ok:
                results.append(result)
        return results

    # ── Payload ─────────────────────────────────────────────────────────

    def build_payload(self, identification: Identification, answers: dict, *, is_completed: bool = True) -> dict:
        """Materialise the submission body for POST /api/responses."""
        answers = answers or {}
        responses = {}
        for question in self.all_applicable_questions(identification.work_task_id):
            value = answers.get(question.key, answers.get(question.id))
            if not is_empty(value):
                responses[question.key] = value

        payload = {
            "checklist_id": self.checklist.id,
            "operator_name": identification.operator_name or self.context.user_name,
            "responses": responses,
            "is_completed": is_completed,
        }
        if self.checklist.include_work_tasks:
            payload["work_task_id"] = identification.work_task_id
        if self.checklist.include_work_stations:
            payload["work_station_id"] = identification.work_station_id
        if self.checklist.include_shifts:
            payload["shift_id"] = identification.shift_id
        return payload
