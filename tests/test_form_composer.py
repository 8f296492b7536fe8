"""Form composer unit tests.

Pure tests: schemas are built as in-memory snapshots, no database.

Coverage:
  1. Identification fields follow the checklist's include_* flags
  2. Work-station rules (required only for tasks with stations, options per task)
  3. Work-task scoping of questions
  4. Step order and per-step validation messages
  5. Payload materialisation
"""

import pytest

from app.core.exceptions import NotFoundError
from app.services.form_composer import (
    CATEGORY_STEP,
    IDENTIFICATION_STEP,
    CategorySpec,
    ChecklistSchema,
    ChecklistSpec,
    FormComposer,
    Identification,
    QuestionSpec,
    RequestContext,
    ShiftSpec,
    WorkStationSpec,
    WorkTaskSpec,
    truncate_label,
)

CTX = RequestContext(tenant_id=1, user_id=7, roles=("user",), user_name="Olle Operator")


def _schema(include_work_tasks=True, include_work_stations=True, include_shifts=True,
            questions=None, categories=None, work_tasks=None, work_stations=None):
    return ChecklistSchema(
        tenant_id=1,
        checklist=ChecklistSpec(
            id=3,
            name="Daily round",
            include_work_tasks=include_work_tasks,
            include_work_stations=include_work_stations,
            include_shifts=include_shifts,
        ),
        categories=tuple(categories if categories is not None else (
            CategorySpec(id=10, name="Safety", order=0),
            CategorySpec(id=11, name="Quality", order=1),
        )),
        questions=tuple(questions if questions is not None else (
            QuestionSpec(id=12, category_id=10, text="Exits clear?", type="yes_no", is_required=True),
            QuestionSpec(id=15, category_id=11, text="Condition", type="stars"),
            QuestionSpec(id=16, category_id=11, text="Torque", type="number", order=1,
                         work_task_ids=frozenset({1})),
        )),
        work_tasks=tuple(work_tasks if work_tasks is not None else (
            WorkTaskSpec(id=1, name="Assembly", has_stations=True),
            WorkTaskSpec(id=2, name="Warehouse", has_stations=False),
        )),
        work_stations=tuple(work_stations if work_stations is not None else (
            WorkStationSpec(id=5, name="Line 1", work_task_id=1),
            WorkStationSpec(id=6, name="Line 2", work_task_id=1),
            WorkStationSpec(id=7, name="Dock", work_task_id=2),
        )),
        shifts=(ShiftSpec(id=20, name="Day"), ShiftSpec(id=21, name="Night")),
    )


def _field(composer, ident, name):
    return next((f for f in composer.identification_fields(ident) if f.name == name), None)


# ── Identification ───────────────────────────────────────────────────────────


class TestIdentification:
    @pytest.mark.parametrize("tasks,stations", [(True, True), (True, False), (False, True), (False, False)])
    def test_shift_never_required_when_shifts_excluded(self, tasks, stations):
        composer = FormComposer(_schema(tasks, stations, include_shifts=False), CTX)
        ident = Identification(work_task_id=2 if tasks else None, work_station_id=None, shift_id=None)

        assert _field(composer, ident, "shift_id") is None
        result = composer.validate_identification(ident)
        assert "Shift" not in result.missing

    def test_all_dimensions_required_when_enabled(self):
        composer = FormComposer(_schema(), CTX)
        result = composer.validate_identification(Identification())
        assert result.missing == ("Work task", "Shift")  # station not required until a task is chosen
        assert result.message.startswith("Please fill in the required fields")

    def test_station_required_only_for_task_with_stations(self):
        composer = FormComposer(_schema(), CTX)
        assert composer.station_required(Identification(work_task_id=1))
        assert not composer.station_required(Identification(work_task_id=2))

        result = composer.validate_identification(Identification(work_task_id=1, shift_id=20))
        assert result.missing == ("Work station",)

    def test_station_options_follow_selected_task(self):
        composer = FormComposer(_schema(), CTX)
        assert composer.station_options(None) == []
        assert [s.id for s in composer.station_options(1)] == [5, 6]
        assert [s.id for s in composer.station_options(2)] == [7]

    def test_all_stations_offered_without_work_tasks(self):
        composer = FormComposer(_schema(include_work_tasks=False), CTX)
        assert [s.id for s in composer.station_options(None)] == [5, 6, 7]
        assert composer.station_required(Identification())

    def test_station_from_other_task_is_invalid(self):
        composer = FormComposer(_schema(), CTX)
        result = composer.validate_identification(Identification(work_task_id=1, work_station_id=7, shift_id=20))
        assert not result.ok
        assert "work_station_id" in result.errors

    def test_cross_tenant_schema_rejected(self):
        with pytest.raises(NotFoundError):
            FormComposer(_schema(), RequestContext(tenant_id=2))


# ── Scoping & steps ──────────────────────────────────────────────────────────


class TestScopingAndSteps:
    @pytest.mark.parametrize("work_task_id", [None, 1, 2])
    def test_unscoped_questions_always_present(self, work_task_id):
        composer = FormComposer(_schema(), CTX)
        ids = [q.id for q in composer.applicable_questions(11, work_task_id)]
        assert 15 in ids

    def test_scoped_question_only_for_its_task(self):
        composer = FormComposer(_schema(), CTX)
        assert [q.id for q in composer.applicable_questions(11, 1)] == [15, 16]
        assert [q.id for q in composer.applicable_questions(11, 2)] == [15]
        assert [q.id for q in composer.applicable_questions(11, None)] == [15]

    def test_applicable_questions_is_lazy_and_restartable(self):
        composer = FormComposer(_schema(), CTX)
        gen = composer.applicable_questions(11, 1)
        assert next(gen).id == 15
        # A fresh call starts over
        assert [q.id for q in composer.applicable_questions(11, 1)] == [15, 16]

    def test_step_layout(self):
        composer = FormComposer(_schema(), CTX)
        steps = composer.steps(Identification(work_task_id=1))
        assert [(s.index, s.kind, s.title) for s in steps] == [
            (0, IDENTIFICATION_STEP, "Daily round"),
            (1, CATEGORY_STEP, "Safety"),
            (2, CATEGORY_STEP, "Quality"),
        ]

    def test_category_without_applicable_questions_skipped(self):
        schema = _schema(questions=(
            QuestionSpec(id=12, category_id=10, text="Exits", type="yes_no"),
            QuestionSpec(id=16, category_id=11, text="Torque", type="number", work_task_ids=frozenset({1})),
        ))
        composer = FormComposer(schema, CTX)
        assert [s.title for s in composer.steps(Identification(work_task_id=2))] == ["Daily round", "Safety"]
        assert len(composer.steps(Identification(work_task_id=1))) == 3

    def test_categories_ordered_by_order_then_id(self):
        schema = _schema(categories=(
            CategorySpec(id=11, name="Quality", order=0),
            CategorySpec(id=10, name="Safety", order=0),
        ))
        composer = FormComposer(schema, CTX)
        assert [c.id for c in composer.ordered_categories()] == [10, 11]


# ── Validation ───────────────────────────────────────────────────────────────


class TestStepValidation:
    def test_two_category_scenario(self):
        """Required text in A blocks step 1; filling it lets the wizard reach step 2 and submit."""
        schema = _schema(
            include_work_tasks=False, include_work_stations=False, include_shifts=False,
            questions=(
                QuestionSpec(id=30, category_id=10, text="Describe the findings of the round", type="text",
                             is_required=True),
                QuestionSpec(id=31, category_id=11, text="Temperature", type="number"),
            ),
        )
        composer = FormComposer(schema, CTX)
        ident = Identification()
        answers = {}

        blocked = composer.validate_step(1, ident, answers)
        assert not blocked.ok
        assert blocked.missing == ("Describe the findings of the r...",)
        assert "Describe the findings" in blocked.message

        answers["30"] = "All good"
        assert composer.validate_step(1, ident, answers).ok
        assert composer.validate_step(2, ident, answers).ok
        assert composer.validate_all(ident, answers) == []

        payload = composer.build_payload(ident, answers)
        assert payload["is_completed"] is True
        assert payload["responses"] == {"30": "All good"}

    @pytest.mark.parametrize("value,ok", [
        (None, False), ("", False), ("   ", False), ([], False),
        (False, True), (0, True), ("x", True), (["a"], True),
    ])
    def test_emptiness_rules(self, value, ok):
        composer = FormComposer(_schema(), CTX)
        result = composer.validate_step(1, Identification(work_task_id=2), {"12": value})
        assert result.ok is ok

    def test_filtered_out_required_question_exempt(self):
        schema = _schema(questions=(
            QuestionSpec(id=12, category_id=10, text="Exits", type="yes_no"),
            QuestionSpec(id=16, category_id=11, text="Torque", type="number", is_required=True,
                         work_task_ids=frozenset({1})),
            QuestionSpec(id=17, category_id=11, text="Notes", type="text"),
        ))
        composer = FormComposer(schema, CTX)
        ident = Identification(work_task_id=2, shift_id=20)
        assert composer.validate_all(ident, {}) == []

    def test_validate_step_out_of_range(self):
        composer = FormComposer(_schema(), CTX)
        with pytest.raises(IndexError):
            composer.validate_step(9, Identification(), {})

    def test_truncate_label(self):
        assert truncate_label("short") == "short"
        assert truncate_label("x" * 31) == "x" * 30 + "..."
        assert truncate_label("x" * 30) == "x" * 30


# ── Payload ──────────────────────────────────────────────────────────────────


class TestBuildPayload:
    def test_only_enabled_identification_fields(self):
        composer = FormComposer(_schema(include_work_stations=False, include_shifts=False), CTX)
        payload = composer.build_payload(Identification(work_task_id=2, work_station_id=7, shift_id=20), {})
        assert payload["work_task_id"] == 2
        assert "work_station_id" not in payload
        assert "shift_id" not in payload

    def test_responses_restricted_to_applicable_questions(self):
        composer = FormComposer(_schema(), CTX)
        answers = {"12": True, "15": 4, "16": 35}
        payload = composer.build_payload(Identification(work_task_id=2), answers)
        assert payload["responses"] == {"12": True, "15": 4}

    def test_operator_name_defaults_to_context_user(self):
        composer = FormComposer(_schema(), CTX)
        assert composer.build_payload(Identification(), {})["operator_name"] == "Olle Operator"
        named = composer.build_payload(Identification(operator_name="Kim"), {})
        assert named["operator_name"] == "Kim"

    def test_schema_dict_roundtrip(self):
        schema = _schema()
        assert ChecklistSchema.from_dict(schema.to_dict()) == schema
