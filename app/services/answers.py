"""
Typed answers — the boundary between untyped JSON and stored responses.

Every incoming value is parsed into one variant of ``Answer`` according to
the declared question (or custom field) type before it is accepted:

    text, textarea          → TextAnswer(str)
    number                  → NumberAnswer(int | float)   honours validation min/max
    stars, mood             → RatingAnswer(int 1..5)
    yes_no, checkbox        → BooleanAnswer(bool)
    select                  → ChoiceAnswer(str)            must be one of options
    multiselect             → MultiChoiceAnswer(tuple[str]) each one of options
    date                    → DateAnswer(date)

Empty input (None, "", whitespace, []) parses to None, meaning "unanswered".
``to_json()`` yields the value persisted in ChecklistResponse.responses, so
a stored ``True`` or ``4`` comes back with the same type and value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Union

from app.core.exceptions import ValidationError
from app.utils.helpers import parse_date

RATING_MIN = 1
RATING_MAX = 5

_TRUE_STRINGS = frozenset({"true", "yes", "1", "on"})
_FALSE_STRINGS = frozenset({"false", "no", "0", "off"})


@dataclass(frozen=True)
class TextAnswer:
    kind: ClassVar[str] = "text"
    value: str

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class NumberAnswer:
    kind: ClassVar[str] = "number"
    value: int | float

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class RatingAnswer:
    kind: ClassVar[str] = "rating"
    value: int

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class BooleanAnswer:
    kind: ClassVar[str] = "boolean"
    value: bool

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class ChoiceAnswer:
    kind: ClassVar[str] = "choice"
    value: str

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class MultiChoiceAnswer:
    kind: ClassVar[str] = "multi_choice"
    value: tuple[str, ...]

    def to_json(self):
        return list(self.value)


@dataclass(frozen=True)
class DateAnswer:
    kind: ClassVar[str] = "date"
    value: date

    def to_json(self):
        return self.value.isoformat()


Answer = Union[
    TextAnswer,
    NumberAnswer,
    RatingAnswer,
    BooleanAnswer,
    ChoiceAnswer,
    MultiChoiceAnswer,
    DateAnswer,
]

BOOLEAN_TYPES = frozenset({"yes_no", "checkbox"})
RATING_TYPES = frozenset({"stars", "mood"})
NUMERIC_TYPES = frozenset({"number"}) | RATING_TYPES


def is_empty(value) -> bool:
    """None, blank strings and empty lists are unanswered; False and 0 are answers."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


# ── Per-type coercion ────────────────────────────────────────────────────


def _fail(label: str, message: str):
    raise ValidationError(f"{label}: {message}", details={label: message})


def _to_number(raw, label):
    if isinstance(raw, bool):
        _fail(label, "expected a number, got a boolean")
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            _fail(label, f"'{raw}' is not a finite number")
        return raw
    if isinstance(raw, str):
        text = raw.strip().replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            _fail(label, f"'{raw}' is not a number")
        if not math.isfinite(number):
            _fail(label, f"'{raw}' is not a finite number")
        return int(number) if number.is_integer() and "." not in text else number
    _fail(label, f"expected a number, got {type(raw).__name__}")


def _to_bool(raw, label):
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    _fail(label, f"expected true/false, got {raw!r}")


def _to_text(raw, label):
    if isinstance(raw, bool) or isinstance(raw, (list, dict)):
        _fail(label, f"expected text, got {type(raw).__name__}")
    return str(raw)


def _check_bounds(number, validation, label):
    validation = validation or {}
    lo = validation.get("min")
    hi = validation.get("max")
    if lo is not None and number < lo:
        _fail(label, f"must be at least {lo}")
    if hi is not None and number > hi:
        _fail(label, f"must be at most {hi}")


def _check_option(choice, options, label):
    if options and choice not in options:
        _fail(label, f"'{choice}' is not one of the allowed options")


def parse_answer(
    question_type: str,
    raw,
    *,
    options: list[str] | None = None,
    validation: dict | None = None,
    label: str = "value",
) -> Answer | None:
    """Parse ``raw`` into the Answer variant for ``question_type``.

    Returns None for empty input. Raises ValidationError when the value
    does not fit the declared type, options or bounds.
    """
    if is_empty(raw):
        return None

    if question_type in ("text", "textarea"):
        return TextAnswer(_to_text(raw, label))

    if question_type == "number":
        number = _to_number(raw, label)
        _check_bounds(number, validation, label)
        return NumberAnswer(number)

    if question_type in RATING_TYPES:
        number = _to_number(raw, label)
        if number != int(number) or not RATING_MIN <= number <= RATING_MAX:
            _fail(label, f"rating must be a whole number from {RATING_MIN} to {RATING_MAX}")
        return RatingAnswer(int(number))

    if question_type in BOOLEAN_TYPES:
        return BooleanAnswer(_to_bool(raw, label))

    if question_type == "select":
        choice = _to_text(raw, label)
        _check_option(choice, options, label)
        return ChoiceAnswer(choice)

    if question_type == "multiselect":
        items = raw if isinstance(raw, (list, tuple)) else [raw]
        choices = tuple(_to_text(item, label) for item in items)
        for choice in choices:
            _check_option(choice, options, label)
        return MultiChoiceAnswer(choices)

    if question_type == "date":
        parsed = parse_date(raw) if isinstance(raw, (str, date)) else None
        if parsed is None:
            _fail(label, f"'{raw}' is not a valid date")
        return DateAnswer(parsed)

    _fail(label, f"unsupported question type '{question_type}'")


def numeric_value(raw):
    """Best-effort float for aggregation; None when the stored value is not numeric."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw.strip().replace(",", "."))
        except ValueError:
            return None
    return None
