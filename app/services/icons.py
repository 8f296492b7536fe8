"""
Closed set of icon identifiers for checklists and kanban boards.

Icons are stored by identifier and resolved through ``Icon``. Writes go
through ``validate_icon`` and reject unknown names with a 422. Reads go
through ``resolve_icon``, which maps rows saved before the set was closed
(including PascalCase component names such as "ClipboardList") onto the
enumeration and falls back to ``Icon.CLIPBOARD_LIST`` for anything else.
"""

import re
from enum import Enum

from app.core.exceptions import ValidationError


class Icon(str, Enum):
    CHECK = "check"
    CHECK_SQUARE = "check-square"
    CLIPBOARD_LIST = "clipboard-list"
    CLIPBOARD = "clipboard"
    FILE_TEXT = "file-text"
    SETTINGS = "settings"
    USERS = "users"
    CALENDAR = "calendar"
    CLOCK = "clock"
    TARGET = "target"
    TRENDING_UP = "trending-up"
    BAR_CHART_3 = "bar-chart-3"
    PIE_CHART = "pie-chart"
    ACTIVITY = "activity"
    ZAP = "zap"
    STAR = "star"
    HEART = "heart"
    SMILE = "smile"
    THUMBS_UP = "thumbs-up"
    AWARD = "award"
    SHIELD = "shield"
    WRENCH = "wrench"
    COG = "cog"
    FACTORY = "factory"
    BUILDING = "building"
    PACKAGE = "package"
    TRUCK = "truck"
    FORKLIFT = "forklift"


FALLBACK_ICON = Icon.CLIPBOARD_LIST

_BY_VALUE = {icon.value: icon for icon in Icon}


def _normalize(name: str) -> str:
    """Map "ClipboardList", "clipboard_list" or " Clipboard-List " to "clipboard-list"."""
    name = name.strip()
    name = re.sub(r"(?<=[a-z])(?=[A-Z0-9])", "-", name)
    return name.replace("_", "-").lower()


def lookup_icon(name) -> Icon | None:
    if isinstance(name, Icon):
        return name
    if not name or not isinstance(name, str):
        return None
    return _BY_VALUE.get(_normalize(name))


def validate_icon(name, field: str = "icon") -> str | None:
    """Return the canonical identifier for ``name`` or raise ValidationError.

    Empty values are allowed and stored as None (rendered with the fallback).
    """
    if name in (None, ""):
        return None
    icon = lookup_icon(name)
    if icon is None:
        raise ValidationError(
            f"Unknown icon '{name}'",
            details={field: f"must be one of: {', '.join(sorted(_BY_VALUE))}"},
        )
    return icon.value


def resolve_icon(name) -> Icon:
    return lookup_icon(name) or FALLBACK_ICON


def list_icons() -> list[str]:
    return [icon.value for icon in Icon]
