from __future__ import annotations

from cakeday.models import (
    EVENT_KIND_ANNIVERSARY,
    EVENT_KIND_BIRTHDAY,
    EVENT_KIND_CUSTOM,
    EVENT_KIND_OTHER,
    LabelsConfig,
)


JUBILEE_AGES = frozenset({18, 20, 30, 40, 50, 60, 70, 75, 80, 90, 100})
JUBILEE_ICON = "\U0001F37E"


def add_jubilee_icon(display_name: str, age: int) -> str:
    if age in JUBILEE_AGES:
        return f"{JUBILEE_ICON} {display_name}"
    return display_name


def _template_kind(kind: str, custom_label: str | None) -> str:
    if kind == EVENT_KIND_CUSTOM:
        return EVENT_KIND_CUSTOM if custom_label is not None else EVENT_KIND_OTHER
    if kind in {EVENT_KIND_BIRTHDAY, EVENT_KIND_ANNIVERSARY}:
        return kind
    return EVENT_KIND_OTHER


def format_title(
    kind: str,
    custom_label: str | None,
    display_name: str | None,
    age: int,
    include_age: bool,
    labels: LabelsConfig,
) -> str | None:
    """Build the calendar title for one occurrence, or ``None`` without a name."""
    if not display_name:
        return None
    name = add_jubilee_icon(display_name, age)
    template = labels.template(_template_kind(kind, custom_label), include_age)
    return template.format(name=name, label=custom_label or "", age=age)
