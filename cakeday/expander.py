from __future__ import annotations

import logging
from datetime import date, timedelta

from cakeday.models import (
    DISABLED_REMINDER,
    MAX_REMINDERS,
    LabelsConfig,
    LogicalEvent,
    Occurrence,
    ParsedDate,
    utc_midnight,
)
from cakeday.titles import format_title


logger = logging.getLogger(__name__)

YEARS_BACK = 3
YEARS_AHEAD = 5
# Address books such as iCloud store yearless dates with years like 1604.
MIN_DISPLAYED_YEAR = 1800


def expansion_years(current_year: int) -> range:
    return range(current_year - YEARS_BACK, current_year + YEARS_AHEAD + 1)


def enabled_reminders(reminder_minutes: list[int] | None) -> list[int]:
    if not reminder_minutes:
        return []
    return [m for m in reminder_minutes[:MAX_REMINDERS] if m != DISABLED_REMINDER]


def occurrence_date(parsed: ParsedDate, year: int) -> date:
    try:
        return date(year, parsed.month, parsed.day)
    except ValueError:
        # Feb 29 in a non-leap year falls on Mar 1.
        return date(year, parsed.month, 28) + timedelta(days=parsed.day - 28)


def expand_event(
    event: LogicalEvent,
    parsed: ParsedDate,
    current_year: int,
    reminder_minutes: list[int] | None,
    labels: LabelsConfig,
) -> list[Occurrence]:
    """Materialize one logical event for every year of the sync window."""
    has_year = parsed.year_known and parsed.year >= MIN_DISPLAYED_YEAR
    reminders = enabled_reminders(reminder_minutes)
    occurrences: list[Occurrence] = []
    for year in expansion_years(current_year):
        age = year - parsed.year
        include_age = has_year and age >= 0
        title = format_title(event.kind, event.label, event.display_name, age, include_age, labels)
        if title is None:
            logger.debug("No title for %r in %d, occurrence skipped", event.identity_key, year)
            continue
        # All-day events are anchored at UTC midnight regardless of local zone.
        start = utc_midnight(occurrence_date(parsed, year))
        occurrences.append(
            Occurrence(
                start=start,
                end=start + timedelta(days=1),
                title=title,
                lookup_key=event.record.lookup_key,
                reminder_minutes=list(reminders),
            )
        )
    return occurrences
