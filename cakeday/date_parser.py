from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from cakeday.models import SENTINEL_YEAR, ParsedDate


logger = logging.getLogger(__name__)

# Any leap year works; only used to validate month/day pairs without a year.
_LEAP_REFERENCE_YEAR = 2000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ISO_PATTERN = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})(?:T.*)?")
NO_YEAR_PATTERN = re.compile(r"--(\d{1,2})-(\d{1,2})")
COMPACT_PATTERN = re.compile(r"(\d{4})(\d{2})(\d{2})")
EPOCH_PATTERN = re.compile(r"[+-]?\d+")
DOTTED_DAY_FIRST_PATTERN = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})")
DOTTED_YEAR_FIRST_PATTERN = re.compile(r"(\d{4})\.(\d{1,2})\.(\d{1,2})")
SLASH_FULL_PATTERN = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
SLASH_SHORT_PATTERN = re.compile(r"(\d{1,2})/(\d{1,2})")


def _full_date(year: int, month: int, day: int) -> ParsedDate | None:
    try:
        date(year, month, day)
    except ValueError:
        return None
    return ParsedDate(year=year, month=month, day=day, year_known=True)


def _yearless_date(month: int, day: int) -> ParsedDate | None:
    try:
        date(_LEAP_REFERENCE_YEAR, month, day)
    except ValueError:
        return None
    return ParsedDate(year=SENTINEL_YEAR, month=month, day=day, year_known=False)


def _parse_iso(text: str) -> ParsedDate | None:
    match = ISO_PATTERN.fullmatch(text)
    if not match:
        return None
    year, month, day = (int(x) for x in match.groups())
    return _full_date(year, month, day)


def _parse_no_year(text: str) -> ParsedDate | None:
    match = NO_YEAR_PATTERN.fullmatch(text)
    if not match:
        return None
    month, day = (int(x) for x in match.groups())
    return _yearless_date(month, day)


def _parse_compact(text: str) -> ParsedDate | None:
    if len(text) != 8:
        return None
    match = COMPACT_PATTERN.fullmatch(text)
    if not match:
        return None
    year, month, day = (int(x) for x in match.groups())
    return _full_date(year, month, day)


def _parse_epoch_millis(text: str) -> ParsedDate | None:
    if not EPOCH_PATTERN.fullmatch(text):
        return None
    try:
        moment = _EPOCH + timedelta(milliseconds=int(text))
    except OverflowError:
        return None
    return ParsedDate(year=moment.year, month=moment.month, day=moment.day, year_known=True)


def _parse_dotted_day_first(text: str) -> ParsedDate | None:
    match = DOTTED_DAY_FIRST_PATTERN.fullmatch(text)
    if not match:
        return None
    day, month, year = (int(x) for x in match.groups())
    return _full_date(year, month, day)


def _parse_dotted_year_first(text: str) -> ParsedDate | None:
    match = DOTTED_YEAR_FIRST_PATTERN.fullmatch(text)
    if not match:
        return None
    year, month, day = (int(x) for x in match.groups())
    return _full_date(year, month, day)


def _parse_slash_full(day_first: bool) -> Callable[[str], ParsedDate | None]:
    def parse(text: str) -> ParsedDate | None:
        match = SLASH_FULL_PATTERN.fullmatch(text)
        if not match:
            return None
        first, second, year = (int(x) for x in match.groups())
        if day_first:
            return _full_date(year, second, first)
        return _full_date(year, first, second)

    return parse


def _parse_slash_short(day_first: bool) -> Callable[[str], ParsedDate | None]:
    def parse(text: str) -> ParsedDate | None:
        match = SLASH_SHORT_PATTERN.fullmatch(text)
        if not match:
            return None
        first, second = (int(x) for x in match.groups())
        if day_first:
            return _yearless_date(second, first)
        return _yearless_date(first, second)

    return parse


def _format_chain(prefer_day_before_month: bool) -> list[tuple[str, Callable[[str], ParsedDate | None]]]:
    chain = [
        ("yyyy-MM-dd", _parse_iso),
        ("--MM-dd", _parse_no_year),
        ("yyyyMMdd", _parse_compact),
        ("unix-millis", _parse_epoch_millis),
        ("dd.MM.yyyy", _parse_dotted_day_first),
        ("yyyy.MM.dd", _parse_dotted_year_first),
    ]
    if prefer_day_before_month:
        chain.append(("dd/MM/yyyy", _parse_slash_full(day_first=True)))
        chain.append(("dd/MM", _parse_slash_short(day_first=True)))
    else:
        chain.append(("MM/dd/yyyy", _parse_slash_full(day_first=False)))
        chain.append(("MM/dd", _parse_slash_short(day_first=False)))
    return chain


def parse_event_date(raw: str | None, prefer_day_before_month: bool = False) -> ParsedDate | None:
    """Parse a contact event date written in one of the formats address books use.

    Formats are tried in a fixed order and the first match wins. Dates without
    a year come back with ``year_known=False`` and the sentinel year. Returns
    ``None`` when nothing matches.
    """
    if raw is None:
        logger.debug("Event date string is missing")
        return None
    text = str(raw).strip()
    if not text:
        logger.debug("Event date string is empty")
        return None

    for format_name, parser in _format_chain(prefer_day_before_month):
        logger.debug("Trying to parse event date %r as %s", text, format_name)
        parsed = parser(text)
        if parsed is not None:
            logger.debug("Event date %r parsed as %s", text, parsed)
            return parsed

    logger.debug("Event date %r could not be parsed", text)
    return None
