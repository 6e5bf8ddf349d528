from __future__ import annotations

import logging
import re
import uuid
from datetime import timedelta
from typing import Any

import caldav
from caldav.lib import error as dav_error
from icalendar import Alarm as ICAlarm
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from cakeday.models import (
    OPERATION_INSERT_EVENT,
    OPERATION_INSERT_REMINDER,
    CalDAVConfig,
    CalendarInfo,
    Occurrence,
    Operation,
)


logger = logging.getLogger(__name__)

LOOKUP_KEY_PROPERTY = "X-CAKEDAY-LOOKUP-KEY"


class CalendarResolutionError(RuntimeError):
    pass


class AuthorizationRevoked(RuntimeError):
    pass


def _normalize_calendar_id(value: str) -> str:
    return str(value or "").strip().rstrip("/")


def _normalize_calendar_name(value: str) -> str:
    collapsed = re.sub(r"\s+", " ", str(value or "").strip())
    return collapsed.casefold()


def build_vevent(occurrence: Occurrence) -> ICEvent:
    vevent = ICEvent()
    vevent.add("UID", f"{uuid.uuid4().hex}@cakeday")
    vevent.add("SUMMARY", occurrence.title)
    # All-day: DATE values, one full day long.
    vevent.add("DTSTART", occurrence.start.date())
    vevent.add("DTEND", occurrence.end.date())
    vevent.add("STATUS", "CONFIRMED")
    vevent.add("TRANSP", "TRANSPARENT")
    if occurrence.lookup_key:
        vevent.add(LOOKUP_KEY_PROPERTY, occurrence.lookup_key)
    return vevent


def build_alarm(minutes: int, description: str) -> ICAlarm:
    alarm = ICAlarm()
    alarm.add("ACTION", "DISPLAY")
    alarm.add("DESCRIPTION", description)
    alarm.add("TRIGGER", timedelta(minutes=-minutes))
    return alarm


def resolve_chunk(chunk: list[Operation]) -> list[tuple[str, ICEvent]]:
    """Attach every reminder to the event its back-reference points at.

    Back-references are indexes into this chunk only and must point at an
    event insert placed before the reminder.
    """
    vevents: dict[int, tuple[str, ICEvent]] = {}
    for index, operation in enumerate(chunk):
        if operation.kind == OPERATION_INSERT_EVENT:
            if operation.occurrence is None:
                raise ValueError(f"Event insert at {index} has no occurrence")
            vevents[index] = (operation.calendar_id, build_vevent(operation.occurrence))
        elif operation.kind == OPERATION_INSERT_REMINDER:
            owner = vevents.get(operation.back_reference if operation.back_reference is not None else -1)
            if owner is None or operation.back_reference >= index:
                raise ValueError(f"Reminder at {index} has invalid back-reference {operation.back_reference}")
            vevent = owner[1]
            vevent.add_component(build_alarm(int(operation.minutes or 0), str(vevent.get("SUMMARY", ""))))
        else:
            raise ValueError(f"Unknown operation kind: {operation.kind}")
    return [vevents[index] for index in sorted(vevents)]


def _to_ical(vevent: ICEvent) -> str:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", "-//Cakeday//Birthday Calendar//EN")
    calendar_obj.add("VERSION", "2.0")
    calendar_obj.add_component(vevent)
    return calendar_obj.to_ical().decode("utf-8")


class CalDAVService:
    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar_cache: dict[str, Any] = {}

    def _connect(self) -> None:
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise RuntimeError("CalDAV config is incomplete.")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        try:
            self._principal = self._client.principal()
        except dav_error.AuthorizationError as exc:
            raise AuthorizationRevoked(f"CalDAV access denied: {exc}") from exc

    def list_calendars(self) -> list[CalendarInfo]:
        self._connect()
        self._calendar_cache = {}
        calendars: list[CalendarInfo] = []
        for calendar in self._principal.calendars():
            calendar_id = str(calendar.url)
            name = getattr(calendar, "name", "") or calendar_id
            self._calendar_cache[calendar_id] = calendar
            calendars.append(CalendarInfo(calendar_id=calendar_id, name=name, url=calendar_id))
        return calendars

    def _get_calendar(self, calendar_id: str) -> Any:
        if calendar_id in self._calendar_cache:
            return self._calendar_cache[calendar_id]
        for calendar in self._principal.calendars():
            cid = str(calendar.url)
            self._calendar_cache[cid] = calendar
        if calendar_id not in self._calendar_cache:
            raise RuntimeError(f"Calendar not found: {calendar_id}")
        return self._calendar_cache[calendar_id]

    def _find_calendar(self, calendars: list[CalendarInfo], calendar_id: str, calendar_name: str) -> CalendarInfo | None:
        calendar_id_norm = _normalize_calendar_id(calendar_id)
        if calendar_id_norm:
            for info in calendars:
                if _normalize_calendar_id(info.calendar_id) == calendar_id_norm:
                    return info
        calendar_name_norm = _normalize_calendar_name(calendar_name)
        if calendar_name_norm:
            same_name = [info for info in calendars if _normalize_calendar_name(info.name) == calendar_name_norm]
            if same_name:
                same_name.sort(key=lambda item: item.calendar_id)
                return same_name[0]
        return None

    def resolve_or_create_calendar(self, calendar_id: str, calendar_name: str) -> CalendarInfo:
        try:
            self._connect()
            existing = self._find_calendar(self.list_calendars(), calendar_id, calendar_name)
            if existing is not None:
                return existing

            logger.info("Creating calendar %r", calendar_name)
            calendar = self._principal.make_calendar(name=calendar_name)
            created_id = str(calendar.url)
            self._calendar_cache[created_id] = calendar

            created = self._find_calendar(self.list_calendars(), created_id, calendar_name)
        except dav_error.AuthorizationError as exc:
            raise AuthorizationRevoked(f"CalDAV access denied: {exc}") from exc
        except dav_error.DAVError as exc:
            raise CalendarResolutionError(f"Unable to resolve calendar {calendar_name!r}: {exc}") from exc
        if created is None:
            raise CalendarResolutionError(f"Calendar {calendar_name!r} missing after creation")
        return created

    def delete_events(self, calendar_id: str) -> int:
        self._connect()
        try:
            calendar = self._get_calendar(calendar_id)
            deleted = 0
            for resource in calendar.events():
                resource.delete()
                deleted += 1
        except dav_error.AuthorizationError as exc:
            raise AuthorizationRevoked(f"CalDAV access denied: {exc}") from exc
        return deleted

    def _rollback(self, saved: list[Any]) -> None:
        for resource in reversed(saved):
            if resource is None:
                continue
            try:
                resource.delete()
            except (dav_error.DAVError, OSError) as exc:
                logger.warning("Rollback could not delete %s: %s", getattr(resource, "url", resource), exc)

    def apply_operations(self, chunk: list[Operation]) -> bool:
        """Save every event of one chunk, or none of them.

        Resources saved before a failure are deleted again and the chunk is
        reported as not applied.
        """
        self._connect()
        try:
            resolved = resolve_chunk(chunk)
        except ValueError as exc:
            logger.error("Rejected operation chunk: %s", exc)
            return False

        saved: list[Any] = []
        try:
            for calendar_id, vevent in resolved:
                calendar = self._get_calendar(calendar_id)
                saved.append(calendar.save_event(_to_ical(vevent)))
        except dav_error.AuthorizationError as exc:
            raise AuthorizationRevoked(f"CalDAV access denied: {exc}") from exc
        # Transport errors from the HTTP layer are OSError subclasses.
        except (dav_error.DAVError, RuntimeError, OSError) as exc:
            logger.error("Applying operation chunk failed after %d of %d events: %s", len(saved), len(resolved), exc)
            self._rollback(saved)
            return False
        return True
