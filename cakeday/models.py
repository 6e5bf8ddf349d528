from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any


EVENT_KIND_BIRTHDAY = "birthday"
EVENT_KIND_ANNIVERSARY = "anniversary"
EVENT_KIND_CUSTOM = "custom"
EVENT_KIND_OTHER = "other"
EVENT_KINDS = (EVENT_KIND_BIRTHDAY, EVENT_KIND_ANNIVERSARY, EVENT_KIND_CUSTOM, EVENT_KIND_OTHER)

# Placeholder year for dates stored without one; never shown as an age.
SENTINEL_YEAR = 1700
DISABLED_REMINDER = -1
MAX_REMINDERS = 3

OPERATION_INSERT_EVENT = "insert_event"
OPERATION_INSERT_REMINDER = "insert_reminder"

DEFAULT_CALENDAR_NAME = "Birthdays"
DEFAULT_INTERVAL_SECONDS = 3600
MIN_INTERVAL_SECONDS = 60
DEFAULT_REMINDER_MINUTES = [DISABLED_REMINDER, DISABLED_REMINDER, DISABLED_REMINDER]
DEFAULT_LABELS = {
    "birthday": "{name}'s birthday",
    "birthday_with_age": "{name}'s birthday ({age})",
    "anniversary": "{name}'s anniversary",
    "anniversary_with_age": "{name}'s anniversary ({age})",
    "custom": "{name}: {label}",
    "custom_with_age": "{name}: {label} ({age})",
    "other": "{name}'s event",
    "other_with_age": "{name}'s event ({age})",
}


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def utc_midnight(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _valid_template(template: str) -> bool:
    try:
        template.format(name="Ada", label="Name day", age=30)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError):
        return False
    return True


def _coerce_minutes(value: Any) -> int:
    minutes = _coerce_int(value, DISABLED_REMINDER)
    if minutes < 0:
        return DISABLED_REMINDER
    return minutes


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
        )


@dataclass
class CalendarConfig:
    calendar_id: str = ""
    calendar_name: str = DEFAULT_CALENDAR_NAME

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(
            calendar_id=str(data.get("calendar_id", "")).strip(),
            calendar_name=str(data.get("calendar_name", DEFAULT_CALENDAR_NAME)).strip()
            or DEFAULT_CALENDAR_NAME,
        )


@dataclass
class ContactSourceConfig:
    path: str = ""
    account_name: str = ""
    account_type: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ContactSourceConfig":
        data = data or {}
        return cls(
            path=str(data.get("path", "")).strip(),
            account_name=str(data.get("account_name", "") or "").strip(),
            account_type=str(data.get("account_type", "") or "").strip(),
        )


@dataclass
class ContactsConfig:
    sources: list[ContactSourceConfig] = field(default_factory=list)
    blacklisted_accounts: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ContactsConfig":
        data = data or {}
        sources = []
        for item in data.get("sources", []) or []:
            if not isinstance(item, dict):
                continue
            source = ContactSourceConfig.from_dict(item)
            if source.path:
                sources.append(source)
        blacklisted: list[dict[str, str]] = []
        for item in data.get("blacklisted_accounts", []) or []:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name", "") or "").strip()
            account_type = str(item.get("type", "") or "").strip()
            if name and account_type:
                blacklisted.append({"name": name, "type": account_type})
        return cls(sources=sources, blacklisted_accounts=blacklisted)


@dataclass
class SyncConfig:
    enabled: bool = True
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    prefer_day_before_month: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            interval_seconds=max(
                MIN_INTERVAL_SECONDS,
                _coerce_int(data.get("interval_seconds"), DEFAULT_INTERVAL_SECONDS),
            ),
            prefer_day_before_month=bool(data.get("prefer_day_before_month", False)),
        )


@dataclass
class ReminderConfig:
    minutes: list[int] = field(default_factory=lambda: list(DEFAULT_REMINDER_MINUTES))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ReminderConfig":
        data = data or {}
        raw = data.get("minutes", DEFAULT_REMINDER_MINUTES)
        if not isinstance(raw, list):
            raw = DEFAULT_REMINDER_MINUTES
        minutes = [_coerce_minutes(x) for x in raw[:MAX_REMINDERS]]
        minutes.extend([DISABLED_REMINDER] * (MAX_REMINDERS - len(minutes)))
        return cls(minutes=minutes)

    def offsets(self) -> list[int]:
        return list(self.minutes)


@dataclass
class LabelsConfig:
    birthday: str = DEFAULT_LABELS["birthday"]
    birthday_with_age: str = DEFAULT_LABELS["birthday_with_age"]
    anniversary: str = DEFAULT_LABELS["anniversary"]
    anniversary_with_age: str = DEFAULT_LABELS["anniversary_with_age"]
    custom: str = DEFAULT_LABELS["custom"]
    custom_with_age: str = DEFAULT_LABELS["custom_with_age"]
    other: str = DEFAULT_LABELS["other"]
    other_with_age: str = DEFAULT_LABELS["other_with_age"]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LabelsConfig":
        data = data or {}
        values = {}
        for key, default in DEFAULT_LABELS.items():
            template = str(data.get(key, default) or "").strip()
            # Templates may only use {name}, {label} and {age}.
            values[key] = template if template and _valid_template(template) else default
        return cls(**values)

    def template(self, kind: str, include_age: bool) -> str:
        if kind not in EVENT_KINDS:
            kind = EVENT_KIND_OTHER
        key = f"{kind}_with_age" if include_age else kind
        return getattr(self, key)


@dataclass
class AppConfig:
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    contacts: ContactsConfig = field(default_factory=ContactsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    labels: LabelsConfig = field(default_factory=LabelsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            contacts=ContactsConfig.from_dict(data.get("contacts")),
            sync=SyncConfig.from_dict(data.get("sync")),
            reminders=ReminderConfig.from_dict(data.get("reminders")),
            labels=LabelsConfig.from_dict(data.get("labels")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass(frozen=True)
class Account:
    name: str
    type: str


@dataclass(frozen=True)
class RawEventRecord:
    account: Account | None
    display_name: str | None
    lookup_key: str | None
    kind: str
    label: str | None = None
    date_string: str | None = None


@dataclass(frozen=True)
class LogicalEvent:
    record: RawEventRecord

    @property
    def identity_key(self) -> tuple[str | None, str, str | None]:
        # Same event can carry differently formatted dates per account.
        return (self.record.lookup_key, self.record.kind, self.record.label)

    @property
    def display_name(self) -> str | None:
        return self.record.display_name

    @property
    def kind(self) -> str:
        return self.record.kind

    @property
    def label(self) -> str | None:
        return self.record.label


@dataclass(frozen=True)
class ParsedDate:
    year: int
    month: int
    day: int
    year_known: bool = True


@dataclass
class Occurrence:
    start: datetime
    end: datetime
    title: str
    lookup_key: str | None = None
    reminder_minutes: list[int] = field(default_factory=list)


@dataclass
class Operation:
    kind: str
    calendar_id: str = ""
    occurrence: Occurrence | None = None
    minutes: int | None = None
    back_reference: int | None = None

    @classmethod
    def insert_event(cls, calendar_id: str, occurrence: Occurrence) -> "Operation":
        return cls(kind=OPERATION_INSERT_EVENT, calendar_id=calendar_id, occurrence=occurrence)

    @classmethod
    def insert_reminder(cls, minutes: int, back_reference: int) -> "Operation":
        return cls(kind=OPERATION_INSERT_REMINDER, minutes=minutes, back_reference=back_reference)


@dataclass
class CalendarInfo:
    calendar_id: str
    name: str
    url: str


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    trigger: str
    logical_events: int = 0
    events_inserted: int = 0
    reminders_inserted: int = 0
    events_deleted: int = 0
    chunks_failed: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "trigger": self.trigger,
            "logical_events": self.logical_events,
            "events_inserted": self.events_inserted,
            "reminders_inserted": self.reminders_inserted,
            "events_deleted": self.events_deleted,
            "chunks_failed": self.chunks_failed,
            "run_at": serialize_datetime(self.run_at),
        }
