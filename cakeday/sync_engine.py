from __future__ import annotations

import logging
import traceback
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Iterator

from cakeday.batch import BatchPlanner, PlanStats
from cakeday.caldav_client import AuthorizationRevoked, CalDAVService, CalendarResolutionError
from cakeday.config_manager import ConfigManager
from cakeday.contacts_store import VCardContactStore
from cakeday.date_parser import parse_event_date
from cakeday.dedup import dedupe_events
from cakeday.expander import expand_event
from cakeday.models import (
    AppConfig,
    LabelsConfig,
    LogicalEvent,
    Occurrence,
    Operation,
    ParsedDate,
    SyncResult,
)
from cakeday.state_store import StateStore


logger = logging.getLogger(__name__)


def parse_logical_events(
    events: Iterable[LogicalEvent], prefer_day_before_month: bool
) -> tuple[list[tuple[LogicalEvent, ParsedDate]], int]:
    parsed_events: list[tuple[LogicalEvent, ParsedDate]] = []
    unparseable = 0
    for event in events:
        parsed = parse_event_date(event.record.date_string, prefer_day_before_month)
        if parsed is None:
            unparseable += 1
            continue
        parsed_events.append((event, parsed))
    return parsed_events, unparseable


def iter_occurrences(
    parsed_events: Iterable[tuple[LogicalEvent, ParsedDate]],
    current_year: int,
    reminder_minutes: list[int],
    labels: LabelsConfig,
) -> Iterator[Occurrence]:
    for event, parsed in parsed_events:
        yield from expand_event(event, parsed, current_year, reminder_minutes, labels)


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self._today = today or date.today

    def _finish(
        self,
        *,
        run_id: int,
        started_at: datetime,
        status: str,
        message: str,
        trigger: str,
        counters: dict[str, int] | None = None,
    ) -> SyncResult:
        counters = counters or {}
        duration_ms = int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)
        self.state_store.finish_sync_run(
            run_id=run_id,
            status=status,
            message=message,
            duration_ms=duration_ms,
            counters=counters,
        )
        return SyncResult(
            status=status,
            message=message,
            duration_ms=duration_ms,
            trigger=trigger,
            logical_events=counters.get("logical_events", 0),
            events_inserted=counters.get("events_inserted", 0),
            reminders_inserted=counters.get("reminders_inserted", 0),
            events_deleted=counters.get("events_deleted", 0),
            chunks_failed=counters.get("chunks_failed", 0),
        )

    def run_once(self, trigger: str = "manual") -> SyncResult:
        started_at = datetime.now(timezone.utc)
        run_id = self.state_store.start_sync_run(trigger=trigger)
        try:
            config = self.config_manager.load()
        except Exception as exc:
            message = f"Unable to load config: {type(exc).__name__}: {exc}"
            logger.exception("Unable to load config")
            return self._finish(run_id=run_id, started_at=started_at, status="error", message=message, trigger=trigger)

        if not config.caldav.base_url or not config.caldav.username:
            message = "CalDAV config missing base_url/username. Sync skipped."
            logger.info(message)
            return self._finish(run_id=run_id, started_at=started_at, status="skipped", message=message, trigger=trigger)
        if not config.sync.enabled:
            message = "Sync is disabled."
            logger.info(message)
            return self._finish(run_id=run_id, started_at=started_at, status="skipped", message=message, trigger=trigger)

        counters: dict[str, int] = {}
        calendar_id = config.calendar.calendar_id or "unresolved"
        try:
            caldav_service = CalDAVService(config.caldav)
            contact_store = VCardContactStore(config.contacts)

            try:
                calendar = caldav_service.resolve_or_create_calendar(
                    config.calendar.calendar_id,
                    config.calendar.calendar_name,
                )
            except CalendarResolutionError as exc:
                message = f"Unable to resolve calendar: {exc}"
                logger.error(message)
                self.state_store.record_audit_event(
                    calendar_id=calendar_id,
                    action="calendar_resolution_failed",
                    details={"trigger": trigger, "error": str(exc)},
                    run_id=run_id,
                )
                return self._finish(
                    run_id=run_id, started_at=started_at, status="error", message=message, trigger=trigger
                )
            calendar_id = calendar.calendar_id
            if config.calendar.calendar_id != calendar_id:
                self.config_manager.set_calendar_id(calendar_id)

            # Output is rebuilt from scratch on every pass.
            counters["events_deleted"] = caldav_service.delete_events(calendar_id)
            logger.info("Deleted %d prior events from %s", counters["events_deleted"], calendar_id)

            records = contact_store.query_event_records()
            blacklist = contact_store.query_blacklisted_accounts()
            events = dedupe_events(records, blacklist)
            counters["logical_events"] = len(events)

            stats = self._expand_and_plan(config, events, caldav_service, calendar_id, run_id, trigger)
            counters["events_inserted"] = stats.events_applied
            counters["reminders_inserted"] = stats.reminders_applied
            counters["chunks_failed"] = stats.chunks_failed

            message = (
                f"Synced {len(events)} contact events from {len(records)} records: "
                f"{stats.events_applied} events, {stats.reminders_applied} reminders, "
                f"{stats.chunks_failed} failed chunks."
            )
            logger.info(message)
            return self._finish(
                run_id=run_id,
                started_at=started_at,
                status="success",
                message=message,
                trigger=trigger,
                counters=counters,
            )
        except AuthorizationRevoked as exc:
            message = f"Access revoked, sync identity removed: {exc}"
            logger.error(message)
            self.config_manager.teardown_sync_identity()
            self.state_store.record_audit_event(
                calendar_id=calendar_id,
                action="authorization_revoked",
                details={"trigger": trigger, "error": str(exc)},
                run_id=run_id,
            )
            return self._finish(
                run_id=run_id,
                started_at=started_at,
                status="revoked",
                message=message,
                trigger=trigger,
                counters=counters,
            )
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Sync run failed")
            self.state_store.record_audit_event(
                calendar_id=calendar_id,
                action="run_error",
                details={
                    "trigger": trigger,
                    "error": error_message,
                    "traceback": traceback.format_exc(limit=5),
                },
                run_id=run_id,
            )
            return self._finish(
                run_id=run_id,
                started_at=started_at,
                status="error",
                message=error_message,
                trigger=trigger,
                counters=counters,
            )

    def _expand_and_plan(
        self,
        config: AppConfig,
        events: list[LogicalEvent],
        caldav_service: CalDAVService,
        calendar_id: str,
        run_id: int,
        trigger: str,
    ) -> PlanStats:
        parsed_events, unparseable = parse_logical_events(events, config.sync.prefer_day_before_month)
        if unparseable:
            logger.debug("Skipped %d events with unparseable dates", unparseable)

        def chunk_failed(chunk: list[Operation]) -> None:
            self.state_store.record_audit_event(
                calendar_id=calendar_id,
                action="chunk_dropped",
                details={"trigger": trigger, "operations": len(chunk)},
                run_id=run_id,
            )

        planner = BatchPlanner(caldav_service.apply_operations, calendar_id, on_chunk_failed=chunk_failed)
        occurrences = iter_occurrences(
            parsed_events,
            self._today().year,
            config.reminders.offsets(),
            config.labels,
        )
        return planner.plan(occurrences)
