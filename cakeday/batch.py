from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from cakeday.caldav_client import AuthorizationRevoked
from cakeday.models import Occurrence, Operation


logger = logging.getLogger(__name__)

MAX_CHUNK_OPERATIONS = 200


@dataclass
class PlanStats:
    events_planned: int = 0
    reminders_planned: int = 0
    events_applied: int = 0
    reminders_applied: int = 0
    chunks_applied: int = 0
    chunks_failed: int = 0
    operations_dropped: int = 0


class BatchPlanner:
    """Turn occurrences into insert operations and submit them in bounded chunks.

    Reminder operations point back at their event by its index within the
    chunk being built; numbering restarts with every chunk.
    A chunk that fails to apply, or raises while applying, is dropped; later
    chunks are still submitted. Only revoked access stops the plan.
    """

    def __init__(
        self,
        apply: Callable[[list[Operation]], bool],
        calendar_id: str,
        max_operations: int = MAX_CHUNK_OPERATIONS,
        on_chunk_failed: Callable[[list[Operation]], None] | None = None,
    ) -> None:
        self.apply = apply
        self.calendar_id = calendar_id
        self.max_operations = max_operations
        self.on_chunk_failed = on_chunk_failed
        self.stats = PlanStats()
        self._operations: list[Operation] = []
        self._back_reference = 0

    @property
    def pending(self) -> list[Operation]:
        return list(self._operations)

    def add(self, occurrence: Occurrence) -> None:
        self._operations.append(Operation.insert_event(self.calendar_id, occurrence))
        self.stats.events_planned += 1
        for minutes in occurrence.reminder_minutes:
            self._operations.append(Operation.insert_reminder(minutes, self._back_reference))
            self.stats.reminders_planned += 1
        self._back_reference += 1 + len(occurrence.reminder_minutes)

        if len(self._operations) > self.max_operations:
            self.flush()

    def flush(self) -> bool:
        if not self._operations:
            return True
        chunk = self._operations
        self._operations = []
        self._back_reference = 0

        logger.debug("Applying chunk of %d operations", len(chunk))
        try:
            applied = bool(self.apply(chunk))
        except AuthorizationRevoked:
            raise
        except Exception:
            logger.exception("Applying chunk raised")
            applied = False
        event_count = sum(1 for op in chunk if op.occurrence is not None)
        if applied:
            self.stats.chunks_applied += 1
            self.stats.events_applied += event_count
            self.stats.reminders_applied += len(chunk) - event_count
            return True

        self.stats.chunks_failed += 1
        self.stats.operations_dropped += len(chunk)
        logger.error("Applying chunk failed, dropped %d operations", len(chunk))
        if self.on_chunk_failed is not None:
            self.on_chunk_failed(chunk)
        return False

    def plan(self, occurrences: Iterable[Occurrence]) -> PlanStats:
        for occurrence in occurrences:
            self.add(occurrence)
        self.flush()
        return self.stats
