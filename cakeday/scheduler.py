from __future__ import annotations

import logging
import threading
from typing import Optional

from cakeday.config_manager import ConfigManager
from cakeday.models import DEFAULT_INTERVAL_SECONDS, MIN_INTERVAL_SECONDS, SyncResult
from cakeday.sync_engine import SyncEngine


logger = logging.getLogger(__name__)

TRIGGER_STARTUP = "startup"
TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"


class SyncScheduler:
    """Run sync passes on a background thread: once at startup, then on an interval.

    ``trigger_manual`` wakes the thread early. ``run_now`` runs a pass on the
    caller's thread. Both paths share one lock so passes never overlap.
    """

    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self.last_result: Optional[SyncResult] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="cakeday-sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._wake_event.set()

    def run_now(self, trigger: str) -> SyncResult:
        with self._run_lock:
            result = self.sync_engine.run_once(trigger=trigger)
        self.last_result = result
        logger.info("Sync pass (%s) finished with status %s: %s", trigger, result.status, result.message)
        return result

    def _interval_seconds(self) -> int:
        # A broken config file must not stop the thread; the next pass records the error.
        try:
            return max(MIN_INTERVAL_SECONDS, self.config_manager.load().sync.interval_seconds)
        except Exception:
            logger.exception("Could not read sync interval, using %d seconds", DEFAULT_INTERVAL_SECONDS)
            return DEFAULT_INTERVAL_SECONDS

    def _loop(self) -> None:
        self.run_now(TRIGGER_STARTUP)

        while not self._stop_event.is_set():
            woken = self._wake_event.wait(timeout=self._interval_seconds())
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            self.run_now(TRIGGER_MANUAL if woken else TRIGGER_SCHEDULED)
