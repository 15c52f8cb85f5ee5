"""Daily backup scheduler running on a daemon thread."""
from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from typing import Callable, Optional

import settings
from settings import ScheduleSettings

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Fire the scheduled backup once a day at the configured ``HH:MM``.

    The clock is checked every ``interval_seconds``; a run starts only when the
    current minute matches exactly, so a check that lands after the minute has
    passed skips that day.
    """

    def __init__(
        self,
        orchestrator,
        store,
        *,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
        interval_seconds: int = 60,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._clock = clock
        self._interval = max(1, interval_seconds)
        self._schedule = settings.load_schedule(store)
        self._last_run_date: Optional[dt.date] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._schedule = settings.load_schedule(self._store)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="backup-scheduler", daemon=True)
        self._thread.start()
        logger.info("Backup scheduler started; next run at %s", self._schedule.label())

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        self._orchestrator.cancel()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Backup scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------
    def get_schedule(self) -> ScheduleSettings:
        return ScheduleSettings(self._schedule.hour, self._schedule.minute)

    def set_schedule(self, hour: int, minute: int) -> ScheduleSettings:
        schedule = ScheduleSettings(hour=hour, minute=minute)
        settings.save_schedule(self._store, schedule)
        self._schedule = schedule
        logger.info("Backup schedule set to %s", schedule.label())
        return self.get_schedule()

    def check(self, now: Optional[dt.datetime] = None) -> bool:
        """Run the scheduled backup if ``now`` is the configured minute.

        Returns ``True`` when a run was started.
        """

        current = now or self._clock()
        schedule = self._schedule
        if (current.hour, current.minute) != (schedule.hour, schedule.minute):
            return False
        if self._last_run_date == current.date():
            return False
        if self._stop_event.is_set():
            logger.info("Scheduled backup skipped: scheduler is stopping")
            return False

        self._last_run_date = current.date()
        logger.info("Scheduled backup starting at %s", current.isoformat(timespec="minutes"))
        result = self._orchestrator.run_scheduled_backup()
        if result.success:
            logger.info("Scheduled backup finished: %s", (result.data or {}).get("status", "success"))
        else:
            logger.warning("Scheduled backup did not complete: %s", (result.error or {}).get("message"))
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                self.check()
            except Exception:  # pragma: no cover - keep the timer alive
                logger.exception("Scheduled backup check failed")
            elapsed = time.monotonic() - start
            self._stop_event.wait(max(0.0, self._interval - elapsed))


__all__ = ["BackupScheduler"]
