"""
Periodic polling syncs.

Each collection may have one schedule: an interval, an enabled flag and a
retry counter, persisted in the `sync_schedules` table. The scheduler does
not keep timers of its own. run_due() looks at the schedules whose
next_run_at has passed and hands those collections to the orchestrator as
one batch; `playlist-sync watch` calls it every poll_interval seconds.

Per due schedule:
    1. next_run_at moves to now + interval before the sync starts, so a
       crash mid-sync does not make the schedule fire again immediately.
    2. A completed sync resets retry_count.
    3. A failed sync increments it; reaching max_retries disables the
       schedule. A sync rejected because another run holds the lock is
       not counted.

While today's remaining quota is below min_quota_remaining, due syncs are
postponed (next_run_at is left alone, so they run on a later poll).

Usage:
    scheduler = SyncScheduler(db, orchestrator, ledger, config.scheduler)
    scheduler.add_schedule("PLabc123", "6h")
    await scheduler.run_forever()
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from playlist_sync.core.config import SchedulerConfig
from playlist_sync.core.database import Database, utc_now
from playlist_sync.core.exceptions import ErrorKind, RecordNotFoundError, ValidationError
from playlist_sync.core.logger import get_logger
from playlist_sync.core.models import Collection, SyncSchedule
from playlist_sync.quota.ledger import QuotaLedger
from playlist_sync.sync.orchestrator import SyncOrchestrator, SyncResult


logger = get_logger(__name__)


INTERVAL_UNITS = {"m": 60, "h": 3600, "d": 86400}

_INTERVAL_PATTERN = re.compile(r"^(\d+)([mhd])$")


def parse_interval(value: str) -> int:
    """
    Parse an interval such as "30m", "6h" or "1d" into seconds.

    Raises:
        ValidationError: For any other format, or a zero interval.
    """
    match = _INTERVAL_PATTERN.match(value.strip().lower())
    if not match or int(match.group(1)) == 0:
        raise ValidationError(
            f"Invalid interval '{value}'. Use a positive number with m, h or d (e.g. 30m, 6h, 1d)",
            details={"interval": value}
        )
    return int(match.group(1)) * INTERVAL_UNITS[match.group(2)]


def format_interval(seconds: int) -> str:
    """Largest whole unit that divides the interval: 5400 -> "90m", 7200 -> "2h"."""
    for unit, size in sorted(INTERVAL_UNITS.items(), key=lambda pair: -pair[1]):
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


@dataclass(frozen=True)
class SchedulerRun:
    """
    Outcome of one polling cycle.

    Attributes:
        checked_at: When due schedules were looked up.
        results: Sync results for the collections that ran.
        postponed: Collection ids left due because quota was low.
        disabled: Collection ids whose schedule this cycle disabled.
    """
    checked_at: datetime
    results: tuple[SyncResult, ...] = field(default_factory=tuple)
    postponed: tuple[int, ...] = field(default_factory=tuple)
    disabled: tuple[int, ...] = field(default_factory=tuple)


class SyncScheduler:
    """
    Args:
        database: Holds the schedules.
        orchestrator: Runs the due syncs.
        ledger: Consulted for today's remaining quota before each cycle.
        config: Poll interval, quota floor and default max_retries.
        clock: Returns the current aware datetime. Defaults to UTC now.
        sleep: Awaitable sleep used between polls; injectable for tests.
    """

    def __init__(
        self,
        database: Database,
        orchestrator: SyncOrchestrator,
        ledger: QuotaLedger,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        self.database = database
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.config = config or SchedulerConfig()
        self._clock = clock or utc_now
        self._sleep = sleep

    # =========================================================================
    # Schedule management
    # =========================================================================

    def add_schedule(
        self,
        collection_ref: int | str,
        interval: str | int,
        enabled: bool = True,
        max_retries: int | None = None
    ) -> SyncSchedule:
        """
        Schedule a collection; the first run is one interval from now.

        Args:
            collection_ref: Local or remote id.
            interval: Seconds, or a string accepted by parse_interval().
            enabled: Create the schedule disabled when False.
            max_retries: Defaults to config.max_retries.

        Raises:
            RecordNotFoundError: Unknown collection.
            ValidationError: Bad interval, or the collection is already scheduled.
        """
        collection = self._collection(collection_ref)
        seconds = self._interval_seconds(interval)
        retries = self.config.max_retries if max_retries is None else max_retries
        if retries < 1:
            raise ValidationError("max_retries must be at least 1", details={"max_retries": retries})

        next_run_at = self._clock() + timedelta(seconds=seconds)
        if not self.database.add_schedule(collection.id, seconds, next_run_at, enabled, retries):
            raise ValidationError(
                f"Schedule already exists for {collection.remote_id}",
                details={"collection_id": collection.id}
            )

        logger.info(
            f"Scheduled '{collection.title}' every {format_interval(seconds)} "
            f"(next run {next_run_at.isoformat()})"
        )
        return self.database.get_schedule(collection.id)

    def update_schedule(
        self,
        collection_ref: int | str,
        interval: str | int | None = None,
        enabled: bool | None = None,
        max_retries: int | None = None
    ) -> SyncSchedule:
        """
        Change a schedule. A new interval restarts the countdown from now;
        enabling a schedule clears its retry count.

        Raises:
            RecordNotFoundError: Unknown collection or no schedule.
        """
        collection = self._collection(collection_ref)
        existing = self.database.get_schedule(collection.id)
        if existing is None:
            raise RecordNotFoundError("Schedule", collection_ref)

        seconds = None
        next_run_at = None
        if interval is not None:
            seconds = self._interval_seconds(interval)
            if seconds != existing.interval_seconds:
                next_run_at = self._clock() + timedelta(seconds=seconds)
        if max_retries is not None and max_retries < 1:
            raise ValidationError("max_retries must be at least 1", details={"max_retries": max_retries})

        self.database.update_schedule(
            collection.id,
            interval_seconds=seconds,
            enabled=enabled,
            max_retries=max_retries,
            next_run_at=next_run_at,
            retry_count=0 if enabled else None,
        )
        logger.info(f"Updated schedule for '{collection.title}'")
        return self.database.get_schedule(collection.id)

    def remove_schedule(self, collection_ref: int | str) -> bool:
        """Returns False if the collection had no schedule."""
        collection = self._collection(collection_ref)
        removed = self.database.delete_schedule(collection.id)
        if removed:
            logger.info(f"Removed schedule for '{collection.title}'")
        return removed

    def list_schedules(self, enabled_only: bool = False) -> list[SyncSchedule]:
        return self.database.list_schedules(enabled_only)

    def due_schedules(self) -> list[SyncSchedule]:
        now = self._clock()
        return [s for s in self.database.list_schedules(enabled_only=True) if s.is_due(now)]

    # =========================================================================
    # Running
    # =========================================================================

    async def run_due(self) -> SchedulerRun:
        """Sync every collection whose schedule is due, as one batch."""
        now = self._clock()
        due = [s for s in self.database.list_schedules(enabled_only=True) if s.is_due(now)]
        if not due:
            return SchedulerRun(checked_at=now)

        remaining = self.ledger.get_today_usage().remaining
        if remaining < self.config.min_quota_remaining:
            logger.warning(
                f"Postponing {len(due)} scheduled sync(s): {remaining} quota units left, "
                f"need at least {self.config.min_quota_remaining}"
            )
            return SchedulerRun(checked_at=now, postponed=tuple(s.collection_id for s in due))

        for schedule in due:
            self.database.update_schedule(
                schedule.collection_id,
                last_run_at=now,
                next_run_at=now + timedelta(seconds=schedule.interval_seconds),
            )

        logger.info(f"Running {len(due)} scheduled sync(s)")
        results = await self.orchestrator.sync_collections([s.collection_id for s in due])

        disabled = []
        for schedule, result in zip(due, results):
            if result.error_kind is ErrorKind.CONCURRENT_SYNC:
                continue
            updated = self.database.record_schedule_outcome(schedule.collection_id, result.success)
            if updated is None or result.success:
                continue
            if updated.enabled:
                logger.warning(
                    f"Scheduled sync of collection {schedule.collection_id} failed "
                    f"({updated.retry_count}/{updated.max_retries})"
                )
            else:
                logger.error(
                    f"Disabled schedule for collection {schedule.collection_id} after "
                    f"{updated.retry_count} consecutive failures"
                )
                disabled.append(schedule.collection_id)

        return SchedulerRun(checked_at=now, results=tuple(results), disabled=tuple(disabled))

    async def run_forever(
        self,
        on_cycle: Callable[[SchedulerRun], None] | None = None,
        stop: asyncio.Event | None = None
    ) -> None:
        """
        Poll for due schedules until `stop` is set (or the task is cancelled).

        Args:
            on_cycle: Called with each cycle's SchedulerRun.
            stop: Checked after every cycle.
        """
        logger.info(f"Scheduler started; polling every {self.config.poll_interval:g}s")
        while stop is None or not stop.is_set():
            run = await self.run_due()
            if on_cycle is not None:
                on_cycle(run)
            if stop is not None and stop.is_set():
                break
            await self._sleep(self.config.poll_interval)
        logger.info("Scheduler stopped")

    def _collection(self, collection_ref: int | str) -> Collection:
        collection = self.database.find_collection(collection_ref)
        if collection is None:
            raise RecordNotFoundError("Collection", collection_ref)
        return collection

    @staticmethod
    def _interval_seconds(interval: str | int) -> int:
        if isinstance(interval, str):
            return parse_interval(interval)
        if interval < 60:
            raise ValidationError(
                "Schedule interval must be at least one minute",
                details={"interval": interval}
            )
        return interval
