"""Test periodic sync scheduling"""

import asyncio
from datetime import timedelta

import pytest

from playlist_sync.core.config import SchedulerConfig
from playlist_sync.core.exceptions import ErrorKind, RecordNotFoundError, ValidationError
from playlist_sync.sync.scheduler import SyncScheduler, format_interval, parse_interval


HOUR = 3600


@pytest.fixture
def scheduler(database, orchestrator, ledger, clock, fake_sleep):
    return SyncScheduler(
        database,
        orchestrator,
        ledger,
        SchedulerConfig(poll_interval=30.0, min_quota_remaining=10, max_retries=2),
        clock=clock.now,
        sleep=fake_sleep,
    )


@pytest.fixture
def collection(database, remote):
    remote.set_playlist("PL1", ["A", "B"])
    return database.add_collection("PL1", "Mix")


class TestIntervals:
    """Test interval parsing and formatting"""

    @pytest.mark.parametrize("value, seconds", [
        ("30m", 1800),
        ("6h", 6 * HOUR),
        ("1d", 24 * HOUR),
        (" 2H ", 2 * HOUR),
    ])
    def test_parse(self, value, seconds):
        assert parse_interval(value) == seconds

    @pytest.mark.parametrize("value", ["", "10", "5s", "0m", "1.5h", "h"])
    def test_parse_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_interval(value)

    @pytest.mark.parametrize("seconds, text", [
        (1800, "30m"),
        (2 * HOUR, "2h"),
        (24 * HOUR, "1d"),
        (5400, "90m"),
        (90, "90s"),
    ])
    def test_format(self, seconds, text):
        assert format_interval(seconds) == text


class TestScheduleManagement:
    """Test adding, updating and removing schedules"""

    def test_first_run_is_one_interval_away(self, scheduler, collection, clock):
        schedule = scheduler.add_schedule("PL1", "6h")

        assert schedule.collection_id == collection.id
        assert schedule.interval_seconds == 6 * HOUR
        assert schedule.next_run_at == clock.now() + timedelta(hours=6)
        assert schedule.max_retries == 2
        assert schedule.enabled

    def test_duplicate_schedule(self, scheduler, collection):
        scheduler.add_schedule(collection.id, "1h")

        with pytest.raises(ValidationError):
            scheduler.add_schedule("PL1", "2h")

    def test_unknown_collection(self, scheduler):
        with pytest.raises(RecordNotFoundError):
            scheduler.add_schedule("PL-missing", "1h")

    def test_interval_below_one_minute(self, scheduler, collection):
        with pytest.raises(ValidationError):
            scheduler.add_schedule(collection.id, 30)

    def test_new_interval_restarts_countdown(self, scheduler, collection, clock):
        scheduler.add_schedule(collection.id, "1h")
        clock.advance(1800)

        schedule = scheduler.update_schedule(collection.id, interval="2h")

        assert schedule.interval_seconds == 2 * HOUR
        assert schedule.next_run_at == clock.now() + timedelta(hours=2)

    def test_same_interval_keeps_next_run(self, scheduler, collection, clock):
        original = scheduler.add_schedule(collection.id, "1h")
        clock.advance(1800)

        schedule = scheduler.update_schedule(collection.id, interval=HOUR)

        assert schedule.next_run_at == original.next_run_at

    def test_enable_clears_retry_count(self, scheduler, database, collection):
        scheduler.add_schedule(collection.id, "1h", max_retries=1)
        database.record_schedule_outcome(collection.id, success=False)
        assert not database.get_schedule(collection.id).enabled

        schedule = scheduler.update_schedule(collection.id, enabled=True)

        assert schedule.enabled
        assert schedule.retry_count == 0

    def test_update_without_schedule(self, scheduler, collection):
        with pytest.raises(RecordNotFoundError):
            scheduler.update_schedule(collection.id, enabled=False)

    def test_remove(self, scheduler, collection):
        scheduler.add_schedule(collection.id, "1h")

        assert scheduler.remove_schedule("PL1")
        assert not scheduler.remove_schedule("PL1")
        assert scheduler.list_schedules() == []


class TestRunDue:
    """Test SyncScheduler.run_due()"""

    @pytest.mark.asyncio
    async def test_nothing_due(self, scheduler, collection, remote):
        scheduler.add_schedule(collection.id, "1h")

        run = await scheduler.run_due()

        assert run.results == ()
        assert remote.calls == {}

    @pytest.mark.asyncio
    async def test_due_schedule_syncs_and_advances(self, scheduler, database, collection, clock):
        scheduler.add_schedule(collection.id, "1h")
        clock.advance(HOUR)

        run = await scheduler.run_due()

        assert [r.success for r in run.results] == [True]
        assert len(database.get_active_members(collection.id)) == 2

        schedule = database.get_schedule(collection.id)
        assert schedule.last_run_at == clock.now()
        assert schedule.next_run_at == clock.now() + timedelta(hours=1)
        assert scheduler.due_schedules() == []

    @pytest.mark.asyncio
    async def test_disabled_schedule_never_runs(self, scheduler, collection, clock, remote):
        scheduler.add_schedule(collection.id, "1h", enabled=False)
        clock.advance(2 * HOUR)

        run = await scheduler.run_due()

        assert run.results == ()
        assert "get_membership_page" not in remote.calls

    @pytest.mark.asyncio
    async def test_low_quota_postpones(self, scheduler, database, ledger, collection, clock, remote):
        """Due syncs wait while the remaining quota is under the floor"""
        original = scheduler.add_schedule(collection.id, "1h")
        clock.advance(HOUR)
        ledger.reserve("search", 95)

        run = await scheduler.run_due()

        assert run.postponed == (collection.id,)
        assert run.results == ()
        assert "get_membership_page" not in remote.calls
        assert database.get_schedule(collection.id).next_run_at == original.next_run_at

    @pytest.mark.asyncio
    async def test_repeated_failures_disable_schedule(self, scheduler, database, collection, clock, remote):
        scheduler.add_schedule(collection.id, "1h")
        remote.fail(
            "get_membership_page",
            ValidationError("playlist is private"),
            ValidationError("playlist is private"),
        )

        clock.advance(HOUR)
        first = await scheduler.run_due()
        assert not first.results[0].success
        assert first.disabled == ()
        assert database.get_schedule(collection.id).retry_count == 1

        clock.advance(HOUR)
        second = await scheduler.run_due()
        assert second.disabled == (collection.id,)

        schedule = database.get_schedule(collection.id)
        assert schedule.retry_count == 2
        assert not schedule.enabled

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, scheduler, database, collection, clock, remote):
        scheduler.add_schedule(collection.id, "1h", max_retries=3)
        remote.fail("get_membership_page", ValidationError("playlist is private"))

        clock.advance(HOUR)
        await scheduler.run_due()
        assert database.get_schedule(collection.id).retry_count == 1

        clock.advance(HOUR)
        run = await scheduler.run_due()

        assert run.results[0].success
        assert database.get_schedule(collection.id).retry_count == 0

    @pytest.mark.asyncio
    async def test_locked_collection_is_not_a_failure(self, scheduler, database, collection, clock):
        """A sync skipped because another run holds the lock is not counted"""
        scheduler.add_schedule(collection.id, "1h", max_retries=1)
        database.try_acquire_sync_lock(collection.id)
        clock.advance(HOUR)

        run = await scheduler.run_due()

        assert run.results[0].error_kind is ErrorKind.CONCURRENT_SYNC
        schedule = database.get_schedule(collection.id)
        assert schedule.retry_count == 0
        assert schedule.enabled


class TestRunForever:
    """Test the polling loop"""

    @pytest.mark.asyncio
    async def test_polls_until_stopped(self, scheduler, collection, clock, fake_sleep):
        scheduler.add_schedule(collection.id, "1h")
        stop = asyncio.Event()
        runs = []

        def on_cycle(run):
            runs.append(run)
            if run.results:
                stop.set()
            clock.advance(1800)

        await scheduler.run_forever(on_cycle=on_cycle, stop=stop)

        assert [len(r.results) for r in runs] == [0, 0, 1]
        assert fake_sleep.delays == [30.0, 30.0]

    @pytest.mark.asyncio
    async def test_stopped_before_start(self, scheduler, fake_sleep):
        stop = asyncio.Event()
        stop.set()

        await scheduler.run_forever(stop=stop)

        assert fake_sleep.delays == []
