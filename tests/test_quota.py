"""Test the daily quota ledger"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from playlist_sync.core.config import QuotaConfig
from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import ErrorKind, QuotaExceededError, ValidationError
from playlist_sync.quota.ledger import QuotaLedger


class TestCosts:
    """Test cost calculation"""

    def test_paginated_cost(self, ledger):
        assert ledger.cost_for("playlist.items", 1) == 1
        assert ledger.cost_for("playlist.items", 50) == 1
        assert ledger.cost_for("playlist.items", 51) == 2
        assert ledger.cost_for("video.details", 120) == 3
        assert ledger.cost_for("playlist.items") == 1

    def test_flat_cost(self, ledger):
        assert ledger.cost_for("playlist.details") == 1
        assert ledger.cost_for("search") == 100

    def test_unknown_operation_defaults_to_one(self, ledger):
        assert ledger.cost_for("channel.sections") == 1

    def test_calculate_sync_cost(self, ledger):
        # details + 3 pages + 3 detail batches
        assert ledger.calculate_sync_cost(120) == 7


class TestReserve:
    """Test reservations against the daily limit"""

    def test_reserve_within_limit(self, ledger):
        reservation = ledger.reserve("playlist.items", 40)

        assert reservation.accepted
        assert reservation.used == 40
        assert reservation.remaining == 60
        assert ledger.get_today_usage().used == 40

    def test_reserve_exactly_to_limit(self, ledger):
        assert ledger.reserve("search", 100).accepted
        assert not ledger.reserve("search", 1).accepted

    def test_rejected_reservation_changes_nothing(self, ledger):
        """used is unchanged after a failed reservation"""
        ledger.reserve("playlist.items", 90)

        reservation = ledger.reserve("playlist.items", 11)

        assert not reservation.accepted
        assert reservation.used == 90
        assert ledger.get_today_usage().used == 90
        assert ledger.get_usage_stats(1)[0].operations == 1

    def test_require_raises(self, ledger):
        ledger.reserve("search", 95)

        with pytest.raises(QuotaExceededError) as exc_info:
            ledger.require("playlist.items", 10)

        error = exc_info.value
        assert error.kind is ErrorKind.QUOTA_EXHAUSTED
        assert error.used == 95
        assert error.limit == 100
        assert error.requested == 10

    @pytest.mark.parametrize("cost", [0, -1, 1.5, True])
    def test_invalid_cost(self, ledger, cost):
        with pytest.raises(ValidationError):
            ledger.reserve("search", cost)

    def test_day_rollover(self, ledger, clock):
        """Usage is tracked per UTC day"""
        ledger.reserve("search", 100)
        assert not ledger.can_use(1)

        clock.advance(timedelta(days=1).total_seconds())

        assert ledger.can_use(1)
        assert ledger.reserve("search", 100).accepted

    def test_warning_fires_once_per_day(self, database, clock):
        warnings = []
        ledger = QuotaLedger(
            database,
            QuotaConfig(daily_limit=100, warn_threshold=20),
            clock=clock.now,
            on_warning=warnings.append,
        )

        ledger.reserve("search", 70)
        assert warnings == []

        ledger.reserve("search", 15)
        ledger.reserve("search", 5)

        assert len(warnings) == 1
        assert warnings[0].used == 85

    def test_warning_fires_again_next_day(self, database, clock):
        warnings = []
        ledger = QuotaLedger(
            database,
            QuotaConfig(daily_limit=100, warn_threshold=20),
            clock=clock.now,
            on_warning=warnings.append,
        )

        ledger.reserve("search", 90)
        clock.advance(24 * 3600)
        ledger.reserve("search", 90)
        ledger.reserve("search", 5)

        assert [w.day for w in warnings] == [
            (clock.now() - timedelta(days=1)).date(),
            clock.now().date(),
        ]
        assert ledger._warned_day == clock.now().date()

    def test_concurrent_reservations_never_overspend(self, temp_dir, quota_config, clock):
        """Concurrent reservations that jointly exceed the limit cannot all succeed"""
        path = temp_dir / "shared.db"
        databases = [Database(path) for _ in range(4)]
        ledgers = [QuotaLedger(db, quota_config, clock=clock.now) for db in databases]

        try:
            with ThreadPoolExecutor(max_workers=8) as executor:
                futures = [
                    executor.submit(ledgers[i % len(ledgers)].reserve, "playlist.items", 7)
                    for i in range(40)
                ]
                results = [f.result() for f in futures]

            accepted = sum(1 for r in results if r.accepted)
            assert accepted == 100 // 7
            assert ledgers[0].get_today_usage().used == accepted * 7
        finally:
            for db in databases:
                db.close()


class TestUsageStats:
    """Test usage history"""

    def test_stats_group_by_operation_type(self, ledger):
        ledger.reserve("playlist.items", 2)
        ledger.reserve("playlist.items", 3)
        ledger.reserve("video.details", 1)

        stats = ledger.get_usage_stats(7)

        assert len(stats) == 1
        today = stats[0]
        assert today.used == 6
        assert today.operations == 3
        assert today.operations_by_type["playlist.items"] == {"count": 2, "total_cost": 5}
        assert today.operations_by_type["video.details"] == {"count": 1, "total_cost": 1}
        assert today.percent_used == pytest.approx(6.0)

    def test_stats_newest_first(self, ledger, clock):
        ledger.reserve("search", 10)
        clock.advance(86400)
        ledger.reserve("search", 20)

        stats = ledger.get_usage_stats(7)

        assert [s.used for s in stats] == [20, 10]
        assert len(ledger.get_usage_stats(1)) == 1
