"""Test configuration and fixtures"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from playlist_sync.core.config import (
    CircuitBreakerConfig,
    QuotaConfig,
    RetryConfig,
    SyncConfig,
)
from playlist_sync.core.database import Database
from playlist_sync.quota.ledger import QuotaLedger
from playlist_sync.remote.models import (
    CollectionMetadata,
    ItemDetails,
    MembershipEntry,
    MembershipPage,
)
from playlist_sync.resilience.circuit import CircuitBreaker
from playlist_sync.resilience.layer import ResilienceLayer
from playlist_sync.resilience.retry import RetryPolicy
from playlist_sync.sync.collections import CollectionManager
from playlist_sync.sync.orchestrator import SyncOrchestrator


class FakeClock:
    """Settable time source; `now()` for datetimes, `monotonic()` for seconds."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
        self.seconds = 1000.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.seconds

    def advance(self, seconds: float) -> None:
        self.seconds += seconds
        self.current += timedelta(seconds=seconds)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeRemoteClient:
    """
    In-memory RemoteCollectionClient.

    Playlists are lists of video ids in remote order. Failures can be queued
    per method name; each call pops one queued exception (if any) and raises it.
    """

    def __init__(self, page_size: int = 50) -> None:
        self.page_size = page_size
        self.playlists: dict[str, list[str]] = {}
        self.titles: dict[str, str] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.calls: dict[str, int] = {}
        self.detail_requests: list[list[str]] = []
        self.missing_items: set[str] = set()
        self.refreshed = 0
        self.closed = False

    def set_playlist(self, remote_id: str, video_ids: list[str], title: str | None = None) -> None:
        self.playlists[remote_id] = list(video_ids)
        self.titles[remote_id] = title or f"Playlist {remote_id}"

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    async def _enter(self, method: str) -> None:
        # Yield so concurrent syncs interleave like real I/O
        await asyncio.sleep(0)
        self.calls[method] = self.calls.get(method, 0) + 1
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    async def get_collection_metadata(self, remote_id: str) -> CollectionMetadata:
        await self._enter("get_collection_metadata")
        return CollectionMetadata(
            remote_id=remote_id,
            title=self.titles.get(remote_id, f"Playlist {remote_id}"),
            item_count=len(self.playlists.get(remote_id, [])),
            description="A test playlist",
            channel_title="Test Channel",
        )

    async def get_membership_page(self, remote_id: str, page_token: str | None = None) -> MembershipPage:
        await self._enter("get_membership_page")
        videos = self.playlists.get(remote_id, [])
        start = int(page_token) if page_token else 0
        end = start + self.page_size
        entries = tuple(
            MembershipEntry(remote_item_id=vid, position=start + offset)
            for offset, vid in enumerate(videos[start:end])
        )
        return MembershipPage(items=entries, next_page_token=str(end) if end < len(videos) else None)

    async def get_item_details_batch(self, remote_item_ids) -> list[ItemDetails]:
        await self._enter("get_item_details_batch")
        self.detail_requests.append(list(remote_item_ids))
        return [
            ItemDetails(remote_item_id=vid, title=f"Video {vid}", duration_seconds=180)
            for vid in remote_item_ids
            if vid not in self.missing_items
        ]

    async def refresh_credentials(self) -> None:
        self.refreshed += 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def database(temp_dir):
    """Fresh database in a temporary directory"""
    db = Database(temp_dir / "test.db")
    yield db
    db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def quota_config():
    return QuotaConfig(daily_limit=100, warn_threshold=10)


@pytest.fixture
def ledger(database, quota_config, clock):
    return QuotaLedger(database, quota_config, clock=clock.now)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        CircuitBreakerConfig(failure_threshold=3, success_threshold=2, open_timeout=60.0),
        clock=clock.monotonic,
        name="test",
    )


@pytest.fixture
def resilience(breaker, remote, fake_sleep):
    policy = RetryPolicy.from_config(RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=30.0))
    return ResilienceLayer(
        policy,
        breaker,
        credential_refresher=remote.refresh_credentials,
        sleep=fake_sleep,
        rng=lambda: 0.0,
    )


@pytest.fixture
def orchestrator(database, remote, ledger, resilience):
    return SyncOrchestrator(database, remote, ledger, resilience, SyncConfig(max_concurrent=2))


@pytest.fixture
def manager(database, remote, ledger, resilience):
    return CollectionManager(database, remote, ledger, resilience)
