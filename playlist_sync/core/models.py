"""
Data models for locally mirrored entities.

These dataclasses mirror rows of the SQLite database. They are built by
the Database class from sqlite3.Row objects and are independent of the
remote API's response format (see playlist_sync.remote.models for that).

Design Decisions:
    - Row models are frozen; updates go through the Database
    - Timestamps are timezone-aware UTC datetimes
    - SyncStatus doubles as the persisted per-collection sync lock
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Synchronization state of a collection (and of a sync audit row)."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Collection:
    """
    A locally mirrored remote playlist.

    Attributes:
        id: Local database id.
        remote_id: Remote playlist id (unique).
        title: Display title.
        item_count: Cached number of items, updated after every sync.
        sync_status: Current SyncStatus; IN_PROGRESS means locked.
        last_synced_at: Time of the last successful apply, or None.
    """
    id: int
    remote_id: str
    title: str
    item_count: int = 0
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: datetime | None = None
    description: str | None = None
    channel_title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_locked(self) -> bool:
        return self.sync_status == SyncStatus.IN_PROGRESS


@dataclass(frozen=True)
class Item:
    """A remote video cached locally."""
    id: int
    remote_id: str
    title: str
    duration_seconds: int | None = None
    description: str | None = None
    channel_title: str | None = None
    thumbnail_url: str | None = None
    published_at: str | None = None
    view_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Member:
    """
    An entry linking a collection to an item at a position.

    Attributes:
        id: Local database id of the membership row.
        collection_id: Owning collection.
        item_id: Local item id.
        item_remote_id: Remote id of the item; the key used by change detection.
        position: Zero-based position within the collection.
        added_at: When the item was added remotely (or first observed).
        removed_at: Tombstone timestamp; None while the member is active.
    """
    id: int
    collection_id: int
    item_id: int
    item_remote_id: str
    position: int
    added_at: datetime | None = None
    removed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.removed_at is None


@dataclass(frozen=True)
class SyncAudit:
    """One synchronization attempt."""
    id: int
    collection_id: int
    status: SyncStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    items_added: int = 0
    items_removed: int = 0
    items_reordered: int = 0
    quota_used: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class QuotaUsage:
    """Quota consumption for one UTC calendar day."""
    day: date
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def percent_used(self) -> float:
        if self.limit <= 0:
            return 100.0
        return self.used / self.limit * 100


@dataclass(frozen=True)
class SyncSchedule:
    """
    Periodic sync settings for one collection.

    Attributes:
        collection_id: Scheduled collection (one schedule per collection).
        interval_seconds: Time between runs.
        enabled: Disabled schedules are kept but never run.
        next_run_at: Earliest time the next run may start.
        last_run_at: Start of the most recent run, or None.
        retry_count: Consecutive failed runs; reset by a successful run.
        max_retries: Consecutive failures after which the schedule disables itself.
    """
    id: int
    collection_id: int
    interval_seconds: int
    enabled: bool
    next_run_at: datetime
    last_run_at: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.enabled and self.next_run_at <= now
