"""
Data models for remote API responses.

These frozen dataclasses are what a RemoteCollectionClient returns. They
carry only what the sync engine needs; the raw response is kept in `raw`
where it is worth storing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CollectionMetadata:
    """Playlist-level metadata (`playlists.list`)."""
    remote_id: str
    title: str
    item_count: int
    description: str | None = None
    channel_title: str | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class MembershipEntry:
    """
    One playlist slot as seen remotely.

    Attributes:
        remote_item_id: Remote video id; the key used for change detection.
        position: Zero-based position declared by the remote source.
        added_at: When the video was added to the playlist, if known.
    """
    remote_item_id: str
    position: int
    added_at: datetime | None = None


@dataclass(frozen=True)
class MembershipPage:
    """One page of `playlistItems.list`."""
    items: tuple[MembershipEntry, ...]
    next_page_token: str | None = None


@dataclass(frozen=True)
class ItemDetails:
    """Video details (`videos.list`)."""
    remote_item_id: str
    title: str
    duration_seconds: int | None = None
    description: str | None = None
    channel_title: str | None = None
    thumbnail_url: str | None = None
    published_at: str | None = None
    view_count: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
