"""
Remote collection access.

    base:     RemoteCollectionClient protocol the sync engine depends on
    models:   Response dataclasses (metadata, membership pages, item details)
    youtube:  aiohttp implementation for the YouTube Data API v3
"""

from playlist_sync.remote.base import MAX_BATCH_SIZE, RemoteCollectionClient
from playlist_sync.remote.models import (
    CollectionMetadata,
    ItemDetails,
    MembershipEntry,
    MembershipPage,
)
from playlist_sync.remote.youtube import (
    YouTubeClient,
    error_from_response,
    extract_playlist_id,
    parse_iso_duration,
)

__all__ = [
    "MAX_BATCH_SIZE",
    "RemoteCollectionClient",
    "CollectionMetadata",
    "ItemDetails",
    "MembershipEntry",
    "MembershipPage",
    "YouTubeClient",
    "error_from_response",
    "extract_playlist_id",
    "parse_iso_duration",
]
