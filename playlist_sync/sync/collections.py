"""
Collection management: import, metadata refresh, member listing, statistics,
manual unlock.

Unlike the orchestrator, these operations raise PlaylistSyncError subclasses
on failure; they are single-shot commands whose caller (the CLI) reports
the error and exits.
"""

from dataclasses import dataclass
from datetime import datetime

from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import RecordNotFoundError
from playlist_sync.core.logger import get_logger
from playlist_sync.core.models import Collection, Item, Member, SyncStatus
from playlist_sync.quota.ledger import QuotaLedger
from playlist_sync.remote.base import RemoteCollectionClient
from playlist_sync.remote.models import CollectionMetadata
from playlist_sync.remote.youtube import extract_playlist_id
from playlist_sync.resilience.layer import ResilienceLayer


logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncStats:
    """Aggregate over a collection's sync audits."""
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    last_sync: datetime | None
    average_duration_ms: float | None


class CollectionManager:
    """
    Args:
        database: Local store.
        client: Remote source for metadata.
        ledger: Quota ledger; metadata fetches reserve `playlist.details`.
        resilience: Retry/breaker layer for remote calls.
    """

    def __init__(
        self,
        database: Database,
        client: RemoteCollectionClient,
        ledger: QuotaLedger,
        resilience: ResilienceLayer
    ) -> None:
        self.database = database
        self.client = client
        self.ledger = ledger
        self.resilience = resilience

    async def import_collection(self, url_or_id: str) -> tuple[Collection, bool]:
        """
        Start mirroring a remote playlist.

        Importing an already stored playlist returns it unchanged without a
        remote call.

        Returns:
            (collection, created)

        Raises:
            ValidationError: If url_or_id holds no playlist id.
            PlaylistSyncError: If the metadata fetch fails after recovery.
        """
        remote_id = extract_playlist_id(url_or_id)

        existing = self.database.get_collection_by_remote_id(remote_id)
        if existing is not None:
            logger.info(f"Collection already imported: '{existing.title}' ({remote_id})")
            return existing, False

        metadata = await self._fetch_metadata(remote_id)
        collection = self.database.add_collection(
            remote_id=metadata.remote_id or remote_id,
            title=metadata.title,
            item_count=metadata.item_count,
            description=metadata.description,
            channel_title=metadata.channel_title,
        )
        logger.info(f"Imported '{collection.title}' ({collection.remote_id}, {collection.item_count} items)")
        return collection, True

    async def refresh_metadata(self, collection_ref: int | str) -> Collection:
        """Re-fetch title, description and item count. Leaves membership alone."""
        collection = self.get_collection(collection_ref)
        metadata = await self._fetch_metadata(collection.remote_id)
        self.database.update_collection_metadata(
            collection.id,
            title=metadata.title,
            item_count=metadata.item_count,
            description=metadata.description,
            channel_title=metadata.channel_title,
        )
        logger.info(f"Refreshed metadata for '{metadata.title}'")
        return self.get_collection(collection.id)

    def get_collection(self, collection_ref: int | str) -> Collection:
        """
        Raises:
            RecordNotFoundError: If no collection matches the local or remote id.
        """
        collection = self.database.find_collection(collection_ref)
        if collection is None:
            raise RecordNotFoundError("Collection", collection_ref)
        return collection

    def list_collections(self) -> list[Collection]:
        return self.database.list_collections()

    def get_members(self, collection_ref: int | str) -> tuple[Collection, list[tuple[Member, Item]]]:
        """Active members in position order, each paired with its cached item."""
        collection = self.get_collection(collection_ref)
        return collection, self.database.get_active_member_items(collection.id)

    def get_sync_stats(self, collection_ref: int | str) -> SyncStats:
        collection = self.get_collection(collection_ref)
        audits = self.database.get_sync_audits(collection.id)

        durations = [a.duration_ms for a in audits if a.duration_ms is not None]
        return SyncStats(
            total_syncs=len(audits),
            successful_syncs=sum(1 for a in audits if a.status == SyncStatus.COMPLETED),
            failed_syncs=sum(1 for a in audits if a.status == SyncStatus.FAILED),
            last_sync=audits[0].started_at if audits else None,
            average_duration_ms=sum(durations) / len(durations) if durations else None,
        )

    def release_stale_lock(self, collection_ref: int | str) -> bool:
        """
        Clear an IN_PROGRESS lock left behind by a crashed run.

        Only call this when no sync of the collection is running.

        Returns:
            True if a lock was cleared (the collection is now FAILED).
        """
        collection = self.get_collection(collection_ref)
        released = self.database.force_release_sync_lock(collection.id)
        if released:
            logger.warning(f"Released stale sync lock on '{collection.title}' ({collection.remote_id})")
        else:
            logger.info(f"'{collection.title}' is not locked ({collection.sync_status.value})")
        return released

    async def _fetch_metadata(self, remote_id: str) -> CollectionMetadata:
        cost = self.ledger.cost_for("playlist.details")

        async def fetch():
            self.ledger.require("playlist.details", cost)
            return await self.client.get_collection_metadata(remote_id)

        result = await self.resilience.execute(fetch, {"collection": remote_id, "op": "playlist.details"})
        return result.unwrap()
