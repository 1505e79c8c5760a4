"""
Apply a ChangeSet to the database in one transaction.

Order inside the transaction: tombstone removed members, insert added
members, update reordered positions, then refresh the collection's cached
item_count and last_synced_at. An exception anywhere rolls the whole
transaction back.
"""

from dataclasses import dataclass
from datetime import datetime

from playlist_sync.core.database import Database, utc_now
from playlist_sync.core.logger import get_logger
from playlist_sync.sync.detector import ChangeSet


logger = get_logger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    added: int = 0
    removed: int = 0
    reordered: int = 0
    skipped: int = 0  # added entries whose item was not in the registry


def apply_changes(
    database: Database,
    collection_id: int,
    changes: ChangeSet,
    item_count: int,
    now: datetime | None = None
) -> ApplyResult:
    """
    Persist detected changes atomically.

    Args:
        database: Target database.
        collection_id: Collection being synced.
        changes: Output of detect_changes().
        item_count: Remote item count to cache on the collection.
        now: Timestamp for tombstones and last_synced_at, and for new
             members whose remote entry carries no added_at.

    Returns:
        ApplyResult with the number of rows actually written per kind.

    Raises:
        DatabaseError: If any statement fails; nothing is written.
    """
    now = now or utc_now()
    added = removed = reordered = skipped = 0

    with database.transaction() as conn:
        for member in changes.removed:
            database.tombstone_member(conn, member.id, now)
            removed += 1

        item_ids = database.resolve_item_ids(conn, (e.remote_item_id for e in changes.added))
        for entry in changes.added:
            item_id = item_ids.get(entry.remote_item_id)
            if item_id is None:
                logger.warning(
                    f"Skipping unknown item {entry.remote_item_id} for collection {collection_id}: "
                    f"details were not fetched"
                )
                skipped += 1
                continue
            database.insert_member(conn, collection_id, item_id, entry.position, entry.added_at or now)
            added += 1

        for change in changes.reordered:
            database.update_member_position(conn, change.member.id, change.new_position)
            reordered += 1

        database.mark_collection_synced(conn, collection_id, item_count, now)

    logger.debug(
        f"Applied changes to collection {collection_id}: "
        f"{added} added, {removed} removed, {reordered} reordered, {skipped} skipped"
    )
    return ApplyResult(added=added, removed=removed, reordered=reordered, skipped=skipped)
