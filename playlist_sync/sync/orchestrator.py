"""
Sync orchestrator: drives one collection through a synchronization.

Per collection the persisted sync_status moves
PENDING/COMPLETED/FAILED -> IN_PROGRESS -> COMPLETED | FAILED:

    1. Take the lock (atomic conditional UPDATE). If the collection is
       already IN_PROGRESS the sync fails at once with CONCURRENT_SYNC.
    2. Open a SyncAudit row.
    3. Fetch every membership page, then details for newly seen items,
       through the resilience layer. Each request reserves quota first.
    4. Diff active local members against the fetched membership.
    5. Apply the diff in one transaction.
    6. Close the audit as COMPLETED and release the lock to COMPLETED.
    7. On any failure close the audit as FAILED with the error and the
       quota spent so far, and release the lock to FAILED.

sync_collection() never raises for expected failures; it returns a
SyncResult, so a batch sync keeps going when one collection fails.

Usage:
    orchestrator = SyncOrchestrator(db, client, ledger, resilience, config.sync)
    result = await orchestrator.sync_collection("PLabc123")
    results = await orchestrator.sync_all()
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Sequence

from playlist_sync.core.config import SyncConfig
from playlist_sync.core.database import Database, utc_now
from playlist_sync.core.exceptions import (
    ConcurrentSyncError,
    ErrorKind,
    RecordNotFoundError,
    SyncError,
)
from playlist_sync.core.logger import format_sync_summary, get_logger, log_sync_failure
from playlist_sync.core.models import Collection, SyncStatus
from playlist_sync.quota.ledger import QuotaLedger
from playlist_sync.remote.base import MAX_BATCH_SIZE, RemoteCollectionClient
from playlist_sync.remote.models import MembershipEntry
from playlist_sync.resilience.classification import classify_error
from playlist_sync.resilience.layer import ResilienceLayer
from playlist_sync.sync.applier import ApplyResult, apply_changes
from playlist_sync.sync.detector import detect_changes


logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of one collection sync.

    Attributes:
        collection_id: Local id, or None if the collection was not found.
        status: COMPLETED or FAILED.
        items_added / items_removed / items_reordered: Rows changed.
        items_skipped: Added entries without stored item details.
        quota_used: Units reserved during this run, failed attempts included.
        duration_ms: Wall-clock duration.
        error: The failure, if any.
        error_kind: Its classification.
        attempts: Remote operation invocations made.
        audit_id: SyncAudit row, if one was opened.
    """
    collection_id: int | None
    status: SyncStatus
    items_added: int = 0
    items_removed: int = 0
    items_reordered: int = 0
    items_skipped: int = 0
    quota_used: int = 0
    duration_ms: int = 0
    error: BaseException | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 0
    audit_id: int | None = None
    remote_id: str | None = None
    title: str | None = None

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.COMPLETED

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


class _SyncRun:
    """Mutable counters for one in-flight sync."""

    def __init__(self) -> None:
        self.quota_used = 0
        self.attempts = 0
        self.error_kind: ErrorKind | None = None


class SyncOrchestrator:
    """
    Args:
        database: Local store; also holds the per-collection lock.
        client: Remote collection source.
        ledger: Daily quota ledger, consulted before every request.
        resilience: Retry/breaker layer wrapping every request.
        config: Concurrency limit, batch size, item refresh policy.
    """

    def __init__(
        self,
        database: Database,
        client: RemoteCollectionClient,
        ledger: QuotaLedger,
        resilience: ResilienceLayer,
        config: SyncConfig | None = None
    ) -> None:
        self.database = database
        self.client = client
        self.ledger = ledger
        self.resilience = resilience
        self.config = config or SyncConfig()

    # =========================================================================
    # Single collection
    # =========================================================================

    async def sync_collection(self, collection_ref: int | str) -> SyncResult:
        """
        Synchronize one collection by local id or remote id.

        Returns:
            SyncResult; status FAILED carries the error and its kind.
        """
        started = time.monotonic()

        try:
            collection = self.database.find_collection(collection_ref)
            if collection is None:
                raise RecordNotFoundError("Collection", collection_ref)
            acquired = self.database.try_acquire_sync_lock(collection.id)
        except Exception as e:
            kind = classify_error(e)
            log_sync_failure(logger, collection_ref, str(e), kind=kind.value)
            return SyncResult(
                collection_id=None,
                status=SyncStatus.FAILED,
                duration_ms=_elapsed_ms(started),
                error=e,
                error_kind=kind,
            )

        if not acquired:
            # The other run owns the audit row and the lock; leave both alone
            error = ConcurrentSyncError(collection.remote_id, details={"collection_id": collection.id})
            logger.warning(f"Skipping '{collection.title}': {error}")
            return SyncResult(
                collection_id=collection.id,
                status=SyncStatus.FAILED,
                duration_ms=_elapsed_ms(started),
                error=error,
                error_kind=ErrorKind.CONCURRENT_SYNC,
                remote_id=collection.remote_id,
                title=collection.title,
            )

        logger.info(f"Syncing '{collection.title}' ({collection.remote_id})")
        run = _SyncRun()
        audit_id = None

        try:
            audit_id = self.database.create_sync_audit(collection.id, utc_now())
            applied = await self._synchronize(collection, run)
        except asyncio.CancelledError as e:
            self._finish_failed(collection, audit_id, run, started, e)
            raise
        except Exception as e:
            return self._finish_failed(collection, audit_id, run, started, e)

        duration_ms = _elapsed_ms(started)
        try:
            self.database.finish_sync_audit(
                audit_id,
                SyncStatus.COMPLETED,
                completed_at=utc_now(),
                duration_ms=duration_ms,
                items_added=applied.added,
                items_removed=applied.removed,
                items_reordered=applied.reordered,
                quota_used=run.quota_used,
            )
            self.database.release_sync_lock(collection.id, SyncStatus.COMPLETED)
        except Exception as e:
            return self._finish_failed(collection, audit_id, run, started, e)

        logger.info(
            f"Synced '{collection.title}': "
            f"{format_sync_summary(applied.added, applied.removed, applied.reordered)} "
            f"({run.quota_used} quota, {duration_ms}ms)"
        )
        return SyncResult(
            collection_id=collection.id,
            status=SyncStatus.COMPLETED,
            items_added=applied.added,
            items_removed=applied.removed,
            items_reordered=applied.reordered,
            items_skipped=applied.skipped,
            quota_used=run.quota_used,
            duration_ms=duration_ms,
            attempts=run.attempts,
            audit_id=audit_id,
            remote_id=collection.remote_id,
            title=collection.title,
        )

    async def _synchronize(self, collection: Collection, run: _SyncRun) -> ApplyResult:
        entries = await self._fetch_membership(collection, run)
        await self._fetch_item_details(collection, entries, run)

        local_members = self.database.get_active_members(collection.id)
        changes = detect_changes(local_members, entries)
        logger.debug(f"Detected changes for '{collection.title}': {changes.summary()}")

        item_count = len({entry.remote_item_id for entry in entries})
        return apply_changes(self.database, collection.id, changes, item_count)

    async def _fetch_membership(self, collection: Collection, run: _SyncRun) -> list[MembershipEntry]:
        """Fetch every membership page, reserving quota per request."""
        entries: list[MembershipEntry] = []
        seen_tokens: set[str] = set()
        page_token = None
        cost = self.ledger.cost_for("playlist.items")

        while True:
            async def fetch_page(token=page_token):
                self._reserve(run, "playlist.items", cost)
                return await self.client.get_membership_page(collection.remote_id, token)

            page = await self._execute(
                fetch_page, run,
                {"collection": collection.remote_id, "op": "playlist.items", "page": len(seen_tokens) + 1}
            )
            entries.extend(page.items)

            page_token = page.next_page_token
            if not page_token:
                break
            if page_token in seen_tokens:
                raise SyncError(
                    f"Remote returned a repeated page token for {collection.remote_id}",
                    details={"page_token": page_token}
                )
            seen_tokens.add(page_token)

        logger.debug(f"Fetched {len(entries)} membership entries for '{collection.title}'")
        return entries

    async def _fetch_item_details(
        self,
        collection: Collection,
        entries: Sequence[MembershipEntry],
        run: _SyncRun
    ) -> int:
        """Fetch and upsert details for items not yet stored (or all, if refresh_items)."""
        remote_ids = list(dict.fromkeys(entry.remote_item_id for entry in entries))
        if not self.config.refresh_items:
            known = self.database.get_known_item_remote_ids(remote_ids)
            remote_ids = [rid for rid in remote_ids if rid not in known]

        if not remote_ids:
            return 0

        batch_size = min(self.config.batch_size, MAX_BATCH_SIZE)
        stored = 0
        for start in range(0, len(remote_ids), batch_size):
            batch = remote_ids[start:start + batch_size]
            cost = self.ledger.cost_for("video.details", len(batch))

            async def fetch_batch(ids=batch):
                self._reserve(run, "video.details", cost)
                return await self.client.get_item_details_batch(ids)

            details = await self._execute(
                fetch_batch, run,
                {"collection": collection.remote_id, "op": "video.details", "items": len(batch)}
            )
            stored += self.database.upsert_items(details)

        logger.debug(f"Stored details for {stored}/{len(remote_ids)} new items in '{collection.title}'")
        return stored

    def _reserve(self, run: _SyncRun, operation_type: str, cost: int) -> None:
        self.ledger.require(operation_type, cost)
        run.quota_used += cost

    async def _execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        run: _SyncRun,
        context: dict[str, Any]
    ) -> Any:
        """Run through the resilience layer; re-raise the final error on failure."""
        result = await self.resilience.execute(operation, context)
        run.attempts += result.attempts
        if not result.success:
            run.error_kind = result.kind
        return result.unwrap()

    def _finish_failed(
        self,
        collection: Collection,
        audit_id: int | None,
        run: _SyncRun,
        started: float,
        error: BaseException
    ) -> SyncResult:
        kind = run.error_kind or classify_error(error)
        duration_ms = _elapsed_ms(started)
        message = str(error) or type(error).__name__

        if audit_id is not None:
            try:
                self.database.finish_sync_audit(
                    audit_id,
                    SyncStatus.FAILED,
                    completed_at=utc_now(),
                    duration_ms=duration_ms,
                    quota_used=run.quota_used,
                    error_message=message,
                )
            except Exception:
                logger.exception(f"Failed to record sync failure for audit {audit_id}")

        try:
            self.database.release_sync_lock(collection.id, SyncStatus.FAILED)
        except Exception:
            logger.exception(
                f"Failed to release sync lock for '{collection.title}'; "
                f"run 'playlist-sync unlock {collection.id}' to clear it"
            )

        log_sync_failure(
            logger,
            collection.id,
            message,
            title=collection.title,
            remote_id=collection.remote_id,
            kind=kind.value,
        )
        return SyncResult(
            collection_id=collection.id,
            status=SyncStatus.FAILED,
            quota_used=run.quota_used,
            duration_ms=duration_ms,
            error=error,
            error_kind=kind,
            attempts=run.attempts,
            audit_id=audit_id,
            remote_id=collection.remote_id,
            title=collection.title,
        )

    # =========================================================================
    # Batch
    # =========================================================================

    async def sync_collections(
        self,
        collection_refs: Iterable[int | str],
        on_complete: Callable[[SyncResult], None] | None = None
    ) -> list[SyncResult]:
        """
        Synchronize several collections, at most config.max_concurrent at once.

        Args:
            collection_refs: Local or remote ids.
            on_complete: Called with each result as it finishes (progress bars).

        Returns:
            Results in input order.
        """
        semaphore = asyncio.Semaphore(max(self.config.max_concurrent, 1))

        async def run_one(ref: int | str) -> SyncResult:
            async with semaphore:
                result = await self.sync_collection(ref)
            if on_complete is not None:
                on_complete(result)
            return result

        results = await asyncio.gather(*(run_one(ref) for ref in collection_refs))

        failed = sum(1 for r in results if not r.success)
        logger.info(f"Batch sync finished: {len(results) - failed} completed, {failed} failed")
        return list(results)

    async def sync_all(
        self,
        on_complete: Callable[[SyncResult], None] | None = None
    ) -> list[SyncResult]:
        """Synchronize every stored collection."""
        collections = self.database.list_collections()
        if not collections:
            logger.info("No collections to sync")
            return []
        return await self.sync_collections([c.id for c in collections], on_complete)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
