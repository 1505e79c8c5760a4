"""
Thread-safe SQLite database for playlist-sync.

Each remote video is stored once in `items` and linked to collections via
`members`. Removed members are tombstoned (removed_at set), never deleted,
so the history of a playlist survives across syncs.

Schema:
    collections:        Mirrored playlists (remote_id, title, sync_status, ...)
    items:              One row per unique remote video id
    members:            Junction table (collection_id, item_id, position, removed_at)
    sync_audits:        One row per synchronization attempt
    quota_usage:        One row per UTC day (used, quota_limit)
    quota_operations:   Append-only log of quota reservations
    sync_schedules:     Periodic sync settings, at most one per collection

Locking:
    The per-collection sync lock is the persisted `sync_status` column. It is
    taken with a conditional UPDATE, so it holds across processes and
    restarts. Multi-statement writes run inside transaction(), which issues
    BEGIN IMMEDIATE: SQLite then serializes writers across processes too.

Usage:
    db = Database(data_dir / "playlist-sync.db")

    collection = db.add_collection("PLabc123", "Morning Mix")
    if db.try_acquire_sync_lock(collection.id):
        ...
        db.release_sync_lock(collection.id, SyncStatus.COMPLETED)
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, Iterable

from playlist_sync.core.exceptions import DatabaseError
from playlist_sync.core.models import (
    Collection,
    Item,
    Member,
    QuotaUsage,
    SyncAudit,
    SyncSchedule,
    SyncStatus,
)

if TYPE_CHECKING:
    from playlist_sync.remote.models import ItemDetails


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS collections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    channel_title TEXT,
    item_count INTEGER NOT NULL DEFAULT 0,
    sync_status TEXT NOT NULL DEFAULT 'PENDING',
    last_synced_at TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    channel_title TEXT,
    duration_seconds INTEGER,
    thumbnail_url TEXT,
    published_at TEXT,
    view_count INTEGER,
    metadata TEXT,  -- JSON blob for the full remote response
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id INTEGER NOT NULL,
    item_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    added_at TEXT,
    removed_at TEXT,
    FOREIGN KEY (collection_id) REFERENCES collections(id),
    FOREIGN KEY (item_id) REFERENCES items(id)
);

CREATE TABLE IF NOT EXISTS sync_audits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id INTEGER NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    duration_ms INTEGER,
    items_added INTEGER NOT NULL DEFAULT 0,
    items_removed INTEGER NOT NULL DEFAULT 0,
    items_reordered INTEGER NOT NULL DEFAULT 0,
    quota_used INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE TABLE IF NOT EXISTS quota_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    day TEXT UNIQUE NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    quota_limit INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS quota_operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    quota_usage_id INTEGER NOT NULL,
    operation_type TEXT NOT NULL,
    cost INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (quota_usage_id) REFERENCES quota_usage(id)
);

CREATE TABLE IF NOT EXISTS sync_schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id INTEGER UNIQUE NOT NULL,
    interval_seconds INTEGER NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    next_run_at TEXT NOT NULL,
    last_run_at TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_members_active_unique
    ON members(collection_id, item_id) WHERE removed_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_members_collection ON members(collection_id, removed_at);
CREATE INDEX IF NOT EXISTS idx_sync_audits_collection ON sync_audits(collection_id);
CREATE INDEX IF NOT EXISTS idx_quota_operations_usage ON quota_operations(quota_usage_id);
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Database:
    """
    Thread-safe SQLite database.

    Uses a single persistent connection in autocommit mode with thread
    locking for safety. Single-statement methods acquire self._lock;
    multi-statement writes go through transaction().
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations. It runs
        in autocommit mode (isolation_level=None); transactions are explicit.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                isolation_level=None,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run a block of statements as one atomic write transaction.

        Commits when the block exits normally, rolls back on any exception.
        sqlite3 errors are re-raised as DatabaseError.

        Example:
            with db.transaction() as conn:
                db.tombstone_member(conn, member.id, now)
                db.insert_member(conn, collection_id, item_id, 0, now)
        """
        with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise DatabaseError(
                        f"Failed to begin transaction: {e}",
                        details={"path": str(self.db_path)}
                    ) from e
                try:
                    yield conn
                except BaseException as e:
                    conn.execute("ROLLBACK")
                    if isinstance(e, sqlite3.Error):
                        raise DatabaseError(
                            f"Transaction failed: {e}",
                            details={"original_error": str(e)}
                        ) from e
                    raise
                else:
                    conn.execute("COMMIT")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __del__(self) -> None:
        if getattr(self, "_conn", None) is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )

    @contextmanager
    def _locked(self) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            with self._get_connection() as conn:
                try:
                    yield conn
                except sqlite3.Error as e:
                    raise DatabaseError(
                        f"Database operation failed: {e}",
                        details={"original_error": str(e)}
                    ) from e

    # =========================================================================
    # Row conversion
    # =========================================================================

    @staticmethod
    def _row_to_collection(row: sqlite3.Row) -> Collection:
        return Collection(
            id=row["id"],
            remote_id=row["remote_id"],
            title=row["title"],
            item_count=row["item_count"],
            sync_status=SyncStatus(row["sync_status"]),
            last_synced_at=_from_iso(row["last_synced_at"]),
            description=row["description"],
            channel_title=row["channel_title"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        metadata: dict[str, Any] = {}
        if row["metadata"]:
            try:
                metadata = json.loads(row["metadata"])
            except (json.JSONDecodeError, TypeError):
                metadata = {}
        return Item(
            id=row["id"],
            remote_id=row["remote_id"],
            title=row["title"],
            duration_seconds=row["duration_seconds"],
            description=row["description"],
            channel_title=row["channel_title"],
            thumbnail_url=row["thumbnail_url"],
            published_at=row["published_at"],
            view_count=row["view_count"],
            metadata=metadata,
        )

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            collection_id=row["collection_id"],
            item_id=row["item_id"],
            item_remote_id=row["item_remote_id"],
            position=row["position"],
            added_at=_from_iso(row["added_at"]),
            removed_at=_from_iso(row["removed_at"]),
        )

    @staticmethod
    def _row_to_audit(row: sqlite3.Row) -> SyncAudit:
        return SyncAudit(
            id=row["id"],
            collection_id=row["collection_id"],
            status=SyncStatus(row["status"]),
            started_at=_from_iso(row["started_at"]),
            completed_at=_from_iso(row["completed_at"]),
            duration_ms=row["duration_ms"],
            items_added=row["items_added"],
            items_removed=row["items_removed"],
            items_reordered=row["items_reordered"],
            quota_used=row["quota_used"],
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_schedule(row: sqlite3.Row) -> SyncSchedule:
        return SyncSchedule(
            id=row["id"],
            collection_id=row["collection_id"],
            interval_seconds=row["interval_seconds"],
            enabled=bool(row["enabled"]),
            next_run_at=_from_iso(row["next_run_at"]),
            last_run_at=_from_iso(row["last_run_at"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    # =========================================================================
    # Collection Operations
    # =========================================================================

    def add_collection(
        self,
        remote_id: str,
        title: str,
        item_count: int = 0,
        description: str | None = None,
        channel_title: str | None = None
    ) -> Collection:
        """Create a collection in PENDING state, or return the existing one."""
        now = _to_iso(utc_now())
        with self._locked() as conn:
            conn.execute("""
                INSERT INTO collections (
                    remote_id, title, description, channel_title, item_count,
                    sync_status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(remote_id) DO NOTHING
            """, (remote_id, title, description, channel_title, item_count,
                  SyncStatus.PENDING.value, now, now))
            row = conn.execute(
                "SELECT * FROM collections WHERE remote_id = ?", (remote_id,)
            ).fetchone()
            return self._row_to_collection(row)

    def update_collection_metadata(
        self,
        collection_id: int,
        title: str,
        item_count: int,
        description: str | None = None,
        channel_title: str | None = None
    ) -> None:
        """Refresh display metadata. Does not touch the sync lock."""
        with self._locked() as conn:
            conn.execute("""
                UPDATE collections SET
                    title = ?, description = ?, channel_title = ?,
                    item_count = ?, updated_at = ?
                WHERE id = ?
            """, (title, description, channel_title, item_count,
                  _to_iso(utc_now()), collection_id))

    def get_collection(self, collection_id: int) -> Collection | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT * FROM collections WHERE id = ?", (collection_id,)
            ).fetchone()
            return self._row_to_collection(row) if row else None

    def get_collection_by_remote_id(self, remote_id: str) -> Collection | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT * FROM collections WHERE remote_id = ?", (remote_id,)
            ).fetchone()
            return self._row_to_collection(row) if row else None

    def find_collection(self, identifier: int | str) -> Collection | None:
        """Look a collection up by local id or remote id."""
        if isinstance(identifier, int):
            return self.get_collection(identifier)

        collection = self.get_collection_by_remote_id(identifier)
        if collection is None and identifier.isdigit():
            collection = self.get_collection(int(identifier))
        return collection

    def list_collections(self) -> list[Collection]:
        with self._locked() as conn:
            cursor = conn.execute("SELECT * FROM collections ORDER BY title, id")
            return [self._row_to_collection(row) for row in cursor.fetchall()]

    def try_acquire_sync_lock(self, collection_id: int) -> bool:
        """
        Atomically move a collection to IN_PROGRESS.

        Returns:
            True if the lock was taken, False if the collection is already
            IN_PROGRESS (or does not exist).
        """
        with self._locked() as conn:
            cursor = conn.execute("""
                UPDATE collections SET sync_status = ?, updated_at = ?
                WHERE id = ? AND sync_status != ?
            """, (SyncStatus.IN_PROGRESS.value, _to_iso(utc_now()),
                  collection_id, SyncStatus.IN_PROGRESS.value))
            return cursor.rowcount == 1

    def release_sync_lock(self, collection_id: int, status: SyncStatus) -> None:
        """Release the lock into a terminal status (COMPLETED or FAILED)."""
        if status not in (SyncStatus.COMPLETED, SyncStatus.FAILED):
            raise DatabaseError(
                f"Cannot release sync lock into status {status.value}",
                details={"collection_id": collection_id, "status": status.value}
            )
        with self._locked() as conn:
            conn.execute(
                "UPDATE collections SET sync_status = ?, updated_at = ? WHERE id = ?",
                (status.value, _to_iso(utc_now()), collection_id)
            )

    def force_release_sync_lock(self, collection_id: int) -> bool:
        """
        Move a stuck IN_PROGRESS collection to FAILED.

        Returns:
            True if a lock was released, False if the collection was not locked.
        """
        with self._locked() as conn:
            cursor = conn.execute("""
                UPDATE collections SET sync_status = ?, updated_at = ?
                WHERE id = ? AND sync_status = ?
            """, (SyncStatus.FAILED.value, _to_iso(utc_now()),
                  collection_id, SyncStatus.IN_PROGRESS.value))
            return cursor.rowcount == 1

    # =========================================================================
    # Item Registry
    # =========================================================================

    def upsert_items(self, items: Iterable["ItemDetails"]) -> int:
        """
        Insert or update items by remote id in a single transaction.

        Returns:
            Number of items written.
        """
        now = _to_iso(utc_now())
        count = 0
        with self.transaction() as conn:
            for item in items:
                conn.execute("""
                    INSERT INTO items (
                        remote_id, title, description, channel_title,
                        duration_seconds, thumbnail_url, published_at,
                        view_count, metadata, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(remote_id) DO UPDATE SET
                        title = excluded.title,
                        description = excluded.description,
                        channel_title = excluded.channel_title,
                        duration_seconds = excluded.duration_seconds,
                        thumbnail_url = excluded.thumbnail_url,
                        published_at = excluded.published_at,
                        view_count = excluded.view_count,
                        metadata = excluded.metadata,
                        updated_at = excluded.updated_at
                """, (
                    item.remote_item_id, item.title, item.description,
                    item.channel_title, item.duration_seconds, item.thumbnail_url,
                    item.published_at, item.view_count,
                    json.dumps(item.raw) if item.raw else None, now, now
                ))
                count += 1
        return count

    def get_item(self, remote_id: str) -> Item | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE remote_id = ?", (remote_id,)
            ).fetchone()
            return self._row_to_item(row) if row else None

    def get_known_item_remote_ids(self, remote_ids: Iterable[str]) -> set[str]:
        """Return the subset of remote_ids already stored in `items`."""
        with self._locked() as conn:
            return set(self.resolve_item_ids(conn, remote_ids))

    def resolve_item_ids(self, conn: sqlite3.Connection, remote_ids: Iterable[str]) -> dict[str, int]:
        """Map remote ids to local item ids, using an open connection."""
        ids = list(dict.fromkeys(remote_ids))
        resolved: dict[str, int] = {}
        # SQLite caps bound parameters; query in chunks
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            cursor = conn.execute(
                f"SELECT id, remote_id FROM items WHERE remote_id IN ({placeholders})",
                chunk
            )
            resolved.update({row["remote_id"]: row["id"] for row in cursor.fetchall()})
        return resolved

    # =========================================================================
    # Members
    # =========================================================================

    def get_active_members(self, collection_id: int) -> list[Member]:
        """Active (non-tombstoned) members ordered by position."""
        with self._locked() as conn:
            cursor = conn.execute("""
                SELECT m.*, i.remote_id AS item_remote_id
                FROM members m
                JOIN items i ON i.id = m.item_id
                WHERE m.collection_id = ? AND m.removed_at IS NULL
                ORDER BY m.position, m.id
            """, (collection_id,))
            return [self._row_to_member(row) for row in cursor.fetchall()]

    def get_removed_members(self, collection_id: int) -> list[Member]:
        """Tombstoned members, most recently removed first."""
        with self._locked() as conn:
            cursor = conn.execute("""
                SELECT m.*, i.remote_id AS item_remote_id
                FROM members m
                JOIN items i ON i.id = m.item_id
                WHERE m.collection_id = ? AND m.removed_at IS NOT NULL
                ORDER BY m.removed_at DESC, m.id
            """, (collection_id,))
            return [self._row_to_member(row) for row in cursor.fetchall()]

    def get_active_member_items(self, collection_id: int) -> list[tuple[Member, Item]]:
        """Active members ordered by position, each with its cached item."""
        with self._locked() as conn:
            cursor = conn.execute("""
                SELECT m.*, i.remote_id AS item_remote_id
                FROM members m
                JOIN items i ON i.id = m.item_id
                WHERE m.collection_id = ? AND m.removed_at IS NULL
                ORDER BY m.position, m.id
            """, (collection_id,))
            members = [self._row_to_member(row) for row in cursor.fetchall()]

            items: dict[int, Item] = {}
            item_ids = list({m.item_id for m in members})
            for start in range(0, len(item_ids), 500):
                chunk = item_ids[start:start + 500]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT * FROM items WHERE id IN ({placeholders})", chunk
                ).fetchall()
                items.update({row["id"]: self._row_to_item(row) for row in rows})

            return [(m, items[m.item_id]) for m in members]

    def tombstone_member(self, conn: sqlite3.Connection, member_id: int, removed_at: datetime) -> None:
        conn.execute(
            "UPDATE members SET removed_at = ? WHERE id = ? AND removed_at IS NULL",
            (_to_iso(removed_at), member_id)
        )

    def insert_member(
        self,
        conn: sqlite3.Connection,
        collection_id: int,
        item_id: int,
        position: int,
        added_at: datetime
    ) -> int:
        cursor = conn.execute("""
            INSERT INTO members (collection_id, item_id, position, added_at)
            VALUES (?, ?, ?, ?)
        """, (collection_id, item_id, position, _to_iso(added_at)))
        return cursor.lastrowid

    def update_member_position(self, conn: sqlite3.Connection, member_id: int, position: int) -> None:
        conn.execute("UPDATE members SET position = ? WHERE id = ?", (position, member_id))

    def mark_collection_synced(
        self,
        conn: sqlite3.Connection,
        collection_id: int,
        item_count: int,
        synced_at: datetime
    ) -> None:
        cursor = conn.execute("""
            UPDATE collections SET item_count = ?, last_synced_at = ?, updated_at = ?
            WHERE id = ?
        """, (item_count, _to_iso(synced_at), _to_iso(synced_at), collection_id))
        if cursor.rowcount != 1:
            raise DatabaseError(
                f"Collection disappeared during sync: {collection_id}",
                details={"collection_id": collection_id}
            )

    # =========================================================================
    # Sync Audits
    # =========================================================================

    def create_sync_audit(self, collection_id: int, started_at: datetime) -> int:
        with self._locked() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_audits (collection_id, status, started_at)
                VALUES (?, ?, ?)
            """, (collection_id, SyncStatus.IN_PROGRESS.value, _to_iso(started_at)))
            return cursor.lastrowid

    def finish_sync_audit(
        self,
        audit_id: int,
        status: SyncStatus,
        completed_at: datetime,
        duration_ms: int,
        items_added: int = 0,
        items_removed: int = 0,
        items_reordered: int = 0,
        quota_used: int = 0,
        error_message: str | None = None
    ) -> None:
        with self._locked() as conn:
            conn.execute("""
                UPDATE sync_audits SET
                    status = ?, completed_at = ?, duration_ms = ?,
                    items_added = ?, items_removed = ?, items_reordered = ?,
                    quota_used = ?, error_message = ?
                WHERE id = ?
            """, (status.value, _to_iso(completed_at), duration_ms,
                  items_added, items_removed, items_reordered,
                  quota_used, error_message, audit_id))

    def get_sync_audit(self, audit_id: int) -> SyncAudit | None:
        with self._locked() as conn:
            row = conn.execute("SELECT * FROM sync_audits WHERE id = ?", (audit_id,)).fetchone()
            return self._row_to_audit(row) if row else None

    def get_sync_audits(self, collection_id: int, limit: int | None = None) -> list[SyncAudit]:
        """Audit rows for a collection, newest first."""
        query = "SELECT * FROM sync_audits WHERE collection_id = ? ORDER BY started_at DESC, id DESC"
        params: tuple = (collection_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (collection_id, limit)
        with self._locked() as conn:
            return [self._row_to_audit(row) for row in conn.execute(query, params).fetchall()]

    # =========================================================================
    # Sync Schedules
    # =========================================================================

    def add_schedule(
        self,
        collection_id: int,
        interval_seconds: int,
        next_run_at: datetime,
        enabled: bool = True,
        max_retries: int = 3
    ) -> bool:
        """
        Create the schedule for a collection.

        Returns:
            True if created, False if the collection already has one.
        """
        now = _to_iso(utc_now())
        with self._locked() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_schedules (
                    collection_id, interval_seconds, enabled, next_run_at,
                    max_retries, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(collection_id) DO NOTHING
            """, (collection_id, interval_seconds, int(enabled), _to_iso(next_run_at),
                  max_retries, now, now))
            return cursor.rowcount == 1

    def get_schedule(self, collection_id: int) -> SyncSchedule | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT * FROM sync_schedules WHERE collection_id = ?", (collection_id,)
            ).fetchone()
            return self._row_to_schedule(row) if row else None

    def list_schedules(self, enabled_only: bool = False) -> list[SyncSchedule]:
        """Schedules ordered by next run."""
        query = "SELECT * FROM sync_schedules"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY next_run_at, id"
        with self._locked() as conn:
            return [self._row_to_schedule(row) for row in conn.execute(query).fetchall()]

    def update_schedule(
        self,
        collection_id: int,
        interval_seconds: int | None = None,
        enabled: bool | None = None,
        max_retries: int | None = None,
        next_run_at: datetime | None = None,
        last_run_at: datetime | None = None,
        retry_count: int | None = None
    ) -> bool:
        """
        Update the given fields; None leaves a field unchanged.

        Returns:
            True if the schedule exists.
        """
        fields = {
            "interval_seconds": interval_seconds,
            "enabled": None if enabled is None else int(enabled),
            "max_retries": max_retries,
            "next_run_at": _to_iso(next_run_at),
            "last_run_at": _to_iso(last_run_at),
            "retry_count": retry_count,
        }
        updates = {k: v for k, v in fields.items() if v is not None}
        updates["updated_at"] = _to_iso(utc_now())

        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._locked() as conn:
            cursor = conn.execute(
                f"UPDATE sync_schedules SET {assignments} WHERE collection_id = ?",
                (*updates.values(), collection_id)
            )
            return cursor.rowcount == 1

    def record_schedule_outcome(self, collection_id: int, success: bool) -> SyncSchedule | None:
        """
        Count a scheduled run's outcome.

        Success resets retry_count. Failure increments it and disables the
        schedule once it reaches max_retries.

        Returns:
            The updated schedule, or None if it was deleted meanwhile.
        """
        now = _to_iso(utc_now())
        with self.transaction() as conn:
            if success:
                conn.execute("""
                    UPDATE sync_schedules SET retry_count = 0, updated_at = ?
                    WHERE collection_id = ?
                """, (now, collection_id))
            else:
                conn.execute("""
                    UPDATE sync_schedules SET
                        retry_count = retry_count + 1,
                        enabled = CASE WHEN retry_count + 1 >= max_retries THEN 0 ELSE enabled END,
                        updated_at = ?
                    WHERE collection_id = ?
                """, (now, collection_id))
            row = conn.execute(
                "SELECT * FROM sync_schedules WHERE collection_id = ?", (collection_id,)
            ).fetchone()
            return self._row_to_schedule(row) if row else None

    def delete_schedule(self, collection_id: int) -> bool:
        with self._locked() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_schedules WHERE collection_id = ?", (collection_id,)
            )
            return cursor.rowcount == 1

    # =========================================================================
    # Quota
    # =========================================================================

    def reserve_quota(
        self,
        day: date,
        operation_type: str,
        cost: int,
        default_limit: int,
        timestamp: datetime
    ) -> tuple[bool, QuotaUsage]:
        """
        Check-and-increment the day's usage in one write transaction.

        The day's row is created with default_limit on first use; later
        reservations honor the limit stored in the row. When the check fails
        nothing is written.

        Returns:
            (accepted, usage) where usage reflects the state after the call.
        """
        day_key = day.isoformat()
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id, used, quota_limit FROM quota_usage WHERE day = ?", (day_key,)
            ).fetchone()

            if row is None:
                used, limit = 0, default_limit
            else:
                used, limit = row["used"], row["quota_limit"]

            if used + cost > limit:
                return False, QuotaUsage(day=day, used=used, limit=limit)

            if row is None:
                cursor = conn.execute(
                    "INSERT INTO quota_usage (day, used, quota_limit) VALUES (?, ?, ?)",
                    (day_key, cost, limit)
                )
                usage_id = cursor.lastrowid
            else:
                usage_id = row["id"]
                conn.execute(
                    "UPDATE quota_usage SET used = used + ? WHERE id = ?", (cost, usage_id)
                )

            conn.execute("""
                INSERT INTO quota_operations (quota_usage_id, operation_type, cost, timestamp)
                VALUES (?, ?, ?, ?)
            """, (usage_id, operation_type, cost, _to_iso(timestamp)))

            return True, QuotaUsage(day=day, used=used + cost, limit=limit)

    def get_quota_usage(self, day: date) -> QuotaUsage | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT used, quota_limit FROM quota_usage WHERE day = ?", (day.isoformat(),)
            ).fetchone()
            if row is None:
                return None
            return QuotaUsage(day=day, used=row["used"], limit=row["quota_limit"])

    def get_quota_history(self, since: date) -> list[dict[str, Any]]:
        """
        Per-day usage since `since` (inclusive), newest first.

        Each entry: {"usage": QuotaUsage, "operations": [{"operation_type", "cost", "timestamp"}]}
        """
        with self._locked() as conn:
            days = conn.execute("""
                SELECT id, day, used, quota_limit FROM quota_usage
                WHERE day >= ? ORDER BY day DESC
            """, (since.isoformat(),)).fetchall()

            history = []
            for row in days:
                operations = conn.execute("""
                    SELECT operation_type, cost, timestamp FROM quota_operations
                    WHERE quota_usage_id = ? ORDER BY id
                """, (row["id"],)).fetchall()
                history.append({
                    "usage": QuotaUsage(
                        day=date.fromisoformat(row["day"]),
                        used=row["used"],
                        limit=row["quota_limit"],
                    ),
                    "operations": [dict(op) for op in operations],
                })
            return history
