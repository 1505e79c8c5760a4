"""Change detection, transactional apply, sync orchestration and scheduling."""

from playlist_sync.sync.applier import ApplyResult, apply_changes
from playlist_sync.sync.collections import CollectionManager, SyncStats
from playlist_sync.sync.detector import ChangeSet, Reorder, detect_changes
from playlist_sync.sync.orchestrator import SyncOrchestrator, SyncResult
from playlist_sync.sync.scheduler import SchedulerRun, SyncScheduler, format_interval, parse_interval

__all__ = [
    "ApplyResult",
    "ChangeSet",
    "CollectionManager",
    "Reorder",
    "SchedulerRun",
    "SyncOrchestrator",
    "SyncResult",
    "SyncScheduler",
    "SyncStats",
    "apply_changes",
    "detect_changes",
    "format_interval",
    "parse_interval",
]
