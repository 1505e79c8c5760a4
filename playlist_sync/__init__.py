"""
playlist-sync: Mirror remote YouTube playlists into a local SQLite database.

Each synchronization fetches the remote membership of a playlist, diffs it
against the locally stored copy and applies the differences in one
transaction, while staying under the daily API quota and surviving
transient remote failures.

Architecture:
    quota/       Daily quota ledger: atomic reserve-and-record per UTC day
    resilience/  Error classification, backoff retry, circuit breaker
    remote/      Remote client protocol and the aiohttp YouTube client
    sync/        Change detector, transactional applier, orchestrator,
                 collection management, periodic scheduler
    core/        Configuration, database, logging, exceptions, models
    cli.py       Command-line interface

Usage:
    Command Line:
        playlist-sync import "https://www.youtube.com/playlist?list=PL..."
        playlist-sync sync --all

    Python API:
        from playlist_sync.core import Database, load_config
        from playlist_sync.quota import QuotaLedger
        from playlist_sync.resilience import CircuitBreaker, ResilienceLayer, RetryPolicy
        from playlist_sync.remote import YouTubeClient
        from playlist_sync.sync import SyncOrchestrator

        config = load_config()
        db = Database(config.database.path)
        async with YouTubeClient(config.youtube) as client:
            ledger = QuotaLedger(db, config.quota)
            layer = ResilienceLayer(RetryPolicy.from_config(config.retry),
                                    CircuitBreaker(config.circuit_breaker))
            orchestrator = SyncOrchestrator(db, client, ledger, layer, config.sync)
            results = await orchestrator.sync_all()
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
