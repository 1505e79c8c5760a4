"""
Command-line interface for playlist-sync.

This module implements the CLI using Click; rich-click is used for the
help output. Every command loads config.yaml, sets up logging, builds the
services explicitly and runs its coroutine with asyncio.run().

Commands:
    playlist-sync import <url-or-id>        Start mirroring a playlist
    playlist-sync sync <id>...              Sync the given collections
    playlist-sync sync --all                Sync every stored collection
    playlist-sync list                      List stored collections
    playlist-sync show <id>                 List a collection's current items
    playlist-sync quota [--days N]          Show today's quota and history
    playlist-sync stats <id>                Show sync history statistics
    playlist-sync unlock <id>               Clear a lock left by a crashed sync
    playlist-sync schedule add <id> <every> Sync a collection periodically (30m, 6h, 1d)
    playlist-sync schedule list             List schedules
    playlist-sync schedule update <id> ...  Change interval, enable or disable
    playlist-sync schedule remove <id>      Delete a schedule
    playlist-sync watch [--once]            Run due scheduled syncs until interrupted

Collections can be referenced by local id or by remote playlist id.

Exit codes:
    0    Success
    1    Configuration, database or remote error, or any failed sync
    130  Interrupted
"""

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

import rich_click as click
from tqdm import tqdm

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.MAX_WIDTH = 100

from playlist_sync import __version__
from playlist_sync.core import (
    Config,
    ConfigError,
    Database,
    DatabaseError,
    PlaylistSyncError,
    RecordNotFoundError,
    SyncSchedule,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from playlist_sync.quota import QuotaLedger
from playlist_sync.remote import RemoteCollectionClient, YouTubeClient
from playlist_sync.resilience import CircuitBreaker, ResilienceLayer, RetryPolicy
from playlist_sync.sync import (
    CollectionManager,
    SchedulerRun,
    SyncOrchestrator,
    SyncResult,
    SyncScheduler,
    format_interval,
)


logger = get_logger(__name__)


@dataclass
class Services:
    """Everything a command needs, built once per invocation."""
    config: Config
    database: Database
    client: RemoteCollectionClient
    ledger: QuotaLedger
    resilience: ResilienceLayer
    orchestrator: SyncOrchestrator
    manager: CollectionManager
    scheduler: SyncScheduler


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.version_option(__version__, prog_name="playlist-sync")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """
    playlist-sync: Mirror YouTube playlists into a local SQLite database.

    \b
    BASIC USAGE:
        playlist-sync import "https://www.youtube.com/playlist?list=PL..."
        playlist-sync sync --all
        playlist-sync quota --days 7

    Each sync fetches the remote membership, diffs it against the local
    copy and applies additions, removals and moves in one transaction.
    Every remote call is charged against the daily quota first.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command("import")
@click.argument("url_or_id")
@click.pass_context
def import_command(ctx: click.Context, url_or_id: str) -> None:
    """Import a playlist by URL or id."""
    async def command(services: Services) -> int:
        collection, created = await services.manager.import_collection(url_or_id)
        verb = "Imported" if created else "Already imported"
        click.echo(
            f"{verb}: [{collection.id}] {collection.title} "
            f"({collection.remote_id}, {collection.item_count} items)"
        )
        return 0

    _run_command(ctx, command)


@cli.command("sync")
@click.argument("collections", nargs=-1)
@click.option("--all", "sync_all", is_flag=True, help="Sync every stored collection")
@click.pass_context
def sync_command(ctx: click.Context, collections: tuple[str, ...], sync_all: bool) -> None:
    """Sync one or more collections (local or remote ids)."""
    if sync_all and collections:
        raise click.UsageError("Cannot combine --all with explicit collections")
    if not sync_all and not collections:
        raise click.UsageError("Specify collections to sync or use --all")

    async def command(services: Services) -> int:
        if sync_all:
            refs: list[int | str] = [c.id for c in services.database.list_collections()]
            if not refs:
                click.echo("No collections to sync. Import one first.")
                return 0
        else:
            refs = list(collections)

        with tqdm(total=len(refs), desc="Syncing", unit="playlist") as progress:
            results = await services.orchestrator.sync_collections(
                refs, on_complete=lambda _: progress.update(1)
            )

        for result in results:
            click.echo(_format_result(result))

        failed = [r for r in results if not r.success]
        click.echo(f"{len(results) - len(failed)} completed, {len(failed)} failed")
        return 1 if failed else 0

    _run_command(ctx, command)


@cli.command("list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List stored collections."""
    async def command(services: Services) -> int:
        collections = services.manager.list_collections()
        if not collections:
            click.echo("No collections imported yet.")
            return 0

        for c in collections:
            last = c.last_synced_at.strftime("%Y-%m-%d %H:%M") if c.last_synced_at else "never"
            click.echo(
                f"[{c.id:>3}] {c.title} ({c.remote_id}) "
                f"items={c.item_count} status={c.sync_status.value} last_sync={last}"
            )
        return 0

    _run_command(ctx, command)


@cli.command("show")
@click.argument("collection")
@click.pass_context
def show_command(ctx: click.Context, collection: str) -> None:
    """List the current items of a collection in playlist order."""
    async def command(services: Services) -> int:
        found, members = services.manager.get_members(collection)
        click.echo(f"{found.title} ({found.remote_id}): {len(members)} items")

        for member, item in members:
            added = member.added_at.strftime("%Y-%m-%d") if member.added_at else "-"
            click.echo(
                f"  {member.position + 1:>4}. {item.title} ({item.remote_id}) "
                f"{_format_duration(item.duration_seconds)} added={added}"
            )
        return 0

    _run_command(ctx, command)


@cli.command("quota")
@click.option("--days", type=click.IntRange(min=1), default=1, show_default=True,
              help="Days of history to show")
@click.pass_context
def quota_command(ctx: click.Context, days: int) -> None:
    """Show quota usage."""
    async def command(services: Services) -> int:
        today = services.ledger.get_today_usage()
        click.echo(
            f"Today ({today.day.isoformat()}): {today.used}/{today.limit} used "
            f"({today.percent_used:.1f}%), {today.remaining} remaining"
        )

        if days > 1:
            for stats in services.ledger.get_usage_stats(days):
                click.echo(
                    f"  {stats.day.isoformat()}: {stats.used}/{stats.limit} "
                    f"({stats.percent_used:.1f}%) in {stats.operations} operations"
                )
                for op_type, bucket in sorted(stats.operations_by_type.items()):
                    click.echo(f"      {op_type}: {bucket['count']} calls, {bucket['total_cost']} units")
        return 0

    _run_command(ctx, command)


@cli.command("stats")
@click.argument("collection")
@click.pass_context
def stats_command(ctx: click.Context, collection: str) -> None:
    """Show sync statistics for a collection."""
    async def command(services: Services) -> int:
        found = services.manager.get_collection(collection)
        stats = services.manager.get_sync_stats(found.id)
        average = f"{stats.average_duration_ms:.0f}ms" if stats.average_duration_ms is not None else "N/A"
        last = stats.last_sync.isoformat() if stats.last_sync else "never"

        click.echo(f"{found.title} ({found.remote_id})")
        click.echo(f"  Status:           {found.sync_status.value}")
        click.echo(f"  Items:            {found.item_count}")
        click.echo(f"  Total syncs:      {stats.total_syncs}")
        click.echo(f"  Successful:       {stats.successful_syncs}")
        click.echo(f"  Failed:           {stats.failed_syncs}")
        click.echo(f"  Last sync:        {last}")
        click.echo(f"  Average duration: {average}")
        return 0

    _run_command(ctx, command)


@cli.command("unlock")
@click.argument("collection")
@click.pass_context
def unlock_command(ctx: click.Context, collection: str) -> None:
    """Clear a sync lock left behind by a crashed run."""
    async def command(services: Services) -> int:
        if services.manager.release_stale_lock(collection):
            click.echo(f"Released sync lock on {collection}")
        else:
            click.echo(f"{collection} is not locked")
        return 0

    _run_command(ctx, command)


@cli.group("schedule")
def schedule_group() -> None:
    """Manage periodic syncs (run them with `playlist-sync watch`)."""


@schedule_group.command("add")
@click.argument("collection")
@click.argument("interval")
@click.option("--disabled", is_flag=True, help="Create the schedule without enabling it")
@click.option("--max-retries", type=click.IntRange(min=1), default=None,
              help="Consecutive failures before the schedule is disabled")
@click.pass_context
def schedule_add_command(
    ctx: click.Context,
    collection: str,
    interval: str,
    disabled: bool,
    max_retries: int | None
) -> None:
    """Sync COLLECTION every INTERVAL (e.g. 30m, 6h, 1d)."""
    async def command(services: Services) -> int:
        schedule = services.scheduler.add_schedule(
            collection, interval, enabled=not disabled, max_retries=max_retries
        )
        click.echo(f"Scheduled {collection}: {_format_schedule(schedule)}")
        return 0

    _run_command(ctx, command)


@schedule_group.command("list")
@click.option("--enabled-only", is_flag=True, help="Hide disabled schedules")
@click.pass_context
def schedule_list_command(ctx: click.Context, enabled_only: bool) -> None:
    """List sync schedules, soonest first."""
    async def command(services: Services) -> int:
        schedules = services.scheduler.list_schedules(enabled_only)
        if not schedules:
            click.echo("No schedules found.")
            return 0

        for schedule in schedules:
            found = services.database.get_collection(schedule.collection_id)
            name = f"{found.title} ({found.remote_id})" if found else str(schedule.collection_id)
            click.echo(f"[{schedule.collection_id:>3}] {name}: {_format_schedule(schedule)}")
        return 0

    _run_command(ctx, command)


@schedule_group.command("update")
@click.argument("collection")
@click.option("--interval", default=None, help="New interval (restarts the countdown)")
@click.option("--enable/--disable", "enabled", default=None, help="Enable or disable the schedule")
@click.option("--max-retries", type=click.IntRange(min=1), default=None,
              help="Consecutive failures before the schedule is disabled")
@click.pass_context
def schedule_update_command(
    ctx: click.Context,
    collection: str,
    interval: str | None,
    enabled: bool | None,
    max_retries: int | None
) -> None:
    """Change the schedule of COLLECTION."""
    if interval is None and enabled is None and max_retries is None:
        raise click.UsageError("Nothing to update: pass --interval, --enable/--disable or --max-retries")

    async def command(services: Services) -> int:
        schedule = services.scheduler.update_schedule(
            collection, interval=interval, enabled=enabled, max_retries=max_retries
        )
        click.echo(f"Updated {collection}: {_format_schedule(schedule)}")
        return 0

    _run_command(ctx, command)


@schedule_group.command("remove")
@click.argument("collection")
@click.pass_context
def schedule_remove_command(ctx: click.Context, collection: str) -> None:
    """Delete the schedule of COLLECTION."""
    async def command(services: Services) -> int:
        if services.scheduler.remove_schedule(collection):
            click.echo(f"Removed schedule for {collection}")
        else:
            click.echo(f"{collection} has no schedule")
        return 0

    _run_command(ctx, command)


@cli.command("watch")
@click.option("--once", is_flag=True, help="Run the due syncs once and exit")
@click.pass_context
def watch_command(ctx: click.Context, once: bool) -> None:
    """Run scheduled syncs as they come due (Ctrl+C to stop)."""
    async def command(services: Services) -> int:
        if once:
            run = await services.scheduler.run_due()
            if not run.results and not run.postponed:
                click.echo("No scheduled syncs due")
            _report_cycle(run)
            return 1 if any(not r.success for r in run.results) else 0

        click.echo(
            f"Watching {len(services.scheduler.list_schedules(enabled_only=True))} schedule(s), "
            f"polling every {services.config.scheduler.poll_interval:g}s"
        )
        await services.scheduler.run_forever(on_cycle=_report_cycle)
        return 0

    _run_command(ctx, command)


def _create_client(config: Config) -> RemoteCollectionClient:
    return YouTubeClient(config.youtube, page_size=config.quota.page_size)


def _build_services(config: Config, database: Database, client: RemoteCollectionClient) -> Services:
    ledger = QuotaLedger(database, config.quota)
    resilience = ResilienceLayer(
        RetryPolicy.from_config(config.retry),
        CircuitBreaker(config.circuit_breaker, name="youtube"),
        credential_refresher=client.refresh_credentials if config.youtube.can_refresh else None,
    )
    orchestrator = SyncOrchestrator(database, client, ledger, resilience, config.sync)
    return Services(
        config=config,
        database=database,
        client=client,
        ledger=ledger,
        resilience=resilience,
        orchestrator=orchestrator,
        manager=CollectionManager(database, client, ledger, resilience),
        scheduler=SyncScheduler(database, orchestrator, ledger, config.scheduler),
    )


async def _with_services(
    config: Config,
    database: Database,
    command: Callable[[Services], Awaitable[int]]
) -> int:
    client = _create_client(config)
    try:
        return await command(_build_services(config, database, client))
    finally:
        close = getattr(client, "close", None)
        if close is not None:
            await close()


def _run_command(ctx: click.Context, command: Callable[[Services], Awaitable[int]]) -> None:
    """
    Load configuration, set up logging and the database, then run `command`.

    Raises:
        SystemExit: With a non-zero code on errors or failed syncs.
    """
    exit_code = 0
    database: Database | None = None

    try:
        config = load_config(ctx.obj.get("config_path"))

        if config.logging.directory is not None:
            config.logging.directory.mkdir(parents=True, exist_ok=True)
        setup_logging(config.logging.directory, config.logging.level)

        config.database.path.parent.mkdir(parents=True, exist_ok=True)
        database = Database(config.database.path)

        exit_code = asyncio.run(_with_services(config, database, command))

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        exit_code = 1

    except RecordNotFoundError as e:
        click.echo(f"Error: {e.message}", err=True)
        exit_code = 1

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        exit_code = 1

    except PlaylistSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        exit_code = 1

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        exit_code = 130

    finally:
        if database is not None:
            database.close()
        shutdown_logging()

    if exit_code:
        sys.exit(exit_code)


def _format_result(result: SyncResult) -> str:
    name = result.title or str(result.collection_id or "?")
    if result.success:
        line = (
            f"OK     {name}: +{result.items_added} -{result.items_removed} "
            f"~{result.items_reordered} ({result.quota_used} quota, {result.duration_ms}ms)"
        )
        if result.items_skipped:
            line += f", {result.items_skipped} skipped"
        return line
    kind = result.error_kind.value if result.error_kind else "unknown"
    return f"FAILED {name}: [{kind}] {result.error_message}"


def _format_schedule(schedule: SyncSchedule) -> str:
    state = "enabled" if schedule.enabled else "disabled"
    last = schedule.last_run_at.strftime("%Y-%m-%d %H:%M") if schedule.last_run_at else "never"
    return (
        f"every {format_interval(schedule.interval_seconds)}, {state}, "
        f"next={schedule.next_run_at.strftime('%Y-%m-%d %H:%M')} last={last} "
        f"failures={schedule.retry_count}/{schedule.max_retries}"
    )


def _format_duration(seconds: int | None) -> str:
    if seconds is None:
        return "--:--"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}" if hours else f"{minutes}:{secs:02d}"


def _report_cycle(run: SchedulerRun) -> None:
    if run.postponed:
        click.echo(f"Quota low; postponed {len(run.postponed)} scheduled sync(s)")
    for result in run.results:
        click.echo(_format_result(result))
    for collection_id in run.disabled:
        click.echo(f"Disabled schedule for collection {collection_id} after repeated failures")


def main() -> None:
    """Entry point for the `playlist-sync` console script."""
    cli()


if __name__ == "__main__":
    main()
