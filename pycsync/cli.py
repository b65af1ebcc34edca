"""CLI interface for pycsync."""

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any, Optional

import click

from .config import PROVIDERS, Config, default_config_path, load_config
from .daemon import (
    SchedulerSettings,
    SyncScheduler,
    default_pid_file,
    is_process_running,
    read_pid_file,
    remove_pid_file,
    write_pid_file,
)
from .exceptions import ConfigError, RemoteError, ScanError, WatcherIOError
from .logging_utils import setup_logging
from .output import OutputFormatter
from .remote.base import RemoteStore
from .remote.factory import create_stores
from .sync import DirectoryScanner, HashCache, SyncManager, SyncResult
from .utils import format_duration, format_size, parse_duration
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def _parse_interval(ctx: Any, param: Any, value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _load_config(ctx: Any) -> Config:
    """Load and validate the configuration, exiting on errors."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)
        raise  # Unreachable, but helps type checker


def _resolve_source(ctx: Any, path: Optional[str], config: Config) -> Path:
    out: OutputFormatter = ctx.obj["out"]
    source = path or config.general.source_path
    if not source:
        out.error("No directory given and general.source_path is not configured")
        ctx.exit(1)
    local_path = Path(source).expanduser()
    if not local_path.is_dir():
        out.error(f"Path is not a directory: {local_path}")
        ctx.exit(1)
    return local_path


def _select_providers(ctx: Any, provider: Optional[str], config: Config) -> list[str]:
    out: OutputFormatter = ctx.obj["out"]
    if provider and provider != "all":
        return [provider]
    providers = config.enabled_providers()
    if not providers:
        out.error(
            "No providers configured. Set local.destination, pCloud credentials "
            "or a Google Drive token in the config file."
        )
        ctx.exit(1)
    return providers


def _create_stores(ctx: Any, providers: list[str], config: Config) -> dict:
    out: OutputFormatter = ctx.obj["out"]
    try:
        return create_stores(providers, config)
    except (ConfigError, RemoteError) as e:
        out.error(f"Cannot set up provider: {e}")
        ctx.exit(1)
        raise  # Unreachable, but helps type checker


def _hash_cache(config: Config, root: Path) -> Optional[HashCache]:
    if not config.general.hash_cache:
        return None
    cache = HashCache(HashCache.default_cache_file(root))
    cache.load()
    return cache


def _scheduler_settings(
    config: Config,
    interval: Optional[float] = None,
    watch: Optional[bool] = None,
) -> SchedulerSettings:
    return SchedulerSettings(
        sync_interval=config.sync_interval if interval is None else interval,
        watch_mode=config.daemon.watch_mode if watch is None else watch,
        poll_interval=config.poll_interval,
        debounce=config.debounce,
        filters=config.filters(),
        concurrency=config.general.max_concurrency,
        retry_attempts=config.general.retry_attempts,
        retry_delay=config.general.retry_delay,
    )


def _close_stores(stores: dict[str, RemoteStore]) -> None:
    for store in stores.values():
        store.close()


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="PYCSYNC_CONFIG",
    help="Configuration file (default: ~/.config/pycsync/config.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pycsync")
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """pycsync - Sync a local directory to pCloud, Google Drive or another disk."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    setup_logging(level=logging.WARNING, verbose=verbose)


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init(ctx: Any, force: bool) -> None:
    """Write a default configuration file."""
    out: OutputFormatter = ctx.obj["out"]
    path = ctx.obj["config_path"] or default_config_path()

    if path.exists() and not force:
        out.error(f"Config file already exists: {path} (use --force to overwrite)")
        ctx.exit(1)

    try:
        written = Config().save(path)
    except OSError as e:
        out.error(f"Cannot write config file: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.print_json({"config_file": str(written)})
        return
    out.success(f"Configuration written to {written}")
    out.info("Edit it to set general.source_path and at least one provider.")


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--ignore", "-i", multiple=True, help="Extra ignore pattern")
@click.option("--include", "-I", multiple=True, help="Include pattern")
@click.option("--no-hash", is_flag=True, help="Skip content hashing")
@click.pass_context
def scan(
    ctx: Any,
    path: str,
    ignore: tuple,
    include: tuple,
    no_hash: bool,
) -> None:
    """List the entries of PATH that would be synchronized.

    Examples:
        pycsync scan ./docs
        pycsync scan ./docs -i "*.log" -i "build/"
        pycsync --json scan ./docs --no-hash
    """
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)
    filters = config.filters(ignore, include)

    scanner = DirectoryScanner(filters, hash_contents=not no_hash)
    try:
        inventory = scanner.scan(Path(path))
    except ScanError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.print_json(
            [
                {
                    "path": entry.relative_path,
                    "is_dir": entry.is_dir,
                    "size": entry.size,
                    "mtime": entry.mtime,
                    "hash": entry.content_hash,
                }
                for entry in inventory
            ]
        )
        return

    rows = [
        [
            entry.relative_path + ("/" if entry.is_dir else ""),
            "dir" if entry.is_dir else format_size(entry.size),
            entry.content_hash,
        ]
        for entry in inventory
    ]
    out.print_table(["Path", "Size", "MD5"], rows, title=str(inventory.root))
    out.info(
        f"{len(inventory.files())} file(s), {len(inventory.directories())} "
        f"folder(s), {format_size(inventory.total_size)}"
    )


@main.command()
@click.argument("path", type=str, required=False)
@click.option(
    "--provider",
    "-p",
    type=click.Choice(list(PROVIDERS) + ["all"]),
    default=None,
    help="Provider to sync to (default: every configured provider)",
)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Number of parallel workers (default: general.max_concurrency)",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=None,
    help="Retries for transient errors (default: general.retry_attempts)",
)
@click.option("--ignore", "-i", multiple=True, help="Extra ignore pattern")
@click.option("--include", "-I", multiple=True, help="Include pattern")
@click.option("--strict", is_flag=True, help="Exit with status 1 if any entry failed")
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@click.pass_context
def sync(
    ctx: Any,
    path: Optional[str],
    provider: Optional[str],
    dry_run: bool,
    workers: Optional[int],
    retries: Optional[int],
    ignore: tuple,
    include: tuple,
    strict: bool,
    no_progress: bool,
) -> None:
    """Synchronize a local directory to remote storage.

    PATH defaults to general.source_path from the config file.

    Examples:
        pycsync sync ./docs --provider local
        pycsync sync --dry-run
        pycsync sync ./photos -p pcloud --workers 8
        pycsync --json sync --strict
    """
    from .cli_progress import SyncProgressDisplay

    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)
    root = _resolve_source(ctx, path, config)
    providers = _select_providers(ctx, provider, config)
    filters = config.filters(ignore, include)
    stores = _create_stores(ctx, providers, config)

    manager = SyncManager(
        stores,
        output=out,
        concurrency=workers or config.general.max_concurrency,
        retry_attempts=config.general.retry_attempts if retries is None else retries,
        retry_delay=config.general.retry_delay,
        hash_cache=_hash_cache(config, root),
    )
    cancel_event = threading.Event()
    show_progress = not (dry_run or no_progress or out.quiet or out.json_output)

    try:
        if show_progress:
            with SyncProgressDisplay(console=out.console) as display:
                results = manager.sync_all(
                    root,
                    filters,
                    dry_run=dry_run,
                    cancel_event=cancel_event,
                    progress_callback=display.update,
                )
        else:
            results = manager.sync_all(
                root, filters, dry_run=dry_run, cancel_event=cancel_event
            )
    except ScanError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except KeyboardInterrupt:
        cancel_event.set()
        out.warning("\nSync cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
        return
    finally:
        _close_stores(stores)

    _report_results(out, results)
    if strict and any(not result.ok for result in results.values()):
        ctx.exit(1)


def _report_results(out: OutputFormatter, results: dict[str, SyncResult]) -> None:
    if out.json_output:
        out.print_json({name: result.to_dict() for name, result in results.items()})
        return
    if len(results) < 2:
        return

    rows = [
        [
            name,
            str(result.created),
            str(result.updated),
            str(result.skipped),
            str(result.failed),
            format_duration(result.duration),
        ]
        for name, result in results.items()
    ]
    out.print_table(
        ["Provider", "Created", "Updated", "Skipped", "Failed", "Duration"],
        rows,
        title="Sync summary",
    )


@main.command()
@click.argument("path", type=str, required=False)
@click.option(
    "--provider",
    "-p",
    type=click.Choice(list(PROVIDERS) + ["all"]),
    default=None,
    help="Provider to sync to (default: every configured provider)",
)
@click.option(
    "--interval",
    callback=_parse_interval,
    default=None,
    help="Sync interval, e.g. 90s, 5m, 1h (default: daemon.sync_interval)",
)
@click.option(
    "--watch/--no-watch",
    default=None,
    help="Sync when files change (default: daemon.watch_mode)",
)
@click.option(
    "--pid-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="PID file location",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Log file (default: logging.log_file)",
)
@click.pass_context
def daemon(
    ctx: Any,
    path: Optional[str],
    provider: Optional[str],
    interval: Optional[float],
    watch: Optional[bool],
    pid_file: Optional[Path],
    log_file: Optional[Path],
) -> None:
    """Run continuously, syncing on an interval and/or on file changes.

    SIGINT/SIGTERM stop the daemon after the running pass drained, SIGHUP
    reloads the configuration file.

    Examples:
        pycsync daemon ~/Documents --interval 10m
        pycsync daemon --watch --log-file ~/.cache/pycsync/daemon.log
    """
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)
    root = _resolve_source(ctx, path, config)
    providers = _select_providers(ctx, provider, config)

    log_path = log_file or (Path(config.logging.log_file) if config.logging.log_file else None)
    setup_logging(
        level=config.logging.log_level,
        log_file=log_path,
        verbose=ctx.obj["verbose"] or config.logging.verbose,
    )

    pid_path = pid_file or (
        Path(config.daemon.pid_file).expanduser()
        if config.daemon.pid_file
        else default_pid_file()
    )
    existing = read_pid_file(pid_path)
    if existing is not None and is_process_running(existing):
        out.error(f"Daemon already running with PID {existing} ({pid_path})")
        ctx.exit(1)

    stores = _create_stores(ctx, providers, config)
    hash_cache = _hash_cache(config, root)

    def run_pass(
        cancel_event: threading.Event, settings: SchedulerSettings
    ) -> dict[str, SyncResult]:
        manager = SyncManager(
            stores,
            output=out,
            concurrency=settings.concurrency,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay,
            hash_cache=hash_cache,
        )
        return manager.sync_all(root, settings.filters, cancel_event=cancel_event)

    def make_watcher(settings: SchedulerSettings) -> ChangeWatcher:
        return ChangeWatcher(
            root,
            settings.filters,
            poll_interval=settings.poll_interval,
            debounce=settings.debounce,
        )

    scheduler = SyncScheduler(
        run_pass,
        _scheduler_settings(config, interval, watch),
        watcher_factory=make_watcher,
        settings_loader=lambda: _scheduler_settings(
            load_config(ctx.obj["config_path"]), interval, watch
        ),
    )

    def handle_stop(signum: int, frame: Any) -> None:
        scheduler.stop()

    def handle_reload(signum: int, frame: Any) -> None:
        scheduler.reload()

    signal.signal(signal.SIGINT, handle_stop)
    signal.signal(signal.SIGTERM, handle_stop)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, handle_reload)

    write_pid_file(pid_path)
    out.info(f"Daemon started (PID {os.getpid()}), syncing {root} to {', '.join(providers)}")
    try:
        scheduler.run()
    except WatcherIOError as e:
        out.error(f"Cannot watch {root}: {e}")
        ctx.exit(1)
    finally:
        remove_pid_file(pid_path)
        _close_stores(stores)
        if hash_cache is not None:
            try:
                hash_cache.save()
            except OSError as e:
                logger.warning(f"Could not save hash cache: {e}")

    out.success(f"Daemon stopped after {scheduler.passes_completed} pass(es)")


def _pid_path(ctx: Any, pid_file: Optional[Path]) -> Path:
    if pid_file is not None:
        return pid_file
    try:
        config = Config.load(ctx.obj["config_path"])
    except ConfigError:
        return default_pid_file()
    if config.daemon.pid_file:
        return Path(config.daemon.pid_file).expanduser()
    return default_pid_file()


@main.command()
@click.option(
    "--pid-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="PID file location",
)
@click.pass_context
def status(ctx: Any, pid_file: Optional[Path]) -> None:
    """Show whether the daemon is running."""
    out: OutputFormatter = ctx.obj["out"]
    pid_path = _pid_path(ctx, pid_file)
    pid = read_pid_file(pid_path)
    running = pid is not None and is_process_running(pid)

    if out.json_output:
        out.print_json({"running": running, "pid": pid if running else None})
        return
    if running:
        out.success(f"Daemon running (PID {pid})")
    else:
        out.info("Daemon not running")


@main.command()
@click.option(
    "--pid-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="PID file location",
)
@click.pass_context
def stop(ctx: Any, pid_file: Optional[Path]) -> None:
    """Ask a running daemon to shut down."""
    out: OutputFormatter = ctx.obj["out"]
    pid_path = _pid_path(ctx, pid_file)
    pid = read_pid_file(pid_path)
    if pid is None or not is_process_running(pid):
        out.error("Daemon not running")
        if pid is not None:
            remove_pid_file(pid_path)
        ctx.exit(1)
        return

    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as e:
        out.error(f"Cannot signal PID {pid}: {e}")
        ctx.exit(1)
        return
    out.success(f"Sent stop request to daemon (PID {pid})")


if __name__ == "__main__":
    main()
