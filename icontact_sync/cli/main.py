"""
Command-line interface for icontact_sync.

Provides CLI commands for running reconciliation, inspecting the local
contact store and its sync history, and managing the periodic daemon.

Usage:
    # Show help
    icontact-sync --help

    # Run one reconciliation
    icontact-sync sync
    icontact-sync sync --dry-run

    # Inspect state
    icontact-sync status
    icontact-sync history --limit 5

    # Reclaim space in the contact store
    icontact-sync vacuum

    # Periodic sync
    icontact-sync daemon start --interval 2h
"""

import sys
from pathlib import Path
from typing import Any

import click

from icontact_sync import __version__
from icontact_sync.api.carddav import CardDAVClient
from icontact_sync.cli.formatters import show_contacts, show_plan_details, show_sync_runs
from icontact_sync.config.generator import save_config_file
from icontact_sync.config.loader import (
    CONFIG_FILE_NAME,
    DEFAULT_CONFIG_FILE,
    DEFAULT_DAEMON_INTERVAL,
    DEFAULT_SERVER_URL,
    ConfigError,
    ConfigLoader,
    resolve_credentials,
)
from icontact_sync.storage.db import ContactDatabase, StoreError
from icontact_sync.sync.engine import SyncEngine
from icontact_sync.utils import resolve_config_dir
from icontact_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from icontact_sync.utils.paths import resolve_db_path


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path (default: <config_dir>/config.yaml)."""
    if config_file:
        return Path(config_file)
    return config_dir / CONFIG_FILE_NAME


PID_FILE_NAME = "daemon.pid"


def get_pid_file(config: dict[str, Any], config_dir: Path) -> Path:
    """PID file from config (default: <config_dir>/daemon.pid)."""
    if config.get("daemon_pid_file"):
        return Path(config["daemon_pid_file"]).expanduser()
    return config_dir / PID_FILE_NAME


def build_client(config: dict[str, Any]) -> CardDAVClient:
    """
    Create the CardDAV client from configuration.

    Raises:
        ConfigError: If username or password cannot be resolved
    """
    username, password = resolve_credentials(config)
    if not username or not password:
        raise ConfigError(
            "CardDAV credentials are not configured. Set 'username' in "
            "config.yaml (or ICONTACT_SYNC_USERNAME) and export the app "
            "password as ICONTACT_SYNC_APP_PASSWORD."
        )

    kwargs: dict[str, Any] = {}
    for key, option in (
        ("request_timeout", "timeout"),
        ("max_retries", "max_retries"),
        ("initial_retry_delay", "initial_retry_delay"),
        ("max_retry_delay", "max_retry_delay"),
    ):
        if key in config:
            kwargs[option] = config[key]

    return CardDAVClient(
        username=username,
        password=password,
        server_url=config.get("server_url", DEFAULT_SERVER_URL),
        **kwargs,
    )


def open_store(config: dict[str, Any], config_dir: Path) -> ContactDatabase:
    """
    Open and initialize the contact store.

    The caller owns the returned store and must close it.
    """
    db_path = resolve_db_path(config_dir, config.get("db_path"))
    db_path.parent.mkdir(parents=True, exist_ok=True)

    store = ContactDatabase(str(db_path))
    store.open()
    try:
        store.initialize()
    except StoreError:
        store.close()
        raise
    return store


@click.group()
@click.version_option(version=__version__, prog_name="icontact-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="ICONTACT_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.icontact-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="ICONTACT_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    One-way iCloud Contacts Sync.

    Reconciles a remote iCloud (CardDAV) address book into a local contact
    store, inserting new contacts and updating changed names. The remote
    address book is authoritative; nothing is ever pushed back or deleted.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Keep the CLI usable without a valid config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = Path(config["log_dir"]).expanduser() if config.get("log_dir") else None
    ctx.obj["log_dir"] = log_dir

    # Only commands that do work need a log file
    if ctx.invoked_subcommand in ("health", "init-config"):
        setup_logging(verbose=effective_verbose, enable_file_logging=False)
        return

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)
    cleanup_old_logs(log_dir=log_dir, keep_count=config.get("log_retention_count", 10))


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--dry-run", "-n", is_flag=True, help="Compute the write plan without applying it."
)
@click.pass_context
def sync_command(ctx: click.Context, dry_run: bool) -> None:
    """
    Reconcile the remote address book into the local store.

    Fetches every vCard, keeps one contact per phone number (first one
    wins), inserts new contacts and updates names that changed. Each run
    is recorded in the sync history.

    Examples:

        # Preview changes without applying
        icontact-sync sync --dry-run

        # Apply changes
        icontact-sync sync
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})
    verbose = ctx.obj["verbose"]

    effective_dry_run = dry_run or config.get("dry_run", False)

    try:
        client = build_client(config)
    except ConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    try:
        with client, open_store(config, config_dir) as store:
            if verbose:
                click.echo("Sync configuration:")
                click.echo(f"  Server: {client.server_url}")
                click.echo(f"  Store: {store.db_path}")
                click.echo(f"  Dry run: {effective_dry_run}")
                click.echo()

            mode = "Analyzing" if effective_dry_run else "Synchronizing"
            click.echo(f"{mode} contacts...")

            engine = SyncEngine(client=client, store=store)
            result = engine.run(dry_run=effective_dry_run)

            click.echo("\n" + "=" * 50)
            click.echo(result.summary())
            click.echo("=" * 50)

            if not result.success:
                click.echo(click.style("\nSync failed.", fg="red"), err=True)
                sys.exit(1)

            if effective_dry_run:
                click.echo(
                    click.style("\nDry run complete. No changes were made.", fg="yellow")
                )
                if verbose and result.plan is not None:
                    show_plan_details(result.plan, store.read_name_index())
            elif result.audit_error:
                click.echo(
                    click.style(
                        "\nSync completed, but the run could not be recorded.",
                        fg="yellow",
                    )
                )
            else:
                click.echo(click.style("\nSync completed successfully!", fg="green"))

    except StoreError as e:
        logger.error(f"Contact store error: {e}")
        click.echo(click.style(f"\nContact store error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show configuration and sync status.

    Displays the remote server, credential state, the number of stored
    contacts, the last recorded run, and whether the daemon is running.

    Example:

        icontact-sync status
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    from icontact_sync.daemon import DaemonScheduler, PIDFileError

    click.echo("=== iCloud Contacts Sync Status ===\n")
    click.echo(f"Configuration directory: {config_dir}")
    click.echo(f"Server: {config.get('server_url', DEFAULT_SERVER_URL)}")

    username, password = resolve_credentials(config)
    click.echo(f"Username: {username or click.style('Not configured', fg='red')}")
    password_state = "Found" if password else click.style("Not found", fg="red")
    click.echo(f"App password: {password_state}")
    click.echo()

    db_path = resolve_db_path(config_dir, config.get("db_path"))
    if db_path.exists():
        try:
            with open_store(config, config_dir) as store:
                click.echo(f"Contact store: {db_path}")
                click.echo(f"Stored contacts: {store.get_contact_count()}")
                last_run = store.get_last_sync_run()
                if last_run:
                    state = "succeeded" if last_run["success"] else "failed"
                    click.echo(f"Last sync: {last_run['created_at']} ({state})")
                    if last_run.get("error_message"):
                        click.echo(f"  Error: {last_run['error_message']}")
                else:
                    click.echo("Last sync: Never")
        except StoreError as e:
            logger.error(f"Error reading contact store: {e}")
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)
            sys.exit(1)
    else:
        click.echo("Contact store: Not initialized (no syncs performed yet)")

    try:
        pid = DaemonScheduler.running_pid(get_pid_file(config, config_dir))
    except PIDFileError as e:
        daemon_state = click.style(f"Unknown ({e})", fg="red")
    else:
        daemon_state = (
            click.style(f"Running (PID {pid})", fg="green")
            if pid is not None
            else click.style("Stopped", fg="yellow")
        )
    click.echo(f"Daemon: {daemon_state}")
    click.echo()

    if username and password:
        click.echo(click.style("Ready to sync!", fg="green"))
        click.echo("Run 'icontact-sync sync' to synchronize contacts.")
    else:
        click.echo(click.style("Setup required: credentials missing.", fg="yellow"))
        click.echo("Run 'icontact-sync init-config' and set your Apple ID, then")
        click.echo("export ICONTACT_SYNC_APP_PASSWORD with an app-specific password.")


# =============================================================================
# History Command
# =============================================================================


@cli.command("history")
@click.option(
    "--limit", "-l", default=10, show_default=True, type=click.IntRange(min=1),
    help="Number of runs to show.",
)
@click.pass_context
def history_command(ctx: click.Context, limit: int) -> None:
    """
    Show recorded sync runs, newest first.

    Example:

        icontact-sync history --limit 5
    """
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    try:
        with open_store(config, config_dir) as store:
            show_sync_runs(store.get_recent_sync_runs(limit=limit))
    except StoreError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Contacts Command
# =============================================================================


@cli.command("contacts")
@click.option(
    "--all", "-a", "show_all", is_flag=True, help="Include contacts flagged as hidden."
)
@click.pass_context
def contacts_command(ctx: click.Context, show_all: bool) -> None:
    """
    List contacts in the local store.

    Examples:

        icontact-sync contacts
        icontact-sync contacts --all
    """
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    try:
        with open_store(config, config_dir) as store:
            show_contacts(store.list_contacts(include_hidden=show_all))
    except StoreError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Vacuum Command
# =============================================================================


@cli.command("vacuum")
@click.pass_context
def vacuum_command(ctx: click.Context) -> None:
    """
    Compact the local contact store.

    Rebuilds the SQLite file to reclaim unused space. Contacts and sync
    history are kept.

    Example:

        icontact-sync vacuum
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})

    db_path = resolve_db_path(config_dir, config.get("db_path"))
    if not db_path.exists():
        click.echo("No contact store found. Nothing to compact.")
        return

    size_before = db_path.stat().st_size
    try:
        with open_store(config, config_dir) as store:
            store.vacuum()
    except StoreError as e:
        logger.error(f"Vacuum failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    size_after = db_path.stat().st_size
    logger.info(f"Vacuumed {db_path}: {size_before} -> {size_after} bytes")
    click.echo(click.style("Contact store compacted.", fg="green"))
    click.echo(f"Size: {size_before} -> {size_after} bytes")


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Every option is documented and commented out.

    Examples:

        icontact-sync init-config
        icontact-sync init-config --force
    """
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")
    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo("\nNext steps:")
        click.echo("1. Set 'username' to your Apple ID")
        click.echo("2. Export ICONTACT_SYNC_APP_PASSWORD with an app-specific password")
        click.echo("3. Run 'icontact-sync sync --dry-run'")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        sys.exit(1)


@cli.command("health")
def health_command() -> None:
    """
    Check application health status.

    Useful for container health checks.
    """
    click.echo("healthy")


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage periodic synchronization.

    Examples:

        icontact-sync daemon start --interval 2h
        icontact-sync daemon status
        icontact-sync daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help=(
        "Sync interval (e.g., '30m', '2h', '1d'). "
        f"Defaults to config value or '{DEFAULT_DAEMON_INTERVAL}'."
    ),
)
@click.option(
    "--no-initial-sync",
    is_flag=True,
    help="Skip the sync on daemon startup.",
)
@click.pass_context
def daemon_start_command(
    ctx: click.Context, interval: str | None, no_initial_sync: bool
) -> None:
    """
    Run sync periodically in the foreground.

    The daemon syncs on startup (unless --no-initial-sync), then once per
    interval. A failed run is logged and recorded; the daemon keeps going.
    SIGTERM/SIGINT stop it after the current run and close the store.

    Examples:

        icontact-sync -v daemon start
        icontact-sync daemon start --interval 30m --no-initial-sync
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj.get("config", {})
    verbose = ctx.obj["verbose"]

    from icontact_sync.daemon import (
        DaemonAlreadyRunningError,
        DaemonError,
        DaemonScheduler,
        parse_interval,
    )

    effective_interval = interval or config.get("daemon_interval", DEFAULT_DAEMON_INTERVAL)
    try:
        interval_seconds = parse_interval(effective_interval)
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    try:
        client = build_client(config)
    except ConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(f"Starting daemon with {effective_interval} sync interval...")
    click.echo("Press Ctrl+C to stop")
    if verbose:
        click.echo(f"  Config directory: {config_dir}")
        click.echo(f"  Interval: {interval_seconds} seconds")
        click.echo(f"  Initial sync: {'No' if no_initial_sync else 'Yes'}")

    try:
        with client, open_store(config, config_dir) as store:
            engine = SyncEngine(client=client, store=store)
            scheduler = DaemonScheduler(
                interval=interval_seconds,
                pid_file=get_pid_file(config, config_dir),
                run_immediately=not no_initial_sync,
            )

            def sync_callback() -> bool:
                return engine.run().success

            scheduler.set_sync_callback(sync_callback)
            scheduler.run()

        click.echo(click.style("\nDaemon stopped gracefully.", fg="green"))

    except DaemonAlreadyRunningError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("Use 'icontact-sync daemon stop' to stop the running daemon.")
        sys.exit(1)

    except (DaemonError, StoreError) as e:
        logger.error(f"Daemon error: {e}")
        click.echo(click.style(f"Daemon error: {e}", fg="red"), err=True)
        sys.exit(1)


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """
    Stop the running daemon.

    Sends SIGTERM; the daemon finishes any in-progress sync first.
    """
    config = ctx.obj.get("config", {})

    from icontact_sync.daemon import DaemonScheduler, PIDFileError

    pid_file = get_pid_file(config, ctx.obj["config_dir"])
    try:
        pid = DaemonScheduler.running_pid(pid_file)
    except PIDFileError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if pid is None:
        click.echo("No daemon is currently running.")
        return

    click.echo(f"Stopping daemon (PID: {pid})...")
    if DaemonScheduler.signal_running_daemon(pid_file):
        click.echo(click.style("Stop signal sent successfully.", fg="green"))
    else:
        click.echo(
            click.style("Failed to send stop signal to daemon.", fg="red"), err=True
        )
        sys.exit(1)


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """Show whether the daemon is running."""
    config = ctx.obj.get("config", {})
    verbose = ctx.obj.get("verbose", False)

    from icontact_sync.daemon import PIDFileError, PIDFileManager

    pid_lock = PIDFileManager(get_pid_file(config, ctx.obj["config_dir"]))

    click.echo("=== Daemon Status ===\n")
    try:
        recorded_pid = pid_lock.read()
        pid = pid_lock.running_pid()
    except PIDFileError as e:
        click.echo(f"Status: {click.style('Unknown', fg='red')}")
        click.echo(f"{e}. It will be replaced on next daemon start.")
    else:
        if pid is not None:
            click.echo(f"Status: {click.style('Running', fg='green')}")
            click.echo(f"Process ID: {pid}")
        else:
            click.echo(f"Status: {click.style('Stopped', fg='yellow')}")
            if recorded_pid is not None:
                click.echo(f"Stale PID file exists (PID: {recorded_pid})")
                click.echo("It will be cleaned up on next daemon start.")

    if verbose:
        click.echo(f"\nPID file: {pid_lock.pid_file}")
