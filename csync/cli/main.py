"""
Command-line interface for csync.

Provides CLI commands for authentication, synchronization, restore and
status checking of Google Contacts across any number of accounts.

Usage:
    # Show help
    csync --help

    # Create a configuration file, then edit the accounts
    csync init-config

    # Authenticate accounts
    csync auth --account alice@example.com

    # First run: match existing contacts and groups by name
    csync sync --init

    # Regular runs
    csync sync
    csync sync --verbose
"""

import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from csync import __version__
from csync.api.people_api import PeopleAPI
from csync.auth.google_auth import AUTH_MODES, AuthenticationError, GoogleAuth
from csync.backup.manager import BackupManager
from csync.backup.restore import SnapshotRestorer
from csync.config.generator import save_config_file
from csync.config.loader import DEFAULT_CONFIG_FILE, ConfigError
from csync.config.settings import AccountConfig, Settings, load_settings
from csync.storage.db import SyncDatabase
from csync.sync.engine import PreconditionError, SyncEngine
from csync.sync.identity import ConsistencyError
from csync.sync.replica import Replica
from csync.utils import resolve_config_dir
from csync.utils.logging import cleanup_old_logs, get_logger, setup_logging

# Exit codes
EXIT_ERROR = 1
EXIT_PRECONDITION = 2


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def fail(message: str, code: int = EXIT_ERROR) -> NoReturn:
    """Print an error in red on stderr and exit."""
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(code)


def require_settings(ctx: click.Context) -> Settings:
    """Return the loaded settings, or exit when the configuration is invalid."""
    settings: Settings | None = ctx.obj.get("settings")
    if settings is None:
        fail(
            f"Configuration error: {ctx.obj.get('config_error')}",
            EXIT_PRECONDITION,
        )
    return settings


def require_account(settings: Settings, user: str) -> AccountConfig:
    account = settings.find_account(user)
    if account is None:
        configured = ", ".join(a.user for a in settings.accounts) or "none"
        fail(
            f"Account {user} is not configured (configured: {configured})",
            EXIT_PRECONDITION,
        )
    return account


def build_auth(settings: Settings, **overrides: Any) -> GoogleAuth:
    return GoogleAuth(
        config_dir=settings.config_dir,
        mode=overrides.get("mode") or settings.auth_mode,
        timeout=overrides.get("timeout") or settings.auth_timeout,
        open_browser=overrides.get("open_browser", settings.open_browser),
    )


def build_replica(
    settings: Settings,
    auth: GoogleAuth,
    account: AccountConfig,
    api_timeout: float | None = None,
) -> Replica:
    """Authenticate an account and wrap it in a Replica."""
    credentials = auth.authenticate(account)
    api = PeopleAPI(
        credentials,
        account=account.user,
        timeout=api_timeout or settings.api_timeout,
        retry_policy=settings.retry_policy,
    )
    return Replica(account.user, api, settings.retry_policy)


def show_keyfile_help(error: FileNotFoundError) -> NoReturn:
    click.echo(click.style(f"Error: {error}", fg="red"), err=True)
    click.echo("\nTo get started:", err=True)
    click.echo("1. Go to https://console.cloud.google.com/", err=True)
    click.echo("2. Create a project and enable the People API", err=True)
    click.echo("3. Create OAuth 2.0 credentials (Desktop application)", err=True)
    click.echo("4. Download the JSON file to the path shown above", err=True)
    sys.exit(EXIT_ERROR)


@click.group()
@click.version_option(version=__version__, prog_name="csync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    help="Configuration directory path (default: ~/.csync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CSYNC_CONFIG_FILE",
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
    N-way Google Contacts Sync.

    Keeps the contacts and contact groups of any number of Google
    accounts identical. Entities are matched across accounts through a
    tag stored with each contact and group.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    settings = None
    try:
        settings = load_settings(resolved_config_dir, resolved_config_file)
    except ConfigError as e:
        # Commands that need the configuration report the error themselves
        ctx.obj["config_error"] = str(e)

    ctx.obj["settings"] = settings

    effective_verbose = verbose or bool(settings and settings.verbose)
    ctx.obj["verbose"] = effective_verbose

    log_dir = (settings.log_dir if settings else None) or resolved_config_dir / "logs"
    ctx.obj["log_dir"] = log_dir
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = settings.log_retention_count if settings else 10
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Auth Command
# =============================================================================


@cli.command("auth")
@click.option(
    "--account", "-a", required=True, help="E-mail of the account to authenticate."
)
@click.option(
    "--force",
    is_flag=True,
    help="Force re-authentication even if already authenticated.",
)
@click.option(
    "--auth",
    "auth_mode",
    type=click.Choice(AUTH_MODES, case_sensitive=False),
    help="OAuth flow: local callback server or manual copy/paste.",
)
@click.pass_context
def auth_command(
    ctx: click.Context, account: str, force: bool, auth_mode: str | None
) -> None:
    """
    Authenticate a Google account.

    Runs the OAuth consent flow and stores the token for future runs.

    Examples:

        csync auth --account alice@example.com

        # Headless machine
        csync auth --account alice@example.com --auth manual
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)
    account_config = require_account(settings, account)

    click.echo(f"Authenticating {account_config.user}...")

    try:
        auth = build_auth(settings, mode=auth_mode)

        if not force and auth.is_authenticated(account_config):
            click.echo(
                click.style(
                    f"Account {account_config.user} is already authenticated.",
                    fg="green",
                )
            )
            click.echo("Use --force to re-authenticate.")
            return

        auth.authenticate(account_config, force_reauth=force)
        click.echo(
            click.style(
                f"Successfully authenticated {account_config.user}!", fg="green"
            )
        )
        logger.info(f"Authentication completed for {account_config.user}")

    except FileNotFoundError as e:
        show_keyfile_help(e)

    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        fail(f"Authentication failed: {e}")

    except Exception as e:
        logger.exception(f"Unexpected error during authentication: {e}")
        fail(f"Error: {e}")


# =============================================================================
# Clear-Auth Command
# =============================================================================


@cli.command("clear-auth")
@click.option(
    "--account",
    "-a",
    help="Account to clear (clears every account if not specified).",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def clear_auth_command(ctx: click.Context, account: str | None, yes: bool) -> None:
    """
    Clear stored authentication credentials.

    Removes stored OAuth tokens for one or all accounts.
    You will need to re-authenticate before syncing again.
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)

    if account:
        accounts_to_clear = [require_account(settings, account)]
        msg = f"Clear authentication for {accounts_to_clear[0].user}?"
    else:
        accounts_to_clear = list(settings.accounts)
        msg = f"Clear authentication for ALL {len(accounts_to_clear)} accounts?"

    if not yes:
        click.confirm(msg, abort=True)

    try:
        auth = build_auth(settings)

        for acc in accounts_to_clear:
            if auth.clear_credentials(acc):
                click.echo(f"Cleared credentials for {acc.user}")
            else:
                click.echo(f"No credentials found for {acc.user}")

        click.echo(click.style("\nCredentials cleared.", fg="green"))

    except Exception as e:
        logger.exception(f"Clear auth failed: {e}")
        fail(f"Error: {e}")


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show authentication and sync status.

    Displays every configured account with its authentication state,
    then the watermark and the last recorded run.
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)

    try:
        auth = build_auth(settings)

        click.echo("=== Google Contacts Sync Status ===\n")
        click.echo(f"Configuration directory: {settings.config_dir}")
        click.echo()

        if not settings.accounts:
            click.echo(click.style("No accounts configured.", fg="yellow"))

        missing = []
        for status in auth.get_auth_status(settings.accounts):
            if status["authenticated"]:
                status_text = click.style("Authenticated", fg="green")
            elif not status["key_exists"]:
                status_text = click.style(
                    f"Client secrets missing ({status['key_path']})", fg="red"
                )
                missing.append(status["user"])
            elif status["token_exists"]:
                status_text = click.style("Token expired or invalid", fg="yellow")
                missing.append(status["user"])
            else:
                status_text = click.style("Not authenticated", fg="red")
                missing.append(status["user"])
            click.echo(f"{status['user']}: {status_text}")

        click.echo()

        db_path = settings.database_path
        if db_path.exists():
            db = SyncDatabase(str(db_path))
            db.initialize()

            click.echo("=== Sync Status ===\n")
            click.echo(f"Watermark: {db.get_watermark().isoformat()}")
            last_run = db.get_last_run()
            if last_run:
                click.echo(
                    f"Last run: {last_run['mode']} {last_run['status']} "
                    f"at {last_run['completed_at'] or last_run['started_at']} "
                    f"({last_run['changes']} changes)"
                )
                if last_run.get("error"):
                    click.echo(click.style(f"  Error: {last_run['error']}", fg="red"))
            else:
                click.echo("Last run: Never")
            click.echo(f"Total runs: {db.get_run_count()}")
        else:
            click.echo("Sync database: Not initialized (no syncs performed yet)")

        click.echo()

        if settings.accounts and not missing:
            click.echo(click.style("Ready to sync!", fg="green"))
        for user in missing:
            click.echo(f"  Run: csync auth --account {user}")

    except Exception as e:
        logger.exception(f"Error getting status: {e}")
        fail(f"Error: {e}")


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    The generated file lists a placeholder account (FIXME) that must be
    replaced before the first sync.
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Replace the FIXME account with your Google accounts")
        click.echo("2. Run 'csync auth --account <email>' for each account")
        click.echo("3. Run 'csync sync --init' once, then 'csync sync'")
        logger.info(f"Created configuration file: {config_file}")
    else:
        logger.error(f"Failed to create configuration file: {error}")
        fail(f"Error: {error}")


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--init",
    "init_mode",
    is_flag=True,
    help="First run: match contacts and groups by name and tag them.",
)
@click.option(
    "--rlim",
    type=click.FloatRange(min=0),
    help="Seconds to wait between entities during --init.",
)
@click.option("--debug", "-d", is_flag=True, help="Log at DEBUG level.")
@click.option(
    "--auth",
    "auth_mode",
    type=click.Choice(AUTH_MODES, case_sensitive=False),
    help="OAuth flow used when an account needs to sign in.",
)
@click.option(
    "--auth-timeout",
    type=click.IntRange(min=1),
    help="Seconds to wait for the local OAuth callback (default: 180).",
)
@click.option(
    "--api-timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Hard timeout in seconds for each API call (default: 60).",
)
@click.option(
    "--no-open-browser",
    is_flag=True,
    help="Print the consent URL instead of opening a browser.",
)
@click.option(
    "--no-backup",
    is_flag=True,
    help="Skip the snapshot taken before sync (not recommended).",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, writable=True),
    help="Write the log to this file instead of the daily log file.",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    init_mode: bool,
    rlim: float | None,
    debug: bool,
    auth_mode: str | None,
    auth_timeout: int | None,
    api_timeout: float | None,
    no_open_browser: bool,
    no_backup: bool,
    log_file: str | None,
) -> None:
    """
    Synchronize contacts and groups between accounts.

    Deletions, additions and edits made in any account are applied to
    all the others; concurrent edits of the same contact are resolved in
    favour of the most recent one. Accounts that have never been synced
    are filled from an already synchronized account.

    Examples:

        # First run
        csync sync --init --rlim 0.2

        # Regular run
        csync sync

        # Skip automatic snapshot (not recommended)
        csync sync --no-backup
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)

    if debug or log_file:
        setup_logging(
            verbose=debug or ctx.obj["verbose"],
            log_dir=ctx.obj["log_dir"],
            log_file=Path(log_file) if log_file else None,
        )

    rate_limit = rlim if rlim is not None else settings.rate_limit

    try:
        if not settings.accounts:
            raise PreconditionError(
                "No accounts configured. Add accounts to "
                f"{ctx.obj['config_file']} first."
            )

        auth = build_auth(
            settings,
            mode=auth_mode,
            timeout=auth_timeout,
            open_browser=settings.open_browser and not no_open_browser,
        )

        click.echo("Checking authentication...")
        replicas = []
        for account in settings.accounts:
            replicas.append(build_replica(settings, auth, account, api_timeout))
            click.echo(click.style(f"  {account.user}", fg="green"))

        settings.database_path.parent.mkdir(parents=True, exist_ok=True)
        database = SyncDatabase(str(settings.database_path))
        database.initialize()

        backup_manager = None
        if not no_backup:
            backup_manager = BackupManager(
                settings.backups_path, retention_count=settings.backup_days
            )

        engine = SyncEngine(
            replicas,
            database,
            backup_manager=backup_manager,
            rate_limit=rate_limit,
        )

        mode = "Bootstrapping" if init_mode else "Synchronizing"
        click.echo(f"\n{mode} {len(replicas)} accounts...")

        result = engine.run(init=init_mode)

        click.echo("\n" + "=" * 50)
        click.echo(result.summary())
        click.echo("=" * 50)

        if result.has_changes():
            click.echo(click.style("\nSync completed successfully!", fg="green"))
        else:
            click.echo(
                click.style(
                    "\nAccounts are already in sync. No changes needed.", fg="green"
                )
            )

    except FileNotFoundError as e:
        show_keyfile_help(e)

    except (PreconditionError, ConfigError) as e:
        logger.error(f"Cannot sync: {e}")
        fail(f"\nCannot sync: {e}", EXIT_PRECONDITION)

    except ConsistencyError as e:
        logger.exception(f"Sync aborted: {e}")
        fail(f"\nSync aborted, accounts need attention: {e}")

    except AuthenticationError as e:
        logger.exception(f"Authentication failed: {e}")
        fail(f"\nAuthentication failed: {e}")

    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        fail(f"\nSync failed: {e}")


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, yes: bool) -> None:
    """
    Reset sync state.

    Clears the watermark and the run history. The next sync considers
    every edit as new. This does NOT delete contacts or tags from any
    account.
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)

    db_path = settings.database_path

    if not db_path.exists():
        click.echo("No sync database found. Nothing to reset.")
        return

    if not yes:
        click.confirm(
            "This will clear the watermark and the run history.\nContinue?",
            abort=True,
        )

    try:
        db = SyncDatabase(str(db_path))
        db.initialize()
        db.clear_all_state()
        db.vacuum()

        click.echo(click.style("Sync state has been reset.", fg="green"))
        logger.info("Sync state reset completed")

    except Exception as e:
        logger.exception(f"Reset failed: {e}")
        fail(f"Error: {e}")


# =============================================================================
# Health Command
# =============================================================================


@cli.command("health")
def health_command() -> None:
    """
    Check application health status.

    Returns a simple health status indicator. Useful for container
    health checks and monitoring.
    """
    click.echo("healthy")


# =============================================================================
# Restore Command
# =============================================================================


def list_backups(bm: BackupManager) -> None:
    backups = bm.list_backups()

    if not backups:
        click.echo("No backups found.")
        click.echo(f"Backup directory: {bm.backup_dir}")
        return

    click.echo(f"Available backups in {bm.backup_dir}:\n")
    click.echo(f"{'Slot':<6} {'Created':<27} {'Version':<8}")
    click.echo("-" * 45)

    for info in backups:
        created = info.created_at or "unreadable"
        version = str(info.version) if info.version is not None else "-"
        click.echo(f"{info.slot:<6} {created[:26]:<27} {version:<8}")

    click.echo(f"\nTotal: {len(backups)} backup(s)")
    click.echo("\nTo restore, use: csync restore --backup <slot>")


@cli.command("restore")
@click.option(
    "--list",
    "-l",
    "list_backups_flag",
    is_flag=True,
    help="List available backups.",
)
@click.option(
    "--backup",
    "-b",
    "backup_ref",
    help="Backup to restore: slot number (1 is the newest) or file path.",
)
@click.option(
    "--account",
    "-a",
    "accounts",
    multiple=True,
    help="Account to restore (repeatable, default: every account in the backup).",
)
@click.option(
    "--prune",
    is_flag=True,
    help="Delete synchronized contacts and groups that are not in the backup.",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def restore_command(
    ctx: click.Context,
    list_backups_flag: bool,
    backup_ref: str | None,
    accounts: tuple[str, ...],
    prune: bool,
    yes: bool,
) -> None:
    """
    Restore contacts and groups from a backup.

    Contacts and groups are matched by tag: entities of the backup that
    still exist are overwritten, the others are recreated.

    Examples:

        # List available backups
        csync restore --list

        # Restore the newest backup into one account
        csync restore --backup 1 --account alice@example.com

        # Restore and remove everything created since
        csync restore --backup 3 --prune
    """
    logger = get_logger(__name__)
    settings = require_settings(ctx)
    bm = BackupManager(settings.backups_path, retention_count=settings.backup_days)

    if list_backups_flag or not backup_ref:
        list_backups(bm)
        return

    backup_path = bm.resolve(backup_ref)
    click.echo(f"Loading backup from {backup_path}...")

    backup_data = bm.load_backup(backup_path)
    if not backup_data:
        fail(f"Error: Failed to load backup file: {backup_path}")

    snapshot_accounts = backup_data["accounts"]
    click.echo(f"Backup created at: {backup_data.get('createdAt', 'Unknown')}")

    if accounts:
        selected = [require_account(settings, user) for user in accounts]
    else:
        selected = [a for a in settings.accounts if a.user in snapshot_accounts]

    absent = [a.user for a in selected if a.user not in snapshot_accounts]
    if absent:
        fail(f"Error: Backup has no data for {', '.join(absent)}", EXIT_PRECONDITION)
    if not selected:
        fail("Error: Backup has no data for any configured account", EXIT_PRECONDITION)

    for acc in selected:
        data = snapshot_accounts[acc.user]
        click.echo(
            f"  {acc.user}: {len(data.get('contactsByTag') or {})} contacts, "
            f"{len(data.get('groupsByTag') or {})} groups"
        )

    if not yes:
        action = "Restore"
        if prune:
            action = "Restore (and DELETE entities missing from the backup) into"
        click.confirm(f"\n{action} {len(selected)} account(s)?", abort=True)

    try:
        auth = build_auth(settings)
        for acc in selected:
            replica = build_replica(settings, auth, acc)
            stats = SnapshotRestorer(replica).restore(
                snapshot_accounts[acc.user], prune=prune
            )
            click.echo(
                click.style(
                    f"{acc.user}: groups +{stats.groups_created} "
                    f"~{stats.groups_updated} -{stats.groups_deleted}, "
                    f"contacts +{stats.contacts_created} "
                    f"~{stats.contacts_updated} -{stats.contacts_deleted}",
                    fg="green",
                )
            )

        click.echo(click.style("\nRestore completed successfully!", fg="green"))
        click.echo("Run 'csync sync' to propagate the restored state.")

    except FileNotFoundError as e:
        show_keyfile_help(e)

    except ConsistencyError as e:
        logger.exception(f"Restore aborted: {e}")
        fail(f"\nRestore aborted: {e}")

    except Exception as e:
        logger.exception(f"Restore failed: {e}")
        fail(f"\nRestore failed: {e}")


if __name__ == "__main__":
    cli()
