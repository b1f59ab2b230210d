"""Command-line interface for rethink-pull.

Usage:
    rethink-pull pull --ssh-host db.example.com --ssh-user deploy --remote-db prod --local-db staging
    rethink-pull pull --remote-db prod --fetch-only --fetch-to ./backups
    rethink-pull sync --remote-db app --local-db app_copy --merge
    rethink-pull backup --remote-db app --fetch-to ./backups
    rethink-pull tables ./backups/rethink_dump.tar.gz

Commands:
    pull    - Copy a remote database into a local one over an SSH tunnel
    sync    - Copy one local database into another
    backup  - Dump a local database and keep the archive
    tables  - List the tables contained in a dump archive

Passwords are never accepted as flags; they come from the environment
(``REMOTE_DB_ADMIN_PASSWORD``, ``LOCAL_DB_ADMIN_PASSWORD``, also read from
``.env``) or an interactive prompt.
"""

import argparse
import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from rethink_pull.config.loader import DEFAULT_CONFIG_NAME, load_pull_config
from rethink_pull.config.resolver import resolve_run_configuration
from rethink_pull.errors import ArchiveError, ConfigurationError
from rethink_pull.pipeline import Pipeline, PipelineResult
from rethink_pull.restore.expander import expand_archive
from rethink_pull.transfer.process import ProcessRunner
from rethink_pull.transfer.workspace import Workspace

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _split_list(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _rich_prompt(
    name: str,
    message: str,
    *,
    secret: bool = False,
    choices: list[str] | None = None,
) -> str | None:
    """Ask for a missing setting on the console."""
    if choices:
        return Prompt.ask(message, choices=choices, console=console)
    answer = Prompt.ask(message, password=secret, default="", show_default=False, console=console)
    return answer or None


def _rich_confirm(message: str) -> bool:
    return Confirm.ask(message, default=False, console=console)


def _interactive(args: argparse.Namespace) -> bool:
    return not args.force and sys.stdin.isatty()


def _file_layer(args: argparse.Namespace) -> dict[str, Any]:
    """Settings from ``--config`` (or ``./rethink-pull.toml`` when present).

    Raises:
        ConfigurationError: If the file or profile cannot be used.
    """
    path = Path(args.config) if args.config else Path.cwd() / DEFAULT_CONFIG_NAME
    if not args.config and not path.exists():
        if args.profile:
            raise ConfigurationError(["config"], f"--profile given but {path} not found")
        return {}
    try:
        return load_pull_config(path).layer(args.profile)
    except (FileNotFoundError, ValueError, KeyError) as e:
        raise ConfigurationError(["config"], str(e)) from e


def _explicit_settings(args: argparse.Namespace) -> dict[str, Any]:
    """Map parsed flags onto resolver setting keys (unset flags are None)."""
    settings: dict[str, Any] = {
        "remote_db": args.remote_db,
        "local_db": getattr(args, "local_db", None),
        "include_tables": _split_list(getattr(args, "include", None)),
        "exclude_tables": _split_list(getattr(args, "exclude", None)),
        "temp_dir": args.temp_dir,
        "fetch_only": getattr(args, "fetch_only", None),
        "fetch_to": args.fetch_to,
        "force": args.force,
        "merge": getattr(args, "merge", None),
        "local_endpoint": getattr(args, "local_endpoint", None),
        "source_endpoint": getattr(args, "source_endpoint", None),
        "rethinkdb_bin": args.rethinkdb_bin,
    }
    if args.command == "pull":
        settings.update({
            "tunnel.username": args.ssh_user,
            "tunnel.host": args.ssh_host,
            "tunnel.port": args.ssh_port,
            "tunnel.local_port": args.local_port,
            "tunnel.dst_host": args.dst_host,
            "tunnel.dst_port": args.dst_port,
            "tunnel.identity_file": args.identity_file,
        })
    return settings


def _print_result(result: PipelineResult) -> int:
    console.print()
    if result.archive is not None:
        console.print(f"[bold green]v[/bold green] Archive saved to [cyan]{result.archive}[/cyan]")
    if result.tables:
        console.print("[bold]Imported Tables[/bold]")
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Table")
        for i, name in enumerate(result.tables, 1):
            table.add_row(str(i), name)
        console.print(table)

    for error in result.cleanup_errors:
        console.print(f"[yellow]Cleanup warning:[/yellow] {escape(error)}")

    if result.success:
        console.print("[bold green]v[/bold green] Updates complete")
        return 0

    console.print(f"[bold red]x[/bold red] Process failed: {escape(result.error_message or '')}")
    return 1


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_run(args: argparse.Namespace) -> int:
    """Resolve settings and run the pull/sync/backup pipeline.

    Returns:
        0 on success, 1 on pipeline failure, 2 on configuration errors.
    """
    interactive = _interactive(args)
    try:
        config = resolve_run_configuration(
            args.command,
            _explicit_settings(args),
            env=os.environ,
            file_layer=_file_layer(args),
            prompt=_rich_prompt if interactive else None,
            env_prefix=args.env_prefix,
        )
    except ConfigurationError as e:
        for name in e.missing:
            console.print(f"[red]The {name} setting is required.[/red]")
        console.print(f"[dim]{escape(str(e))}[/dim]")
        console.print("Cannot continue")
        return 2

    console.print(f"[yellow]Running {args.command}...[/yellow]")
    pipeline = Pipeline(
        config,
        runner=ProcessRunner(console),
        confirm=_rich_confirm if interactive else None,
    )
    if args.command == "pull":
        result = await pipeline.run_pull()
    else:
        result = await pipeline.run_local_sync()
    return _print_result(result)


async def _async_tables(args: argparse.Namespace) -> int:
    """List tables found in an archive (extracted to a throwaway workspace)."""
    root = Path(args.temp_dir) if args.temp_dir else Path(tempfile.gettempdir())
    with Workspace.create(root) as workspace:
        try:
            units = await expand_archive(Path(args.archive), workspace.path)
        except ArchiveError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            return 1

        console.print(f"[bold]Tables in[/bold] {escape(args.archive)}")
        table = Table(show_header=True, header_style="bold")
        table.add_column("Database", style="dim")
        table.add_column("Table")
        table.add_column("Primary key")
        for unit in units:
            table.add_row(unit.database, unit.table, unit.primary_key or "-")
        console.print(table)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_run(args: argparse.Namespace) -> int:
    """Run the pull, sync or backup pipeline.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_run(args))


def cmd_tables(args: argparse.Namespace) -> int:
    """List the tables of a dump archive."""
    return asyncio.run(_async_tables(args))


# ============================================================================
# Main entry point
# ============================================================================


def _add_run_arguments(parser: argparse.ArgumentParser, local_target: bool = True) -> None:
    parser.add_argument(
        "--remote-db",
        "--source-db",
        dest="remote_db",
        action="append",
        help="Database to dump (repeat to choose interactively from several)",
    )
    if local_target:
        parser.add_argument("--local-db", help="Local database to restore into")
        selection = parser.add_mutually_exclusive_group()
        selection.add_argument("--include", help="Comma-separated tables to import (only these)")
        selection.add_argument("--exclude", help="Comma-separated tables to skip")
        parser.add_argument(
            "--merge",
            action="store_true",
            default=None,
            help="Keep existing tables and upsert by primary key instead of dropping them",
        )
        parser.add_argument(
            "--fetch-only",
            action="store_true",
            default=None,
            help="Only download the archive to --fetch-to; do not import",
        )
        parser.add_argument("--local-endpoint", help="Local server host:port (default: 127.0.0.1:28015)")
    parser.add_argument("--fetch-to", help="Destination file or directory for the archive")
    parser.add_argument("--temp-dir", help="Workspace root (default: system temp dir)")
    parser.add_argument(
        "--force",
        "-y",
        action="store_true",
        default=None,
        help="Do not prompt for missing settings or confirmation",
    )
    parser.add_argument("--rethinkdb-bin", help="rethinkdb executable (default: rethinkdb)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rethink-pull",
        description="Copy RethinkDB databases from remote servers or between local databases",
    )
    parser.add_argument("--config", help=f"TOML config file (default: ./{DEFAULT_CONFIG_NAME} if present)")
    parser.add_argument("--profile", help="Profile from the config file")
    parser.add_argument(
        "--env-prefix",
        default="",
        help="Prefix for environment variable lookup (e.g., APP_ reads APP_DB_NAME)",
    )
    parser.add_argument("--env-file", help="dotenv file to load (default: .env found from the current directory)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # pull command
    p_pull = subparsers.add_parser("pull", help="Copy a remote database over an SSH tunnel")
    _add_run_arguments(p_pull)
    p_pull.add_argument("--ssh-user", help="SSH tunnel username")
    p_pull.add_argument("--ssh-host", help="SSH tunnel host")
    p_pull.add_argument("--ssh-port", type=int, help="SSH port (default: 22)")
    p_pull.add_argument("--identity-file", help="SSH private key")
    p_pull.add_argument("--local-port", type=int, help="Local forwarded port (default: 9999)")
    p_pull.add_argument("--dst-host", help="Database host seen from the SSH server (default: 127.0.0.1)")
    p_pull.add_argument("--dst-port", type=int, help="Database port seen from the SSH server (default: 28015)")
    p_pull.set_defaults(func=cmd_run)

    # sync command
    p_sync = subparsers.add_parser("sync", help="Copy one local database into another")
    _add_run_arguments(p_sync)
    p_sync.add_argument("--source-endpoint", help="Source server host:port (default: 127.0.0.1:28015)")
    p_sync.set_defaults(func=cmd_run)

    # backup command
    p_backup = subparsers.add_parser("backup", help="Dump a local database and keep the archive")
    _add_run_arguments(p_backup, local_target=False)
    p_backup.add_argument("--source-endpoint", help="Source server host:port (default: 127.0.0.1:28015)")
    p_backup.set_defaults(func=cmd_run)

    # tables command
    p_tables = subparsers.add_parser("tables", help="List the tables in a dump archive")
    p_tables.add_argument("archive", help="Path to a rethinkdb dump .tar.gz")
    p_tables.add_argument("--temp-dir", help="Extraction root (default: system temp dir)")
    p_tables.set_defaults(func=cmd_tables)

    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    load_dotenv(args.env_file or find_dotenv(usecwd=True))

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
