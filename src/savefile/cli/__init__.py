"""CLI for profile management, backups and watching.

Usage:
    savefile profile create game --base ~/Games/Saves --include 'slot*/' --include '!*.tmp'
    savefile profile list
    savefile backup create game
    savefile backup list game --count 5
    savefile backup restore game            # newest backup
    savefile backup restore game 4 --yes
    savefile backup retain game 10
    savefile watch game

Commands:
    profile list|create|show|delete  - Manage backup profiles
    backup create|list|restore|delete|retain - Work with a profile's backups
    watch                            - Back up automatically after changes settle
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from savefile.config.loader import load_config
from savefile.config.models import AppConfig, Profile
from savefile.errors import SavefileError
from savefile.service import BackupService

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _setup_logging(level: str) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    root.setLevel(level)


def _load(args: argparse.Namespace) -> AppConfig:
    config = load_config(Path(args.config) if args.config else None)
    level = args.log_level or config.log_level
    _setup_logging(level.upper())
    return config


def _confirm(args: argparse.Namespace, message: str) -> bool:
    if args.yes:
        return True
    return Confirm.ask(message, console=console, default=False)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


# ============================================================================
# Profile commands
# ============================================================================


def cmd_profile_list(args: argparse.Namespace, service: BackupService) -> int:
    """List profiles with their base directory and backup count."""
    profiles = service.profiles.list(prefix=args.prefix)
    if not profiles:
        console.print("[yellow]No profiles.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]savefile profile create <name> --base <dir>[/cyan]")
        return 0

    table = Table(title="Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Base directory")
    table.add_column("Backups", justify="right")

    for name, _path in profiles:
        try:
            profile = service.profiles.load(name)
        except SavefileError as e:
            table.add_row(name, f"[red]{escape(str(e))}[/red]", "")
            continue
        count = len(service.catalog.list_backups(name))
        table.add_row(f"[cyan]{name}[/cyan]", str(profile.base_dir), str(count))

    console.print(table)
    return 0


def cmd_profile_create(args: argparse.Namespace, service: BackupService) -> int:
    """Create a profile document."""
    profile = Profile(
        name=args.name,
        base_dir=Path(args.base).expanduser().absolute(),
        include_rules=tuple(args.include or ()),
        debounce=args.delay,
        default_action=args.default_action,
        include_directories=args.include_directories,
    )
    path = service.profiles.create(profile)
    console.print(f"[bold green]v[/bold green] Created profile [cyan]{profile.name}[/cyan]")
    console.print(f"  [dim]Edit:[/dim] {path}")
    return 0


def cmd_profile_show(args: argparse.Namespace, service: BackupService) -> int:
    """Show a profile's settings and where its file lives."""
    profile = service.profiles.load(args.name)

    table = Table(title=f"Profile {profile.name}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("File", str(service.profiles.path_for(profile.name)))
    table.add_row("Base directory", str(profile.base_dir))
    table.add_row("Include rules", escape("\n".join(profile.include_rules)) or "[dim](none)[/dim]")
    table.add_row("Default action", profile.default_action)
    table.add_row("Delay", f"{profile.debounce:g}s")
    table.add_row("Directory entries", "yes" if profile.include_directories else "no")

    latest = service.catalog.latest(profile.name)
    if latest is not None:
        table.add_row("Latest backup", f"{latest.backup_id} ({latest.created_at:%Y-%m-%d %H:%M:%S})")

    console.print(table)
    return 0


def cmd_profile_delete(args: argparse.Namespace, service: BackupService) -> int:
    """Delete a profile and all of its backups."""
    count = len(service.list_backups(args.name))
    console.print(
        f"[bold yellow]This deletes profile {args.name} and its {count} backup(s). "
        f"It cannot be undone.[/bold yellow]"
    )
    if not _confirm(args, "Continue?"):
        console.print("Cancelled.")
        return 0

    report = service.delete_profile(args.name)
    console.print(
        f"[bold green]v[/bold green] Deleted profile [cyan]{report.profile_name}[/cyan] "
        f"and {len(report.deleted_ids)} backup(s)"
    )
    return 0


# ============================================================================
# Backup commands
# ============================================================================


def cmd_backup_create(args: argparse.Namespace, service: BackupService) -> int:
    """Take a backup now."""
    console.print(f"Backing up [cyan]{args.name}[/cyan]...", style="dim")
    summary = service.create_backup(args.name)
    console.print(
        f"[bold green]v[/bold green] Backup {summary.backup_id}: "
        f"{summary.entry_count} entries, {_format_size(summary.total_size)}"
    )
    return 0


def cmd_backup_list(args: argparse.Namespace, service: BackupService) -> int:
    """List a profile's backups, oldest first."""
    backups = service.list_backups(args.name, count=args.count)
    if not backups:
        console.print(f"[yellow]No backups for {args.name}.[/yellow]")
        return 0

    table = Table(title=f"Backups of {args.name}", show_header=True, header_style="bold")
    table.add_column("Id", justify="right")
    table.add_column("Created (UTC)")
    table.add_column("Entries", justify="right")
    table.add_column("Size", justify="right")

    for summary in backups:
        table.add_row(
            str(summary.backup_id),
            f"{summary.created_at:%Y-%m-%d %H:%M:%S}",
            str(summary.entry_count),
            _format_size(summary.total_size),
        )

    console.print(table)
    return 0


def cmd_backup_restore(args: argparse.Namespace, service: BackupService) -> int:
    """Restore a backup over the live base directory."""
    profile = service.profiles.load(args.name)
    which = f"backup {args.id}" if args.id is not None else "the latest backup"
    console.print(
        f"[bold yellow]Restoring {which} overwrites files in {profile.base_dir}.[/bold yellow]"
    )
    console.print("[dim]Files not in the backup are left alone.[/dim]")
    if not _confirm(args, "Continue?"):
        console.print("Cancelled.")
        return 0

    report = service.restore_backup(args.name, args.id)
    if report.failures:
        table = Table(title="Restore failures", show_header=True, header_style="bold")
        table.add_column("Path")
        table.add_column("Error", style="red")
        for failure in report.failures:
            table.add_row(escape(failure.path), escape(failure.cause))
        console.print(table)
        console.print(
            f"[bold red]x[/bold red] Restored {len(report.restored)} entries, "
            f"{len(report.failures)} failed"
        )
        return 1

    console.print(
        f"[bold green]v[/bold green] Restored backup {report.backup_id}: "
        f"{len(report.restored)} entries"
    )
    return 0


def cmd_backup_delete(args: argparse.Namespace, service: BackupService) -> int:
    """Delete one backup, or all backups of a profile."""
    which = f"backup {args.id}" if args.id is not None else "ALL backups"
    console.print(f"[bold yellow]This deletes {which} of {args.name}. It cannot be undone.[/bold yellow]")
    if not _confirm(args, "Continue?"):
        console.print("Cancelled.")
        return 0

    report = service.delete_backup(args.name, args.id)
    ids = ", ".join(str(i) for i in report.deleted_ids) or "none"
    console.print(f"[bold green]v[/bold green] Deleted backup(s): {ids}")
    return 0


def cmd_backup_retain(args: argparse.Namespace, service: BackupService) -> int:
    """Keep only the newest N backups."""
    total = len(service.list_backups(args.name))
    doomed = max(total - args.count, 0)
    if doomed == 0:
        console.print(f"Nothing to delete ({total} backup(s), keeping {args.count}).")
        return 0

    console.print(
        f"[bold yellow]This deletes the {doomed} oldest backup(s) of {args.name}. "
        f"It cannot be undone.[/bold yellow]"
    )
    if not _confirm(args, "Continue?"):
        console.print("Cancelled.")
        return 0

    report = service.retain_backups(args.name, args.count)
    ids = ", ".join(str(i) for i in report.deleted_ids)
    console.print(f"[bold green]v[/bold green] Deleted backup(s): {ids}")
    return 0


# ============================================================================
# Watch
# ============================================================================


async def _async_watch(args: argparse.Namespace, service: BackupService) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    console.print(f"Watching [cyan]{args.name}[/cyan]. Press Ctrl+C to stop.", style="dim")
    try:
        captures = await service.watch(args.name, stop)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    console.print(f"Stopped after {captures} backup(s).")
    return 0


def cmd_watch(args: argparse.Namespace, service: BackupService) -> int:
    """Watch a profile and back it up whenever changes settle.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_watch(args, service))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="savefile",
        description="Profile-driven local backups of a directory tree",
    )
    parser.add_argument("--config", help="Path to savefile.toml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profile commands
    p_profile = subparsers.add_parser("profile", help="Manage backup profiles")
    profile_sub = p_profile.add_subparsers(dest="action", required=True)

    p_list = profile_sub.add_parser("list", help="List profiles")
    p_list.add_argument("prefix", nargs="?", help="Only profiles starting with this")
    p_list.set_defaults(func=cmd_profile_list)

    p_create = profile_sub.add_parser("create", help="Create a profile")
    p_create.add_argument("name")
    p_create.add_argument("--base", required=True, help="Directory to back up")
    p_create.add_argument(
        "--include",
        action="append",
        metavar="RULE",
        help="Include rule, '!' prefix to exclude (repeatable, first match wins)",
    )
    p_create.add_argument(
        "--delay",
        type=float,
        default=5.0,
        help="Seconds of quiet before a watch backup (default: 5)",
    )
    p_create.add_argument(
        "--default-action",
        choices=["include", "exclude"],
        default="include",
        help="What happens to paths no rule matches",
    )
    p_create.add_argument(
        "--include-directories",
        action="store_true",
        help="Record directories too, so empty ones are restored",
    )
    p_create.set_defaults(func=cmd_profile_create)

    p_show = profile_sub.add_parser("show", help="Show a profile")
    p_show.add_argument("name")
    p_show.set_defaults(func=cmd_profile_show)

    p_pdelete = profile_sub.add_parser("delete", help="Delete a profile and its backups")
    p_pdelete.add_argument("name")
    p_pdelete.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_pdelete.set_defaults(func=cmd_profile_delete)

    # backup commands
    p_backup = subparsers.add_parser("backup", help="Create, list, restore and prune backups")
    backup_sub = p_backup.add_subparsers(dest="action", required=True)

    b_create = backup_sub.add_parser("create", help="Back up a profile now")
    b_create.add_argument("name")
    b_create.set_defaults(func=cmd_backup_create)

    b_list = backup_sub.add_parser("list", help="List a profile's backups")
    b_list.add_argument("name")
    b_list.add_argument("--count", "-n", type=int, help="Only the newest N")
    b_list.set_defaults(func=cmd_backup_list)

    b_restore = backup_sub.add_parser("restore", help="Restore a backup (latest by default)")
    b_restore.add_argument("name")
    b_restore.add_argument("id", nargs="?", type=int, help="Backup id")
    b_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    b_restore.set_defaults(func=cmd_backup_restore)

    b_delete = backup_sub.add_parser("delete", help="Delete one backup, or all of them")
    b_delete.add_argument("name")
    b_delete.add_argument("id", nargs="?", type=int, help="Backup id (omit for all)")
    b_delete.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    b_delete.set_defaults(func=cmd_backup_delete)

    b_retain = backup_sub.add_parser("retain", help="Keep only the newest N backups")
    b_retain.add_argument("name")
    b_retain.add_argument("count", type=int)
    b_retain.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    b_retain.set_defaults(func=cmd_backup_retain)

    # watch command
    p_watch = subparsers.add_parser("watch", help="Back up automatically after changes settle")
    p_watch.add_argument("name")
    p_watch.set_defaults(func=cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to the matching handler.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    args = build_parser().parse_args(argv)

    try:
        config = _load(args)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    service = BackupService(config)
    try:
        return args.func(args, service)
    except SavefileError as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
