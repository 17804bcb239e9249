#!/usr/bin/env python3
"""Command line interface: relocate (default), restore and status."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click
import humanfriendly
from pydantic import ValidationError

from cache_relocator.config import DEFAULT_CONFIG_PATH, RelocatorConfig
from cache_relocator.errors import RelocatorError
from cache_relocator.lock import read_lock_owner
from cache_relocator.manifest import ManifestStore
from cache_relocator.models import RunSummary
from cache_relocator.paths import discover_libraries, lock_path, resolve_primary_root, state_dir
from cache_relocator.relocation import points_to, run_relocation
from cache_relocator.restoration import run_restoration

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliContext:
    config: RelocatorConfig
    steam_dir: Optional[Path]


def _setup_logging(debug: bool, log: Optional[str], log_to_console: bool) -> None:
    formatter = logging.Formatter(fmt="%(asctime)s %(name)-15s %(levelname)-8s %(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if log:
        file_handler = logging.FileHandler(log)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    if not log or log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)


def _parse_timespan(_ctx, _param, value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return humanfriendly.parse_timespan(value)
    except humanfriendly.InvalidTimespan as e:
        raise click.BadParameter(str(e)) from e


def _finish(summary: RunSummary) -> None:
    for failure in summary.failures():
        _LOGGER.debug("Failed: %s/%s: %s", failure.library, failure.category, failure.error)
    if not summary.ok:
        raise click.ClickException(f"All {summary.failed} attempted {summary.operation} action(s) failed")


class _DefaultCommandGroup(click.Group):
    """Treat a leading argument that is not a command as STEAM_DIR for the default command.

    Keeps ``steam-cache-relocator [--undo] [STEAM_DIR]`` working alongside the subcommands.
    """

    def resolve_command(self, ctx: click.Context, args: list[str]):
        if args and args[0] not in self.commands:
            name = "restore" if ctx.params.get("undo") else "relocate"
            return name, self.commands[name], args
        return super().resolve_command(ctx, args)


def _steam_dir_argument(func):
    return click.argument(
        "steam_dir_arg",
        required=False,
        metavar="[STEAM_DIR]",
        type=click.Path(file_okay=False, path_type=Path),
    )(func)


def _pick_steam_dir(context: CliContext, steam_dir_arg: Optional[Path]) -> Optional[Path]:
    if steam_dir_arg is not None and context.steam_dir is not None and steam_dir_arg != context.steam_dir:
        raise click.UsageError("Give the Steam directory either as STEAM_DIR or with --steam-dir, not both")
    return steam_dir_arg or context.steam_dir


@click.group(cls=_DefaultCommandGroup, invoke_without_command=True)
@click.option(
    "--steam-dir",
    metavar="DIR",
    type=click.Path(file_okay=False, path_type=Path),
    help="Primary Steam directory  [default: ~/.local/share/Steam, then ~/.steam/steam]",
)
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    metavar="FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Read settings from FILE",
    show_default=True,
)
@click.option("--undo", is_flag=True, help="Restore directories that were previously symlinked (same as 'restore')")
@click.option("--dry-run/--for-real", help="Log what would be done without changing anything")
@click.option("--no-progress", is_flag=True, help="Disable rsync progress output")
@click.option("--no-space-check", is_flag=True, help="Do not check free space before moving caches")
@click.option(
    "--lock-timeout",
    metavar="TIMESPAN",
    callback=_parse_timespan,
    help="Wait at most TIMESPAN (e.g. 30s, 2m) for another run to finish",
)
@click.option(
    "--transfer",
    type=click.Choice(["rsync", "python"]),
    help="How to move cache contents",
)
@click.option("--debug/--no-debug", help="Turn on debugging")
@click.option("--log-to-console", is_flag=True, help="Log output to console, even if logging to a file is requested")
@click.option("--log", metavar="LOGFILE", help="Log to LOGFILE", type=click.Path(dir_okay=False, writable=True))
@click.pass_context
def cli(
    ctx: click.Context,
    steam_dir: Optional[Path],
    config_path: Path,
    undo: bool,
    dry_run: bool,
    no_progress: bool,
    no_space_check: bool,
    lock_timeout: Optional[float],
    transfer: Optional[str],
    debug: bool,
    log_to_console: bool,
    log: Optional[str],
):
    """Relocate or restore shader and Proton caches between secondary Steam
    libraries and the primary Steam directory.

    Without a command, caches are relocated (or restored with --undo).
    """
    _setup_logging(debug, log, log_to_console)

    try:
        config = RelocatorConfig.load(config_path).with_cli_overrides(
            dry_run=dry_run,
            no_progress=no_progress,
            no_space_check=no_space_check,
            lock_timeout=lock_timeout,
            transfer=transfer,
        )
    except (ValidationError, OSError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    ctx.obj = CliContext(config=config, steam_dir=steam_dir)

    if ctx.invoked_subcommand is None:
        ctx.invoke(restore if undo else relocate)
    elif undo and ctx.invoked_subcommand != "restore":
        raise click.UsageError("--undo cannot be combined with a command")


@cli.command()
@_steam_dir_argument
@click.pass_obj
def relocate(context: CliContext, steam_dir_arg: Optional[Path]):
    """Move caches into the primary library and symlink them."""
    steam_dir = _pick_steam_dir(context, steam_dir_arg)
    try:
        summary = run_relocation(steam_dir, context.config)
    except RelocatorError as e:
        raise click.ClickException(str(e)) from e
    _finish(summary)


@cli.command()
@_steam_dir_argument
@click.pass_obj
def restore(context: CliContext, steam_dir_arg: Optional[Path]):
    """Undo the last relocation using its manifest."""
    steam_dir = _pick_steam_dir(context, steam_dir_arg)
    try:
        summary = run_restoration(steam_dir, context.config)
    except RelocatorError as e:
        raise click.ClickException(str(e)) from e
    _finish(summary)


def _category_state(path: Path, expected: Path) -> str:
    if path.is_symlink():
        return "linked" if points_to(path, expected) else "linked elsewhere"
    if path.is_dir():
        return "directory"
    if path.exists():
        return "not a directory"
    return "missing"


@cli.command()
@_steam_dir_argument
@click.pass_obj
def status(context: CliContext, steam_dir_arg: Optional[Path]):
    """Show libraries, category states and the recorded manifest."""
    config = context.config
    try:
        primary = resolve_primary_root(_pick_steam_dir(context, steam_dir_arg), config)
        libraries = discover_libraries(primary, config)
    except RelocatorError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Primary library: {primary}")
    for library in libraries:
        if library.is_primary:
            continue
        click.echo(f"Library: {library.path}")
        for category in config.categories:
            source = library.category_path(config.apps_dir_name, category)
            expected = primary / config.apps_dir_name / category
            click.echo(f"  {category}: {_category_state(source, expected)}")

    owner = read_lock_owner(lock_path(primary, config))
    if owner:
        click.echo(f"Locked by process {owner}")

    store = ManifestStore(state_dir(primary, config))
    records = store.read_records()
    if not records:
        click.echo("No relocation recorded")
        return
    state = "finished" if store.has_manifest() else "interrupted"
    click.echo(f"Relocation manifest ({state}): {len(records)} action(s)")
    for record in records:
        moved = f"items moved ({record.item_list_id})" if record.items_moved else "empty"
        click.echo(f"  {record.library} {record.category}: {moved}")


def main():
    cli(prog_name="steam-cache-relocator")


if __name__ == "__main__":
    main()
