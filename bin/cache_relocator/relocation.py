#!/usr/bin/env python3
"""Move category directories into the primary library and leave symlinks behind."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import humanfriendly

from cache_relocator.config import RelocatorConfig
from cache_relocator.errors import (
    ActionError,
    ConflictingRedirect,
    InsufficientSpace,
    ManifestExists,
    ResidualData,
)
from cache_relocator.lock import engine_lock
from cache_relocator.manifest import ActionRecord, ManifestStore, RunJournal, item_list_id, relocation_journal
from cache_relocator.models import ActionResult, Library, Outcome, RunSummary
from cache_relocator.paths import canonicalize, discover_libraries, lock_path, resolve_primary_root, state_dir
from cache_relocator.space import check_space, estimate_space
from cache_relocator.transfer import (
    is_empty_dir,
    list_entries,
    prune_empty_dirs,
    require_transfer_tool,
    transfer_contents,
)

_LOGGER = logging.getLogger(__name__)


def points_to(link: Path, target: Path) -> bool:
    """True if link resolves to the same place as target."""
    return canonicalize(link) == canonicalize(target)


def create_redirect(source: Path, destination: Path) -> None:
    """Replace the (already removed) source directory with a symlink to destination.

    If the symlink cannot be created an empty directory is put back so the
    library keeps its layout.
    """
    try:
        source.symlink_to(destination, target_is_directory=True)
    except OSError:
        source.mkdir(exist_ok=True)
        raise
    _LOGGER.info("Linked %s -> %s", source, destination)


def _link_and_record(source: Path, destination: Path, record: ActionRecord, journal: RunJournal) -> None:
    """Create the redirect, then record it. A redirect that cannot be recorded is removed again."""
    create_redirect(source, destination)
    try:
        journal.record(record)
    except OSError as e:
        _LOGGER.error("Unable to record %s (%s); removing redirect", source, e)
        source.unlink()
        source.mkdir()
        raise


def _return_items(destination: Path, source: Path, items: list[str]) -> None:
    """Move items back into source after a relocation that could not be completed."""
    source.mkdir(exist_ok=True)
    _LOGGER.warning("Moving %d item(s) back into %s", len(items), source)
    for name in items:
        moved = destination / name
        if not moved.exists() and not moved.is_symlink():
            continue
        if (source / name).exists() or (source / name).is_symlink():
            _LOGGER.warning("Not returning %s: %s already exists", moved, source / name)
            continue
        try:
            shutil.move(moved, source / name)
        except (OSError, shutil.Error) as e:
            _LOGGER.error("Unable to return %s to %s: %s", moved, source, e)


def _check_existing(source: Path, destination: Path) -> Outcome | None:
    """Classify a category path before touching it.

    Returns a skip outcome, or None if source is a real directory to relocate.

    Raises:
        ConflictingRedirect: If source is a symlink elsewhere or not a directory
    """
    if source.is_symlink():
        if points_to(source, destination):
            _LOGGER.info("Skipping %s (already linked)", source)
            return Outcome.SKIPPED_ALREADY_LINKED
        raise ConflictingRedirect(f"Refusing to relink because {source} points to {os.readlink(source)}")
    if not source.exists():
        _LOGGER.debug("Skipping %s (missing)", source)
        return Outcome.SKIPPED_MISSING
    if not source.is_dir():
        raise ConflictingRedirect(f"Refusing to overwrite non-directory at {source}")
    return None


def _plan_category(
    library: Library, category: str, source: Path, destination: Path, config: RelocatorConfig
) -> ActionResult:
    """Dry-run counterpart of the move: log what would happen, touch nothing."""
    items = list_entries(source)
    if not items:
        _LOGGER.info("DRY RUN: Would remove empty %s", source)
        _LOGGER.info("DRY RUN: Would link %s -> %s", source, destination)
        return ActionResult(library.path, category, Outcome.LINKED_EMPTY)

    estimate = estimate_space(source, destination, config.space_margin)
    _LOGGER.info(
        "DRY RUN: Would move %d item(s) (%s) from %s to %s",
        len(items),
        humanfriendly.format_size(estimate.source_size, binary=True),
        source,
        destination,
    )
    if config.space_check and not estimate.sufficient:
        error = InsufficientSpace(source, destination, estimate.required, estimate.available)
        _LOGGER.warning("DRY RUN: Would fail: %s", error)
        return ActionResult(library.path, category, Outcome.FAILED, tuple(items), error=str(error))
    _LOGGER.info("DRY RUN: Would link %s -> %s", source, destination)
    return ActionResult(library.path, category, Outcome.LINKED_POPULATED, tuple(items))


def relocate_category(
    library: Library, primary: Library, category: str, config: RelocatorConfig, journal: RunJournal
) -> ActionResult:
    """Move one category of one library into the primary library and link it.

    Failures are confined to this (library, category) pair and come back as a
    FAILED result. The source directory is only removed once it has been seen
    to be empty.
    """
    source = library.category_path(config.apps_dir_name, category)
    destination = primary.category_path(config.apps_dir_name, category)

    try:
        skipped = _check_existing(source, destination)
        if skipped is not None:
            return ActionResult(library.path, category, skipped)

        if config.dry_run:
            return _plan_category(library, category, source, destination, config)

        destination.mkdir(parents=True, exist_ok=True)
        items = list_entries(source)

        if not items:
            source.rmdir()
            _link_and_record(
                source, destination, ActionRecord(library=library.path, category=category, items_moved=False), journal
            )
            return ActionResult(library.path, category, Outcome.LINKED_EMPTY)

        if config.space_check:
            check_space(source, destination, config.space_margin)

        _LOGGER.info("Moving %d item(s) from %s to %s", len(items), source, destination)
        transfer_contents(source, destination, config)
        prune_empty_dirs(source)

        if not is_empty_dir(source):
            raise ResidualData(f"{source} still contains data; leaving remainder in place and not linking")

        list_id = item_list_id(library.path, category)
        try:
            journal.stage_items(list_id, items)
            source.rmdir()
            _link_and_record(
                source,
                destination,
                ActionRecord(library=library.path, category=category, items_moved=True, item_list_id=list_id),
                journal,
            )
        except OSError:
            _return_items(destination, source, items)
            raise
        return ActionResult(library.path, category, Outcome.LINKED_POPULATED, tuple(items))

    except ActionError as e:
        _LOGGER.warning("%s", e)
        return ActionResult(library.path, category, Outcome.FAILED, error=str(e))
    except OSError as e:
        _LOGGER.error("Failed to relocate %s: %s", source, e)
        return ActionResult(library.path, category, Outcome.FAILED, error=str(e))


def relocate_libraries(primary: Library, libraries: list[Library], config: RelocatorConfig) -> RunSummary:
    """Relocate every category of every secondary library, under the lock.

    Raises:
        ManifestExists: If an earlier relocation has not been restored
        LockTimeout: If another run holds the primary library
    """
    summary = RunSummary("relocate", dry_run=config.dry_run)
    store = ManifestStore(state_dir(primary.path, config))
    if store.has_manifest():
        raise ManifestExists(store.manifest_path)

    with engine_lock(lock_path(primary.path, config), config.lock_timeout, config.lock_poll_interval, config.dry_run):
        # Another run may have finished while we waited for the lock
        if store.has_manifest():
            raise ManifestExists(store.manifest_path)
        with relocation_journal(store, config.dry_run) as journal:
            for library in libraries:
                if library.is_primary:
                    continue
                for category in config.categories:
                    summary.add(relocate_category(library, primary, category, config, journal))

    _LOGGER.info(
        "Relocation complete: %d successful, %d failed, %d skipped",
        summary.succeeded,
        summary.failed,
        summary.skipped,
    )
    if not config.dry_run and summary.succeeded:
        _LOGGER.info("Done. Future shader and Proton caches now land on %s", primary.path / config.apps_dir_name)
    return summary


def run_relocation(primary_root: Path | None, config: RelocatorConfig) -> RunSummary:
    """Discover libraries from primary_root and consolidate their caches into it.

    Raises:
        ConfigurationError: If the primary library or the transfer tool is missing
        ManifestExists: If an earlier relocation has not been restored
        LockTimeout: If another run holds the primary library
    """
    primary_path = resolve_primary_root(primary_root, config)
    libraries = discover_libraries(primary_path, config)
    if len(libraries) <= 1:
        _LOGGER.info("No secondary Steam libraries detected.")
        return RunSummary("relocate", dry_run=config.dry_run)

    if not config.dry_run:
        require_transfer_tool(config)

    primary = next(library for library in libraries if library.is_primary)
    return relocate_libraries(primary, libraries, config)
