#!/usr/bin/env python3
"""Undo a relocation run using its manifest."""

from __future__ import annotations

import filecmp
import logging
import shutil
from pathlib import Path

from cache_relocator.config import RelocatorConfig
from cache_relocator.errors import ManifestCorruption
from cache_relocator.lock import engine_lock
from cache_relocator.manifest import ActionRecord, ManifestStore
from cache_relocator.models import ActionResult, Library, Outcome, RunSummary
from cache_relocator.paths import canonicalize, discover_libraries, lock_path, resolve_primary_root, state_dir

_LOGGER = logging.getLogger(__name__)


def _describe_conflict(restored: Path, remaining: Path) -> str:
    """Compare the two copies of a conflicting item, for the warning."""
    if restored.is_file() and remaining.is_file() and not restored.is_symlink() and not remaining.is_symlink():
        try:
            if filecmp.cmp(restored, remaining, shallow=False):
                return "contents are identical"
            return "contents DIFFER"
        except OSError as e:
            return f"unable to compare: {e}"
    return "not compared"


def _restore_items(source: Path, destination: Path, items: list[str], dry_run: bool) -> tuple[str, ...]:
    """Move the listed items from destination back into source.

    Returns the names that could not be moved back.
    """
    left_behind = []
    for name in items:
        src_entry = source / name
        dst_entry = destination / name
        if not dst_entry.exists() and not dst_entry.is_symlink():
            _LOGGER.warning("Skipping missing entry %s", dst_entry)
            continue
        # The directory would be recreated empty, so there is nothing to conflict with yet
        if dry_run:
            _LOGGER.info("DRY RUN: Would restore %s -> %s", dst_entry, source)
            continue
        if src_entry.exists() or src_entry.is_symlink():
            _LOGGER.warning(
                "Conflict restoring %s (%s); leaving data in %s",
                src_entry,
                _describe_conflict(src_entry, dst_entry),
                dst_entry,
            )
            left_behind.append(name)
            continue
        _LOGGER.info("Restoring %s -> %s", dst_entry, source)
        try:
            shutil.move(dst_entry, src_entry)
        except (OSError, shutil.Error) as e:
            _LOGGER.error("Failed to restore %s: %s", dst_entry, e)
            left_behind.append(name)
    return tuple(left_behind)


def restore_record(
    record: ActionRecord, primary: Library, store: ManifestStore, config: RelocatorConfig
) -> ActionResult:
    """Turn one redirect back into a real directory and move its items home.

    Only a symlink resolving exactly to the primary library's category is
    touched; anything else is skipped.
    """
    library = Library(record.library)
    source = library.category_path(config.apps_dir_name, record.category)
    destination = primary.category_path(config.apps_dir_name, record.category)

    if not source.is_symlink():
        _LOGGER.warning("Skipping %s (not a symlink)", source)
        return ActionResult(record.library, record.category, Outcome.SKIPPED_NOT_LINKED)

    link_target = canonicalize(source)
    if link_target != canonicalize(destination):
        _LOGGER.warning("Skipping %s (points to %s)", source, link_target)
        return ActionResult(record.library, record.category, Outcome.SKIPPED_NOT_LINKED)

    items: list[str] = []
    corruption: ManifestCorruption | None = None
    if record.items_moved:
        if record.item_list_id:
            try:
                items = store.read_item_list(record.item_list_id)
            except ManifestCorruption as e:
                corruption = e
        else:
            corruption = ManifestCorruption(f"No item list recorded for {source}")

    if config.dry_run:
        _LOGGER.info("DRY RUN: Would replace symlink %s with a directory", source)
    else:
        try:
            source.unlink()
            source.mkdir()
        except OSError as e:
            _LOGGER.error("Failed to restore directory %s: %s", source, e)
            return ActionResult(record.library, record.category, Outcome.FAILED, error=str(e))

    if corruption is not None:
        _LOGGER.error("%s; cache stays in %s", corruption, destination)
        return ActionResult(record.library, record.category, Outcome.FAILED, error=str(corruption))

    left_behind = _restore_items(source, destination, items, config.dry_run)
    if left_behind:
        _LOGGER.warning("%d item(s) remain in %s", len(left_behind), destination)
    _LOGGER.info("Restored directory %s", source)
    return ActionResult(
        record.library, record.category, Outcome.RESTORED, items=tuple(items), left_behind=left_behind
    )


def restore_primary(primary: Library, config: RelocatorConfig) -> RunSummary:
    """Reverse the recorded relocation of primary and retire its manifest.

    The manifest and item lists are deleted once every record has been
    attempted, whether or not all of them could be restored.

    Raises:
        LockTimeout: If another run holds the primary library
    """
    summary = RunSummary("restore", dry_run=config.dry_run)
    store = ManifestStore(state_dir(primary.path, config))

    with engine_lock(lock_path(primary.path, config), config.lock_timeout, config.lock_poll_interval, config.dry_run):
        if not store.has_manifest() and not store.has_journal():
            _LOGGER.info("No relocation state found; nothing to undo.")
            return summary
        if not store.has_manifest():
            _LOGGER.warning("Restoring from the in-progress manifest of an interrupted run")

        for record in store.read_records():
            summary.add(restore_record(record, primary, store, config))

        if config.dry_run:
            _LOGGER.info("DRY RUN: Would remove relocation state in %s", store.state_dir)
        else:
            store.discard()

    _LOGGER.info(
        "Undo complete: %d restored, %d failed, %d skipped",
        summary.succeeded,
        summary.failed,
        summary.skipped,
    )
    return summary


def run_restoration(primary_root: Path | None, config: RelocatorConfig) -> RunSummary:
    """Restore every library recorded against primary_root.

    Raises:
        ConfigurationError: If the primary library is missing
        LockTimeout: If another run holds the primary library
    """
    primary_path = resolve_primary_root(primary_root, config)
    libraries = discover_libraries(primary_path, config)
    if len(libraries) <= 1:
        _LOGGER.info("No secondary Steam libraries detected.")
        _LOGGER.info("Undo skipped.")
        return RunSummary("restore", dry_run=config.dry_run)
    return restore_primary(Library(primary_path, is_primary=True), config)
