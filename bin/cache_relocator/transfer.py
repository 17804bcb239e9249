#!/usr/bin/env python3
"""Bulk transfer of directory contents, removing sources as they land."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from cache_relocator.config import RelocatorConfig
from cache_relocator.errors import ConfigurationError, TransferFailure

_LOGGER = logging.getLogger(__name__)


def list_entries(path: Path) -> list[str]:
    """Immediate children of path, in byte-wise name order."""
    return sorted(os.listdir(path), key=os.fsencode)


def is_empty_dir(path: Path) -> bool:
    if not path.is_dir() or path.is_symlink():
        return False
    with os.scandir(path) as it:
        return next(it, None) is None


def prune_empty_dirs(root: Path) -> None:
    """Remove every empty directory below root, deepest first. root itself is kept."""
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        if Path(dirpath) == root:
            continue
        try:
            os.rmdir(dirpath)
        except OSError:
            # Not empty, or not ours to remove
            pass


def require_transfer_tool(config: RelocatorConfig) -> None:
    """Make sure the configured transfer method can run.

    Raises:
        ConfigurationError: If rsync is configured but not installed
    """
    if config.transfer == "rsync" and shutil.which(config.rsync_path) is None:
        raise ConfigurationError(f"Required command '{config.rsync_path}' not found. Install it and retry.")


def build_rsync_command(source: Path, destination: Path, config: RelocatorConfig, interactive: bool) -> list[str]:
    cmd = [config.rsync_path, "-a", "--remove-source-files"]
    if config.show_progress and interactive:
        cmd += ["--info=progress2", "--human-readable"]
    # Trailing slashes: copy the contents of source into destination
    cmd += [f"{source}/", f"{destination}/"]
    return cmd


def rsync_transfer(source: Path, destination: Path, config: RelocatorConfig) -> None:
    cmd = build_rsync_command(source, destination, config, sys.stdout.isatty())
    _LOGGER.debug("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, check=False)
    except OSError as e:
        raise TransferFailure(f"Unable to run {config.rsync_path}: {e}") from e
    if result.returncode != 0:
        raise TransferFailure(f"rsync failed while moving {source} (exit status {result.returncode})")


def _move_tree(source: Path, destination: Path) -> None:
    """Merge source into destination one file at a time, like rsync --remove-source-files.

    Directories are merged; files and symlinks replace whatever file is at the
    destination. Source directories are left behind (empty) for pruning.
    """
    destination.mkdir(exist_ok=True)
    for name in list_entries(source):
        src = source / name
        dst = destination / name
        if src.is_dir() and not src.is_symlink():
            if dst.is_symlink() or (dst.exists() and not dst.is_dir()):
                raise TransferFailure(f"Cannot merge directory {src} over non-directory {dst}")
            _move_tree(src, dst)
            continue
        if dst.is_dir() and not dst.is_symlink():
            raise TransferFailure(f"Cannot move {src} over directory {dst}")
        shutil.move(src, dst)


def python_transfer(source: Path, destination: Path) -> None:
    try:
        _move_tree(source, destination)
    except (OSError, shutil.Error) as e:
        raise TransferFailure(f"Failed while moving {source}: {e}") from e


def transfer_contents(source: Path, destination: Path, config: RelocatorConfig) -> None:
    """Move everything inside source into destination.

    The exit status of the transfer is not trusted on its own: callers must
    check that source is empty afterwards before removing it.

    Raises:
        TransferFailure: If the transfer reported an error
    """
    if config.transfer == "rsync":
        rsync_transfer(source, destination, config)
    else:
        python_transfer(source, destination)
