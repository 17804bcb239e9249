#!/usr/bin/env python3
"""Cross-process mutual exclusion over one primary library.

The lock is a plain marker file created with O_EXCL, so it works on any
filesystem without relying on advisory locking support.
"""

from __future__ import annotations

import errno
import logging
import os
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from cache_relocator.errors import LockTimeout

_LOGGER = logging.getLogger(__name__)


def _try_create(lock_path: Path, contents: str) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as lock_file:
        lock_file.write(contents)
    return True


def read_lock_owner(lock_path: Path) -> str | None:
    """Return the PID recorded in a lock marker, or None if it is gone or empty."""
    try:
        contents = lock_path.read_text(encoding="utf-8")
    except OSError as e:
        if e.errno != errno.ENOENT:
            _LOGGER.debug("Unable to read lock %s: %s", lock_path, e)
        return None
    fields = contents.split()
    return fields[0] if fields else None


def _release(lock_path: Path, contents: str) -> None:
    try:
        current = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        _LOGGER.warning("Lock %s disappeared before release", lock_path)
        return
    if current != contents:
        # Someone removed our marker by hand and a new run took it over
        _LOGGER.warning("Not removing %s: now held by process %s", lock_path, read_lock_owner(lock_path))
        return
    lock_path.unlink(missing_ok=True)
    _LOGGER.debug("Released lock %s", lock_path)


@contextmanager
def hold_lock(lock_path: Path, timeout: float, poll_interval: float) -> Generator[Path, None, None]:
    """Hold the marker at lock_path for the duration of the block.

    Polls every poll_interval seconds while another run holds the lock and
    gives up after timeout seconds. The marker is removed on every exit path,
    but only if it still carries the token this call wrote.

    Raises:
        LockTimeout: If the lock could not be taken in time
    """
    contents = f"{os.getpid()} {uuid.uuid4().hex}\n"
    start = time.monotonic()
    logged_wait = False
    while not _try_create(lock_path, contents):
        waited = time.monotonic() - start
        if waited >= timeout:
            raise LockTimeout(lock_path, read_lock_owner(lock_path), waited)
        if not logged_wait:
            _LOGGER.info("Waiting for lock %s held by process %s", lock_path, read_lock_owner(lock_path))
            logged_wait = True
        time.sleep(min(poll_interval, max(timeout - waited, 0)))

    _LOGGER.debug("Acquired lock %s", lock_path)
    try:
        yield lock_path
    finally:
        _release(lock_path, contents)


@contextmanager
def engine_lock(lock_path: Path, timeout: float, poll_interval: float, dry_run: bool) -> Generator[None, None, None]:
    """hold_lock, except that dry runs never take the lock."""
    if dry_run:
        _LOGGER.debug("DRY RUN: not taking lock %s", lock_path)
        yield
        return
    with hold_lock(lock_path, timeout, poll_interval):
        yield
