#!/usr/bin/env python3
"""Tests for the lock marker."""

from __future__ import annotations

import os
import threading
import time

import pytest
from cache_relocator.errors import LockTimeout
from cache_relocator.lock import engine_lock, hold_lock, read_lock_owner


def test_lock_records_owner_and_is_released(tmp_path):
    lock = tmp_path / "relocator.lock"
    with hold_lock(lock, timeout=1, poll_interval=0.01) as held:
        assert held == lock
        assert read_lock_owner(lock) == str(os.getpid())
    assert not lock.exists()


def test_lock_released_on_exception(tmp_path):
    lock = tmp_path / "relocator.lock"
    with pytest.raises(KeyboardInterrupt):
        with hold_lock(lock, timeout=1, poll_interval=0.01):
            raise KeyboardInterrupt
    assert not lock.exists()


def test_lock_timeout_names_owner(tmp_path):
    lock = tmp_path / "relocator.lock"
    lock.write_text("31337 abcdef\n")

    start = time.monotonic()
    with pytest.raises(LockTimeout) as exc_info:
        with hold_lock(lock, timeout=0.2, poll_interval=0.05):
            pytest.fail("Should not have acquired the lock")

    assert time.monotonic() - start >= 0.2
    assert exc_info.value.owner == "31337"
    assert "31337" in str(exc_info.value)
    # Someone else's lock is never removed
    assert lock.read_text() == "31337 abcdef\n"


def test_waiting_run_proceeds_after_release(tmp_path):
    lock = tmp_path / "relocator.lock"
    acquired = threading.Event()
    events = []

    def first_run():
        with hold_lock(lock, timeout=1, poll_interval=0.01):
            acquired.set()
            time.sleep(0.2)
            events.append("first done")

    thread = threading.Thread(target=first_run)
    thread.start()
    acquired.wait(timeout=5)

    with hold_lock(lock, timeout=5, poll_interval=0.01):
        events.append("second started")

    thread.join()
    assert events == ["first done", "second started"]
    assert not lock.exists()


def test_lock_taken_over_is_not_removed(tmp_path):
    lock = tmp_path / "relocator.lock"
    with hold_lock(lock, timeout=1, poll_interval=0.01):
        # An operator removed our lock and another run took it
        lock.unlink()
        lock.write_text("999 other-token\n")
    assert lock.read_text() == "999 other-token\n"


def test_locks_are_per_root(tmp_path):
    lock_a = tmp_path / "a.lock"
    lock_b = tmp_path / "b.lock"
    with hold_lock(lock_a, timeout=0, poll_interval=0.01):
        with hold_lock(lock_b, timeout=0, poll_interval=0.01):
            assert lock_a.exists() and lock_b.exists()


def test_engine_lock_skipped_in_dry_run(tmp_path):
    lock = tmp_path / "relocator.lock"
    lock.write_text("31337 abcdef\n")
    with engine_lock(lock, timeout=0, poll_interval=0.01, dry_run=True):
        pass
    assert lock.read_text() == "31337 abcdef\n"


def test_read_lock_owner_missing(tmp_path):
    assert read_lock_owner(tmp_path / "missing.lock") is None
