#!/usr/bin/env python3
"""Free space checks for pending moves."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path

import humanfriendly

from cache_relocator.errors import InsufficientSpace

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpaceEstimate:
    """Bytes needed for a move against bytes free at its destination."""

    source_size: int
    required: int
    available: int

    @property
    def sufficient(self) -> bool:
        return has_enough_space(self.available, self.required)


def has_enough_space(available_bytes: int, required_bytes: int) -> bool:
    """Pure function to check if available space meets requirements."""
    return available_bytes >= required_bytes


def directory_size(path: Path) -> int:
    """Total size in bytes of everything under path, without following symlinks."""
    total = 0
    for root, dirs, files in os.walk(path, onerror=lambda e: _LOGGER.warning("Unable to scan %s", e.filename)):
        for name in dirs + files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError as e:
                _LOGGER.debug("Unable to stat %s: %s", os.path.join(root, name), e)
    return total


def free_space(path: Path) -> int:
    """Bytes available to unprivileged users on the filesystem holding path.

    Walks up to the nearest existing ancestor, so a destination that has not
    been created yet is measured on the filesystem it will land on.
    """
    existing = path
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    stat = os.statvfs(existing)
    return stat.f_bavail * stat.f_frsize


def required_space(source_size: int, margin: float) -> int:
    return source_size + math.ceil(source_size * margin)


def estimate_space(source: Path, destination: Path, margin: float) -> SpaceEstimate:
    source_size = directory_size(source)
    estimate = SpaceEstimate(
        source_size=source_size,
        required=required_space(source_size, margin),
        available=free_space(destination),
    )
    _LOGGER.debug(
        "Space for %s: %s needed (%s + margin), %s free at %s",
        source,
        humanfriendly.format_size(estimate.required, binary=True),
        humanfriendly.format_size(source_size, binary=True),
        humanfriendly.format_size(estimate.available, binary=True),
        destination,
    )
    return estimate


def check_space(source: Path, destination: Path, margin: float) -> SpaceEstimate:
    """Make sure destination can take the contents of source plus a safety margin.

    Args:
        source: Directory about to be moved
        destination: Directory it will be moved into
        margin: Fraction of the source size to add as headroom (0.1 = 10%)

    Returns:
        The SpaceEstimate used for the decision

    Raises:
        InsufficientSpace: If the required space exceeds what is free
    """
    estimate = estimate_space(source, destination, margin)
    if not estimate.sufficient:
        raise InsufficientSpace(source, destination, estimate.required, estimate.available)
    return estimate
