#!/usr/bin/env python3
"""Exceptions raised by the relocation and restoration engines."""

from __future__ import annotations

from pathlib import Path

import humanfriendly


class RelocatorError(Exception):
    """Base class for all relocator failures."""


class ConfigurationError(RelocatorError):
    """The primary root, its apps directory or a required tool is missing."""


class ManifestExists(RelocatorError):
    """A finalized manifest from an earlier relocation has not been restored yet."""

    def __init__(self, manifest_path: Path):
        super().__init__(
            f"Existing relocation manifest found at {manifest_path}. Run restore before relocating again."
        )
        self.manifest_path = manifest_path


class LockTimeout(RelocatorError):
    """Another run held the lock for longer than we were willing to wait."""

    def __init__(self, lock_path: Path, owner: str | None, waited: float):
        owner_desc = f"process {owner}" if owner else "an unknown process"
        super().__init__(
            f"Timed out after {waited:.0f}s waiting for {lock_path} held by {owner_desc}; "
            "remove the lock manually if that process is gone"
        )
        self.lock_path = lock_path
        self.owner = owner


class ManifestCorruption(RelocatorError):
    """A manifest line or item list could not be read back."""


class ActionError(RelocatorError):
    """A single (library, category) action failed; the run carries on."""


class InsufficientSpace(ActionError):
    def __init__(self, source: Path, destination: Path, required: int, available: int):
        super().__init__(
            f"Not enough space to move {source} to {destination}. "
            f"Required: {humanfriendly.format_size(required, binary=True)}, "
            f"Available: {humanfriendly.format_size(available, binary=True)}"
        )
        self.required = required
        self.available = available


class TransferFailure(ActionError):
    """The bulk transfer step failed part way."""


class ConflictingRedirect(ActionError):
    """A category path is already something other than the redirect we would create."""


class ResidualData(ActionError):
    """Data was left behind in the source after the transfer."""
