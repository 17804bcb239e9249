"""Shared fixtures for cache relocator tests."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import pytest
from cache_relocator.config import RelocatorConfig

from test_helpers import make_descriptor


@dataclass
class SteamLayout:
    primary: Path
    secondary: Path

    @property
    def primary_apps(self) -> Path:
        return self.primary / "steamapps"

    @property
    def secondary_apps(self) -> Path:
        return self.secondary / "steamapps"

    @property
    def state_dir(self) -> Path:
        return self.primary_apps / ".steam_cache_relocator"

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / "state.tsv"

    def add_library(self, root: Path) -> Path:
        """Create another library and list it in the descriptor."""
        (root / "steamapps").mkdir(parents=True)
        descriptor = self.primary_apps / "libraryfolders.vdf"
        existing = [line.split('"')[3] for line in descriptor.read_text().splitlines() if '"path"' in line]
        descriptor.write_text(make_descriptor([Path(p) for p in existing] + [root]))
        return Path(os.path.realpath(root))


@pytest.fixture
def steam(tmp_path) -> SteamLayout:
    root = Path(os.path.realpath(tmp_path))
    primary = root / "Steam"
    secondary = root / "games" / "SteamLibrary"
    (primary / "steamapps").mkdir(parents=True)
    (secondary / "steamapps").mkdir(parents=True)
    (primary / "steamapps" / "libraryfolders.vdf").write_text(make_descriptor([primary, secondary]))
    return SteamLayout(primary=primary, secondary=secondary)


@pytest.fixture
def config() -> RelocatorConfig:
    return RelocatorConfig(transfer="python", lock_timeout=0.5, lock_poll_interval=0.05)
