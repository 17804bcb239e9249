#!/usr/bin/env python3
"""Data models for relocation and restoration runs."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class Library:
    """A canonicalized storage root taking part in consolidation."""

    path: Path
    is_primary: bool = False

    def apps_dir(self, apps_dir_name: str) -> Path:
        return self.path / apps_dir_name

    def category_path(self, apps_dir_name: str, category: str) -> Path:
        return self.path / apps_dir_name / category


class Outcome(enum.Enum):
    """What happened to one (library, category) pair."""

    LINKED_EMPTY = "linked-empty"
    LINKED_POPULATED = "linked-populated"
    SKIPPED_ALREADY_LINKED = "skipped-already-linked"
    SKIPPED_MISSING = "skipped-missing"
    RESTORED = "restored"
    SKIPPED_NOT_LINKED = "skipped-not-linked"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self in (Outcome.LINKED_EMPTY, Outcome.LINKED_POPULATED, Outcome.RESTORED)

    @property
    def skipped(self) -> bool:
        return self in (Outcome.SKIPPED_ALREADY_LINKED, Outcome.SKIPPED_MISSING, Outcome.SKIPPED_NOT_LINKED)


@dataclass(frozen=True)
class ActionResult:
    """Result of processing one (library, category) pair."""

    library: Path
    category: str
    outcome: Outcome
    items: tuple[str, ...] = ()
    error: str | None = None
    # Items that could not be moved back during restoration and stay at the primary library
    left_behind: tuple[str, ...] = ()


@dataclass
class RunSummary:
    """Accumulated results of one relocation or restoration run."""

    operation: str
    dry_run: bool = False
    results: list[ActionResult] = field(default_factory=list)

    def add(self, result: ActionResult) -> None:
        self.results.append(result)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome.succeeded)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome is Outcome.FAILED)

    @property
    def ok(self) -> bool:
        """A run fails only when something failed and nothing succeeded."""
        return not (self.failed and not self.succeeded)

    def failures(self) -> list[ActionResult]:
        return [r for r in self.results if r.outcome is Outcome.FAILED]
