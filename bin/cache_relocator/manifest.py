#!/usr/bin/env python3
"""Relocation manifest creation and management.

A relocation run records one ActionRecord per redirect it creates, as a
tab-separated line in ``state.tsv`` under the primary library's state
directory. Each action that moved data also writes an ItemList,
``items.<id>``, naming the top-level entries moved so restoration can put
back exactly those.

While a run is in progress the records live in ``state.tsv.inprogress``,
rewritten atomically after every action. The journal is renamed to
``state.tsv`` only when the run finishes, so an interrupted run can be
resumed and a finished one blocks further relocation until restored.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cache_relocator.errors import ManifestCorruption

_LOGGER = logging.getLogger(__name__)

MANIFEST_NAME = "state.tsv"
INPROGRESS_SUFFIX = ".inprogress"
ITEM_LIST_PREFIX = "items."
TEMP_SUFFIX = ".tmp"


def item_list_id(library: Path, category: str) -> str:
    """Deterministic ItemList identifier for one (library, category) pair."""
    return hashlib.sha1(f"{library}\n{category}\n".encode("utf-8", "surrogateescape")).hexdigest()


class ActionRecord(BaseModel):
    """One redirect created by a relocation run."""

    library: Path = Field(..., description="Canonical path of the secondary library")
    category: str = Field(..., description="Category directory name under the apps directory")
    items_moved: bool = Field(..., description="Whether data was moved before linking")
    item_list_id: str | None = Field(None, description="ItemList holding the moved entry names")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("library")
    @classmethod
    def validate_library(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"Library path '{v}' must be absolute")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if not v or "/" in v or "\t" in v or "\n" in v:
            raise ValueError(f"Invalid category name '{v}'")
        return v

    @field_validator("item_list_id")
    @classmethod
    def validate_item_list_id(cls, v: str | None) -> str | None:
        if not v:
            return None
        if len(v) != 40 or any(c not in "0123456789abcdef" for c in v):
            raise ValueError(f"Invalid item list id '{v}'")
        return v

    def to_line(self) -> str:
        return "\t".join([str(self.library), self.category, "1" if self.items_moved else "0", self.item_list_id or ""])

    @classmethod
    def from_line(cls, line: str) -> ActionRecord:
        """Parse one manifest line.

        Raises:
            ManifestCorruption: If the line does not hold a valid record
        """
        fields = line.rstrip("\n").split("\t")
        if len(fields) < 3 or len(fields) > 4:
            raise ManifestCorruption(f"Expected 3 or 4 tab-separated fields, got {len(fields)}")
        library, category, moved = fields[:3]
        if moved not in ("0", "1"):
            raise ManifestCorruption(f"Invalid items-moved flag '{moved}'")
        try:
            return cls(
                library=Path(library),
                category=category,
                items_moved=moved == "1",
                item_list_id=fields[3] if len(fields) == 4 else None,
            )
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise ManifestCorruption(messages) from e


def write_atomically(path: Path, text: str) -> None:
    """Write text to path via a uniquely named temp file and rename.

    Readers only ever see the old or the new contents. The temp file is
    removed on any failure, including interruption.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    replaced = False
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=path.parent,
            prefix=f"{path.name}.",
            suffix=TEMP_SUFFIX,
            delete=False,
            encoding="utf-8",
            errors="surrogateescape",
            newline="",
        ) as temp_file:
            temp_path = Path(temp_file.name)
            temp_file.write(text)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        temp_path.replace(path)
        replaced = True
    finally:
        if not replaced and temp_path is not None:
            temp_path.unlink(missing_ok=True)


def read_lines(path: Path) -> list[str]:
    """Split a state file on "\n" only.

    Entry names may contain any other character, including "\r" and the
    Unicode line separators that universal newlines and splitlines() break on.
    """
    lines = path.read_bytes().decode("utf-8", "surrogateescape").split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


class ManifestStore:
    """Files making up the relocation state of one primary library."""

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / MANIFEST_NAME

    @property
    def journal_path(self) -> Path:
        return self.state_dir / (MANIFEST_NAME + INPROGRESS_SUFFIX)

    def item_list_path(self, list_id: str) -> Path:
        return self.state_dir / f"{ITEM_LIST_PREFIX}{list_id}"

    def has_manifest(self) -> bool:
        return self.manifest_path.is_file()

    def has_journal(self) -> bool:
        return self.journal_path.is_file()

    def write_item_list(self, list_id: str, items: Iterable[str]) -> Path:
        path = self.item_list_path(list_id)
        write_atomically(path, "".join(f"{item}\n" for item in items))
        _LOGGER.debug("Wrote item list %s", path)
        return path

    def read_item_list(self, list_id: str) -> list[str]:
        """Return the entry names recorded for list_id.

        Raises:
            ManifestCorruption: If the list is missing or unreadable
        """
        path = self.item_list_path(list_id)
        try:
            lines = read_lines(path)
        except FileNotFoundError as e:
            raise ManifestCorruption(f"Item list {path} is missing") from e
        except OSError as e:
            raise ManifestCorruption(f"Item list {path} is unreadable: {e}") from e
        return [line for line in lines if line]

    def write_journal(self, records: list[ActionRecord]) -> None:
        write_atomically(self.journal_path, "".join(record.to_line() + "\n" for record in records))

    def finalize(self) -> None:
        """Turn the in-progress journal into the finished manifest.

        Raises:
            FileNotFoundError: If there is no journal to finalize
        """
        if not self.journal_path.exists():
            raise FileNotFoundError(f"In-progress manifest not found: {self.journal_path}")
        _LOGGER.debug("Finalizing manifest: %s -> %s", self.journal_path, self.manifest_path)
        self.journal_path.replace(self.manifest_path)

    def _records_source(self) -> Path | None:
        if self.has_manifest():
            return self.manifest_path
        if self.has_journal():
            return self.journal_path
        return None

    def read_records(self) -> list[ActionRecord]:
        """Read the finished manifest, or the journal of an interrupted run.

        Malformed lines are logged and skipped; the data they describe is left
        where it is.
        """
        source = self._records_source()
        if source is None:
            return []
        records = []
        for line_no, line in enumerate(read_lines(source), start=1):
            if not line.strip():
                continue
            try:
                records.append(ActionRecord.from_line(line))
            except ManifestCorruption as e:
                _LOGGER.error("Ignoring corrupt line %d of %s: %s", line_no, source, e)
        return records

    def _stray_files(self) -> list[Path]:
        if not self.state_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.state_dir.iterdir()
            if path.name.startswith(ITEM_LIST_PREFIX) or path.name.endswith(TEMP_SUFFIX)
        )

    def remove_stale_files(self, keep: Iterable[str] = ()) -> None:
        """Remove item lists and temp files not referenced by the given ids."""
        keep_names = {f"{ITEM_LIST_PREFIX}{list_id}" for list_id in keep}
        for path in self._stray_files():
            if path.name in keep_names:
                continue
            _LOGGER.debug("Removing stale state file %s", path)
            path.unlink(missing_ok=True)

    def discard(self) -> None:
        """Delete the manifest, journal and every item list, then the directory if empty."""
        for path in [self.manifest_path, self.journal_path, *self._stray_files()]:
            path.unlink(missing_ok=True)
        try:
            self.state_dir.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            _LOGGER.debug("Leaving state directory %s in place: %s", self.state_dir, e)


class RunJournal:
    """Records accumulated by one relocation run, persisted as they happen."""

    def __init__(self, store: ManifestStore, dry_run: bool, records: list[ActionRecord] | None = None):
        self.store = store
        self.dry_run = dry_run
        self.records: list[ActionRecord] = list(records or [])

    def stage_items(self, list_id: str, items: list[str]) -> None:
        """Persist an item list ahead of the record that will reference it."""
        if self.dry_run:
            _LOGGER.info("DRY RUN: Would write item list %s", self.store.item_list_path(list_id))
            return
        self.store.write_item_list(list_id, items)

    def record(self, record: ActionRecord, items: list[str] | None = None) -> None:
        """Persist the item list (if given) and then the record for one completed action."""
        if self.dry_run:
            _LOGGER.info("DRY RUN: Would record %s", record.to_line().replace("\t", " "))
            return
        if record.item_list_id and items is not None:
            self.store.write_item_list(record.item_list_id, items)
        records = [r for r in self.records if (r.library, r.category) != (record.library, record.category)]
        records.append(record)
        self.store.write_journal(records)
        self.records = records


@contextmanager
def relocation_journal(store: ManifestStore, dry_run: bool) -> Generator[RunJournal, None, None]:
    """Journal the records of a relocation run, finalizing the manifest on success.

    An interrupted run from before is resumed: its records are kept and its
    item lists survive, everything else in the state directory is cleared.
    On normal exit the journal becomes the manifest, or the state directory is
    removed if no action was recorded. On failure the journal is left for the
    next run to resume, unless it is empty.
    """
    previous = store.read_records() if store.has_journal() else []
    if previous:
        _LOGGER.warning("Resuming interrupted relocation with %d recorded action(s)", len(previous))
    journal = RunJournal(store, dry_run, previous)

    if dry_run:
        yield journal
        return

    store.remove_stale_files(keep=[r.item_list_id for r in previous if r.item_list_id])

    completed = False
    try:
        yield journal
        completed = True
    finally:
        if not journal.records:
            store.discard()
        elif completed:
            store.finalize()
            _LOGGER.info("Recorded %d action(s) in %s", len(journal.records), store.manifest_path)
        else:
            _LOGGER.warning("Leaving in-progress manifest %s; run relocate again to resume", store.journal_path)
            store.remove_stale_files(keep=[r.item_list_id for r in journal.records if r.item_list_id])
