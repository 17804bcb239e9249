#!/usr/bin/env python3
"""Library discovery and path canonicalization."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from cache_relocator.config import RelocatorConfig
from cache_relocator.errors import ConfigurationError
from cache_relocator.models import Library

_LOGGER = logging.getLogger(__name__)

DEFAULT_PRIMARY_ROOT = Path("~/.local/share/Steam")
FALLBACK_PRIMARY_ROOT = Path("~/.steam/steam")

# Matches `"path"    "/mnt/games/SteamLibrary"` anywhere in the descriptor, ignoring the nesting around it
_PATH_FIELD_RE = re.compile(r'"path"\s+"((?:[^"\\]|\\.)*)"')
_ESCAPE_RE = re.compile(r"\\(.)")


def canonicalize(path: Path) -> Path:
    """Resolve symlinks and relative components, like `readlink -f`."""
    return Path(os.path.realpath(path.expanduser()))


def resolve_primary_root(explicit: Path | None, config: RelocatorConfig) -> Path:
    """Find the primary root and make sure it holds an apps directory.

    When no root is given the default location is used, falling back to the
    legacy ``~/.steam/steam`` location if the default does not exist.

    Raises:
        ConfigurationError: If the root or its apps directory is missing
    """
    if explicit is not None:
        candidate = explicit.expanduser()
        if not candidate.is_dir():
            raise ConfigurationError(f"Primary library {candidate} is not a directory")
    else:
        candidate = DEFAULT_PRIMARY_ROOT.expanduser()
        if not candidate.is_dir():
            fallback = FALLBACK_PRIMARY_ROOT.expanduser()
            if not fallback.is_dir():
                raise ConfigurationError("Steam directory not found. Pass it explicitly.")
            _LOGGER.info("Fallback to %s", fallback)
            candidate = fallback

    primary = canonicalize(candidate)
    apps_dir = primary / config.apps_dir_name
    if not apps_dir.is_dir():
        raise ConfigurationError(f"Missing {config.apps_dir_name} directory under {primary}")
    return primary


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(r"\1", value)


def parse_library_descriptor(text: str) -> list[str]:
    """Extract every declared library path from a descriptor, in file order.

    Only the ``"path"`` fields are looked at; any other keys are ignored.
    """
    return [_unescape(match.group(1)) for match in _PATH_FIELD_RE.finditer(text)]


def read_library_descriptor(primary: Path, config: RelocatorConfig) -> list[str]:
    descriptor = primary / config.apps_dir_name / config.library_descriptor
    if not descriptor.is_file():
        raise ConfigurationError(f"Cannot locate {descriptor}")
    try:
        text = descriptor.read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as e:
        raise ConfigurationError(f"Failed to read {descriptor}: {e}") from e
    return parse_library_descriptor(text)


def discover_libraries(primary: Path, config: RelocatorConfig) -> list[Library]:
    """Return the deduplicated list of libraries, primary included and flagged.

    Entries that do not exist or resolve to an already-seen library are
    dropped with a log line.
    """
    raw_paths = read_library_descriptor(primary, config)
    raw_paths.append(str(primary))

    seen: set[Path] = set()
    libraries: list[Library] = []
    for raw in raw_paths:
        if not raw:
            continue
        resolved = canonicalize(Path(raw))
        if not resolved.is_dir():
            _LOGGER.info("Skipping missing library %s", resolved)
            continue
        if resolved in seen:
            _LOGGER.debug("Skipping duplicate library %s", resolved)
            continue
        seen.add(resolved)
        libraries.append(Library(path=resolved, is_primary=resolved == primary))

    _LOGGER.debug("Discovered %d libraries: %s", len(libraries), ", ".join(str(lib.path) for lib in libraries))
    return libraries


def state_dir(primary: Path, config: RelocatorConfig) -> Path:
    return primary / config.apps_dir_name / config.state_dir_name


def lock_path(primary: Path, config: RelocatorConfig) -> Path:
    return primary / config.apps_dir_name / config.lock_name
