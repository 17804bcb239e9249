#!/usr/bin/env python3
"""Configuration management for the cache relocator.

Handles loading configuration from a YAML file and applying command-line
overrides. The resulting object is immutable and is passed explicitly into
every engine call.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cache_relocator.config_safe_loader import ConfigSafeLoader

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/steam-cache-relocator/config.yaml")
DEFAULT_CATEGORIES = ("shadercache", "steamshadercache", "compatdata")


class RelocatorConfig(BaseModel):
    """Everything an engine call needs to know about how to behave."""

    apps_dir_name: str = "steamapps"
    library_descriptor: str = "libraryfolders.vdf"
    state_dir_name: str = ".steam_cache_relocator"
    lock_name: str = ".steam_cache_relocator.lock"
    categories: tuple[str, ...] = DEFAULT_CATEGORIES

    lock_timeout: float = 30.0
    lock_poll_interval: float = 0.5
    # Fraction added on top of the measured source size before comparing with free space
    space_margin: float = 0.10

    transfer: Literal["rsync", "python"] = "rsync"
    rsync_path: str = "rsync"

    dry_run: bool = False
    show_progress: bool = True
    space_check: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("categories")
    @classmethod
    def validate_categories(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for category in v:
            if not category or "/" in category or category in (".", ".."):
                raise ValueError(f"Invalid category name '{category}': must be a single directory name")
        if len(set(v)) != len(v):
            raise ValueError("Category names must be unique")
        return v

    @field_validator("lock_timeout", "lock_poll_interval", "space_margin")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Must not be negative")
        return v

    @classmethod
    def load(cls, config_path: Path) -> RelocatorConfig:
        """Load configuration from config path.

        Args:
            config_path: Path to the configuration file (e.g., ~/.config/steam-cache-relocator/config.yaml)

        Returns:
            RelocatorConfig instance with loaded values, or defaults if file doesn't exist

        Raises:
            ValidationError: If config contains invalid values or unknown keys
        """
        config_path = config_path.expanduser()
        if not config_path.exists():
            _LOGGER.debug("Config file %s does not exist, using defaults", config_path)
            return cls()

        try:
            with config_path.open(encoding="utf-8") as config_file:
                config_data = yaml.load(config_file, Loader=ConfigSafeLoader)

            if config_data is None:
                _LOGGER.warning("Config file %s is empty, using defaults", config_path)
                return cls()

            return cls.model_validate(config_data)

        except ValidationError as e:
            _LOGGER.error("Invalid config in %s: %s", config_path, e)
            raise
        except Exception as e:
            _LOGGER.error("Failed to load config from %s: %s", config_path, e)
            raise

    def with_cli_overrides(
        self,
        dry_run: bool = False,
        no_progress: bool = False,
        no_space_check: bool = False,
        lock_timeout: float | None = None,
        transfer: str | None = None,
    ) -> RelocatorConfig:
        """Create a new config with CLI overrides applied.

        Args:
            dry_run: Log intended actions without touching the filesystem
            no_progress: Disable transfer progress output
            no_space_check: Skip the free space check before each move
            lock_timeout: Override the lock wait, in seconds
            transfer: Override the transfer method

        Returns:
            New RelocatorConfig instance with overrides applied
        """
        config_dict = self.model_dump()
        if dry_run:
            config_dict["dry_run"] = True
            _LOGGER.debug("CLI override: dry run")

        if no_progress:
            config_dict["show_progress"] = False

        if no_space_check:
            config_dict["space_check"] = False
            _LOGGER.info("CLI override: free space check disabled")

        if lock_timeout is not None:
            config_dict["lock_timeout"] = lock_timeout
            _LOGGER.debug("CLI override: lock timeout = %ss", lock_timeout)

        if transfer:
            config_dict["transfer"] = transfer
            _LOGGER.debug("CLI override: transfer = %s", transfer)

        return self.__class__.model_validate(config_dict)
