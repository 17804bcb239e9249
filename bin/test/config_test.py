#!/usr/bin/env python3
"""Tests for config module."""

import tempfile
import unittest
from pathlib import Path

import yaml
from cache_relocator.config import DEFAULT_CATEGORIES, RelocatorConfig
from cache_relocator.config_safe_loader import ConfigSafeLoader
from pydantic import ValidationError


class TestRelocatorConfig(unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config_file = self.temp_dir / "config.yaml"

    def tearDown(self):
        if self.config_file.exists():
            self.config_file.unlink()
        if self.temp_dir.exists():
            self.temp_dir.rmdir()

    def test_default_config(self):
        """Test loading config when no config file exists."""
        config = RelocatorConfig.load(self.config_file)

        self.assertEqual(config.apps_dir_name, "steamapps")
        self.assertEqual(config.library_descriptor, "libraryfolders.vdf")
        self.assertEqual(config.categories, DEFAULT_CATEGORIES)
        self.assertEqual(config.lock_timeout, 30.0)
        self.assertEqual(config.space_margin, 0.10)
        self.assertEqual(config.transfer, "rsync")
        self.assertFalse(config.dry_run)
        self.assertTrue(config.show_progress)
        self.assertTrue(config.space_check)

    def test_empty_config_file(self):
        self.config_file.write_text("")
        config = RelocatorConfig.load(self.config_file)
        self.assertEqual(config, RelocatorConfig())

    def test_partial_config(self):
        self.config_file.write_text("categories:\n  - shadercache\n  - 2024-01-01\nlock_timeout: 5\n")

        config = RelocatorConfig.load(self.config_file)

        # Date-like names stay strings
        self.assertEqual(config.categories, ("shadercache", "2024-01-01"))
        self.assertEqual(config.lock_timeout, 5.0)
        self.assertEqual(config.transfer, "rsync")

    def test_safe_loader_keeps_dates_as_text(self):
        self.assertEqual(yaml.load("when: 2024-01-01\n", Loader=ConfigSafeLoader), {"when": "2024-01-01"})
        # The stock loader is left alone
        self.assertNotEqual(yaml.load("when: 2024-01-01\n", Loader=yaml.SafeLoader), {"when": "2024-01-01"})

    def test_unknown_keys_rejected(self):
        self.config_file.write_text("colour: blue\n")
        with self.assertRaises(ValidationError):
            RelocatorConfig.load(self.config_file)

    def test_invalid_category_rejected(self):
        with self.assertRaises(ValidationError):
            RelocatorConfig(categories=("shader/cache",))
        with self.assertRaises(ValidationError):
            RelocatorConfig(categories=("compatdata", "compatdata"))

    def test_negative_timeout_rejected(self):
        with self.assertRaises(ValidationError):
            RelocatorConfig(lock_timeout=-1)

    def test_config_is_frozen(self):
        config = RelocatorConfig()
        with self.assertRaises(ValidationError):
            config.dry_run = True

    def test_cli_overrides(self):
        base = RelocatorConfig(transfer="python")
        config = base.with_cli_overrides(dry_run=True, no_progress=True, no_space_check=True, lock_timeout=2.5)

        self.assertTrue(config.dry_run)
        self.assertFalse(config.show_progress)
        self.assertFalse(config.space_check)
        self.assertEqual(config.lock_timeout, 2.5)
        self.assertEqual(config.transfer, "python")
        # The original is untouched
        self.assertFalse(base.dry_run)

    def test_cli_override_transfer(self):
        config = RelocatorConfig().with_cli_overrides(transfer="python")
        self.assertEqual(config.transfer, "python")
        with self.assertRaises(ValidationError):
            RelocatorConfig().with_cli_overrides(transfer="ftp")


if __name__ == "__main__":
    unittest.main()
