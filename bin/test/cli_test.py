#!/usr/bin/env python3
"""Tests for the steam-cache-relocator command line."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from cache_relocator.cli import cli
from click.testing import CliRunner


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("cache_relocator.cli._setup_logging"):
        yield


@pytest.fixture
def invoke(steam, tmp_path):
    runner = CliRunner()

    def _invoke(*args):
        base = [
            "--steam-dir",
            str(steam.primary),
            "--config",
            str(tmp_path / "missing-config.yaml"),
            "--transfer",
            "python",
            "--lock-timeout",
            "1s",
        ]
        return runner.invoke(cli, base + list(args))

    return _invoke


def test_default_command_relocates(steam, invoke):
    (steam.secondary_apps / "shadercache").mkdir()
    (steam.secondary_apps / "shadercache" / "f1").write_text("one")

    result = invoke()

    assert result.exit_code == 0, result.output
    assert (steam.secondary_apps / "shadercache").is_symlink()
    assert (steam.primary_apps / "shadercache" / "f1").read_text() == "one"
    assert steam.manifest_path.exists()


def test_undo_flag_restores(steam, invoke):
    (steam.secondary_apps / "shadercache").mkdir()
    (steam.secondary_apps / "shadercache" / "f1").write_text("one")
    assert invoke("relocate").exit_code == 0

    result = invoke("--undo")

    assert result.exit_code == 0, result.output
    assert not (steam.secondary_apps / "shadercache").is_symlink()
    assert (steam.secondary_apps / "shadercache" / "f1").read_text() == "one"
    assert not steam.state_dir.exists()


def test_restore_command(steam, invoke):
    (steam.secondary_apps / "compatdata").mkdir()
    assert invoke("relocate").exit_code == 0

    result = invoke("restore")

    assert result.exit_code == 0, result.output
    assert (steam.secondary_apps / "compatdata").is_dir()
    assert not (steam.secondary_apps / "compatdata").is_symlink()


def test_second_relocation_reports_existing_manifest(steam, invoke):
    (steam.secondary_apps / "compatdata").mkdir()
    assert invoke("relocate").exit_code == 0

    result = invoke("relocate")

    assert result.exit_code == 1
    assert "Existing relocation manifest found" in result.output


def test_undo_with_command_is_rejected(invoke):
    result = invoke("--undo", "relocate")

    assert result.exit_code == 2
    assert "--undo cannot be combined" in result.output


def test_dry_run_changes_nothing(steam, invoke):
    (steam.secondary_apps / "shadercache").mkdir()
    (steam.secondary_apps / "shadercache" / "f1").write_text("one")

    result = invoke("--dry-run")

    assert result.exit_code == 0, result.output
    assert not (steam.secondary_apps / "shadercache").is_symlink()
    assert not steam.state_dir.exists()


def test_missing_steam_dir_fails(tmp_path):
    result = CliRunner().invoke(
        cli,
        ["--steam-dir", str(tmp_path / "nowhere"), "--config", str(tmp_path / "none.yaml"), "relocate"],
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_invalid_config_fails(steam, tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("space_margin: -1\n")

    result = CliRunner().invoke(cli, ["--steam-dir", str(steam.primary), "--config", str(config_file), "status"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_invalid_lock_timeout(invoke):
    result = invoke("--lock-timeout", "soon", "status")

    assert result.exit_code == 2
    assert "--lock-timeout" in result.output


def test_all_failures_exit_nonzero(steam, invoke):
    (steam.secondary_apps / "compatdata").mkdir()
    (steam.primary_apps / "compatdata").write_text("not a directory")

    result = invoke("relocate")

    assert result.exit_code == 1
    assert "All 1 attempted relocate action(s) failed" in result.output


def test_status_before_and_after(steam, invoke):
    (steam.secondary_apps / "shadercache").mkdir()

    before = invoke("status")

    assert before.exit_code == 0, before.output
    assert f"Primary library: {steam.primary}" in before.output
    assert f"Library: {steam.secondary}" in before.output
    assert "  shadercache: directory" in before.output
    assert "  compatdata: missing" in before.output
    assert "No relocation recorded" in before.output

    assert invoke("relocate").exit_code == 0
    after = invoke("status")

    assert "  shadercache: linked" in after.output
    assert "Relocation manifest (finished): 1 action(s)" in after.output
    assert f"  {steam.secondary} shadercache: empty" in after.output


def test_steam_dir_as_positional_argument(steam, tmp_path):
    (steam.secondary_apps / "shadercache").mkdir()
    (steam.secondary_apps / "shadercache" / "f1").write_text("one")
    runner = CliRunner()
    base = ["--config", str(tmp_path / "missing-config.yaml"), "--transfer", "python"]

    relocated = runner.invoke(cli, base + [str(steam.primary)])

    assert relocated.exit_code == 0, relocated.output
    assert (steam.secondary_apps / "shadercache").is_symlink()

    restored = runner.invoke(cli, base + ["--undo", str(steam.primary)])

    assert restored.exit_code == 0, restored.output
    assert not (steam.secondary_apps / "shadercache").is_symlink()
    assert (steam.secondary_apps / "shadercache" / "f1").read_text() == "one"


def test_status_with_positional_steam_dir(steam, tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "missing-config.yaml"), "status", str(steam.primary)])

    assert result.exit_code == 0, result.output
    assert f"Primary library: {steam.primary}" in result.output


def test_conflicting_steam_dirs_rejected(steam, invoke, tmp_path):
    result = invoke("relocate", str(tmp_path / "elsewhere"))

    assert result.exit_code == 2
    assert "not both" in result.output
