"""Tests for the per-run backup directory."""
from __future__ import annotations

import re
from pathlib import Path

import pytest

from termstrap import backups as backups_module
from termstrap.backups import BACKUP_PREFIX, BackupDirectory, BackupError


def test_path_uses_fixed_timestamp(tmp_path: Path) -> None:
    """The directory name is computed once from the run timestamp."""
    backups = BackupDirectory(tmp_path, timestamp="20240101_120000")

    assert backups.path == tmp_path / ".terminal_backup_20240101_120000"


def test_default_timestamp_format(tmp_path: Path) -> None:
    """Default timestamps look like ``YYYYmmdd_HHMMSS`` and stay stable."""
    backups = BackupDirectory(tmp_path)

    assert re.fullmatch(rf"{re.escape(BACKUP_PREFIX)}\d{{8}}_\d{{6}}", backups.path.name)
    assert backups.path == backups.path


def test_missing_source_creates_nothing(tmp_path: Path) -> None:
    """The directory is created lazily, only when something is copied."""
    backups = BackupDirectory(tmp_path, timestamp="20240101_120000")

    assert backups.preserve(tmp_path / "absent") is None
    assert not backups.exists
    assert backups.entries == []


def test_file_is_copied_not_moved(tmp_path: Path) -> None:
    """The original file stays in place after a backup."""
    source = tmp_path / ".zshrc"
    source.write_text("original", encoding="utf-8")
    backups = BackupDirectory(tmp_path / "root", timestamp="20240101_120000")

    destination = backups.preserve(source)

    assert destination == backups.path / ".zshrc"
    assert destination.read_text(encoding="utf-8") == "original"
    assert source.read_text(encoding="utf-8") == "original"


def test_directory_is_copied_recursively(tmp_path: Path) -> None:
    """Directories are mirrored into the backup directory."""
    source = tmp_path / "wezterm"
    (source / "colors").mkdir(parents=True)
    (source / "colors" / "theme.toml").write_text("x", encoding="utf-8")
    backups = BackupDirectory(tmp_path / "root", timestamp="20240101_120000")

    destination = backups.preserve(source)

    assert destination is not None
    assert (destination / "colors" / "theme.toml").read_text(encoding="utf-8") == "x"


def test_same_basename_last_write_wins(tmp_path: Path) -> None:
    """Two sources with one basename share a backup slot."""
    first = tmp_path / "a" / "wezterm.lua"
    second = tmp_path / "b" / "wezterm.lua"
    for path, text in ((first, "first"), (second, "second")):
        path.parent.mkdir(parents=True)
        path.write_text(text, encoding="utf-8")
    backups = BackupDirectory(tmp_path / "root", timestamp="20240101_120000")

    backups.preserve(first)
    backups.preserve(second)

    assert (backups.path / "wezterm.lua").read_text(encoding="utf-8") == "second"
    assert backups.entries == [backups.path / "wezterm.lua"]


def test_relative_backup_keeps_separate_slot(tmp_path: Path) -> None:
    """A relative backup path avoids clashing with a basename backup."""
    profile = tmp_path / ".zshrc"
    nested = tmp_path / ".config" / "zsh" / ".zshrc"
    nested.parent.mkdir(parents=True)
    profile.write_text("profile", encoding="utf-8")
    nested.write_text("nested", encoding="utf-8")
    backups = BackupDirectory(tmp_path / "root", timestamp="20240101_120000")

    backups.preserve(profile)
    stored = backups.preserve(nested, Path(".config/zsh/.zshrc"))

    assert stored == backups.path / ".config" / "zsh" / ".zshrc"
    assert (backups.path / ".zshrc").read_text(encoding="utf-8") == "profile"
    assert stored.read_text(encoding="utf-8") == "nested"


def test_copy_failure_raises_backup_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Filesystem errors while copying are fatal."""
    source = tmp_path / ".zshrc"
    source.write_text("x", encoding="utf-8")

    def fail_copy(*args: object, **kwargs: object) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(backups_module.shutil, "copy2", fail_copy)
    backups = BackupDirectory(tmp_path / "root", timestamp="20240101_120000")

    with pytest.raises(BackupError, match="Failed to back up"):
        backups.preserve(source)
