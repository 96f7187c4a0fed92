"""Tests for the atomic config writer."""
from __future__ import annotations

from pathlib import Path

import pytest

from termstrap.backups import BackupDirectory, BackupError
from termstrap.writer import ConfigWriteError, ConfigWriter, temp_path_for

TIMESTAMP = "20240102_030405"


def _writer(tmp_path: Path, *, dry_run: bool = False) -> tuple[ConfigWriter, BackupDirectory]:
    backups = BackupDirectory(tmp_path, timestamp=TIMESTAMP)
    return ConfigWriter(backups, dry_run=dry_run), backups


def test_fresh_destination_is_written_without_backup(tmp_path: Path) -> None:
    """Writing a new file creates no backup directory and leaves no temp file."""
    writer, backups = _writer(tmp_path)
    destination = tmp_path / ".zshrc"

    result = writer.write(destination, lambda: "hello")

    assert destination.read_text(encoding="utf-8") == "hello"
    assert result.backup is None
    assert result.bytes_written == 5
    assert not backups.exists
    assert not temp_path_for(destination).exists()


def test_existing_destination_is_backed_up_then_replaced(tmp_path: Path) -> None:
    """The previous content is preserved in the per-run backup directory."""
    writer, backups = _writer(tmp_path)
    destination = tmp_path / ".zshrc"
    destination.write_text("old", encoding="utf-8")

    result = writer.write(destination, lambda: "new")

    assert destination.read_text(encoding="utf-8") == "new"
    backup = tmp_path / f".terminal_backup_{TIMESTAMP}" / ".zshrc"
    assert result.backup == backup
    assert backup.read_text(encoding="utf-8") == "old"
    assert backups.entries == [backup]


def test_empty_output_is_fatal_and_leaves_destination_untouched(tmp_path: Path) -> None:
    """An empty producer result aborts without touching the destination."""
    writer, backups = _writer(tmp_path)
    destination = tmp_path / "starship.toml"
    destination.write_text("keep", encoding="utf-8")

    with pytest.raises(ConfigWriteError, match="Failed to generate config file"):
        writer.write(destination, lambda: "")

    assert destination.read_text(encoding="utf-8") == "keep"
    assert not temp_path_for(destination).exists()
    assert not backups.exists


def test_producer_exception_is_fatal(tmp_path: Path) -> None:
    """Errors raised while producing content become :class:`ConfigWriteError`."""
    writer, _ = _writer(tmp_path)
    destination = tmp_path / "wezterm.lua"

    def broken() -> str:
        raise RuntimeError("template exploded")

    with pytest.raises(ConfigWriteError, match="template exploded"):
        writer.write(destination, broken)

    assert not destination.exists()
    assert not temp_path_for(destination).exists()


def test_writing_same_content_twice_is_idempotent(tmp_path: Path) -> None:
    """The second write leaves the same content and one backup holding it."""
    writer, backups = _writer(tmp_path)
    destination = tmp_path / ".zshrc"

    writer.write(destination, lambda: "C")
    writer.write(destination, lambda: "C")

    assert destination.read_text(encoding="utf-8") == "C"
    assert backups.entries == [backups.path / ".zshrc"]
    assert (backups.path / ".zshrc").read_text(encoding="utf-8") == "C"
    assert sorted(p.name for p in backups.path.iterdir()) == [".zshrc"]


def test_missing_parent_directories_are_created(tmp_path: Path) -> None:
    """Nested destinations get their parent directories."""
    writer, _ = _writer(tmp_path)
    destination = tmp_path / ".config" / "wezterm" / "wezterm.lua"

    writer.write(destination, lambda: "return {}\n")

    assert destination.read_text(encoding="utf-8") == "return {}\n"


def test_backup_failure_removes_temp_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """When the backup cannot be taken the swap never happens."""
    writer, _ = _writer(tmp_path)
    destination = tmp_path / ".zshrc"
    destination.write_text("old", encoding="utf-8")

    def fail(self: BackupDirectory, source: Path) -> Path | None:
        raise BackupError("disk full")

    monkeypatch.setattr(BackupDirectory, "preserve", fail)

    with pytest.raises(BackupError):
        writer.write(destination, lambda: "new")

    assert destination.read_text(encoding="utf-8") == "old"
    assert not temp_path_for(destination).exists()


def test_dry_run_validates_but_writes_nothing(tmp_path: Path) -> None:
    """Dry runs render the content and report its size only."""
    writer, backups = _writer(tmp_path, dry_run=True)
    destination = tmp_path / "nested" / ".zshrc"

    result = writer.write(destination, lambda: "abc")

    assert result.dry_run is True
    assert result.bytes_written == 3
    assert not destination.parent.exists()
    assert not backups.exists

    with pytest.raises(ConfigWriteError):
        writer.write(destination, lambda: "")


def test_temp_path_is_a_sibling(tmp_path: Path) -> None:
    """The temporary file sits next to the destination."""
    assert temp_path_for(tmp_path / "a" / "wezterm.lua") == tmp_path / "a" / "wezterm.lua.tmp"
