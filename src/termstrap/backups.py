"""Helpers for preserving files before they are overwritten."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import TermstrapError

LOGGER = logging.getLogger(__name__)

BACKUP_PREFIX = ".terminal_backup_"


class BackupError(TermstrapError):
    """Raised when backup operations fail."""


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass(slots=True)
class BackupDirectory:
    """Per-run archive of files replaced during the bootstrap.

    The directory name is fixed when the object is created so every backup
    taken during one run lands in the same place. Nothing touches the disk
    until the first call to :meth:`preserve` that has something to copy.
    """

    root: Path
    timestamp: str = field(default_factory=_timestamp)
    entries: list[Path] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        self.root = self.root.expanduser()

    @property
    def path(self) -> Path:
        """Return the backup directory path for this run."""
        return self.root / f"{BACKUP_PREFIX}{self.timestamp}"

    @property
    def exists(self) -> bool:
        """Return True once a backup has been written."""
        return self.path.is_dir()

    def ensure(self) -> Path:
        """Create the backup directory when missing and return it."""
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Unable to create backup directory {self.path}: {exc}") from exc
        return self.path

    def preserve(self, source: Path, relative: Path | None = None) -> Path | None:
        """Copy *source* into the backup directory, keeping its basename.

        Returns the backup path, or ``None`` when *source* does not exist.
        A second backup with the same basename replaces the first. Passing
        *relative* stores the copy at that path inside the backup directory
        instead.
        """
        if not source.exists():
            return None
        destination = self.ensure() / (relative or source.name)
        try:
            copy_into(source, destination)
        except OSError as exc:
            raise BackupError(f"Failed to back up {source} -> {destination}: {exc}") from exc
        if destination not in self.entries:
            self.entries.append(destination)
        LOGGER.info("Backed up %s -> %s", source, destination)
        return destination


def copy_into(source: Path, destination: Path) -> None:
    """Copy or mirror *source* into *destination*."""
    if source.is_dir():
        shutil.copytree(source, destination, dirs_exist_ok=True)
    else:
        if destination.is_dir() and not destination.is_symlink():
            shutil.rmtree(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)


__all__ = ["BACKUP_PREFIX", "BackupDirectory", "BackupError", "copy_into"]
