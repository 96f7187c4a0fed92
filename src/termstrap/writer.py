"""Atomic configuration writer with backup-on-overwrite."""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .backups import BackupDirectory
from .errors import TermstrapError

LOGGER = logging.getLogger(__name__)

ContentProducer = Callable[[], str]


class ConfigWriteError(TermstrapError):
    """Raised when a configuration artifact cannot be generated."""


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of writing a configuration artifact."""

    destination: Path
    backup: Path | None
    bytes_written: int
    dry_run: bool = False


def temp_path_for(destination: Path) -> Path:
    """Return the sibling temporary path used while rendering *destination*."""
    return destination.with_name(f"{destination.name}.tmp")


@dataclass(slots=True)
class ConfigWriter:
    """Render content beside the destination, then swap it into place.

    The destination is either left in its prior state or fully replaced; the
    rename happens within one directory so it is atomic on a single
    filesystem. Empty output is treated as a broken producer and is fatal.
    """

    backups: BackupDirectory
    dry_run: bool = False

    def write(self, destination: Path, producer: ContentProducer) -> WriteResult:
        """Write the text returned by *producer* to *destination*."""
        destination = destination.expanduser()
        LOGGER.info("Generating config: %s", destination)

        try:
            content = producer()
        except Exception as exc:
            raise ConfigWriteError(
                f"Failed to generate config file {destination}: {exc}"
            ) from exc

        if self.dry_run:
            if not content:
                raise ConfigWriteError(f"Failed to generate config file: {destination}")
            return WriteResult(
                destination=destination,
                backup=None,
                bytes_written=len(content.encode("utf-8")),
                dry_run=True,
            )

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigWriteError(
                f"Unable to create directory {destination.parent}: {exc}"
            ) from exc

        temp = temp_path_for(destination)
        try:
            temp.write_text(content, encoding="utf-8")
            size = temp.stat().st_size
        except OSError as exc:
            temp.unlink(missing_ok=True)
            raise ConfigWriteError(f"Failed to write {temp}: {exc}") from exc

        if size == 0:
            temp.unlink(missing_ok=True)
            raise ConfigWriteError(f"Failed to generate config file: {destination}")

        try:
            backup = self.backups.preserve(destination)
        except Exception:
            temp.unlink(missing_ok=True)
            raise

        try:
            os.replace(temp, destination)
        except OSError as exc:
            temp.unlink(missing_ok=True)
            raise ConfigWriteError(f"Failed to move {temp} -> {destination}: {exc}") from exc

        LOGGER.info("Config written: %s", destination)
        return WriteResult(destination=destination, backup=backup, bytes_written=size)


__all__ = ["ConfigWriteError", "ConfigWriter", "ContentProducer", "WriteResult", "temp_path_for"]
