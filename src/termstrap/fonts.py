"""Nerd Font download and installation."""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .config import FontsConfig
from .host import HostInfo
from .providers.download import Downloader
from .reporting import Reporter
from .retry import RetryExecutor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FontArchive:
    """A zip archive of font files and the file whose presence marks it installed."""

    name: str
    url: str
    marker: str


def archives_from_config(fonts: FontsConfig) -> list[FontArchive]:
    """Return the archives configured in *fonts* with resolved download URLs."""
    return [
        FontArchive(name=entry.archive, url=fonts.url_for(entry), marker=entry.marker)
        for entry in fonts.archives
    ]


@dataclass(slots=True)
class FontInstallReport:
    """Archives fetched or skipped, plus advisory failures."""

    installed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    published_to: Path | None = None


@dataclass(slots=True)
class FontInstaller:
    """Download font archives into a private directory and publish them to the OS."""

    font_dir: Path
    downloader: Downloader
    executor: RetryExecutor
    host: HostInfo
    reporter: Reporter | None = None
    which: Callable[[str], str | None] = shutil.which

    def install(self, archives: Iterable[FontArchive]) -> FontInstallReport:
        """Fetch every archive whose marker file is missing, then publish the fonts."""
        report = FontInstallReport()
        dry_run = self.executor.dry_run
        if not dry_run:
            self.font_dir.mkdir(parents=True, exist_ok=True)

        for archive in archives:
            if (self.font_dir / archive.marker).exists():
                self._info(f"{archive.marker} already present, skipping download.")
                report.skipped.append(archive.name)
                continue

            zip_path = self.font_dir / archive.name
            self.downloader.fetch(archive.url, zip_path)

            if self.which("unzip") is None:
                self._warn(report, "unzip command not found, cannot extract fonts automatically.")
                self._warn(report, f"Please extract {zip_path} into {self.font_dir} manually.")
                continue

            if not self.executor.check(
                ["unzip", "-o", "-q", str(zip_path), "-d", str(self.font_dir)]
            ):
                self._warn(report, f"Failed to extract {zip_path}.")
                continue
            if not dry_run:
                zip_path.unlink(missing_ok=True)
            self._success(f"{archive.name} deployed.")
            report.installed.append(archive.name)

        self.publish(report)
        return report

    def publish(self, report: FontInstallReport) -> None:
        """Copy the downloaded ``*.ttf`` files where the OS looks for user fonts."""
        if self.host.is_macos:
            target = self.host.home / "Library" / "Fonts"
        else:
            target = self.host.home / ".local" / "share" / "fonts"
        report.published_to = target

        if self.executor.dry_run:
            LOGGER.info("Dry run: skipping font copy into %s", target)
            return

        self._info(f"Installing fonts into {target}...")
        try:
            target.mkdir(parents=True, exist_ok=True)
            for font in sorted(self.font_dir.glob("*.ttf")):
                shutil.copy2(font, target / font.name)
        except OSError as exc:
            self._warn(report, f"Failed to copy fonts into {target}: {exc}")
            return

        if self.host.is_macos:
            self._info(
                "If icons are missing after restarting the terminal, open "
                f"{self.font_dir} and install the fonts manually."
            )
            return

        if self.which("fc-cache") is None:
            LOGGER.debug("fc-cache not available; skipping font cache refresh")
            return
        self._info("Refreshing font cache...")
        if not self.executor.check(["fc-cache", "-f"]):
            self._warn(report, "fc-cache failed; fonts may not be visible until the next login.")

    def _info(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.info(message)
        else:
            LOGGER.info(message)

    def _success(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.success(message)
        else:
            LOGGER.info(message)

    def _warn(self, report: FontInstallReport, message: str) -> None:
        report.warnings.append(message)
        if self.reporter is not None:
            self.reporter.warn(message)
        else:
            LOGGER.warning(message)


__all__ = ["FontArchive", "FontInstallReport", "FontInstaller", "archives_from_config"]
