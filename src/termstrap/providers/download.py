"""HTTP downloads through ``wget`` or ``curl`` under the retry policy."""
from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import TermstrapError
from ..network import NetworkSettings
from ..retry import RetryExecutor

LOGGER = logging.getLogger(__name__)


class DownloadError(TermstrapError):
    """Raised when a file cannot be downloaded."""


@dataclass(slots=True)
class Downloader:
    """Fetch URLs to local files, preferring ``wget`` over ``curl``."""

    executor: RetryExecutor
    network: NetworkSettings = field(default_factory=NetworkSettings)
    which: Callable[[str], str | None] = shutil.which

    def tool(self) -> str:
        """Return the download tool available on this host."""
        for candidate in ("wget", "curl"):
            if self.which(candidate):
                return candidate
        raise DownloadError("Neither wget nor curl is available for downloads.")

    def command(self, url: str, destination: Path) -> list[str]:
        """Return the argv fetching *url* into *destination*."""
        if self.tool() == "wget":
            return ["wget", "-q", "--show-progress", "-c", "-O", str(destination), url]
        return [
            "curl", "-L", "-#", "-C", "-", "--connect-timeout", "20", "--retry", "3",
            "-o", str(destination), url,
        ]

    def fetch(self, url: str, destination: Path) -> Path:
        """Download *url* to *destination*, raising :class:`DownloadError` on failure."""
        if not self.executor.dry_run:
            destination.parent.mkdir(parents=True, exist_ok=True)
        LOGGER.info("Downloading %s -> %s", url, destination)
        outcome = self.executor.run(self.command(url, destination), env=self.network.env())
        if not outcome.ok:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Download failed after {outcome.attempts} attempt(s): {url}")
        return destination

    def fetch_script(self, url: str, name: str) -> Path:
        """Download an installer script into a private temporary directory."""
        if self.executor.dry_run:
            return self.fetch(url, Path(tempfile.gettempdir()) / name)
        workdir = Path(tempfile.mkdtemp(prefix="termstrap-"))
        return self.fetch(url, workdir / name)

    def discard_script(self, script: Path) -> None:
        """Remove a script fetched by :meth:`fetch_script` together with its directory."""
        if self.executor.dry_run:
            return
        shutil.rmtree(script.parent, ignore_errors=True)


__all__ = ["DownloadError", "Downloader"]
