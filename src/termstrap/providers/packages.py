"""Package-manager capability providers.

One provider is selected per run from the detected host. Every provider
exposes the same ``install``/``install_many`` surface so the bootstrap steps
never branch on the platform themselves.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import TermstrapError
from ..host import HostInfo
from ..reporting import Reporter
from ..retry import RetryExecutor
from .download import Downloader

LOGGER = logging.getLogger(__name__)

Which = Callable[[str], str | None]

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
HOMEBREW_LOCATIONS = (Path("/opt/homebrew/bin/brew"), Path("/usr/local/bin/brew"))


class PackageManagerError(TermstrapError):
    """Raised when no usable package manager is available."""


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of installing a single tool."""

    name: str
    ok: bool
    returncode: int = 0
    skipped: bool = False


class PackageManager:
    """Base class for package-manager providers."""

    name = "generic"
    binary = ""

    def __init__(
        self,
        executor: RetryExecutor,
        *,
        which: Which = shutil.which,
        reporter: Reporter | None = None,
    ) -> None:
        """Bind the provider to the shared retry *executor*."""
        self.executor = executor
        self.which = which
        self.reporter = reporter

    def is_installed(self, tool: str) -> bool:
        """Return True when *tool* is already on ``PATH``."""
        return self.which(tool) is not None

    def install(self, name: str) -> InstallResult:
        """Install *name* unless it is already present."""
        return self.install_many([name])[0]

    def install_many(self, names: Sequence[str]) -> list[InstallResult]:
        """Install every missing tool in *names* with a single command."""
        results: dict[str, InstallResult] = {}
        missing: list[str] = []
        for name in names:
            if self.is_installed(name):
                results[name] = InstallResult(name=name, ok=True, skipped=True)
            else:
                missing.append(name)

        if missing:
            self.prepare()
            self._info(f"Installing {', '.join(missing)} via {self.name}...")
            outcome = self.executor.run(self.install_command(missing))
            for name in missing:
                results[name] = InstallResult(
                    name=name,
                    ok=outcome.ok,
                    returncode=outcome.returncode,
                )
        return [results[name] for name in names]

    def install_command(self, names: Sequence[str]) -> list[str]:
        """Return the argv installing *names*."""
        raise NotImplementedError

    def prepare(self) -> None:
        """Run one-off setup before the first install (no-op by default)."""

    def _info(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.info(message)
        else:
            LOGGER.info(message)


class HomebrewPackageManager(PackageManager):
    """Homebrew on macOS."""

    name = "homebrew"
    binary = "brew"

    def __init__(
        self,
        executor: RetryExecutor,
        *,
        which: Which = shutil.which,
        reporter: Reporter | None = None,
        locations: Sequence[Path] = HOMEBREW_LOCATIONS,
    ) -> None:
        """Initialise the provider, locating ``brew`` when it is off ``PATH``."""
        super().__init__(executor, which=which, reporter=reporter)
        self.locations = tuple(locations)
        self.brew_bin: str | None = self._locate()

    def _locate(self) -> str | None:
        found = self.which(self.binary)
        if found:
            return found
        for candidate in self.locations:
            if candidate.exists():
                return str(candidate)
        return None

    def is_installed(self, tool: str) -> bool:
        """Return True when *tool* is on ``PATH`` or in Homebrew's bin directory."""
        if super().is_installed(tool):
            return True
        if self.brew_bin is None:
            return False
        return (Path(self.brew_bin).parent / tool).exists()

    def ensure_available(self, downloader: Downloader) -> str:
        """Install Homebrew with the official script when it is missing."""
        if self.brew_bin is not None:
            return self.brew_bin
        self._info("Installing Homebrew...")
        script = downloader.fetch_script(HOMEBREW_INSTALL_URL, "homebrew-install.sh")
        try:
            outcome = self.executor.run(["/bin/bash", str(script)], env=downloader.network.env())
        finally:
            downloader.discard_script(script)
        if not outcome.ok and not self.executor.dry_run:
            raise PackageManagerError("Homebrew installation failed.")
        self.brew_bin = self._locate() or (str(self.locations[0]) if self.executor.dry_run else None)
        if self.brew_bin is None:
            raise PackageManagerError("Homebrew installed but the brew binary was not found.")
        return self.brew_bin

    def install_command(self, names: Sequence[str]) -> list[str]:
        """Return ``brew install`` for *names*."""
        if self.brew_bin is None:
            raise PackageManagerError("Homebrew is not available.")
        return [self.brew_bin, "install", *names]

    def prefix(self) -> Path | None:
        """Return ``brew --prefix`` or ``None`` when it cannot be determined."""
        if self.brew_bin is None:
            return None
        try:
            result = subprocess.run(  # noqa: S603
                [self.brew_bin, "--prefix"],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return None
        value = (result.stdout or "").strip()
        if result.returncode != 0 or not value:
            return None
        return Path(value)


class _SudoPackageManager(PackageManager):
    """Shared behaviour for system package managers that need root."""

    def __init__(
        self,
        executor: RetryExecutor,
        *,
        which: Which = shutil.which,
        reporter: Reporter | None = None,
        is_root: bool | None = None,
    ) -> None:
        """Initialise the provider, deciding whether to prefix ``sudo``."""
        super().__init__(executor, which=which, reporter=reporter)
        self.is_root = os.geteuid() == 0 if is_root is None else is_root
        self._prepared = False

    def privileged(self, argv: Sequence[str]) -> list[str]:
        """Return *argv* prefixed with ``sudo`` when not running as root."""
        if self.is_root or self.which("sudo") is None:
            return list(argv)
        return ["sudo", *argv]

    def prepare(self) -> None:
        """Warn about an upcoming password prompt when sudo needs one."""
        if self._prepared:
            return
        self._prepared = True
        if self.privileged(["true"])[0] == "sudo" and not self.executor.check(
            ["sudo", "-n", "true"]
        ):
            self._info("Please enter your sudo password to install dependencies:")


class AptPackageManager(_SudoPackageManager):
    """APT on Debian and Ubuntu."""

    name = "apt"
    binary = "apt-get"

    def prepare(self) -> None:
        """Refresh package indexes once per run."""
        if self._prepared:
            return
        super().prepare()
        outcome = self.executor.run(self.privileged([self.binary, "update"]))
        if not outcome.ok:
            raise PackageManagerError("apt-get update failed.")

    def install_command(self, names: Sequence[str]) -> list[str]:
        """Return ``apt-get install -y`` for *names*."""
        return self.privileged([self.binary, "install", "-y", *names])


class YumPackageManager(_SudoPackageManager):
    """YUM on RHEL-compatible distributions."""

    name = "yum"
    binary = "yum"

    def install_command(self, names: Sequence[str]) -> list[str]:
        """Return ``yum install -y`` for *names*."""
        return self.privileged([self.binary, "install", "-y", *names])


def select_package_manager(
    host: HostInfo,
    executor: RetryExecutor,
    *,
    which: Which = shutil.which,
    reporter: Reporter | None = None,
) -> PackageManager:
    """Return the provider matching *host*."""
    if host.is_macos:
        return HomebrewPackageManager(executor, which=which, reporter=reporter)
    if which(AptPackageManager.binary):
        return AptPackageManager(executor, which=which, reporter=reporter)
    if which(YumPackageManager.binary):
        return YumPackageManager(executor, which=which, reporter=reporter)
    raise PackageManagerError(
        f"No supported package manager found on {host.label} (expected apt-get or yum)."
    )


__all__ = [
    "AptPackageManager",
    "HomebrewPackageManager",
    "InstallResult",
    "PackageManager",
    "PackageManagerError",
    "YumPackageManager",
    "select_package_manager",
]
