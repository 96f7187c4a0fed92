"""Host operating system detection."""
from __future__ import annotations

import os
import platform
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import TermstrapError

PROC_VERSION = Path("/proc/version")
OS_RELEASE = Path("/etc/os-release")


class UnsupportedHostError(TermstrapError):
    """Raised when termstrap runs on an operating system it cannot configure."""


@dataclass(frozen=True, slots=True)
class HostInfo:
    """Facts about the machine being bootstrapped."""

    system: str
    machine: str
    is_wsl: bool
    distro_id: str | None
    distro_like: tuple[str, ...]
    shell: str | None
    home: Path
    wsl_distribution: str | None = None

    @property
    def is_macos(self) -> bool:
        """Return True on macOS."""
        return self.system == "darwin"

    @property
    def is_linux(self) -> bool:
        """Return True on Linux, including WSL."""
        return self.system == "linux"

    @property
    def label(self) -> str:
        """Return a human readable environment name."""
        if self.is_macos:
            return "macOS"
        return "WSL" if self.is_wsl else "Linux"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "system": self.system,
            "label": self.label,
            "machine": self.machine,
            "is_wsl": self.is_wsl,
            "distro_id": self.distro_id,
            "distro_like": list(self.distro_like),
            "shell": self.shell,
            "home": str(self.home),
            "wsl_distribution": self.wsl_distribution,
        }


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` style ``KEY=value`` lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("'\"")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def detect_host(
    *,
    system: str | None = None,
    machine: str | None = None,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
    proc_version: Path = PROC_VERSION,
    os_release: Path = OS_RELEASE,
) -> HostInfo:
    """Inspect the running machine and return a :class:`HostInfo`."""
    resolved_env = os.environ if env is None else env
    system_name = (system or platform.system()).lower()
    if system_name not in {"linux", "darwin"}:
        raise UnsupportedHostError(f"Unsupported operating system: {system or platform.system()}")

    is_wsl = False
    distro_id: str | None = None
    distro_like: tuple[str, ...] = ()
    if system_name == "linux":
        is_wsl = "microsoft" in _read_text(proc_version).lower()
        release = parse_os_release(_read_text(os_release))
        distro_id = release.get("ID") or None
        distro_like = tuple(release.get("ID_LIKE", "").split())

    return HostInfo(
        system=system_name,
        machine=machine or platform.machine(),
        is_wsl=is_wsl,
        distro_id=distro_id,
        distro_like=distro_like,
        shell=resolved_env.get("SHELL") or None,
        home=(home or Path.home()).expanduser(),
        wsl_distribution=resolved_env.get("WSL_DISTRO_NAME") if is_wsl else None,
    )


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


__all__ = ["HostInfo", "UnsupportedHostError", "detect_host", "parse_os_release"]
