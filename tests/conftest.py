"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich.console import Console

from termstrap.host import HostInfo
from termstrap.reporting import Reporter
from termstrap.retry import RetryExecutor


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@dataclass
class CommandLog:
    """Records commands sent through :class:`RetryExecutor` and scripts their exit codes.

    ``results`` maps either ``"<program> <first-arg>"`` or the program's basename
    to a list of exit codes. Codes are consumed in order; the last one repeats.
    Unlisted commands succeed.
    """

    calls: list[list[str]] = field(default_factory=list)
    envs: list[dict[str, str]] = field(default_factory=list)
    results: dict[str, list[int]] = field(default_factory=dict)
    hooks: dict[str, Callable[[list[str]], None]] = field(default_factory=dict)

    def returncode_for(self, argv: list[str]) -> int:
        for key in (" ".join(argv[:2]), Path(argv[0]).name):
            hook = self.hooks.get(key)
            if hook is not None:
                hook(argv)
            codes = self.results.get(key)
            if codes:
                return codes.pop(0) if len(codes) > 1 else codes[0]
        return 0

    def programs(self) -> list[str]:
        return [Path(call[0]).name for call in self.calls]

    def find(self, program: str) -> list[list[str]]:
        return [call for call in self.calls if Path(call[0]).name == program]


@pytest.fixture
def commands(monkeypatch: pytest.MonkeyPatch) -> CommandLog:
    """Replace real subprocess execution with a scripted recorder."""
    log = CommandLog()

    def fake_execute(
        self: RetryExecutor,
        argv: list[str],
        *,
        env: Mapping[str, str] | None,
        cwd: object,
        input_text: str | None,
    ) -> int:
        log.calls.append(list(argv))
        log.envs.append(dict(env or {}))
        return log.returncode_for(list(argv))

    monkeypatch.setattr(RetryExecutor, "_execute", fake_execute)
    return log


@pytest.fixture
def console_buffer() -> io.StringIO:
    """Capture rich console output."""
    return io.StringIO()


@pytest.fixture
def reporter(console_buffer: io.StringIO) -> Reporter:
    """Reporter writing plain text into ``console_buffer``."""
    console = Console(file=console_buffer, width=200, color_system=None, force_terminal=False)
    return Reporter(console=console)


@pytest.fixture
def make_host(tmp_path: Path) -> Callable[..., HostInfo]:
    """Build :class:`HostInfo` values rooted at a temporary home."""

    def _make(
        *,
        system: str = "linux",
        is_wsl: bool = False,
        shell: str | None = "/bin/bash",
        home: Path | None = None,
        wsl_distribution: str | None = None,
    ) -> HostInfo:
        return HostInfo(
            system=system,
            machine="x86_64",
            is_wsl=is_wsl,
            distro_id="ubuntu" if system == "linux" else None,
            distro_like=("debian",) if system == "linux" else (),
            shell=shell,
            home=home or tmp_path / "home",
            wsl_distribution=wsl_distribution,
        )

    return _make


def _which_factory(*available: str, root: str = "/usr/bin") -> Callable[[str], str | None]:
    known = set(available)

    def _which(tool: str) -> str | None:
        return f"{root}/{tool}" if tool in known else None

    return _which


@pytest.fixture
def fake_which() -> Callable[..., Callable[[str], str | None]]:
    """Return a factory of ``shutil.which`` stand-ins that only know the given tools."""
    return _which_factory
