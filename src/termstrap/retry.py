"""Fixed-budget retry wrapper around external commands.

Commands are executed synchronously. A non-zero exit status triggers a
constant delay followed by another attempt until the attempt budget is spent.
The executor never raises for command failures: callers receive a
:class:`RetryOutcome` carrying the last exit status and decide whether the
failure is fatal or advisory.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from .reporting import Reporter

LOGGER = logging.getLogger(__name__)

# Exit status reported when the executable itself cannot be found.
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and constant delay between attempts."""

    attempts: int = 3
    delay: float = 2.0

    def __post_init__(self) -> None:
        """Validate the policy bounds."""
        if self.attempts < 1:
            raise ValueError(f"Retry attempts must be at least 1. Got {self.attempts}.")
        if self.delay < 0:
            raise ValueError(f"Retry delay must be non-negative. Got {self.delay}.")


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    """Result of running a command under a retry policy."""

    argv: list[str]
    returncode: int
    attempts: int

    @property
    def ok(self) -> bool:
        """Return True when the final attempt succeeded."""
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    """Return a shell-quoted rendering of *argv* for log messages."""
    return " ".join(shlex.quote(part) for part in argv)


@dataclass(slots=True)
class RetryExecutor:
    """Run commands up to ``policy.attempts`` times with a fixed delay."""

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    reporter: Reporter | None = None
    dry_run: bool = False
    sleep: Callable[[float], None] = time.sleep

    def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        input_text: str | None = None,
        policy: RetryPolicy | None = None,
    ) -> RetryOutcome:
        """Execute *argv* until it succeeds or the attempt budget is exhausted."""
        argv_list = [str(part) for part in argv]
        active = policy or self.policy
        rendered = format_argv(argv_list)
        LOGGER.debug("CMD %s", rendered)

        if self.dry_run:
            LOGGER.info("Dry run: skipping %s", rendered)
            return RetryOutcome(argv=argv_list, returncode=0, attempts=0)

        attempt = 0
        while True:
            attempt += 1
            returncode = self._execute(argv_list, env=env, cwd=cwd, input_text=input_text)
            if returncode == 0:
                return RetryOutcome(argv=argv_list, returncode=0, attempts=attempt)
            if attempt >= active.attempts:
                self._error(
                    f"Command failed after {attempt} attempt(s) (exit {returncode}): {rendered}"
                )
                return RetryOutcome(argv=argv_list, returncode=returncode, attempts=attempt)
            self._warn(
                f"Command failed (exit {returncode}), retrying ({attempt}/{active.attempts})..."
            )
            self.sleep(active.delay)

    def check(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
    ) -> bool:
        """Run *argv* once and return whether it exited successfully."""
        argv_list = [str(part) for part in argv]
        if self.dry_run:
            return True
        return self._execute(argv_list, env=env, cwd=None, input_text=None) == 0

    def _execute(
        self,
        argv: list[str],
        *,
        env: Mapping[str, str] | None,
        cwd: str | os.PathLike[str] | None,
        input_text: str | None,
    ) -> int:
        """Execute a single attempt (isolated for testing)."""
        try:
            result = subprocess.run(  # noqa: S603
                argv,
                input=input_text,
                text=True,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
                check=False,
            )
        except FileNotFoundError:
            LOGGER.debug("Executable not found: %s", argv[0])
            return COMMAND_NOT_FOUND
        return result.returncode

    def _warn(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.warn(message, record=False)
        else:
            LOGGER.warning(message)

    def _error(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.error(message)
        else:
            LOGGER.error(message)


__all__ = [
    "COMMAND_NOT_FOUND",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "format_argv",
]
