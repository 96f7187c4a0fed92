"""Shallow git checkouts for shell plugins."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..errors import TermstrapError
from ..network import NetworkSettings
from ..retry import RetryExecutor

LOGGER = logging.getLogger(__name__)

SyncAction = Literal["cloned", "updated", "kept"]


class GitError(TermstrapError):
    """Raised when a repository cannot be cloned."""


@dataclass(frozen=True, slots=True)
class GitSyncResult:
    """What happened to a checkout during :meth:`GitClient.clone_or_update`."""

    path: Path
    action: SyncAction
    message: str | None = None


@dataclass(slots=True)
class GitClient:
    """Clone missing repositories and fast-forward existing ones."""

    executor: RetryExecutor
    network: NetworkSettings = field(default_factory=NetworkSettings)
    git_bin: str = "git"

    def clone_or_update(self, url: str, destination: Path) -> GitSyncResult:
        """Ensure *destination* holds a checkout of *url*.

        An existing checkout is pulled once; a failed pull keeps the current
        copy and is reported back as ``kept``. A missing checkout is cloned
        with ``--depth=1`` under the retry policy and a failed clone raises
        :class:`GitError`.
        """
        env = self.network.env()
        if destination.is_dir():
            if self.executor.check([self.git_bin, "-C", str(destination), "pull", "--quiet"], env=env):
                return GitSyncResult(path=destination, action="updated")
            message = f"Update failed for {destination.name}; keeping the existing checkout."
            LOGGER.warning(message)
            return GitSyncResult(path=destination, action="kept", message=message)

        if not self.executor.dry_run:
            destination.parent.mkdir(parents=True, exist_ok=True)
        outcome = self.executor.run(
            [self.git_bin, "clone", "--depth=1", url, str(destination)],
            env=env,
        )
        if not outcome.ok:
            raise GitError(f"Failed to clone {url} into {destination}.")
        return GitSyncResult(path=destination, action="cloned")


__all__ = ["GitClient", "GitError", "GitSyncResult"]
