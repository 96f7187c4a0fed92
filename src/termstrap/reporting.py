"""Console reporting helpers shared by the bootstrap steps."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Reporter:
    """Emit coloured, levelled progress lines to the terminal."""

    console: Console = field(default_factory=Console)
    warnings: list[str] = field(default_factory=list)

    def info(self, message: str) -> None:
        """Report an informational line."""
        LOGGER.info(message)
        self.console.print(f"[blue]\\[INFO][/blue] {escape(message)}")

    def success(self, message: str) -> None:
        """Report a completed action."""
        LOGGER.info(message)
        self.console.print(f"[green]\\[SUCCESS][/green] {escape(message)}")

    def warn(self, message: str, *, record: bool = True) -> None:
        """Report an advisory failure, remembered for the run summary when *record*."""
        LOGGER.warning(message)
        if record:
            self.warnings.append(message)
        self.console.print(f"[yellow]\\[WARN][/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        """Report a fatal failure."""
        LOGGER.error(message)
        self.console.print(f"[red]\\[ERROR][/red] {escape(message)}")

    def step(self, index: int, total: int, title: str) -> None:
        """Announce the start of orchestration step *index* of *total*."""
        self.info(f">>> [{index}/{total}] {title}")

    def rule(self) -> None:
        """Print a horizontal separator."""
        self.console.rule(style="dim")


__all__ = ["Reporter"]
