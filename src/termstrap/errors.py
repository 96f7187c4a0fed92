"""Shared exception base for fatal termstrap failures."""
from __future__ import annotations


class TermstrapError(RuntimeError):
    """Base class for failures that halt the bootstrap run."""


class FatalStepError(TermstrapError):
    """Raised when an orchestration step cannot complete."""

    def __init__(self, step: str, message: str) -> None:
        """Record the failing *step* alongside the human readable *message*."""
        super().__init__(message)
        self.step = step


__all__ = ["FatalStepError", "TermstrapError"]
