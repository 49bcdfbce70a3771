"""Error taxonomy for the build orchestrator.

Task-level failures (``TransformError``, ``LintViolation``) are caught at the task
boundary and turned into a failed ``RunResult``. ``ConfigError``, ``CleanError``
and ``DuplicateTaskError`` are allowed to terminate the process.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable


class SitepipeError(Exception):
    """Base class for every error raised by sitepipe."""


class ConfigError(SitepipeError):
    pass


class DuplicateTaskError(SitepipeError):
    def __init__(self, name: str):
        super().__init__(f"Task already registered: {name}")
        self.name = name


class TransformError(SitepipeError):
    """A task's transformation (usually an external tool) reported failure."""

    def __init__(self, task: str, message: str):
        super().__init__(f"{task}: {message}")
        self.task = task
        self.message = message


class CleanError(SitepipeError):
    def __init__(self, paths: Iterable[Path | str]):
        self.paths = [str(p) for p in paths]
        super().__init__(
            "Could not remove %d path(s): %s" % (len(self.paths), ", ".join(self.paths))
        )


class LintViolation(SitepipeError):
    def __init__(self, count: int):
        super().__init__(f"Linting reported {count} message(s)")
        self.count = count
