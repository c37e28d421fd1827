"""Console output handler shared by the command line tools."""
from __future__ import annotations

from typing import TextIO
import sys


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < warn < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warn": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(
        self,
        level: str = "info",
        dry_run: bool = False,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        if level not in self.LEVELS:
            raise ValueError(f"Unknown console level '{level}'. Expected one of: {', '.join(self.LEVELS)}")
        self.level_name = level
        self.level = self.LEVELS[level]
        self.dry_run = dry_run
        self._stdout = stdout
        self._stderr = stderr

    @property
    def out(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._stderr or sys.stderr

    def _enabled(self, level: str) -> bool:
        return self.level >= self.LEVELS[level]

    def info(self, message: str) -> None:
        if self._enabled("info"):
            print(message, file=self.out)

    def success(self, message: str) -> None:
        if self._enabled("info"):
            print(f"[OK] {message}", file=self.out)

    def warn(self, message: str) -> None:
        if self._enabled("warn"):
            print(f"[WARN] {message}", file=self.out)

    def error(self, message: str) -> None:
        if self._enabled("error"):
            print(f"[ERROR] {message}", file=self.err)

    def dry(self, message: str) -> None:
        if self.dry_run:
            print(f"[DRY] {message}", file=self.out)

    def debug(self, message: str) -> None:
        if self._enabled("debug"):
            print(f"[DEBUG] {message}", file=self.out)


__all__ = ["Console"]
