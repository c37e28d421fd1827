"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence
import os
import shlex
import subprocess


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult, *, note: str | None = None):
        message = f"Command failed with exit code {result.returncode}: {format_command(result.command)}"
        if note:
            message = f"{note}: {message}"
        if result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        elif result.stderr.strip():
            message = f"{message}\nstderr: {result.stderr.strip()}"
        super().__init__(message)
        self.result = result
        self.note = note


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return format_command(command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        try:
            if stream:
                process = subprocess.run(
                    list(command),
                    cwd=str(cwd) if cwd else None,
                    env=merged_env,
                    check=False,
                )
                result = CommandResult(
                    command=list(command),
                    returncode=process.returncode,
                    stdout="",
                    stderr="",
                    streamed=True,
                )
            else:
                process = subprocess.run(
                    list(command),
                    cwd=str(cwd) if cwd else None,
                    env=merged_env,
                    capture_output=True,
                    text=True,
                    check=False,
                )
                result = CommandResult(
                    command=list(command),
                    returncode=process.returncode,
                    stdout=process.stdout,
                    stderr=process.stderr,
                )
        except FileNotFoundError as exc:
            # Missing executables behave like a failed command (exit 127 in a shell).
            result = CommandResult(command=list(command), returncode=127, stdout="", stderr=str(exc))

        if check and not result.ok:
            raise CommandError(result, note=note)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    stream: bool


Responder = Callable[[Sequence[str]], CommandResult | None]


@dataclass(slots=True)
class _ScriptedResponse:
    prefix: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    Responses can be scripted per command prefix so probes such as
    ``docker images -q <ref>`` return meaningful output during dry runs and
    tests. Unmatched commands succeed with empty output.
    """

    def __init__(self, *, echo: Callable[[str], None] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._responses: List[_ScriptedResponse] = []
        self._echo = echo

    def respond(
        self,
        prefix: Sequence[str],
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Script the result for commands starting with ``prefix``; later entries win."""

        self._responses.append(
            _ScriptedResponse(prefix=tuple(prefix), returncode=returncode, stdout=stdout, stderr=stderr)
        )

    def _lookup(self, command: Sequence[str]) -> _ScriptedResponse | None:
        parts = tuple(command)
        for response in reversed(self._responses):
            if parts[: len(response.prefix)] == response.prefix:
                return response
        return None

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        record = RecordedCommand(
            command=[str(part) for part in command],
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
            note=note,
            stream=stream,
        )
        self.commands.append(record)
        if self._echo is not None:
            self._echo(self._format_record(record))

        scripted = self._lookup(record.command)
        if scripted is None:
            result = CommandResult(command=record.command, returncode=0, stdout="", stderr="", streamed=stream)
        else:
            result = CommandResult(
                command=record.command,
                returncode=scripted.returncode,
                stdout=scripted.stdout,
                stderr=scripted.stderr,
                streamed=stream,
            )
        if check and not result.ok:
            raise CommandError(result, note=note)
        return result

    def matching(self, *prefix: str) -> List[RecordedCommand]:
        """Return recorded commands whose arguments start with ``prefix``."""

        return [record for record in self.commands if tuple(record.command[: len(prefix)]) == prefix]

    def _format_record(self, record: RecordedCommand) -> str:
        parts: List[str] = []
        if record.note:
            parts.append(record.note)
        if record.cwd:
            parts.append(f"(cwd={record.cwd})")
        parts.append(self.format_command(record.command))
        return " ".join(parts)


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "format_command",
]
