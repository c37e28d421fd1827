"""Thin wrapper around the container engine command line."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Sequence

from core.command_runner import CommandResult, CommandRunner


@dataclass(slots=True, frozen=True)
class Mount:
    host: Path
    container: str
    read_only: bool = False

    def to_argument(self) -> str:
        value = f"{self.host}:{self.container}"
        return f"{value}:ro" if self.read_only else value


def build_arg_flags(args: Mapping[str, str]) -> List[str]:
    flags: List[str] = []
    for key in sorted(args):
        flags.extend(["--build-arg", f"{key}={args[key]}"])
    return flags


class ContainerEngine:
    """Issues ``docker`` commands through a :class:`CommandRunner`."""

    def __init__(self, runner: CommandRunner, executable: str = "docker") -> None:
        self._runner = runner
        self.executable = executable

    def image_exists(self, image: str) -> bool:
        result = self._runner.run(
            [self.executable, "images", "-q", image],
            check=False,
            note="probe image",
        )
        return result.ok and bool(result.stdout.strip())

    def pull(self, image: str, *, platform: str | None = None) -> CommandResult:
        command = [self.executable, "pull"]
        if platform:
            command.extend(["--platform", platform])
        command.append(image)
        return self._runner.run(command, stream=True, note="pull image")

    def buildx_command(
        self,
        *,
        tag: str,
        dockerfile: Path,
        context: Path,
        args: Mapping[str, str],
        platform: str | None,
    ) -> List[str]:
        command = [self.executable, "buildx", "build", "-f", str(dockerfile), "-t", tag]
        if platform:
            command.extend(["--platform", platform])
        command.extend(build_arg_flags(args))
        command.append("--load")
        command.append(str(context))
        return command

    def legacy_build_command(
        self,
        *,
        tag: str,
        dockerfile: Path,
        context: Path,
        args: Mapping[str, str],
        platform: str | None,
    ) -> List[str]:
        command = [self.executable, "build", "-f", str(dockerfile), "-t", tag]
        if platform:
            command.extend(["--platform", platform])
        command.extend(build_arg_flags(args))
        command.append(str(context))
        return command

    def build(
        self,
        *,
        tag: str,
        dockerfile: Path,
        context: Path,
        args: Mapping[str, str],
        platform: str | None = None,
        legacy: bool = False,
    ) -> CommandResult:
        factory = self.legacy_build_command if legacy else self.buildx_command
        command = factory(tag=tag, dockerfile=dockerfile, context=context, args=args, platform=platform)
        return self._runner.run(command, stream=True, note="build image")

    def run_script(
        self,
        image: str,
        script: str,
        *,
        mounts: Sequence[Mount],
        workdir: str,
        platform: str | None = None,
    ) -> CommandResult:
        command = [self.executable, "run", "--rm"]
        if platform:
            command.extend(["--platform", platform])
        for mount in mounts:
            command.extend(["-v", mount.to_argument()])
        command.extend(["-w", workdir, image, "bash", "-c", script])
        return self._runner.run(command, stream=True, note="run build container")


__all__ = ["ContainerEngine", "Mount", "build_arg_flags"]
