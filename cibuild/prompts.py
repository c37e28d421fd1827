"""Line-based prompts for adding and removing CI targets."""
from __future__ import annotations

from typing import Callable, Iterable, List, Sequence
import re

from core.console import Console

from .targets import (
    ContainerConfig,
    ContainerMode,
    DockerBuildConfig,
    Runner,
    Target,
    describe_platform,
)

InputFn = Callable[[str], str]

RUNNER_CHOICES = ("docker", "native")
MODE_CHOICES = ("pull", "build", "local")
PLATFORM_CHOICES = ("linux/amd64", "linux/arm64", "linux/arm/v7", "none")
BUILD_TYPE_CHOICES = ("Release", "Debug", "RelWithDebInfo", "MinSizeRel")

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
# ``rm-target list`` opens the picker, so a target cannot use that name.
RESERVED_NAMES = frozenset({"list"})


class PromptCancelled(Exception):
    """Raised when the user aborts a prompt with EOF or Ctrl+C."""


def is_valid_target_name(name: str) -> bool:
    return bool(_NAME_PATTERN.match(name)) and name not in RESERVED_NAMES


def _ask(input_fn: InputFn | None, question: str, default: str | None = None) -> str:
    suffix = f" [{default}]" if default else ""
    reader = input_fn or input
    try:
        answer = reader(f"? {question}{suffix} ").strip()
    except (EOFError, KeyboardInterrupt):
        raise PromptCancelled() from None
    return answer or (default or "")


def _choose(input_fn: InputFn | None, console: Console, question: str, choices: Sequence[str]) -> str:
    """Ask for one of ``choices`` by number or by value; the first choice is the default."""

    for index, choice in enumerate(choices, start=1):
        console.info(f"  {index}. {choice}")
    while True:
        answer = _ask(input_fn, question, choices[0])
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        for choice in choices:
            if answer.lower() == choice.lower():
                return choice
        console.error(f"Please choose one of: {', '.join(choices)}")


def prompt_new_target(
    existing_names: Iterable[str],
    *,
    console: Console,
    input_fn: InputFn | None = None,
) -> Target:
    """Collect a new target definition from the user.

    Raises :class:`PromptCancelled` when input ends before every question was
    answered.
    """

    taken = set(existing_names)
    while True:
        name = _ask(input_fn, "What should this target be called?", "linux-amd64")
        if not is_valid_target_name(name):
            console.error(
                "Target name can only contain letters, numbers, hyphens, and underscores, and cannot be 'list'"
            )
        elif name in taken:
            console.error(f"Target '{name}' already exists")
        else:
            break

    runner = Runner(_choose(input_fn, console, "Which runner should be used?", RUNNER_CHOICES))
    docker: ContainerConfig | None = None
    if runner is Runner.DOCKER:
        mode = ContainerMode(_choose(input_fn, console, "Docker mode?", MODE_CHOICES))
        default_image = f"cibuild-{name}" if mode is ContainerMode.BUILD else "ubuntu:22.04"
        image = _ask(input_fn, "Docker image name/tag?", default_image)
        platform = _choose(input_fn, console, "Target platform?", PLATFORM_CHOICES)
        build: DockerBuildConfig | None = None
        if mode is ContainerMode.BUILD:
            dockerfile = _ask(input_fn, "Path to the Dockerfile?", "Dockerfile")
            context = _ask(input_fn, "Build context?", ".")
            build = DockerBuildConfig(dockerfile=dockerfile, context=context)
        docker = ContainerConfig(
            mode=mode,
            image=image,
            platform=None if platform == "none" else platform,
            build=build,
        )

    build_type = _choose(input_fn, console, "Build type?", BUILD_TYPE_CHOICES)
    return Target(name=name, runner=runner, docker=docker, build_type=build_type)


def parse_selection(text: str, names: Sequence[str]) -> List[str]:
    """Translate ``"1,3"`` or ``"all"`` into target names.

    Numbers are 1-based; out-of-range and non-numeric entries are ignored and
    duplicates are reported once.
    """

    cleaned = text.strip().lower()
    if cleaned == "all":
        return list(names)

    selected: List[str] = []
    for part in cleaned.split(","):
        part = part.strip()
        if not part.isdigit():
            continue
        index = int(part)
        if 1 <= index <= len(names):
            name = names[index - 1]
            if name not in selected:
                selected.append(name)
    return selected


def pick_targets(
    names: Sequence[str],
    *,
    console: Console,
    input_fn: InputFn | None = None,
    describe: bool = False,
) -> List[str]:
    """Show a numbered list of ``names`` and return the ones the user selects."""

    console.info("Targets:")
    for index, name in enumerate(names, start=1):
        label = describe_platform(name) if describe else ""
        console.info(f"  {index}. {name}" + (f" ({label})" if label else ""))
    answer = _ask(input_fn, "Enter target numbers to remove (comma-separated, or 'all'):")
    return parse_selection(answer, names)


__all__ = [
    "PromptCancelled",
    "RESERVED_NAMES",
    "is_valid_target_name",
    "parse_selection",
    "pick_targets",
    "prompt_new_target",
]
