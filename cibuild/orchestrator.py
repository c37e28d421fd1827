"""Sequential build of the selected CI targets."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from core.command_runner import CommandError, CommandRunner
from core.console import Console

from .container import ContainerEngine
from .dispatch import BuildJob, classify, create_strategy, detect_markers
from .environment import ImageResolver
from .errors import CIError, ConfigurationError, TargetFailure
from .layout import ProjectLayout, ensure_directories
from .scripts import BuildSettings
from .targets import CIConfig, Target
from .validation import validate_env_names


class InvocationGuard:
    """Marks that an orchestrator run has already started in this call context."""

    def __init__(self) -> None:
        self.started = False

    def claim(self) -> bool:
        """Return ``True`` the first time only."""

        if self.started:
            return False
        self.started = True
        return True


@dataclass(slots=True)
class OrchestrationResult:
    built: List[str] = field(default_factory=list)
    skipped: int = 0
    output_dir: Path | None = None
    already_running: bool = False


def select_targets(config: CIConfig, name: str | None = None) -> Tuple[List[Target], int]:
    """Return the targets to build and how many inactive ones were skipped.

    An explicitly named target is returned even when inactive.
    """

    if name:
        target = config.find(name)
        if target is None:
            available = ", ".join(config.names()) or "none"
            raise ConfigurationError(f"target '{name}' not found (available: {available})")
        return [target], 0

    selected = [target for target in config.targets if target.is_active()]
    skipped = len(config.targets) - len(selected)
    if not selected:
        if config.targets:
            raise ConfigurationError("no active targets to build")
        raise ConfigurationError("no targets defined. Run 'cibuild add-target' to add one")
    return selected, skipped


class Orchestrator:
    """Drives every selected target through its build strategy, stopping at the first failure."""

    def __init__(
        self,
        layout: ProjectLayout,
        runner: CommandRunner,
        console: Console,
        *,
        dry_run: bool = False,
    ) -> None:
        self.layout = layout
        self.runner = runner
        self.console = console
        self.dry_run = dry_run
        self.engine = ContainerEngine(runner)
        self.resolver = ImageResolver(self.engine, layout, console)

    def run(
        self,
        config: CIConfig,
        *,
        target_name: str | None = None,
        rebuild: bool = False,
        run_after: bool = False,
        guard: InvocationGuard | None = None,
    ) -> OrchestrationResult:
        if guard is not None and not guard.claim():
            self.console.warn("Build already in progress for this invocation, ignoring repeated request")
            return OrchestrationResult(already_running=True)

        targets, skipped = select_targets(config, target_name)
        if target_name and not targets[0].is_active():
            self.console.warn(f"Target '{target_name}' is inactive but was requested explicitly")
        if skipped:
            self.console.info(f"Skipping {skipped} inactive target(s)")

        ensure_directories([self.layout.cache_root, self.layout.output_root])
        markers = detect_markers(self.layout.root)
        self.console.debug(f"Build-system markers: {', '.join(sorted(markers)) or 'none'}")

        result = OrchestrationResult(skipped=skipped, output_dir=self.layout.output_root)
        total = len(targets)
        for index, target in enumerate(targets, start=1):
            self.console.info(f"[{index}/{total}] Building target: {target.name} ({target.runner.value})")
            try:
                self._build_target(config, target, markers, rebuild=rebuild, run_after=run_after)
            except (CIError, CommandError) as exc:
                raise TargetFailure(target.name, exc) from exc
            self.console.success(f"{target.name} built successfully")
            result.built.append(target.name)

        self.console.success(f"All targets built successfully! Artifacts are in: {self.layout.output_root}")
        return result

    def _build_target(
        self,
        config: CIConfig,
        target: Target,
        markers: frozenset[str],
        *,
        rebuild: bool,
        run_after: bool,
    ) -> None:
        problems = target.validate_structure() + validate_env_names(target)
        if problems:
            raise ConfigurationError("; ".join(problems))

        kind = classify(target.runner, markers)
        self.console.debug(f"Using {kind.value} strategy for {target.name}")
        job = BuildJob(
            target=target,
            settings=BuildSettings.for_target(target, config.build),
            layout=self.layout,
            runner=self.runner,
            engine=self.engine,
            resolver=self.resolver,
            console=self.console,
            dry_run=self.dry_run,
        )
        create_strategy(kind, job).execute(force_refresh=rebuild, run_after=run_after)


__all__ = [
    "InvocationGuard",
    "OrchestrationResult",
    "Orchestrator",
    "select_targets",
]
