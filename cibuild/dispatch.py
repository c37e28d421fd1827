"""Build-system detection and the per-strategy build lifecycle."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AbstractSet, Dict, FrozenSet, List
import shutil

from core.command_runner import CommandError, CommandRunner
from core.console import Console

from .artifacts import ArtifactCollector, find_primary_binary, is_executable_project, list_artifacts
from .container import ContainerEngine, Mount
from .environment import ImageResolver
from .errors import BuildError
from .layout import ProjectLayout, ensure_directories
from .scripts import (
    BAZEL_OUTPUT_BASE_PATH,
    BAZEL_REPO_CACHE_PATH,
    CMAKE_BUILD_PATH,
    CONFIGURED_MARKER,
    MESON_BUILD_PATH,
    MESON_SUBPROJECTS_PATH,
    OUTPUT_PATH,
    PACKAGE_CACHE_PATH,
    WORKSPACE_PATH,
    BazelScript,
    BuildSettings,
    CMakeScript,
    MesonScript,
    cmake_build_args,
    cmake_configure_args,
)
from .targets import Runner, Target

BAZEL_MARKER = "MODULE.bazel"
MESON_MARKER = "meson.build"
NATIVE_TOOLS = ("cmake", "ninja")


class StrategyKind(str, Enum):
    CMAKE = "cmake"
    BAZEL = "bazel"
    MESON = "meson"
    NATIVE_CMAKE = "native-cmake"


def detect_markers(project_root: Path) -> FrozenSet[str]:
    """Return the build-system signature files present at ``project_root``."""

    return frozenset(marker for marker in (BAZEL_MARKER, MESON_MARKER) if (project_root / marker).is_file())


def classify(runner: Runner, markers: AbstractSet[str]) -> StrategyKind:
    """Pick the build strategy for ``runner`` given the discovered markers.

    Native targets always use CMake; container targets prefer Bazel, then
    Meson, then CMake.
    """

    if runner is Runner.NATIVE:
        return StrategyKind.NATIVE_CMAKE
    if BAZEL_MARKER in markers:
        return StrategyKind.BAZEL
    if MESON_MARKER in markers:
        return StrategyKind.MESON
    return StrategyKind.CMAKE


@dataclass(slots=True)
class BuildJob:
    """Everything a strategy needs to build one target."""

    target: Target
    settings: BuildSettings
    layout: ProjectLayout
    runner: CommandRunner
    engine: ContainerEngine
    resolver: ImageResolver
    console: Console
    dry_run: bool = False

    @property
    def build_dir(self) -> Path:
        return self.layout.build_dir(self.target.name)

    @property
    def output_dir(self) -> Path:
        return self.layout.output_dir(self.target.name)

    @property
    def platform(self) -> str | None:
        return self.target.docker.platform if self.target.docker else None


class BuildStrategy:
    """One build system driven through the steps of a CI build."""

    kind: StrategyKind

    def __init__(self, job: BuildJob) -> None:
        self.job = job

    def cache_directories(self) -> List[Path]:
        return [self.job.build_dir]

    def prepare(self) -> None:
        ensure_directories([self.job.output_dir, *self.cache_directories()])

    def resolve_environment(self, force_refresh: bool) -> str | None:
        raise NotImplementedError

    def build(self, image: str | None, *, run_after: bool) -> None:
        raise NotImplementedError

    def collect_artifacts(self) -> List[Path]:
        raise NotImplementedError

    def run_primary(self) -> None:
        """Execute the built program on the host; container strategies run it in-script."""

    def execute(self, *, force_refresh: bool = False, run_after: bool = False) -> List[Path]:
        self.prepare()
        image = self.resolve_environment(force_refresh)
        self.build(image, run_after=run_after)
        if self.job.dry_run:
            self.job.console.dry(f"Skipping artifact collection for {self.job.target.name}")
            return []
        artifacts = self.collect_artifacts()
        if run_after:
            self.run_primary()
        return artifacts


class ContainerStrategy(BuildStrategy):
    def resolve_environment(self, force_refresh: bool) -> str | None:
        return self.job.resolver.resolve(self.job.target, force_refresh=force_refresh)

    def render_script(self, *, run_after: bool) -> str:
        raise NotImplementedError

    def mounts(self) -> List[Mount]:
        raise NotImplementedError

    def build(self, image: str | None, *, run_after: bool) -> None:
        if image is None:
            raise BuildError("container strategies need a resolved image")
        script = self.render_script(run_after=run_after)
        self.job.console.debug(f"Generated build script:\n{script}")
        self.job.console.info(f"  Running {self.kind.value} build in Docker container...")
        try:
            self.job.engine.run_script(
                image,
                script,
                mounts=self.mounts(),
                workdir=WORKSPACE_PATH,
                platform=self.job.platform,
            )
        except CommandError as exc:
            raise BuildError(f"docker {self.kind.value} build failed: {exc}") from exc

    def collect_artifacts(self) -> List[Path]:
        artifacts = list_artifacts(self.job.output_dir)
        if artifacts:
            self.job.console.info(f"  Staged {len(artifacts)} artifact(s) in {self.job.output_dir}")
        else:
            self.job.console.warn(f"No artifacts were staged in {self.job.output_dir}")
        return artifacts


class ContainerCMakeStrategy(ContainerStrategy):
    kind = StrategyKind.CMAKE

    def cache_directories(self) -> List[Path]:
        name = self.job.target.name
        return [self.job.build_dir, *self.job.layout.package_cache_subdirs(name)]

    def render_script(self, *, run_after: bool) -> str:
        return CMakeScript(
            target_name=self.job.target.name,
            project_name=self.job.layout.name,
            settings=self.job.settings,
            executable_project=is_executable_project(self.job.layout.root),
            run_after=run_after,
        ).render()

    def mounts(self) -> List[Mount]:
        layout = self.job.layout
        return [
            Mount(layout.root, WORKSPACE_PATH, read_only=True),
            Mount(self.job.build_dir, CMAKE_BUILD_PATH),
            Mount(layout.output_root, OUTPUT_PATH),
            Mount(layout.package_cache_dir(self.job.target.name), PACKAGE_CACHE_PATH),
        ]


class ContainerBazelStrategy(ContainerStrategy):
    kind = StrategyKind.BAZEL

    def cache_directories(self) -> List[Path]:
        return [self.job.build_dir, self.job.layout.bazel_repo_cache]

    def render_script(self, *, run_after: bool) -> str:
        if run_after:
            self.job.console.warn("Running the built program is only supported for CMake targets")
        return BazelScript(target_name=self.job.target.name, settings=self.job.settings).render()

    def mounts(self) -> List[Mount]:
        layout = self.job.layout
        return [
            Mount(layout.root, WORKSPACE_PATH, read_only=True),
            Mount(layout.output_root, OUTPUT_PATH),
            Mount(self.job.build_dir, BAZEL_OUTPUT_BASE_PATH),
            Mount(layout.bazel_repo_cache, BAZEL_REPO_CACHE_PATH),
        ]


class ContainerMesonStrategy(ContainerStrategy):
    kind = StrategyKind.MESON

    def cache_directories(self) -> List[Path]:
        return [self.job.build_dir, self.job.layout.subprojects_dir]

    def render_script(self, *, run_after: bool) -> str:
        if run_after:
            self.job.console.warn("Running the built program is only supported for CMake targets")
        return MesonScript(target_name=self.job.target.name, settings=self.job.settings).render()

    def mounts(self) -> List[Mount]:
        layout = self.job.layout
        return [
            Mount(layout.root, WORKSPACE_PATH, read_only=True),
            Mount(self.job.build_dir, MESON_BUILD_PATH),
            Mount(layout.subprojects_dir, MESON_SUBPROJECTS_PATH),
            Mount(layout.output_root, OUTPUT_PATH),
        ]


class NativeCMakeStrategy(BuildStrategy):
    kind = StrategyKind.NATIVE_CMAKE

    def _environment(self) -> Dict[str, str]:
        return dict(self.job.settings.env)

    def resolve_environment(self, force_refresh: bool) -> str | None:
        missing = [tool for tool in NATIVE_TOOLS if shutil.which(tool) is None]
        if missing:
            self.job.console.warn(
                f"Native build may fail due to missing tools: {', '.join(missing)}"
            )
        return None

    def build(self, image: str | None, *, run_after: bool) -> None:
        job = self.job
        build_dir = str(job.build_dir)
        if (job.build_dir / CONFIGURED_MARKER).is_file():
            job.console.info("  Build directory already configured, skipping setup.")
        else:
            job.console.info("  Configuring CMake (Ninja)...")
            arguments = cmake_configure_args(job.settings, build_dir=build_dir, source_dir=str(job.layout.root))
            self._run(["cmake", *arguments], stage="cmake configure")

        job.console.info("  Building...")
        self._run(["cmake", *cmake_build_args(job.settings, build_dir=build_dir)], stage="cmake build")

    def _run(self, command: List[str], *, stage: str) -> None:
        try:
            self.job.runner.run(
                command,
                cwd=self.job.layout.root,
                env=self._environment(),
                stream=True,
                note=stage,
            )
        except CommandError as exc:
            raise BuildError(f"{stage} failed: {exc}") from exc

    def collect_artifacts(self) -> List[Path]:
        self.job.console.info("  Copying artifacts...")
        collector = ArtifactCollector(self.job.console)
        return collector.collect(self.job.build_dir, self.job.output_dir)

    def run_primary(self) -> None:
        job = self.job
        binary = find_primary_binary(job.layout.name, output_dir=job.output_dir, build_dir=job.build_dir)
        if binary is None:
            job.console.warn(f"No executable found to run (searched for {job.layout.name})")
            return
        job.console.info(f"  Executing: {binary}")
        job.console.info("-" * 40)
        result = job.runner.run(
            [str(binary)],
            cwd=job.layout.root,
            env=self._environment(),
            check=False,
            stream=True,
            note="run program",
        )
        job.console.info("-" * 40)
        job.console.info(f"  Process exited with code: {result.returncode}")


_STRATEGIES = {
    StrategyKind.CMAKE: ContainerCMakeStrategy,
    StrategyKind.BAZEL: ContainerBazelStrategy,
    StrategyKind.MESON: ContainerMesonStrategy,
    StrategyKind.NATIVE_CMAKE: NativeCMakeStrategy,
}


def create_strategy(kind: StrategyKind, job: BuildJob) -> BuildStrategy:
    return _STRATEGIES[kind](job)


__all__ = [
    "BAZEL_MARKER",
    "BuildJob",
    "BuildStrategy",
    "ContainerBazelStrategy",
    "ContainerCMakeStrategy",
    "ContainerMesonStrategy",
    "MESON_MARKER",
    "NativeCMakeStrategy",
    "StrategyKind",
    "classify",
    "create_strategy",
    "detect_markers",
]
