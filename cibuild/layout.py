"""Project root discovery and the on-disk cache/output layout."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .errors import ArtifactError
from .targets import DEFAULT_CONFIG_NAME

PROJECT_MARKERS = ("CMakeLists.txt", "MODULE.bazel", "meson.build")

CACHE_ROOT = Path(".cache") / "ci"
PACKAGE_CACHE_DIR = ".pkg_cache"
PACKAGE_CACHE_SUBDIRS = ("installed", "downloads", "buildtrees", "binary")
BAZEL_REPO_CACHE_DIR = "bazel_repo_cache"
TEST_RESULTS_DIR = "test_results"


def find_project_root(start: Path, *, config_name: str = DEFAULT_CONFIG_NAME) -> Path:
    """Walk up from ``start`` looking for the CI config or a build-system marker.

    Falls back to ``start`` when the filesystem root is reached.
    """

    start = start.resolve()
    markers = (config_name, *PROJECT_MARKERS)
    for directory in (start, *start.parents):
        if any((directory / marker).exists() for marker in markers):
            return directory
    return start


def ensure_directories(paths: Iterable[Path]) -> None:
    for path in paths:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactError(f"Failed to create directory '{path}': {exc}") from exc


@dataclass(slots=True, frozen=True)
class ProjectLayout:
    """Absolute paths used by one orchestrator run."""

    root: Path
    output_root: Path

    @classmethod
    def for_project(cls, root: Path, output: str) -> "ProjectLayout":
        root = root.resolve()
        output_path = Path(output).expanduser()
        if not output_path.is_absolute():
            output_path = root / output_path
        return cls(root=root, output_root=output_path)

    @property
    def name(self) -> str:
        return self.root.name

    @property
    def cache_root(self) -> Path:
        return self.root / CACHE_ROOT

    def build_dir(self, target_name: str) -> Path:
        return self.cache_root / target_name

    def package_cache_dir(self, target_name: str) -> Path:
        return self.build_dir(target_name) / PACKAGE_CACHE_DIR

    def package_cache_subdirs(self, target_name: str) -> list[Path]:
        base = self.package_cache_dir(target_name)
        return [base / name for name in PACKAGE_CACHE_SUBDIRS]

    @property
    def bazel_repo_cache(self) -> Path:
        return self.cache_root / BAZEL_REPO_CACHE_DIR

    @property
    def subprojects_dir(self) -> Path:
        return self.root / "subprojects"

    def output_dir(self, target_name: str) -> Path:
        return self.output_root / target_name

    def resolve(self, value: str) -> Path:
        """Resolve ``value`` against the project root unless it is absolute."""

        path = Path(value).expanduser()
        return path if path.is_absolute() else self.root / path


__all__ = [
    "BAZEL_REPO_CACHE_DIR",
    "CACHE_ROOT",
    "PACKAGE_CACHE_DIR",
    "PACKAGE_CACHE_SUBDIRS",
    "PROJECT_MARKERS",
    "ProjectLayout",
    "TEST_RESULTS_DIR",
    "ensure_directories",
    "find_project_root",
]
