"""Generation of build scripts and command lines for each build strategy.

Everything in this module is pure string construction. The CMake and Meson
scripts guard their configure step on the presence of ``build.ninja`` in the
persistent build directory, so rerunning a script against an already-configured
directory only rebuilds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping
import shlex

from .artifacts import bazel_copy_commands, cmake_copy_commands, meson_copy_commands
from .targets import BuildDefaults, Target

CONFIGURED_MARKER = "build.ninja"

WORKSPACE_PATH = "/workspace"
OUTPUT_PATH = "/output"
CMAKE_BUILD_PATH = "/tmp/build"
PACKAGE_CACHE_PATH = "/tmp/.pkg_cache"
VCPKG_ROOT = "/opt/vcpkg"
VCPKG_TOOLCHAIN_FILE = f"{VCPKG_ROOT}/scripts/buildsystems/vcpkg.cmake"
BAZEL_OUTPUT_BASE_PATH = "/bazel-cache"
BAZEL_REPO_CACHE_PATH = "/bazel-repo-cache"
MESON_BUILD_PATH = "/tmp/builddir"
MESON_SUBPROJECTS_PATH = f"{WORKSPACE_PATH}/subprojects"


@dataclass(slots=True)
class BuildSettings:
    """Per-target build values after applying the global defaults."""

    build_type: str
    optimization: str
    jobs: int = 0
    cmake_args: List[str] = field(default_factory=list)
    build_args: List[str] = field(default_factory=list)
    meson_args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_target(cls, target: Target, defaults: BuildDefaults) -> "BuildSettings":
        return cls(
            build_type=target.effective_build_type(defaults),
            optimization=defaults.optimization,
            jobs=defaults.jobs,
            cmake_args=target.effective_cmake_args(defaults),
            build_args=target.effective_build_args(defaults),
            meson_args=list(defaults.meson_args),
            env=dict(target.env),
        )


def _q(value: str) -> str:
    return shlex.quote(value)


def _join(arguments: List[str]) -> str:
    return " ".join(_q(argument) for argument in arguments)


def env_exports(env: Mapping[str, str]) -> str:
    if not env:
        return ""
    lines = ["# User-defined environment variables"]
    lines.extend(f"export {key}={_q(env[key])}" for key in sorted(env))
    return "\n".join(lines) + "\n"


def cmake_configure_args(
    settings: BuildSettings,
    *,
    build_dir: str,
    source_dir: str,
    toolchain_file: str | None = None,
) -> List[str]:
    arguments = [
        "-GNinja",
        "-B",
        build_dir,
        "-S",
        source_dir,
        f"-DCMAKE_BUILD_TYPE={settings.build_type}",
    ]
    if toolchain_file:
        arguments.append(f"-DCMAKE_TOOLCHAIN_FILE={toolchain_file}")
    arguments.append(f"-DCMAKE_CXX_FLAGS=-O{settings.optimization}")
    if toolchain_file:
        arguments.append("-DVCPKG_DISABLE_REGISTRY_UPDATE=ON")
    arguments.extend(settings.cmake_args)
    return arguments


def cmake_build_args(settings: BuildSettings, *, build_dir: str) -> List[str]:
    arguments = ["--build", build_dir, "--config", settings.build_type]
    if settings.jobs > 0:
        arguments.extend(["--parallel", str(settings.jobs)])
    arguments.extend(settings.build_args)
    return arguments


def _package_cache_exports() -> str:
    cache = PACKAGE_CACHE_PATH
    return "\n".join(
        [
            f"export VCPKG_ROOT={VCPKG_ROOT}",
            'export PATH="${VCPKG_ROOT}:${PATH}"',
            "export VCPKG_FEATURE_FLAGS=manifests",
            f"export X_VCPKG_REGISTRIES_CACHE={cache}/registries",
            "export VCPKG_DISABLE_REGISTRY_UPDATE=1",
            'export VCPKG_KEEP_ENV_VARS="VCPKG_DISABLE_REGISTRY_UPDATE;VCPKG_FEATURE_FLAGS;'
            'VCPKG_INSTALLED_DIR;VCPKG_DOWNLOADS;VCPKG_BUILDTREES_ROOT;VCPKG_BINARY_SOURCES"',
            "# Package-manager caches persist between builds",
            f"export VCPKG_INSTALLED_DIR={cache}/installed",
            f"export VCPKG_DOWNLOADS={cache}/downloads",
            f"export VCPKG_BUILDTREES_ROOT={cache}/buildtrees",
            f'export VCPKG_BINARY_SOURCES="files,{cache}/binary,readwrite"',
            "export VCPKG_DISABLE_METRICS=1",
            'mkdir -p "$VCPKG_INSTALLED_DIR" "$VCPKG_DOWNLOADS" "$VCPKG_BUILDTREES_ROOT" '
            f'{cache}/binary "$X_VCPKG_REGISTRIES_CACHE"',
        ]
    )


@dataclass(slots=True)
class CMakeScript:
    """Bash script configuring, building and staging a CMake + vcpkg project in a container."""

    target_name: str
    project_name: str
    settings: BuildSettings
    executable_project: bool = True
    run_after: bool = False
    build_dir: str = CMAKE_BUILD_PATH
    source_dir: str = WORKSPACE_PATH
    output_root: str = OUTPUT_PATH

    @property
    def output_dir(self) -> str:
        return f"{self.output_root}/{self.target_name}"

    def environment_section(self) -> str:
        return env_exports(self.settings.env) + _package_cache_exports() + f"\nmkdir -p {_q(self.build_dir)}\n"

    def configure_section(self) -> str:
        arguments = cmake_configure_args(
            self.settings,
            build_dir=self.build_dir,
            source_dir=self.source_dir,
            toolchain_file=VCPKG_TOOLCHAIN_FILE,
        )
        marker = f"{self.build_dir}/{CONFIGURED_MARKER}"
        return "\n".join(
            [
                f"if [ -f {_q(marker)} ]; then",
                '    echo "  Build directory already configured, skipping setup."',
                "else",
                '    echo "  Configuring CMake (Ninja)..."',
                f"    cmake {_join(arguments)}",
                "fi",
            ]
        )

    def build_section(self) -> str:
        arguments = cmake_build_args(self.settings, build_dir=self.build_dir)
        return f'echo "  Building..."\ncmake {_join(arguments)}'

    def collect_section(self) -> str:
        return "\n".join(
            [
                'echo "  Copying artifacts..."',
                f"mkdir -p {_q(self.output_dir)}",
                cmake_copy_commands(
                    self.build_dir,
                    self.output_dir,
                    executable_project=self.executable_project,
                ),
            ]
        )

    def run_section(self) -> str:
        if not self.run_after:
            return ""
        staged = f"{self.output_dir}/{self.project_name}"
        built = f"{self.build_dir}/{self.project_name}"
        return "\n".join(
            [
                'echo ""',
                f'echo "  Running {self.project_name}..."',
                'EXEC_PATH=""',
                f"if [ -x {_q(staged)} ]; then",
                f"    EXEC_PATH={_q(staged)}",
                f"elif [ -x {_q(built)} ]; then",
                f"    EXEC_PATH={_q(built)}",
                "else",
                f"    for f in $(find {_q(self.build_dir)} -maxdepth 3 -type f -executable ! -name '*_test*' "
                "! -name '*_bench*' ! -name '*.a' ! -name '*.so' ! -name 'a.out' ! -path '*/CMakeFiles/*' "
                "2>/dev/null | head -5); do",
                '        if file "$f" 2>/dev/null | grep -qE "ELF.*(executable|pie)"; then',
                '            EXEC_PATH="$f"',
                "            break",
                "        fi",
                "    done",
                "fi",
                'if [ -n "$EXEC_PATH" ] && [ -x "$EXEC_PATH" ]; then',
                '    echo "  Executing: $EXEC_PATH"',
                '    echo "----------------------------------------"',
                "    set +e",
                '    "$EXEC_PATH"',
                "    EXIT_CODE=$?",
                "    set -e",
                '    echo "----------------------------------------"',
                '    echo "  Process exited with code: $EXIT_CODE"',
                "else",
                '    echo "  No executable found to run"',
                f'    echo "  Searched for: {self.project_name} in {self.output_dir} and {self.build_dir}"',
                "fi",
            ]
        )

    def render(self) -> str:
        sections = [
            "#!/bin/bash",
            "set -e",
            self.environment_section(),
            self.configure_section(),
            "",
            self.build_section(),
            "",
            self.collect_section(),
            'echo "  Build complete!"',
        ]
        run = self.run_section()
        if run:
            sections.append(run)
        return "\n".join(sections) + "\n"


def bazel_config(build_type: str) -> str:
    return "debug" if build_type.lower() == "debug" else "release"


@dataclass(slots=True)
class BazelScript:
    """Bash script building every Bazel target with output kept outside the read-only workspace."""

    target_name: str
    settings: BuildSettings
    output_base: str = BAZEL_OUTPUT_BASE_PATH
    repository_cache: str = BAZEL_REPO_CACHE_PATH
    output_root: str = OUTPUT_PATH

    @property
    def output_dir(self) -> str:
        return f"{self.output_root}/{self.target_name}"

    def environment_section(self) -> str:
        return "\n".join(
            [
                env_exports(self.settings.env).rstrip("\n"),
                "# Reuse the Bazel installation downloaded while building the image",
                "export HOME=/root",
                f"BAZEL_OUTPUT_BASE={_q(self.output_base)}",
                'mkdir -p "$BAZEL_OUTPUT_BASE"',
            ]
        ).lstrip("\n")

    def configure_section(self) -> str:
        # Bazel has no separate configure step; its output base is the cache.
        return ""

    def build_section(self) -> str:
        arguments = [
            f"--config={bazel_config(self.settings.build_type)}",
            "--symlink_prefix=/dev/null",
            "--spawn_strategy=local",
            f"--repository_cache={self.repository_cache}",
        ]
        if self.settings.jobs > 0:
            arguments.append(f"--jobs={self.settings.jobs}")
        arguments.extend(self.settings.build_args)
        arguments.append("//...")
        return 'echo "  Building with Bazel..."\n' + f'bazel --output_base="$BAZEL_OUTPUT_BASE" build {_join(arguments)}'

    def collect_section(self) -> str:
        return "\n".join(
            [
                'echo "  Copying artifacts..."',
                f"mkdir -p {_q(self.output_dir)}",
                bazel_copy_commands("$BAZEL_OUTPUT_BASE", self.output_dir),
            ]
        )

    def render(self) -> str:
        sections = [
            "#!/bin/bash",
            "set -e",
            self.environment_section(),
            self.build_section(),
            self.collect_section(),
            'echo "  Build complete!"',
        ]
        return "\n".join(section for section in sections if section) + "\n"


def meson_buildtype(build_type: str) -> str:
    return "debug" if build_type.lower() == "debug" else "release"


@dataclass(slots=True)
class MesonScript:
    """Bash script configuring once and compiling a Meson project in a persistent build dir."""

    target_name: str
    settings: BuildSettings
    build_dir: str = MESON_BUILD_PATH
    output_root: str = OUTPUT_PATH

    @property
    def output_dir(self) -> str:
        return f"{self.output_root}/{self.target_name}"

    def environment_section(self) -> str:
        return env_exports(self.settings.env) + f"mkdir -p {_q(self.build_dir)}"

    def configure_section(self) -> str:
        arguments = ["setup", self.build_dir, f"--buildtype={meson_buildtype(self.settings.build_type)}"]
        arguments.extend(self.settings.meson_args)
        marker = f"{self.build_dir}/{CONFIGURED_MARKER}"
        return "\n".join(
            [
                'echo "  Configuring Meson..."',
                f"if [ ! -f {_q(marker)} ]; then",
                f"    meson {_join(arguments)}",
                "else",
                '    echo "  Build directory already configured, skipping setup."',
                "fi",
            ]
        )

    def build_section(self) -> str:
        arguments = ["compile", "-C", self.build_dir]
        if self.settings.jobs > 0:
            arguments.extend(["-j", str(self.settings.jobs)])
        arguments.extend(self.settings.build_args)
        return f'echo "  Building..."\nmeson {_join(arguments)}'

    def collect_section(self) -> str:
        return "\n".join(
            [
                'echo "  Copying artifacts..."',
                f"mkdir -p {_q(self.output_dir)}",
                meson_copy_commands(self.build_dir, self.output_dir),
            ]
        )

    def render(self) -> str:
        sections = [
            "#!/bin/bash",
            "set -e",
            self.environment_section(),
            "",
            self.configure_section(),
            "",
            self.build_section(),
            "",
            self.collect_section(),
            'echo "  Build complete!"',
        ]
        return "\n".join(sections) + "\n"


__all__ = [
    "BAZEL_OUTPUT_BASE_PATH",
    "BAZEL_REPO_CACHE_PATH",
    "BazelScript",
    "BuildSettings",
    "CMAKE_BUILD_PATH",
    "CMakeScript",
    "CONFIGURED_MARKER",
    "MESON_BUILD_PATH",
    "MESON_SUBPROJECTS_PATH",
    "MesonScript",
    "OUTPUT_PATH",
    "PACKAGE_CACHE_PATH",
    "WORKSPACE_PATH",
    "bazel_config",
    "cmake_build_args",
    "cmake_configure_args",
    "env_exports",
    "meson_buildtype",
]
