"""Target descriptors and the CI configuration document."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from core.config_loader import (
    load_config_file,
    normalize_string_list,
    normalize_string_mapping,
    save_config_file,
)

from .errors import ConfigurationError

DEFAULT_CONFIG_NAME = "cibuild.yaml"
DEFAULT_OUTPUT_DIR = ".bin/ci"
DEFAULT_BUILD_TYPE = "Release"
DEFAULT_OPTIMIZATION = "2"


class Runner(str, Enum):
    DOCKER = "docker"
    NATIVE = "native"

    @classmethod
    def parse(cls, value: Any) -> "Runner":
        text = str(value or "docker").strip().lower()
        if text == "container":
            return cls.DOCKER
        try:
            return cls(text)
        except ValueError:
            raise ConfigurationError(f"Unknown runner '{value}'. Expected 'docker' or 'native'") from None


class ContainerMode(str, Enum):
    PULL = "pull"
    LOCAL = "local"
    BUILD = "build"


class PullPolicy(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    IF_NOT_PRESENT = "ifNotPresent"


def _parse_enum(enum_type: type[Enum], value: Any, *, field_name: str) -> Any:
    try:
        return enum_type(str(value).strip())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(f"{field_name} '{value}' is not supported (allowed: {allowed})") from None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(slots=True)
class DockerBuildConfig:
    dockerfile: str
    context: str = "."
    args: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DockerBuildConfig":
        dockerfile = _optional_str(data.get("dockerfile"))
        if not dockerfile:
            raise ConfigurationError("docker.build.dockerfile is required")
        try:
            args = normalize_string_mapping(data.get("args"), field_name="docker.build.args")
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
        return cls(
            dockerfile=dockerfile,
            context=_optional_str(data.get("context")) or ".",
            args=args,
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"context": self.context, "dockerfile": self.dockerfile}
        if self.args:
            data["args"] = dict(self.args)
        return data


@dataclass(slots=True)
class ContainerConfig:
    mode: ContainerMode
    image: str
    platform: str | None = None
    pull_policy: PullPolicy = PullPolicy.IF_NOT_PRESENT
    build: DockerBuildConfig | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ContainerConfig":
        mode = _parse_enum(ContainerMode, data.get("mode") or "pull", field_name="docker.mode")
        raw_policy = _optional_str(data.get("pullPolicy"))
        pull_policy = (
            _parse_enum(PullPolicy, raw_policy, field_name="docker.pullPolicy")
            if raw_policy
            else PullPolicy.IF_NOT_PRESENT
        )
        build_section = data.get("build")
        build: DockerBuildConfig | None = None
        if build_section is not None:
            if not isinstance(build_section, Mapping):
                raise ConfigurationError("docker.build must be a mapping")
            build = DockerBuildConfig.from_mapping(build_section)
        image = _optional_str(data.get("image")) or ""
        if mode is not ContainerMode.BUILD and not image:
            raise ConfigurationError(f"docker.image is required for mode '{mode.value}'")
        return cls(
            mode=mode,
            image=image,
            platform=_optional_str(data.get("platform")),
            pull_policy=pull_policy,
            build=build,
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"mode": self.mode.value, "image": self.image}
        if self.platform:
            data["platform"] = self.platform
        if self.pull_policy is not PullPolicy.IF_NOT_PRESENT:
            data["pullPolicy"] = self.pull_policy.value
        if self.build is not None:
            data["build"] = self.build.to_mapping()
        return data


@dataclass(slots=True)
class BuildDefaults:
    build_type: str = DEFAULT_BUILD_TYPE
    optimization: str = DEFAULT_OPTIMIZATION
    jobs: int = 0
    cmake_args: List[str] = field(default_factory=list)
    build_args: List[str] = field(default_factory=list)
    meson_args: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BuildDefaults":
        raw_jobs = data.get("jobs", 0)
        try:
            jobs = int(raw_jobs or 0)
        except (TypeError, ValueError):
            raise ConfigurationError(f"build.jobs must be an integer, got '{raw_jobs}'") from None
        if jobs < 0:
            raise ConfigurationError("build.jobs cannot be negative")
        try:
            return cls(
                build_type=_optional_str(data.get("type")) or DEFAULT_BUILD_TYPE,
                optimization=_optional_str(data.get("optimization")) or DEFAULT_OPTIMIZATION,
                jobs=jobs,
                cmake_args=normalize_string_list(data.get("cmakeArgs"), field_name="build.cmakeArgs"),
                build_args=normalize_string_list(data.get("buildArgs"), field_name="build.buildArgs"),
                meson_args=normalize_string_list(data.get("mesonArgs"), field_name="build.mesonArgs"),
            )
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.build_type,
            "optimization": self.optimization,
            "jobs": self.jobs,
        }
        if self.cmake_args:
            data["cmakeArgs"] = list(self.cmake_args)
        if self.build_args:
            data["buildArgs"] = list(self.build_args)
        if self.meson_args:
            data["mesonArgs"] = list(self.meson_args)
        return data


@dataclass(slots=True)
class Target:
    name: str
    runner: Runner = Runner.DOCKER
    docker: ContainerConfig | None = None
    build_type: str | None = None
    cmake_options: List[str] = field(default_factory=list)
    build_options: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    active: bool | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Target":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Each entry in 'targets' must be a mapping")
        name = _optional_str(data.get("name"))
        if not name:
            raise ConfigurationError("target.name is required")
        runner = Runner.parse(data.get("runner"))

        docker_section = data.get("docker")
        docker: ContainerConfig | None = None
        if docker_section is not None:
            if not isinstance(docker_section, Mapping):
                raise ConfigurationError(f"Target '{name}': docker must be a mapping")
            try:
                docker = ContainerConfig.from_mapping(docker_section)
            except ConfigurationError as exc:
                raise ConfigurationError(f"Target '{name}': {exc}") from exc

        raw_active = data.get("active")
        if raw_active is not None and not isinstance(raw_active, bool):
            raise ConfigurationError(f"Target '{name}': active must be a boolean")

        try:
            cmake_options = normalize_string_list(data.get("cmakeOptions"), field_name="cmakeOptions")
            build_options = normalize_string_list(data.get("buildOptions"), field_name="buildOptions")
            env = normalize_string_mapping(data.get("env"), field_name="env")
        except TypeError as exc:
            raise ConfigurationError(f"Target '{name}': {exc}") from exc

        return cls(
            name=name,
            runner=runner,
            docker=docker,
            build_type=_optional_str(data.get("buildType")),
            cmake_options=cmake_options,
            build_options=build_options,
            env=env,
            active=raw_active,
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "runner": self.runner.value}
        if self.docker is not None:
            data["docker"] = self.docker.to_mapping()
        if self.build_type:
            data["buildType"] = self.build_type
        if self.cmake_options:
            data["cmakeOptions"] = list(self.cmake_options)
        if self.build_options:
            data["buildOptions"] = list(self.build_options)
        if self.env:
            data["env"] = dict(self.env)
        if self.active is not None:
            data["active"] = self.active
        return data

    def is_active(self) -> bool:
        return self.active is None or self.active

    def validate_structure(self) -> List[str]:
        """Return the structural problems of this target."""

        errors: List[str] = []
        if self.runner is Runner.DOCKER and self.docker is None:
            errors.append(f"Target '{self.name}': docker configuration is required for the docker runner")
        if self.docker is not None and self.docker.mode is ContainerMode.BUILD and self.docker.build is None:
            errors.append(f"Target '{self.name}': docker.build is required for mode 'build'")
        return errors

    def effective_build_type(self, defaults: BuildDefaults) -> str:
        return self.build_type or defaults.build_type or DEFAULT_BUILD_TYPE

    def effective_cmake_args(self, defaults: BuildDefaults) -> List[str]:
        return list(self.cmake_options) if self.cmake_options else list(defaults.cmake_args)

    def effective_build_args(self, defaults: BuildDefaults) -> List[str]:
        return list(self.build_options) if self.build_options else list(defaults.build_args)


@dataclass(slots=True)
class CIConfig:
    targets: List[Target] = field(default_factory=list)
    build: BuildDefaults = field(default_factory=BuildDefaults)
    output: str = DEFAULT_OUTPUT_DIR

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CIConfig":
        targets_section = data.get("targets") or []
        if not isinstance(targets_section, list):
            raise ConfigurationError("'targets' must be a list")
        targets = [Target.from_mapping(entry) for entry in targets_section]

        seen: set[str] = set()
        for target in targets:
            if target.name in seen:
                raise ConfigurationError(f"Duplicate target name '{target.name}'")
            seen.add(target.name)

        build_section = data.get("build") or {}
        if not isinstance(build_section, Mapping):
            raise ConfigurationError("'build' must be a mapping")

        return cls(
            targets=targets,
            build=BuildDefaults.from_mapping(build_section),
            output=_optional_str(data.get("output")) or DEFAULT_OUTPUT_DIR,
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "targets": [target.to_mapping() for target in self.targets],
            "build": self.build.to_mapping(),
            "output": self.output,
        }

    def names(self) -> List[str]:
        return [target.name for target in self.targets]

    def find(self, name: str) -> Target | None:
        for target in self.targets:
            if target.name == name:
                return target
        return None

    def add_target(self, target: Target) -> None:
        if self.find(target.name) is not None:
            raise ConfigurationError(f"Target '{target.name}' already exists")
        self.targets.append(target)

    def remove_targets(self, names: Iterable[str]) -> List[str]:
        """Drop every target named in ``names``; unknown names are ignored.

        Returns the removed names in configuration order.
        """

        to_remove = set(names)
        removed = [target.name for target in self.targets if target.name in to_remove]
        self.targets = [target for target in self.targets if target.name not in to_remove]
        return removed


class TargetStore:
    """Loads and saves the CI configuration document as a whole."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> CIConfig:
        if not self.path.is_file():
            raise ConfigurationError(
                f"Configuration file '{self.path}' not found. Run 'cibuild add-target' to create one"
            )
        try:
            data = load_config_file(self.path)
        except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to load '{self.path}': {exc}") from exc
        return CIConfig.from_mapping(data)

    def load_or_default(self) -> CIConfig:
        if not self.path.exists():
            return CIConfig()
        return self.load()

    def save(self, config: CIConfig) -> None:
        try:
            save_config_file(self.path, config.to_mapping())
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Failed to save '{self.path}': {exc}") from exc


_OS_NAMES = {"linux": "Linux", "windows": "Windows", "darwin": "macOS", "macos": "macOS"}
_ARCH_NAMES = {"amd64": "x86_64", "x86_64": "x86_64", "arm64": "ARM64", "aarch64": "ARM64"}


def describe_platform(name: str) -> str:
    """Return a readable platform label for names such as ``linux-arm64``."""

    parts = name.split("-")
    if len(parts) < 2:
        return ""
    os_name = _OS_NAMES.get(parts[0], parts[0])
    arch_name = _ARCH_NAMES.get(parts[1], parts[1])
    return f"{os_name} {arch_name}"


def default_dockerfiles_dir() -> Path:
    return Path.home() / ".config" / "cibuild" / "dockerfiles"


def derive_target(name: str, dockerfiles_dir: Path | None = None) -> Target:
    """Build a ``mode=build`` target from the predefined ``Dockerfile.<name>``."""

    directory = dockerfiles_dir or default_dockerfiles_dir()
    dockerfile = directory / f"Dockerfile.{name}"
    if not dockerfile.is_file():
        raise ConfigurationError(f"No predefined Dockerfile for target '{name}' (looked for {dockerfile})")

    platform: str | None = None
    parts = name.split("-")
    if len(parts) >= 2:
        platform = f"{parts[0]}/{parts[1]}"

    return Target(
        name=name,
        runner=Runner.DOCKER,
        docker=ContainerConfig(
            mode=ContainerMode.BUILD,
            image=f"cibuild-{name}",
            platform=platform,
            build=DockerBuildConfig(dockerfile=str(dockerfile), context=str(directory)),
        ),
    )


__all__ = [
    "BuildDefaults",
    "CIConfig",
    "ContainerConfig",
    "ContainerMode",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_OUTPUT_DIR",
    "DockerBuildConfig",
    "PullPolicy",
    "Runner",
    "Target",
    "TargetStore",
    "default_dockerfiles_dir",
    "derive_target",
    "describe_platform",
]
