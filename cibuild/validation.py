"""Configuration validation helpers."""
from __future__ import annotations

from typing import Any, List, Mapping
import re

from .errors import ConfigurationError
from .layout import ProjectLayout
from .targets import BuildDefaults, ContainerMode, Target

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_document(data: Mapping[str, Any]) -> List[str]:
    """Validate the raw CI document and return every problem found.

    Unlike :meth:`CIConfig.from_mapping` this keeps going after the first
    error so all problems can be reported together.
    """

    errors: List[str] = []
    build_section = data.get("build") or {}
    if not isinstance(build_section, Mapping):
        errors.append("'build' must be a mapping")
    else:
        try:
            BuildDefaults.from_mapping(build_section)
        except ConfigurationError as exc:
            errors.append(str(exc))

    targets_section = data.get("targets") or []
    if not isinstance(targets_section, list):
        errors.append("'targets' must be a list")
        return errors

    seen: set[str] = set()
    for index, entry in enumerate(targets_section, start=1):
        try:
            target = Target.from_mapping(entry)
        except ConfigurationError as exc:
            errors.append(f"targets[{index}]: {exc}")
            continue
        if target.name in seen:
            errors.append(f"Duplicate target name '{target.name}'")
        seen.add(target.name)
        errors.extend(target.validate_structure())
        errors.extend(validate_env_names(target))
    return errors


def validate_env_names(target: Target) -> List[str]:
    return [
        f"Target '{target.name}': '{key}' is not a valid environment variable name"
        for key in target.env
        if not _ENV_NAME_PATTERN.match(key)
    ]


def validate_target_files(target: Target, layout: ProjectLayout) -> List[str]:
    """Check that files referenced by ``target`` exist on disk."""

    docker = target.docker
    if docker is None or docker.mode is not ContainerMode.BUILD or docker.build is None:
        return []

    errors: List[str] = []
    dockerfile = layout.resolve(docker.build.dockerfile)
    if not dockerfile.is_file():
        errors.append(f"Target '{target.name}': dockerfile not found: {dockerfile}")
    context = layout.resolve(docker.build.context or ".")
    if not context.is_dir():
        errors.append(f"Target '{target.name}': build context not found: {context}")
    return errors


__all__ = ["validate_document", "validate_env_names", "validate_target_files"]
