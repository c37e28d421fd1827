"""Exception taxonomy for CI orchestration failures."""
from __future__ import annotations


class CIError(RuntimeError):
    """Base class for every failure reported by the CI orchestrator."""


class ConfigurationError(CIError):
    """Missing or malformed configuration, unknown target, missing descriptor."""


class ImageResolutionError(CIError):
    """A container image could not be pulled, verified or built."""


class BuildError(CIError):
    """The configure or compile step of a target returned non-zero."""


class ArtifactError(CIError):
    """The output layout for a target could not be created."""


class TargetFailure(CIError):
    """Wraps the first failure of a target with the target's name."""

    def __init__(self, target_name: str, cause: BaseException) -> None:
        super().__init__(f"target '{target_name}' failed: {cause}")
        self.target_name = target_name
        self.cause = cause


__all__ = [
    "ArtifactError",
    "BuildError",
    "CIError",
    "ConfigurationError",
    "ImageResolutionError",
    "TargetFailure",
]
