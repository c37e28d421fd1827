"""Cross-compilation CI build orchestrator."""

from .errors import (
    ArtifactError,
    BuildError,
    CIError,
    ConfigurationError,
    ImageResolutionError,
    TargetFailure,
)
from .orchestrator import InvocationGuard, OrchestrationResult, Orchestrator, select_targets
from .targets import CIConfig, Target, TargetStore

__all__ = [
    "ArtifactError",
    "BuildError",
    "CIConfig",
    "CIError",
    "ConfigurationError",
    "ImageResolutionError",
    "InvocationGuard",
    "OrchestrationResult",
    "Orchestrator",
    "Target",
    "TargetFailure",
    "TargetStore",
    "select_targets",
]
