"""Shared core utilities for command execution, configuration and console output."""

from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    FILE_DUMPERS,
    FILE_LOADERS,
    load_config_file,
    normalize_string_list,
    normalize_string_mapping,
    save_config_file,
)
from .console import Console

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "FILE_DUMPERS",
    "FILE_LOADERS",
    "load_config_file",
    "normalize_string_list",
    "normalize_string_mapping",
    "save_config_file",
    "Console",
]
