"""Shared helpers for loading and saving configuration documents."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence

import json
import tomllib

import yaml


ConfigLoader = Callable[[Any], Any]
ConfigDumper = Callable[[Mapping[str, Any], Any], None]


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Mapping of file suffixes to loader callables."""


def _dump_yaml(data: Mapping[str, Any], stream: Any) -> None:
    yaml.safe_dump(dict(data), stream, sort_keys=False, default_flow_style=False, allow_unicode=True)


def _dump_json(data: Mapping[str, Any], stream: Any) -> None:
    json.dump(data, stream, indent=2)
    stream.write("\n")


FILE_DUMPERS: Dict[str, ConfigDumper] = {
    ".json": _dump_json,
    ".yaml": _dump_yaml,
    ".yml": _dump_yaml,
}
"""Mapping of file suffixes to writer callables. TOML is read-only."""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``.

    An empty YAML document decodes to an empty mapping.
    """

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS)) or "<none>"
        raise ValueError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )

    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    with path.open(mode, **kwargs) as handle:
        data = loader(handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")

    return data


def save_config_file(path: Path, data: Mapping[str, Any]) -> None:
    """Serialize ``data`` to ``path`` using the writer registered for its suffix."""

    suffix = path.suffix.lower()
    dumper = FILE_DUMPERS.get(suffix)
    if dumper is None:
        supported = ", ".join(sorted(FILE_DUMPERS)) or "<none>"
        raise ValueError(
            f"Cannot write configuration files with extension {suffix}. Supported: {supported}"
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        dumper(data, handle)
    tmp_path.replace(path)


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce ``value`` into a list of trimmed strings."""

    if value is None:
        return []

    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []

    if isinstance(value, Sequence):
        items: List[str] = []
        for item in value:
            if not isinstance(item, (str, bytes, int, float)) or isinstance(item, bool):
                label = f"{field_name} " if field_name else ""
                raise TypeError(f"{label}entries must be strings")
            text = str(item).strip()
            if text:
                items.append(text)
        return items

    label = f"{field_name} " if field_name else ""
    raise TypeError(f"{label}must be a string or sequence of strings")


def normalize_string_mapping(value: Any, *, field_name: str | None = None) -> Dict[str, str]:
    """Coerce ``value`` into a ``str -> str`` mapping, stringifying scalar values."""

    if value is None:
        return {}
    if not isinstance(value, Mapping):
        label = f"{field_name} " if field_name else ""
        raise TypeError(f"{label}must be a mapping")

    result: Dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, (Mapping, list, tuple)):
            label = f"{field_name}." if field_name else ""
            raise TypeError(f"{label}{key} must be a scalar value")
        if isinstance(item, bool):
            text = "true" if item else "false"
        elif item is None:
            text = ""
        else:
            text = str(item)
        result[str(key)] = text
    return result


__all__ = [
    "ConfigDumper",
    "ConfigLoader",
    "FILE_DUMPERS",
    "FILE_LOADERS",
    "load_config_file",
    "normalize_string_list",
    "normalize_string_mapping",
    "save_config_file",
]
