# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""YAML configuration file loader utilities.

Rule sets are configuration data: schools ship them as YAML files, either a
single file or a directory of files that are loaded in name order.

Example:
    >>> from pathlib import Path
    >>> from guardian_notify.core.config.yaml_loader import load_yaml_documents
    >>> documents = load_yaml_documents(Path("config/rules"))
"""

from pathlib import Path
from typing import Any

import yaml


class YAMLLoadError(Exception):
    """Raised when YAML file cannot be loaded or parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        """Initialize YAMLLoadError.

        Args:
            path: Path to the YAML file that failed to load.
            reason: Description of why the file failed to load.
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load YAML file '{path}': {reason}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file to load.

    Returns:
        Dictionary containing the parsed YAML contents.
        Empty dict if file is empty.

    Raises:
        YAMLLoadError: If the file doesn't exist, cannot be read,
            or contains invalid YAML.
    """
    if not path.exists():
        raise YAMLLoadError(path, "File does not exist")

    if not path.is_file():
        raise YAMLLoadError(path, "Path is not a file")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise YAMLLoadError(path, f"Cannot read file: {e}") from e

    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise YAMLLoadError(path, f"Invalid YAML syntax: {e}") from e

    if parsed is None:
        return {}

    if not isinstance(parsed, dict):
        raise YAMLLoadError(
            path, f"YAML root must be a mapping, got {type(parsed).__name__}"
        )

    return parsed


def load_yaml_documents(path: Path) -> list[dict[str, Any]]:
    """Load one YAML file, or every ``.yaml``/``.yml`` file in a directory.

    Directory entries are returned sorted by file name so that later files
    can override earlier ones deterministically.

    Args:
        path: File or directory path.

    Returns:
        List of parsed mappings, one per file.

    Raises:
        YAMLLoadError: If the path is missing or any file fails to load.
    """
    if not path.exists():
        raise YAMLLoadError(path, "Path does not exist")

    if path.is_file():
        return [load_yaml(path)]

    yaml_files = sorted(
        [*path.glob("*.yaml"), *path.glob("*.yml")],
        key=lambda p: p.name,
    )
    return [load_yaml(yaml_file) for yaml_file in yaml_files if yaml_file.is_file()]


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Nested dictionaries are merged recursively. For non-dict values
    (lists included) the override value replaces the base value.

    Args:
        base: The base dictionary to merge into.
        override: The dictionary whose values take precedence.

    Returns:
        A new dictionary; neither input is modified.

    Example:
        >>> deep_merge({"delay_window": {"delay_minutes": 30}}, {"delay_window": {"delay_minutes": 45}})
        {'delay_window': {'delay_minutes': 45}}
    """
    result: dict[str, Any] = base.copy()

    for key, override_value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(override_value, dict)
        ):
            result[key] = deep_merge(result[key], override_value)
        else:
            result[key] = override_value

    return result
