"""
Configuration utility functions
"""

from pathlib import Path
from typing import Any

import yaml

# config/providers/*.yaml ship next to config/settings.py
CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config" / "providers"


def config_path(filename: str) -> Path:
    """
    Resolve a config file name against config/providers/

    Absolute paths (and paths that exist relative to the cwd) are returned as-is.

    Example:
        >>> config_path("gateway.yaml")
        PosixPath('.../config/providers/gateway.yaml')
    """
    path = Path(filename)
    if path.is_absolute() or path.exists():
        return path
    return CONFIG_DIR / filename


def load_yaml(filepath: str | Path) -> dict[str, Any]:
    """
    Load YAML file and return as dictionary

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid

    Example:
        >>> config = load_yaml("gateway.yaml")
        >>> config["retry"]["max_attempts"]
        3
    """
    path = config_path(str(filepath))

    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {filepath}")

    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_yaml_safe(filepath: str | Path) -> dict[str, Any]:
    """
    Load YAML file with fallback to empty dict if missing or invalid

    Example:
        >>> load_yaml_safe("optional.yaml")
        {}
    """
    try:
        return load_yaml(filepath)
    except (FileNotFoundError, yaml.YAMLError):
        return {}


def get_nested(config: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Walk nested dicts, returning default on any missing level

    Example:
        >>> get_nested({"retry": {"max_attempts": 5}}, "retry", "max_attempts", default=3)
        5
        >>> get_nested({}, "retry", "max_attempts", default=3)
        3
    """
    node: Any = config
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node
