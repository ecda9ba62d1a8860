"""
Configuration file loading.

Loads config.yaml (plus config.{env}.yaml) and applies placeholder resolution.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from flashsync.config.resolver import resolve_config
from flashsync.exceptions import ConfigurationError


class Config:
    """flashsync configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key.split(".")
        value = self.data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def section(self, key: str) -> dict[str, Any]:
        """Get a nested mapping, empty when missing."""
        value = self.get(key, {})
        if not isinstance(value, dict):
            raise ConfigurationError(
                f"Configuration '{key}' must be a mapping, got {type(value).__name__}",
                details={"key": key},
            )
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a value using dot notation, creating intermediate mappings."""
        keys = key.split(".")
        target = self.data
        for k in keys[:-1]:
            nxt = target.get(k)
            if not isinstance(nxt, dict):
                nxt = {}
                target[k] = nxt
            target = nxt
        target[keys[-1]] = value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if isinstance(key, str) and "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        if isinstance(key, str) and "." in key:
            value = self.data
            for k in key.split("."):
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> "Iterator[str]":
        """Iterate over top-level keys."""
        return iter(self.data)

    def keys(self):
        return self.data.keys()

    def items(self):
        return self.data.items()


def load_config(project_path: Path | None = None, env: str | None = None, *, required: bool = False) -> Config:
    """
    Load flashsync configuration.

    Reads config.yaml and config.{env}.yaml from the project directory and
    resolves ``${VAR}`` / ``{env}`` placeholders. A missing config.yaml yields
    an empty configuration unless ``required`` is set, since a deployment may
    be configured through environment variables alone.

    Args:
        project_path: Path to project root (default: current directory)
        env: Environment name (dev, staging, prod)
        required: Raise if config.yaml is missing

    Returns:
        Config instance with merged configuration

    Raises:
        ConfigurationError: If a config file cannot be parsed, or is missing while required
    """
    if project_path is None:
        project_path = Path.cwd()

    base_config_path = project_path / "config.yaml"
    config_data: dict[str, Any] = {}
    if base_config_path.is_file():
        config_data = _read_yaml(base_config_path)
    elif required:
        raise ConfigurationError(
            f"Configuration file not found: {base_config_path}\n"
            f"  Suggestion: Create a config.yaml file in your project root",
            details={"path": str(base_config_path)},
        )

    if env:
        env_config_path = project_path / f"config.{env}.yaml"
        if env_config_path.is_file():
            _merge_dict(config_data, _read_yaml(env_config_path))

    return Config(resolve_config(config_data, env or "dev"))


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        raise ConfigurationError(
            f"Error parsing {path.name}{where}:\n"
            f"  {e}\n"
            f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes",
            details={"path": str(path)},
        ) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration in {path.name} must be a mapping, got {type(data).__name__}",
            details={"path": str(path)},
        )
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
