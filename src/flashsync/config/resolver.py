"""
Configuration resolution and environment variable substitution.

Substitutes ``${VAR_NAME}`` and ``{env}`` placeholders in loaded settings.
"""

import os
import re
from typing import Any

_VAR_PATTERN = re.compile(r"\${([^}:]+)(?::-([^}]*))?}")


def resolve_config(config_data: dict[str, Any], env: str = "dev") -> dict[str, Any]:
    """
    Resolve configuration with environment variable substitution.

    ``${VAR}`` is replaced by the variable's value and left untouched when the
    variable is unset; ``${VAR:-default}`` falls back to ``default``.

    Args:
        config_data: Configuration dictionary
        env: Current environment name

    Returns:
        Resolved configuration
    """
    return _resolve_value(config_data, env)


def _substitute(match: re.Match) -> str:
    value = os.getenv(match.group(1))
    if value is not None:
        return value
    if match.group(2) is not None:
        return match.group(2)
    return match.group(0)


def _resolve_value(value: Any, env: str) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v, env) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_value(item, env) for item in value]
    elif isinstance(value, str):
        result = _VAR_PATTERN.sub(_substitute, value)
        return result.replace("{env}", env)
    else:
        return value
