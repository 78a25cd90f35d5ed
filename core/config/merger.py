"""Deep merge logic for configuration mappings."""

from typing import Any, Mapping


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict:
    """
    Deep merge two mappings. Override wins on conflicts.

    Used for environment overlays and for building a unified provider's
    per-service settings on top of its common settings.

    Args:
        base: Base configuration
        override: Configuration to merge on top

    Returns:
        New merged dictionary; neither input is modified

    Example:
        base = {"region": "us-east-1", "ssm": {"parameter_prefix": "/app"}}
        override = {"ssm": {"region": "eu-west-1"}}
        result = {"region": "us-east-1",
                  "ssm": {"parameter_prefix": "/app", "region": "eu-west-1"}}
    """
    result = dict(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result
