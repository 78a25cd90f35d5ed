"""Typed accessors for provider settings."""

from typing import Any, Mapping, Optional

from core.secrets.exceptions import SecretConfigError


def require_str(config: Mapping[str, Any], field: str, suggestion: str = "") -> str:
    """
    Fetch a mandatory non-empty string setting.

    Raises:
        SecretConfigError: If the field is missing, empty or not a string
    """
    value = config.get(field)
    if value is None or value == "":
        raise SecretConfigError(
            field, "required setting is missing", suggestion or f"Add '{field}' to the provider config"
        )
    if not isinstance(value, str):
        raise SecretConfigError(field, f"expected a string, got {type(value).__name__}", suggestion)
    return value


def get_str(config: Mapping[str, Any], field: str, default: Optional[str] = None) -> Optional[str]:
    value = config.get(field)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise SecretConfigError(field, f"expected a string, got {type(value).__name__}")
    return value


def get_bool(config: Mapping[str, Any], field: str, default: bool = False) -> bool:
    """Accepts YAML booleans and the strings true/false/yes/no/1/0."""
    value = config.get(field)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "no", "0"):
        return False
    raise SecretConfigError(field, f"expected a boolean, got '{value}'", "Use true or false")


def get_int(config: Mapping[str, Any], field: str, default: Optional[int] = None) -> Optional[int]:
    value = config.get(field)
    if value is None:
        return default
    if isinstance(value, bool):
        raise SecretConfigError(field, "expected an integer, got a boolean")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SecretConfigError(field, f"expected an integer, got '{value}'")


def get_float(config: Mapping[str, Any], field: str, default: Optional[float] = None) -> Optional[float]:
    value = config.get(field)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SecretConfigError(field, f"expected a number, got '{value}'")


def get_mapping(config: Mapping[str, Any], field: str) -> dict:
    """A nested section; absent means empty."""
    value = config.get(field)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise SecretConfigError(field, f"expected a mapping, got {type(value).__name__}")
    return dict(value)
