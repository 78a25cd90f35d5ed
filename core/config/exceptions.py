"""Exceptions raised while loading provider configuration."""

from pathlib import Path
from typing import Optional, Union


class ConfigError(Exception):
    """
    Base exception for provider config loading.

    Attributes:
        path: Config file involved, when known
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None


class ConfigNotFoundError(ConfigError):
    """The config file (or its environment overlay) doesn't exist."""


class ConfigParseError(ConfigError):
    """The file is not valid YAML or its top level is not a mapping."""


class ConfigValidationError(ConfigError):
    """A malformed providers section or an unset ${env:VAR}."""

    def __init__(self, message: str, path=None, provider: Optional[str] = None):
        super().__init__(message, path)
        self.provider = provider
