"""Secrets management module."""

# Public API
from core.secrets.resolver import SecretResolver
from core.secrets.exceptions import (
    SecretError,
    SecretNotFoundError,
    SecretAuthError,
    SecretConfigError,
    SecretBackendError,
    ReferenceParseError,
)
from core.secrets.registry import ProviderRegistry, register_provider, default_registry
from core.secrets.types import Reference, SecretValue, Metadata, Capabilities

__all__ = [
    "SecretResolver",
    "SecretError",
    "SecretNotFoundError",
    "SecretAuthError",
    "SecretConfigError",
    "SecretBackendError",
    "ReferenceParseError",
    "ProviderRegistry",
    "register_provider",
    "default_registry",
    "Reference",
    "SecretValue",
    "Metadata",
    "Capabilities",
]
