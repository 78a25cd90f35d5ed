"""Main secret resolver - resolves ${secret:provider:key} patterns in config."""

import logging
import re
from typing import Any, Dict, Mapping, Optional, Union

from core.secrets.base import SecretProvider
from core.secrets.exceptions import SecretBackendError, SecretConfigError, SecretError
from core.secrets.registry import ProviderRegistry, default_registry
from core.secrets.types import Metadata, Reference, SecretValue
from core.utils.decorators import log_time

logger = logging.getLogger(__name__)

SECRET_PATTERN = re.compile(r"\$\{secret:([^}]+)\}")


class SecretResolver:
    """
    Front door over a set of configured providers.

    Resolves Reference objects, "provider:key" strings and
    ${secret:provider:key} placeholders. Values are fetched on every call
    and never cached.

    Usage:
        resolver = SecretResolver.from_config(ConfigLoader("secrets.yaml").load())
        config = resolver.resolve_config({"password": "${secret:vault:myapp/db#password}"})
    """

    def __init__(
        self,
        providers: Mapping[str, SecretProvider],
        default_provider: Optional[str] = None,
    ):
        if default_provider is not None and default_provider not in providers:
            raise SecretConfigError(
                "default_provider",
                f"'{default_provider}' is not a configured provider",
                f"Use one of: {', '.join(sorted(providers)) or 'none'}",
            )
        self.providers: Dict[str, SecretProvider] = dict(providers)
        self.default_provider = default_provider
        logger.info(f"Initialized SecretResolver with providers: {', '.join(self.providers)}")

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], registry: Optional[ProviderRegistry] = None
    ) -> "SecretResolver":
        """
        Build every provider listed under ``providers`` through the registry.

        Args:
            config: Loaded configuration (see ConfigLoader)
            registry: Registry to build from; defaults to all built-in backends
        """
        registry = registry or default_registry()
        providers = {
            name: registry.create_provider(name, entry)
            for name, entry in (config.get("providers") or {}).items()
        }
        return cls(providers, default_provider=config.get("default_provider"))

    def get_provider(self, name: str) -> SecretProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise SecretBackendError(
                message=f"Unknown provider: {name}",
                suggestion=f"Configured providers: {', '.join(sorted(self.providers)) or 'none'}",
            )
        return provider

    def _split(self, reference: Union[Reference, str]) -> Reference:
        """
        Turn a "provider:key" string into a Reference.

        When the head is not a configured provider the whole string is a key
        for the default provider.
        """
        if isinstance(reference, Reference):
            return reference

        head, sep, key = reference.partition(":")
        if sep and head in self.providers:
            return Reference(provider=head, key=key)
        if self.default_provider:
            return Reference(provider=self.default_provider, key=reference)
        raise SecretBackendError(
            message=f"Cannot tell which provider '{reference}' belongs to",
            suggestion=(
                "Prefix the key with a configured provider "
                f"({', '.join(sorted(self.providers))}) or set default_provider"
            ),
        )

    def resolve(self, reference: Union[Reference, str]) -> SecretValue:
        ref = self._split(reference)
        return self.get_provider(ref.provider).resolve(ref.key)

    def describe(self, reference: Union[Reference, str]) -> Metadata:
        ref = self._split(reference)
        return self.get_provider(ref.provider).describe(ref.key)

    def resolve_value(self, value: str) -> str:
        """Resolve ${secret:provider:key} patterns in a string."""
        if not isinstance(value, str):
            return value

        def replace_match(match):
            return self.resolve(match.group(1)).value

        return SECRET_PATTERN.sub(replace_match, value)

    def resolve_config(self, config: Any) -> Any:
        """Recursively resolve all secrets in a config structure."""
        if isinstance(config, dict):
            return {k: self.resolve_config(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self.resolve_config(item) for item in config]
        elif isinstance(config, str):
            return self.resolve_value(config)
        else:
            return config

    @log_time(label="provider validation")
    def validate_all(self) -> Dict[str, SecretError]:
        """
        Validate every provider.

        Returns:
            Provider name -> error, for each provider that failed
        """
        failures: Dict[str, SecretError] = {}
        for name, provider in self.providers.items():
            try:
                provider.validate()
            except SecretError as e:
                logger.warning(f"Provider '{name}' failed validation")
                failures[name] = e
        return failures

    def health_check(self) -> bool:
        """Check if every provider is healthy."""
        return not self.validate_all()
