"""Provider registry with decorator pattern."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from core.secrets.base import SecretProvider
from core.secrets.exceptions import SecretConfigError
from core.utils.logging import get_logger

logger = get_logger(__name__)

ProviderFactory = Callable[[str, Mapping[str, Any]], SecretProvider]

# Filled by @register_provider when backends are imported
FACTORIES: Dict[str, ProviderFactory] = {}


def register_provider(type_name: str):
    """
    Decorator to register a provider factory under a type name.

    Usage:
        @register_provider("env")
        def create_env_provider(name, config):
            ...
    """

    def decorator(factory: ProviderFactory) -> ProviderFactory:
        FACTORIES[type_name] = factory
        return factory

    return decorator


@dataclass(frozen=True)
class ProviderConfig:
    """Type name plus the string-keyed settings of one configured provider."""

    type: str
    config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        """Accept ``{"type": "vault", "address": ...}`` as written in YAML."""
        if not isinstance(data, Mapping):
            raise SecretConfigError("type", "provider entry must be a mapping")
        type_name = data.get("type")
        if not type_name or not isinstance(type_name, str):
            raise SecretConfigError(
                "type", "missing provider type", "Add 'type: <provider-type>' to the provider entry"
            )
        return cls(type=type_name, config={k: v for k, v in data.items() if k != "type"})


class ProviderRegistry:
    """
    Table mapping provider type name -> factory.

    Built once at startup and frozen; tests build their own and pass it in.
    """

    def __init__(self, factories: Optional[Mapping[str, ProviderFactory]] = None):
        self._factories: Dict[str, ProviderFactory] = dict(factories or {})
        self._frozen = False

    def register_factory(self, type_name: str, factory: ProviderFactory) -> None:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen, cannot register '{type_name}'")
        self._factories[type_name] = factory

    def freeze(self) -> "ProviderRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def is_supported(self, type_name: str) -> bool:
        return type_name in self._factories

    def supported_types(self) -> List[str]:
        return sorted(self._factories)

    def create_provider(
        self, name: str, provider_config: Union[ProviderConfig, Mapping[str, Any]]
    ) -> SecretProvider:
        """
        Build a provider instance.

        Args:
            name: Configured provider name
            provider_config: ProviderConfig, or a mapping with a "type" key

        Raises:
            SecretConfigError: If the type is unknown or the settings are invalid
        """
        if not isinstance(provider_config, ProviderConfig):
            provider_config = ProviderConfig.from_mapping(provider_config)

        factory = self._factories.get(provider_config.type)
        if factory is None:
            raise SecretConfigError(
                "type",
                f"unknown provider type: {provider_config.type}",
                f"Supported types: {', '.join(self.supported_types()) or 'none'}",
            )

        provider = factory(name, provider_config.config)
        logger.debug(f"Created provider '{name}' of type '{provider_config.type}'")
        return provider


def default_registry() -> ProviderRegistry:
    """Frozen registry holding every built-in backend."""
    import backends  # noqa: F401  (registers the built-in factories)

    return ProviderRegistry(FACTORIES).freeze()
