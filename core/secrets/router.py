"""Unified provider that routes one reference to one of several sub-providers."""

import re
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Sequence, Tuple

from core.secrets.base import ReferenceLike, SecretProvider, reference_key
from core.secrets.exceptions import SecretBackendError, SecretError
from core.secrets.types import Capabilities, Metadata, SecretValue
from core.utils.logging import get_logger

logger = get_logger(__name__)

# (service, predicate over the raw key)
RoutingRule = Tuple[str, Callable[[str], bool]]

ALIAS_SHAPE = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


class UnifiedRouter(SecretProvider):
    """
    Routes a reference to one named sub-provider.

    Precedence, first match wins:
        1. "<alias>:rest" for a registered alias -> forward "rest"
        2. structural rules, in order -> forward the key unchanged
        3. "<alias-shaped>:rest" that matched neither -> unknown service
        4. the default service -> forward the key unchanged

    A selected service with no configured sub-provider is an error; it never
    falls through to the default.

    Args:
        name: Configured provider name
        vendor: Label used in messages ("aws", "gcp", "azure")
        services: Service name -> configured sub-provider
        aliases: Alias -> service name (case-sensitive)
        rules: Ordered structural rules
        default_service: Service used when nothing else matches
    """

    def __init__(
        self,
        name: str,
        vendor: str,
        services: Mapping[str, SecretProvider],
        aliases: Mapping[str, str],
        rules: Sequence[RoutingRule] = (),
        default_service: str = "",
    ):
        self.name = name
        self.type_name = vendor
        self.vendor = vendor
        self.services = MappingProxyType(dict(services))
        self.aliases = MappingProxyType(
            {alias: service for alias, service in aliases.items() if service in self.services}
        )
        self.rules = tuple(rules)
        self.default_service = default_service

    def route(self, key: str) -> Tuple[str, SecretProvider, str]:
        """
        Select a sub-provider for ``key``.

        Returns:
            (service name, sub-provider, key to forward)

        Raises:
            SecretBackendError: If the selected service is unknown or not configured
        """
        head, sep, rest = key.partition(":")
        if sep and head in self.aliases:
            service = self.aliases[head]
            logger.debug(f"{self.name}: alias '{head}' -> {service}")
            return service, self.services[service], rest

        for service, predicate in self.rules:
            if predicate(key):
                logger.debug(f"{self.name}: structural rule -> {service}")
                return service, self._lookup(service), key

        if sep and ALIAS_SHAPE.fullmatch(head):
            raise self._unknown(head)

        return self.default_service, self._lookup(self.default_service), key

    def resolve(self, reference: ReferenceLike) -> SecretValue:
        _, provider, forwarded = self.route(reference_key(reference))
        return provider.resolve(forwarded)

    def describe(self, reference: ReferenceLike) -> Metadata:
        _, provider, forwarded = self.route(reference_key(reference))
        return provider.describe(forwarded)

    def capabilities(self) -> Capabilities:
        result = Capabilities()
        for provider in self._distinct():
            result = result.union(provider.capabilities())
        return result

    def validate(self) -> None:
        """Validate every distinct sub-provider and report all failures together."""
        failures: List[str] = []
        for service, provider in self.services.items():
            try:
                provider.validate()
            except SecretError as e:
                failures.append(f"{service}: {e}")
        if failures:
            raise SecretBackendError(
                message=f"One or more {self.vendor} services failed validation",
                suggestion=f"Check the configuration of: {', '.join(f.split(':', 1)[0] for f in failures)}",
                details="\n    ".join(failures),
            )

    def _lookup(self, service: str) -> SecretProvider:
        provider = self.services.get(service)
        if provider is None:
            raise self._unknown(service)
        return provider

    def _unknown(self, service: str) -> SecretBackendError:
        available = ", ".join(sorted(self.aliases)) or "none"
        return SecretBackendError(
            message=f"Unknown {self.vendor} service: {service}",
            suggestion=f"Available services: {available}",
        )

    def _distinct(self) -> List[SecretProvider]:
        seen: Dict[int, SecretProvider] = {}
        for provider in self.services.values():
            seen.setdefault(id(provider), provider)
        return list(seen.values())
