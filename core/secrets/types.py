"""Value types shared by parsers, providers and routers."""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Union


def _freeze(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Reference:
    """A secret reference addressed to one configured provider."""

    provider: str
    key: str

    @classmethod
    def parse(cls, text: str) -> "Reference":
        """Split ``"provider:key"`` at the first colon."""
        provider, sep, key = text.partition(":")
        if not sep or not provider or not key:
            raise ValueError(f"Reference must look like 'provider:key', got '{text}'")
        return cls(provider=provider, key=key)

    def __str__(self) -> str:
        return f"{self.provider}:{self.key}"


@dataclass(frozen=True)
class StructuredReference:
    """
    Parsed form of a raw key.

    Attributes:
        name: Secret/item/parameter name, never empty
        version: Requested version, None means latest
        field: Nested field or JSON-path selector
        folder: Hierarchical prefix for backends that split path and name
    """

    name: str
    version: Optional[Union[int, str]] = None
    field: Optional[str] = None
    folder: Optional[str] = None


@dataclass(frozen=True)
class SecretValue:
    """A resolved secret. Built fresh on every resolve, never cached."""

    value: str
    version: Optional[str] = None
    updated_at: Optional[datetime] = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    def __repr__(self) -> str:
        return (
            f"SecretValue(value='***', version={self.version!r}, "
            f"updated_at={self.updated_at!r})"
        )


@dataclass(frozen=True)
class Metadata:
    """Describes a secret without exposing its value."""

    exists: bool
    version: Optional[str] = None
    updated_at: Optional[datetime] = None
    size: Optional[int] = None
    type: Optional[str] = None
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tags", _freeze(self.tags))


@dataclass(frozen=True)
class RawSecret:
    """What a backend adapter hands back before the provider wraps it."""

    value: str
    version: Optional[str] = None
    updated_at: Optional[datetime] = None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Capabilities:
    """Static feature declaration of a provider type."""

    supports_versioning: bool = False
    supports_metadata: bool = False
    supports_watching: bool = False
    supports_binary: bool = False
    requires_auth: bool = False
    auth_methods: frozenset = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "auth_methods", frozenset(self.auth_methods))

    def union(self, other: "Capabilities") -> "Capabilities":
        """A capability is present if either side offers it."""
        return Capabilities(
            supports_versioning=self.supports_versioning or other.supports_versioning,
            supports_metadata=self.supports_metadata or other.supports_metadata,
            supports_watching=self.supports_watching or other.supports_watching,
            supports_binary=self.supports_binary or other.supports_binary,
            requires_auth=self.requires_auth or other.requires_auth,
            auth_methods=self.auth_methods | other.auth_methods,
        )

    def as_dict(self) -> dict:
        return {
            "supports_versioning": self.supports_versioning,
            "supports_metadata": self.supports_metadata,
            "supports_watching": self.supports_watching,
            "supports_binary": self.supports_binary,
            "requires_auth": self.requires_auth,
            "auth_methods": sorted(self.auth_methods),
        }
