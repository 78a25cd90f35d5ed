"""Abstract base classes for secret providers and backend adapters."""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Union

from core.secrets.types import (
    Capabilities,
    Metadata,
    RawSecret,
    Reference,
    SecretValue,
    StructuredReference,
)

ReferenceLike = Union[Reference, str]


def reference_key(reference: ReferenceLike) -> str:
    """The provider-local key of a reference (a bare string is already a key)."""
    return reference.key if isinstance(reference, Reference) else reference


class SecretProvider(ABC):
    """
    Uniform contract every configured provider implements.

    This ensures a consistent interface across:
    - Environment variables and local files
    - HashiCorp Vault, Akeyless, Infisical, Doppler
    - AWS, GCP and Azure secret services
    - Password-manager CLIs (bw, op, pass)

    Attributes:
        name: Configured provider name (e.g. "prod-vault")
        type_name: Registry type (e.g. "vault")
    """

    name: str = ""
    type_name: str = ""

    @abstractmethod
    def resolve(self, reference: ReferenceLike) -> SecretValue:
        """
        Fetch a secret value.

        Args:
            reference: Reference or provider-local key

        Returns:
            Freshly built SecretValue

        Raises:
            SecretNotFoundError: If the secret doesn't exist
            SecretAuthError: If the backend rejects our credentials
            SecretBackendError: For any other operational failure
        """
        pass

    @abstractmethod
    def describe(self, reference: ReferenceLike) -> Metadata:
        """
        Describe a secret without exposing its value.

        A missing secret is reported as ``Metadata(exists=False)``.
        """
        pass

    @abstractmethod
    def capabilities(self) -> Capabilities:
        pass

    @abstractmethod
    def validate(self) -> None:
        """
        Cheapest authenticated round-trip. Never mutates the backend.

        Raises:
            SecretError: If the provider is not usable
        """
        pass


class BackendAdapter(ABC):
    """
    Thin I/O layer against one concrete secret system.

    Adapters raise whatever their client raises (or AdapterError); the
    owning provider classifies it. Token-based adapters set ``token_based``
    and implement ``authenticate``; the others receive ``token=None``.
    """

    token_based: bool = False

    def authenticate(self) -> Tuple[str, float]:
        """
        Returns:
            (token, ttl_seconds)
        """
        raise NotImplementedError(f"{type(self).__name__} does not authenticate")

    @abstractmethod
    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        pass

    @abstractmethod
    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        pass

    @abstractmethod
    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        pass
