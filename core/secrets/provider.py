"""Generic provider: parser + token cache + adapter + error classifier."""

import threading
from typing import Callable, Optional

from core.secrets.base import BackendAdapter, ReferenceLike, SecretProvider, reference_key
from core.secrets.classify import ErrorClassifier, ErrorKind, classifier_for
from core.secrets.exceptions import (
    SecretAuthError,
    SecretBackendError,
    SecretError,
    SecretNotFoundError,
)
from core.secrets.token_cache import TokenCache
from core.secrets.types import Capabilities, Metadata, SecretValue, StructuredReference
from core.utils.logging import get_logger, mask
from monitoring import Metrics, track_time

logger = get_logger(__name__)

Parser = Callable[[str], StructuredReference]


class AdapterProvider(SecretProvider):
    """
    Binds one reference parser, one token cache, one adapter and one error
    classifier behind the uniform provider contract.

    Usage:
        provider = AdapterProvider(
            "prod-akeyless", AkeylessAdapter(...), parse_akeyless_reference,
            capabilities=AKEYLESS_CAPABILITIES, backend="akeyless",
        )
        provider.resolve("/prod/db/password@v2")
    """

    def __init__(
        self,
        name: str,
        adapter: BackendAdapter,
        parser: Parser,
        capabilities: Capabilities = Capabilities(),
        backend: str = "generic",
        classifier: Optional[ErrorClassifier] = None,
        token_cache: Optional[TokenCache] = None,
    ):
        self.name = name
        self.type_name = backend
        self.adapter = adapter
        self.parser = parser
        self.classifier = classifier or classifier_for(backend)
        self.token_cache = token_cache or TokenCache()
        self._capabilities = capabilities
        self._auth_lock = threading.Lock()

    # ============================================================
    # CONTRACT
    # ============================================================

    def resolve(self, reference: ReferenceLike) -> SecretValue:
        key = reference_key(reference)
        ref = self.parser(key)

        def fetch(token):
            raw = self.adapter.get_secret(token, ref)
            metadata = dict(raw.metadata)
            metadata["provider"] = self.name
            return SecretValue(
                value=raw.value,
                version=raw.version,
                updated_at=raw.updated_at,
                metadata=metadata,
            )

        return self._run("resolve", key, fetch)

    def describe(self, reference: ReferenceLike) -> Metadata:
        key = reference_key(reference)
        ref = self.parser(key)
        try:
            return self._run("describe", key, lambda token: self.adapter.describe_item(token, ref))
        except SecretNotFoundError:
            return Metadata(exists=False)

    def capabilities(self) -> Capabilities:
        return self._capabilities

    def validate(self) -> None:
        self._run("validate", "", lambda token: self.adapter.list_items(token, None, limit=1))
        logger.info(f"Provider '{self.name}' validated")

    # ============================================================
    # INTERNALS
    # ============================================================

    def _run(self, operation: str, key: str, call):
        """Run one adapter call with token handling, metrics and error normalization."""
        outcome = "error"
        timing = {"duration": 0.0}
        try:
            with track_time() as timing:
                token = self._get_token()
                result = call(token)
            outcome = "success"
            return result
        except SecretNotFoundError:
            outcome = "not_found"
            raise
        except SecretAuthError:
            outcome = "auth_error"
            self.token_cache.clear()
            raise
        except SecretError:
            raise
        except Exception as e:
            kind = self.classifier.classify(e)
            if kind is ErrorKind.NOT_FOUND:
                outcome = "not_found"
                raise SecretNotFoundError(self.name, key) from e
            if kind is ErrorKind.AUTH:
                outcome = "auth_error"
                self.token_cache.clear()
                raise SecretAuthError(self.name, str(e)) from e
            logger.warning(f"{self.name}: {operation} failed: {type(e).__name__}")
            raise SecretBackendError(
                message=f"{self.name} provider error during {operation}",
                suggestion=self.classifier.suggest(e),
                details=str(e),
                cause=e,
            ) from e
        finally:
            Metrics.operation(self.name, operation, outcome, latency=timing["duration"])

    def _get_token(self) -> Optional[str]:
        """
        Return a valid token, authenticating at most once across threads.

        Non-token adapters get None.
        """
        if not self.adapter.token_based:
            return None

        token = self.token_cache.get()
        if token is not None:
            Metrics.token_cache(self.name, hit=True)
            return token

        with self._auth_lock:
            # Another caller may have refreshed while we waited
            token = self.token_cache.get()
            if token is not None:
                Metrics.token_cache(self.name, hit=True)
                return token

            Metrics.token_cache(self.name, hit=False)
            logger.debug(f"{self.name}: authenticating")
            try:
                token, ttl = self.adapter.authenticate()
            except SecretError:
                Metrics.auth(self.name, success=False)
                raise
            except Exception as e:
                Metrics.auth(self.name, success=False)
                raise self._authentication_error(e) from e
            Metrics.auth(self.name, success=True)
            self.token_cache.set(token, ttl)
            logger.debug(f"{self.name}: authenticated, token {mask(token)} valid for {ttl:.0f}s")
            return token

    def _authentication_error(self, exc: Exception) -> SecretError:
        """Only rejected credentials are auth errors; timeouts and outages are operational."""
        if self.classifier.classify(exc) is ErrorKind.AUTH:
            self.token_cache.clear()
            return SecretAuthError(self.name, str(exc))
        logger.warning(f"{self.name}: authentication request failed: {type(exc).__name__}")
        return SecretBackendError(
            message=f"{self.name} provider error during authentication",
            suggestion=self.classifier.suggest(exc),
            details=str(exc),
            cause=exc,
        )
