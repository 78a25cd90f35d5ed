"""Tests for the generic adapter-backed provider."""

import threading
import time
from unittest.mock import MagicMock

import httpx
import pytest

from core.secrets.base import BackendAdapter
from core.secrets.exceptions import (
    AdapterError,
    SecretAuthError,
    SecretBackendError,
    SecretNotFoundError,
)
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_akeyless_reference, parse_plain_reference
from core.secrets.types import Capabilities, Metadata, RawSecret, Reference
from monitoring.definitions import SECRET_AUTH


class FakeAdapter(BackendAdapter):
    """In-memory adapter that records calls."""

    token_based = True

    def __init__(self, values=None, auth_delay: float = 0.0):
        self.values = values or {}
        self.auth_delay = auth_delay
        self.auth_calls = 0
        self.tokens_seen = []
        self.error = None
        self._lock = threading.Lock()

    def authenticate(self):
        with self._lock:
            self.auth_calls += 1
            n = self.auth_calls
        time.sleep(self.auth_delay)
        return f"token-{n}", 3600

    def get_secret(self, token, ref):
        self.tokens_seen.append(token)
        if self.error:
            raise self.error
        if ref.name not in self.values:
            raise AdapterError("get", "item not found", path=ref.name, status_code=404)
        value = self.values[ref.name]
        if ref.version is not None:
            value = f"{value}-v{ref.version}"
        return RawSecret(value=value, version=str(ref.version) if ref.version else None)

    def describe_item(self, token, ref):
        if self.error:
            raise self.error
        if ref.name not in self.values:
            raise AdapterError("describe", "item not found", status_code=404)
        return Metadata(exists=True, size=len(self.values[ref.name]))

    def list_items(self, token, path=None, limit=None):
        if self.error:
            raise self.error
        return sorted(self.values)[:limit]


def make_provider(adapter, parser=parse_plain_reference, backend="generic"):
    return AdapterProvider("fake", adapter, parser, Capabilities(requires_auth=True), backend=backend)


class TestResolve:
    """Tests for AdapterProvider.resolve."""

    def test_resolve_versioned_reference(self):
        """Should parse the version and pass it to the adapter."""
        # Arrange
        adapter = FakeAdapter({"/item": "secret"})
        provider = make_provider(adapter, parser=parse_akeyless_reference)

        # Act
        result = provider.resolve("item@v3")

        # Assert
        assert result.value == "secret-v3"
        assert result.version == "3"
        assert result.metadata["provider"] == "fake"

    def test_resolve_accepts_reference_object(self):
        provider = make_provider(FakeAdapter({"DB": "pw"}))

        assert provider.resolve(Reference("fake", "DB")).value == "pw"

    def test_missing_secret_raises_not_found(self):
        provider = make_provider(FakeAdapter())

        with pytest.raises(SecretNotFoundError) as exc_info:
            provider.resolve("MISSING")

        assert exc_info.value.key == "MISSING"
        assert exc_info.value.provider == "fake"

    def test_auth_error_clears_token_cache(self):
        """Next call re-authenticates after an auth failure."""
        # Arrange
        adapter = FakeAdapter({"DB": "pw"})
        provider = make_provider(adapter)
        provider.resolve("DB")
        adapter.error = AdapterError("get", "invalid token", status_code=401)

        # Act
        with pytest.raises(SecretAuthError):
            provider.resolve("DB")
        adapter.error = None
        provider.resolve("DB")

        # Assert
        assert adapter.auth_calls == 2
        assert adapter.tokens_seen[-1] == "token-2"

    def test_other_errors_become_backend_errors(self):
        """Should wrap unclassified errors with a suggestion."""
        adapter = FakeAdapter({"DB": "pw"})
        adapter.error = AdapterError("get", "connection refused")
        provider = make_provider(adapter)

        with pytest.raises(SecretBackendError) as exc_info:
            provider.resolve("DB")

        assert "Unable to connect" in exc_info.value.suggestion
        assert isinstance(exc_info.value.cause, AdapterError)

    def test_token_reused_between_calls(self):
        adapter = FakeAdapter({"A": "1", "B": "2"})
        provider = make_provider(adapter)

        provider.resolve("A")
        provider.resolve("B")

        assert adapter.auth_calls == 1
        assert adapter.tokens_seen == ["token-1", "token-1"]

    def test_concurrent_resolves_authenticate_once(self):
        """N threads racing on a cold cache trigger exactly one authentication."""
        # Arrange
        adapter = FakeAdapter({"DB": "pw"}, auth_delay=0.05)
        provider = make_provider(adapter)
        results = []

        def worker():
            results.append(provider.resolve("DB").value)

        threads = [threading.Thread(target=worker) for _ in range(10)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert adapter.auth_calls == 1
        assert results == ["pw"] * 10

    def test_rejected_credentials_are_auth_error(self):
        """A 401 from the login call is an auth failure and is counted."""
        # Arrange
        adapter = FakeAdapter()
        adapter.authenticate = MagicMock(side_effect=AdapterError("login", "invalid credentials", status_code=401))
        provider = make_provider(adapter, backend="vault")
        failures = SECRET_AUTH.labels(provider="fake", outcome="error")._value.get()

        # Act
        with pytest.raises(SecretAuthError):
            provider.resolve("DB")

        # Assert
        assert SECRET_AUTH.labels(provider="fake", outcome="error")._value.get() == failures + 1

    def test_login_timeout_is_backend_error(self):
        """Network failures while logging in never surface as auth errors."""
        adapter = FakeAdapter({"DB": "pw"})
        adapter.authenticate = MagicMock(side_effect=httpx.ConnectTimeout("timed out"))
        provider = make_provider(adapter, backend="vault")
        failures = SECRET_AUTH.labels(provider="fake", outcome="error")._value.get()

        with pytest.raises(SecretBackendError) as exc_info:
            provider.resolve("DB")

        assert not isinstance(exc_info.value, SecretAuthError)
        assert "timed out" in exc_info.value.suggestion
        assert "authentication" in exc_info.value.message
        assert SECRET_AUTH.labels(provider="fake", outcome="error")._value.get() == failures + 1


class TestDescribe:
    """Tests for AdapterProvider.describe."""

    def test_missing_secret_is_not_an_error(self):
        """describe reports exists=False where resolve raises NotFound."""
        provider = make_provider(FakeAdapter())

        meta = provider.describe("MISSING")

        assert meta.exists is False
        with pytest.raises(SecretNotFoundError):
            provider.resolve("MISSING")

    def test_existing_secret(self):
        provider = make_provider(FakeAdapter({"DB": "password"}))

        meta = provider.describe("DB")

        assert meta.exists is True
        assert meta.size == 8


class TestValidate:
    """Tests for AdapterProvider.validate."""

    def test_validate_success(self):
        make_provider(FakeAdapter({"DB": "pw"})).validate()

    def test_validate_failure(self):
        adapter = FakeAdapter()
        adapter.error = AdapterError("list", "timed out")
        provider = make_provider(adapter)

        with pytest.raises(SecretBackendError):
            provider.validate()
