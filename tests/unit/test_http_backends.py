"""Tests for Doppler, Infisical and Akeyless backends over httpx.MockTransport."""

import json

import httpx
import pytest

from backends.akeyless import create_akeyless_provider
from backends.doppler import create_doppler_provider
from backends.infisical import create_infisical_provider
from core.secrets.exceptions import (
    SecretAuthError,
    SecretBackendError,
    SecretConfigError,
    SecretNotFoundError,
)


def mock_client(handler, base_url="https://api.example.test", headers=None) -> httpx.Client:
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler), headers=headers or {})


class TestDoppler:
    """Tests for the doppler provider."""

    def test_resolve(self):
        """Should query the secret endpoint with project and config."""
        # Arrange
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["path"] = request.url.path
            return httpx.Response(200, json={"name": "DB_URL", "value": {"raw": "${X}", "computed": "postgres://db"}})

        provider = create_doppler_provider(
            "doppler", {"token": "dp.st.x", "project": "api", "config": "prd"}, client=mock_client(handler)
        )

        # Act
        result = provider.resolve("DB_URL")

        # Assert
        assert result.value == "postgres://db"
        assert seen["path"] == "/v3/configs/config/secret"
        assert seen["params"] == {"project": "api", "config": "prd", "name": "DB_URL"}

    def test_json_selector(self):
        def handler(request):
            return httpx.Response(200, json={"value": {"computed": json.dumps({"user": "app"})}})

        provider = create_doppler_provider("doppler", {"token": "t"}, client=mock_client(handler))

        assert provider.resolve("DB#.user").value == "app"

    def test_not_found(self):
        provider = create_doppler_provider(
            "doppler",
            {"token": "t"},
            client=mock_client(lambda r: httpx.Response(404, json={"messages": ["Could not find requested secret"]})),
        )

        with pytest.raises(SecretNotFoundError):
            provider.resolve("NOPE")

    def test_token_required(self, monkeypatch):
        monkeypatch.delenv("DOPPLER_TOKEN", raising=False)

        with pytest.raises(SecretConfigError):
            create_doppler_provider("doppler", {})

    def test_list_sorted(self):
        provider = create_doppler_provider(
            "doppler",
            {"token": "t"},
            client=mock_client(lambda r: httpx.Response(200, json={"names": ["B", "A"]})),
        )

        assert provider.adapter.list_items(None) == ["A", "B"]


class TestInfisical:
    """Tests for the infisical provider."""

    CONFIG = {
        "project_id": "proj-1",
        "environment": "prod",
        "auth": {"method": "machine_identity", "client_id": "cid", "client_secret": "cs"},
    }

    def test_login_then_fetch(self):
        """Should log in once and send the bearer token with each fetch."""
        # Arrange
        calls = []

        def handler(request):
            calls.append(request)
            if request.url.path == "/api/v1/auth/universal-auth/login":
                return httpx.Response(200, json={"accessToken": "at-1", "expiresIn": 7200})
            return httpx.Response(
                200,
                json={"secret": {"secretKey": "DB_URL", "secretValue": "postgres://db", "version": 4}},
            )

        provider = create_infisical_provider("inf", self.CONFIG, client=mock_client(handler))

        # Act
        first = provider.resolve("backend/DB_URL")
        provider.resolve("backend/DB_URL")

        # Assert
        assert first.value == "postgres://db"
        assert first.version == "4"
        logins = [c for c in calls if c.url.path.endswith("/login")]
        assert len(logins) == 1
        fetch = calls[1]
        assert fetch.url.path == "/api/v3/secrets/raw/DB_URL"
        assert fetch.url.params["secretPath"] == "/backend"
        assert fetch.url.params["workspaceId"] == "proj-1"
        assert fetch.headers["Authorization"] == "Bearer at-1"

    def test_version_parameter(self):
        seen = {}

        def handler(request):
            if request.url.path.endswith("/login"):
                return httpx.Response(200, json={"accessToken": "at", "expiresIn": 60})
            seen.update(request.url.params)
            return httpx.Response(200, json={"secret": {"secretValue": "old"}})

        provider = create_infisical_provider("inf", self.CONFIG, client=mock_client(handler))
        provider.resolve("API_KEY@v2")

        assert seen["version"] == "2"
        assert seen["secretPath"] == "/"

    def test_unauthorized_clears_token(self):
        """A 401 on fetch is an auth error and forces a fresh login."""
        # Arrange
        state = {"logins": 0, "fail": True}

        def handler(request):
            if request.url.path.endswith("/login"):
                state["logins"] += 1
                return httpx.Response(200, json={"accessToken": f"at-{state['logins']}", "expiresIn": 3600})
            if state["fail"]:
                return httpx.Response(401, json={"message": "Token expired"})
            return httpx.Response(200, json={"secret": {"secretValue": "ok"}})

        provider = create_infisical_provider("inf", self.CONFIG, client=mock_client(handler))

        # Act
        with pytest.raises(SecretAuthError):
            provider.resolve("X")
        state["fail"] = False
        result = provider.resolve("X")

        # Assert
        assert result.value == "ok"
        assert state["logins"] == 2

    def test_service_token_skips_login(self):
        def handler(request):
            assert not request.url.path.endswith("/login")
            assert request.headers["Authorization"] == "Bearer st.abc"
            return httpx.Response(200, json={"secret": {"secretValue": "v"}})

        config = {"project_id": "p", "environment": "dev", "auth": {"method": "service_token", "service_token": "st.abc"}}
        provider = create_infisical_provider("inf", config, client=mock_client(handler))

        assert provider.resolve("X").value == "v"

    def test_requires_project(self):
        with pytest.raises(SecretConfigError) as exc_info:
            create_infisical_provider("inf", {"environment": "dev"})

        assert exc_info.value.field == "project_id"

    def test_unknown_auth_method(self):
        config = {"project_id": "p", "environment": "dev", "auth": {"method": "oidc"}}

        with pytest.raises(SecretConfigError):
            create_infisical_provider("inf", config)


class TestAkeyless:
    """Tests for the akeyless provider."""

    CONFIG = {"access_id": "p-abc", "auth": {"access_key": "key"}}

    def test_auth_and_get(self):
        """Should authenticate with the access key and pass the token in the body."""
        # Arrange
        bodies = {}

        def handler(request):
            bodies[request.url.path] = json.loads(request.content)
            if request.url.path == "/auth":
                return httpx.Response(200, json={"token": "t-1"})
            return httpx.Response(200, json={"/prod/db": "s3cret"})

        provider = create_akeyless_provider("ak", self.CONFIG, client=mock_client(handler))

        # Act
        result = provider.resolve("prod/db@v2")

        # Assert
        assert result.value == "s3cret"
        assert result.version == "2"
        assert bodies["/auth"] == {"access-id": "p-abc", "access-key": "key", "access-type": "access_key"}
        assert bodies["/get-secret-value"] == {"names": ["/prod/db"], "token": "t-1", "version": 2}

    def test_missing_item(self):
        def handler(request):
            if request.url.path == "/auth":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(200, json={})

        provider = create_akeyless_provider("ak", self.CONFIG, client=mock_client(handler))

        with pytest.raises(SecretNotFoundError):
            provider.resolve("/prod/none")

    def test_describe_missing_item(self):
        def handler(request):
            if request.url.path == "/auth":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(404, json={"error": "failed to get item"})

        provider = create_akeyless_provider("ak", self.CONFIG, client=mock_client(handler))

        assert provider.describe("/prod/none").exists is False

    def test_server_error(self):
        def handler(request):
            if request.url.path == "/auth":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(500, json={"error": "internal"})

        provider = create_akeyless_provider("ak", self.CONFIG, client=mock_client(handler))

        with pytest.raises(SecretBackendError):
            provider.resolve("/prod/db")

    def test_failed_auth(self):
        provider = create_akeyless_provider(
            "ak", self.CONFIG, client=mock_client(lambda r: httpx.Response(401, json={"error": "access denied"}))
        )

        with pytest.raises(SecretAuthError):
            provider.resolve("/prod/db")

    def test_access_key_required(self):
        with pytest.raises(SecretConfigError):
            create_akeyless_provider("ak", {"access_id": "p-abc"})
