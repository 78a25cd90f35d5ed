"""Tests for the Vault backend with a mocked hvac client."""

import json
from unittest.mock import MagicMock

import pytest
from hvac.exceptions import Forbidden, InvalidPath

from backends.vault import create_vault_provider
from core.secrets.exceptions import (
    SecretAuthError,
    SecretBackendError,
    SecretConfigError,
    SecretNotFoundError,
)


def kv2_response(data, version=3):
    return {
        "data": {
            "data": data,
            "metadata": {"version": version, "created_time": "2024-05-01T10:00:00.123456789Z"},
        }
    }


@pytest.fixture
def client():
    return MagicMock()


class TestVaultKV2:
    """Tests for KV v2 reads."""

    def test_field(self, client):
        """Should read one field and report the version."""
        # Arrange
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"password": "s3cret", "user": "app"})
        provider = create_vault_provider("vault", {"address": "http://vault:8200", "token": "hvs.x"}, client=client)

        # Act
        result = provider.resolve("myapp/db#password")

        # Assert
        assert result.value == "s3cret"
        assert result.version == "3"
        assert result.updated_at.year == 2024
        client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="myapp/db", version=None, mount_point="secret", raise_on_deleted_version=True
        )
        assert client.token == "hvs.x"

    def test_whole_secret_as_json(self, client):
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"b": "2", "a": "1"})
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        assert json.loads(provider.resolve("myapp/db").value) == {"a": "1", "b": "2"}

    def test_specific_version(self, client):
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"k": "old"}, version=2)
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        provider.resolve("myapp/db@v2#k")

        assert client.secrets.kv.v2.read_secret_version.call_args.kwargs["version"] == 2

    def test_missing_field_lists_available(self, client):
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"user": "app"})
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        with pytest.raises(SecretBackendError) as exc_info:
            provider.resolve("myapp/db#password")

        assert "user" in exc_info.value.suggestion

    def test_invalid_path_is_not_found(self, client):
        client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath("None, on get http://v/v1/secret/data/x")
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        with pytest.raises(SecretNotFoundError):
            provider.resolve("x")

    def test_forbidden_is_auth_error(self, client):
        client.secrets.kv.v2.read_secret_version.side_effect = Forbidden("permission denied")
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        with pytest.raises(SecretAuthError):
            provider.resolve("x")

    def test_describe_uses_metadata(self, client):
        client.secrets.kv.v2.read_secret_metadata.return_value = {
            "data": {"current_version": 5, "custom_metadata": {"owner": "team-a"}, "updated_time": "2024-05-01T10:00:00Z"}
        }
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        meta = provider.describe("myapp/db")

        assert meta.version == "5"
        assert meta.tags["owner"] == "team-a"

    def test_validate_empty_mount(self, client):
        client.secrets.kv.v2.list_secrets.side_effect = InvalidPath()
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t"}, client=client)

        provider.validate()


class TestVaultKV1:
    """Tests for KV v1 reads."""

    def test_read(self, client):
        client.secrets.kv.v1.read_secret.return_value = {"data": {"password": "p"}}
        provider = create_vault_provider(
            "vault", {"address": "http://v", "token": "t", "kv_version": 1, "mount": "kv"}, client=client
        )

        assert provider.resolve("app#password").value == "p"
        client.secrets.kv.v1.read_secret.assert_called_once_with(path="app", mount_point="kv")

    def test_version_on_v1_mount(self, client):
        provider = create_vault_provider("vault", {"address": "http://v", "token": "t", "kv_version": 1}, client=client)

        with pytest.raises(SecretBackendError):
            provider.resolve("app@v2#password")


class TestVaultAuth:
    """Tests for Vault authentication settings."""

    def test_approle_login(self, client):
        """Should log in through AppRole once and reuse the client token."""
        # Arrange
        client.auth.approle.login.return_value = {"auth": {"client_token": "hvs.approle", "lease_duration": 1800}}
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"k": "v"})
        config = {"address": "http://v", "approle": {"role_id": "r", "secret_id": "s"}}
        provider = create_vault_provider("vault", config, client=client)

        # Act
        provider.resolve("a#k")
        provider.resolve("b#k")

        # Assert
        client.auth.approle.login.assert_called_once_with(role_id="r", secret_id="s", mount_point="approle")
        assert client.token == "hvs.approle"

    def test_address_required(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)

        with pytest.raises(SecretConfigError) as exc_info:
            create_vault_provider("vault", {"token": "t"})

        assert exc_info.value.field == "address"

    def test_auth_required(self, monkeypatch):
        monkeypatch.delenv("VAULT_TOKEN", raising=False)

        with pytest.raises(SecretConfigError):
            create_vault_provider("vault", {"address": "http://v"}, client=MagicMock())

    def test_bad_kv_version(self):
        with pytest.raises(SecretConfigError):
            create_vault_provider("vault", {"address": "http://v", "token": "t", "kv_version": 3}, client=MagicMock())

    def test_reads_leave_client_token_alone(self, client):
        """Only authentication writes the shared client's token."""
        # Arrange
        client.auth.approle.login.return_value = {"auth": {"client_token": "hvs.approle", "lease_duration": 1800}}
        client.secrets.kv.v2.read_secret_metadata.return_value = {"data": {"current_version": 1}}
        client.secrets.kv.v2.read_secret_version.return_value = kv2_response({"k": "v"})
        config = {"address": "http://v", "approle": {"role_id": "r", "secret_id": "s"}}
        provider = create_vault_provider("vault", config, client=client)
        provider.resolve("a#k")
        client.token = "hvs.refreshed-elsewhere"

        # Act
        provider.resolve("b#k")
        provider.describe("b")

        # Assert
        assert client.token == "hvs.refreshed-elsewhere"
        client.auth.approle.login.assert_called_once()
