"""Tests for Bitwarden, 1Password and pass backends with subprocess patched."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from backends.bitwarden import create_bitwarden_provider, extract_item_field as bw_field
from backends.onepassword import create_onepassword_provider, extract_item_field as op_field
from backends.pass_store import create_pass_provider, parse_entry
from core.secrets.exceptions import SecretAuthError, SecretBackendError, SecretNotFoundError

BW_ITEM = {
    "id": "4a1c",
    "type": 1,
    "folderId": "f9",
    "notes": "rotate monthly",
    "login": {
        "username": "octocat",
        "password": "hunter2",
        "uris": [{"uri": "https://github.com"}, {"uri": "https://api.github.com"}],
    },
    "fields": [{"name": "api_token", "value": "ghp_abc"}],
}

OP_ITEM = {
    "id": "xyz",
    "title": "GitHub",
    "category": "LOGIN",
    "vault": {"name": "Private"},
    "tags": ["dev"],
    "urls": [{"href": "https://github.com"}],
    "fields": [
        {"id": "username", "type": "STRING", "label": "username", "value": "octocat"},
        {"id": "password", "type": "CONCEALED", "label": "password", "value": "hunter2"},
        {"id": "abc", "type": "CONCEALED", "label": "token", "value": "ghp_abc"},
    ],
}


def completed(stdout: str) -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    return result


def failed(cmd, stderr: str) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(1, cmd, output="", stderr=stderr)


class TestBitwardenFields:
    """Tests for Bitwarden field extraction."""

    @pytest.mark.parametrize(
        "field,expected",
        [
            ("password", "hunter2"),
            ("username", "octocat"),
            ("notes", "rotate monthly"),
            ("api_token", "ghp_abc"),
            ("uri", "https://github.com"),
            ("uri1", "https://api.github.com"),
        ],
    )
    def test_extract(self, field, expected):
        assert bw_field(BW_ITEM, field) == expected

    def test_uri_out_of_range(self):
        with pytest.raises(ValueError):
            bw_field(BW_ITEM, "uri5")


class TestBitwardenProvider:
    """Tests for the bitwarden provider."""

    @patch("backends._cli.subprocess.run")
    def test_resolve_passes_session(self, mock_run):
        """Should call bw get item with the configured session."""
        # Arrange
        mock_run.return_value = completed(json.dumps(BW_ITEM))
        provider = create_bitwarden_provider("bw", {"session": "sess-123"})

        # Act
        result = provider.resolve("github.username")

        # Assert
        assert result.value == "octocat"
        cmd = mock_run.call_args.args[0]
        assert cmd == ["bw", "get", "item", "github", "--session", "sess-123"]

    @patch("backends._cli.subprocess.run")
    def test_not_found(self, mock_run):
        mock_run.side_effect = failed(["bw"], "Not found.")
        provider = create_bitwarden_provider("bw", {})

        with pytest.raises(SecretNotFoundError):
            provider.resolve("missing")

    @patch("backends._cli.subprocess.run")
    def test_locked_vault_is_auth_error(self, mock_run):
        mock_run.side_effect = failed(["bw"], "Vault is locked.")
        provider = create_bitwarden_provider("bw", {})

        with pytest.raises(SecretAuthError):
            provider.resolve("github")

    @patch("backends._cli.subprocess.run")
    def test_missing_binary(self, mock_run):
        """Should surface an install hint, not NotFound."""
        mock_run.side_effect = FileNotFoundError("bw")
        provider = create_bitwarden_provider("bw", {})

        with pytest.raises(SecretBackendError) as exc_info:
            provider.resolve("github")

        assert "Install Bitwarden CLI" in exc_info.value.suggestion

    @patch("backends._cli.subprocess.run")
    def test_validate_checks_status(self, mock_run):
        mock_run.return_value = completed(json.dumps({"status": "locked"}))
        provider = create_bitwarden_provider("bw", {})

        with pytest.raises(SecretAuthError):
            provider.validate()

    @patch("backends._cli.subprocess.run")
    def test_missing_field_is_operational(self, mock_run):
        mock_run.return_value = completed(json.dumps(BW_ITEM))
        provider = create_bitwarden_provider("bw", {})

        with pytest.raises(SecretBackendError):
            provider.resolve("github.nope")


class TestOnePasswordFields:
    """Tests for 1Password field extraction."""

    def test_label_match(self):
        assert op_field(OP_ITEM, "token") == "ghp_abc"

    def test_shortcuts(self):
        assert op_field(OP_ITEM, "password") == "hunter2"
        assert op_field(OP_ITEM, "url") == "https://github.com"
        assert op_field(OP_ITEM, "title") == "GitHub"

    def test_missing(self):
        with pytest.raises(ValueError):
            op_field(OP_ITEM, "nope")


class TestOnePasswordProvider:
    """Tests for the onepassword provider."""

    @patch("backends._cli.subprocess.run")
    def test_secret_reference_uses_vault(self, mock_run):
        # Arrange
        mock_run.return_value = completed(json.dumps(OP_ITEM))
        provider = create_onepassword_provider("op", {"account": "acme"})

        # Act
        result = provider.resolve("op://Private/GitHub/token")

        # Assert
        assert result.value == "ghp_abc"
        assert result.metadata["vault"] == "Private"
        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "op", "item", "get", "GitHub",
            "--vault", "Private", "--account", "acme", "--format", "json",
        ]

    @patch("backends._cli.subprocess.run")
    def test_not_signed_in(self, mock_run):
        mock_run.side_effect = failed(["op"], "[ERROR] You are not currently signed in.")
        provider = create_onepassword_provider("op", {})

        with pytest.raises(SecretAuthError):
            provider.resolve("GitHub")

    @patch("backends._cli.subprocess.run")
    def test_describe_missing_item(self, mock_run):
        mock_run.side_effect = failed(["op"], '"Nope" isn\'t an item in any vault.')
        provider = create_onepassword_provider("op", {})

        assert provider.describe("Nope").exists is False


class TestPassEntry:
    """Tests for pass entry parsing."""

    def test_first_line_and_fields(self):
        fields = parse_entry("hunter2\nlogin: octocat\nurl: https://github.com\n")

        assert fields == {"password": "hunter2", "login": "octocat", "url": "https://github.com"}


class TestPassProvider:
    """Tests for the pass provider."""

    @patch("backends._cli.subprocess.run")
    def test_first_line_and_extra_data(self, mock_run):
        mock_run.return_value = completed("hunter2\nlogin: octocat\n")
        provider = create_pass_provider("pass", {})

        result = provider.resolve("email/work")

        assert result.value == "hunter2"
        assert result.metadata["additional_data"] == "login: octocat"

    @patch("backends._cli.subprocess.run")
    def test_key_and_store_dir(self, mock_run):
        """Should pass PASSWORD_STORE_DIR through the environment."""
        # Arrange
        mock_run.return_value = completed("hunter2\nlogin: octocat\n")
        provider = create_pass_provider("pass", {"password_store": "/srv/store"})

        # Act
        result = provider.resolve("email/work#login")

        # Assert
        assert result.value == "octocat"
        assert mock_run.call_args.kwargs["env"]["PASSWORD_STORE_DIR"] == "/srv/store"

    @patch("backends._cli.subprocess.run")
    def test_not_in_store(self, mock_run):
        mock_run.side_effect = failed(["pass"], "Error: email/none is not in the password store.")
        provider = create_pass_provider("pass", {})

        with pytest.raises(SecretNotFoundError):
            provider.resolve("email/none")

    @patch("backends._cli.subprocess.run")
    def test_list_parses_tree(self, mock_run):
        mock_run.return_value = completed(
            "Password Store\n├── email\n│   └── work\n└── github\n"
        )
        provider = create_pass_provider("pass", {})

        assert provider.adapter.list_items(None) == ["email", "work", "github"]

    @patch("backends._cli.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["pass"], 5)
        provider = create_pass_provider("pass", {"timeout": 5})

        with pytest.raises(SecretBackendError) as exc_info:
            provider.resolve("email/work")

        assert "timed out" in exc_info.value.suggestion
