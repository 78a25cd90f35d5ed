"""
Reference parsers.

Every backend has its own key grammar, built from the same few motifs:

    version suffix   last occurrence of a marker ("@v", "@", ":", "/");
                     a tail that does not look like a version leaves the
                     marker in the name
    field selector   first occurrence of "#" (or "." for password managers);
                     the selector is never re-parsed
    path             some backends synthesize a leading "/"

When both appear, the selector is split off first, then the version is
stripped from the tail of what remains, then folder/name are split.

All parsers are pure and raise only ReferenceParseError.
"""

import json
import re
from typing import Callable, Optional, Tuple, TypeVar

from core.secrets.exceptions import ReferenceParseError
from core.secrets.types import StructuredReference

V = TypeVar("V")

SELECTOR_MARKER = "#"
FIELD_MARKER = "."

STS_FIELDS = frozenset(
    {"access_key_id", "secret_access_key", "session_token", "expiration", "credentials"}
)

# SDK and environment-variable spellings accepted by the SSO provider
SSO_FIELD_ALIASES = {
    "accesskeyid": "access_key_id",
    "aws_access_key_id": "access_key_id",
    "secretaccesskey": "secret_access_key",
    "aws_secret_access_key": "secret_access_key",
    "sessiontoken": "session_token",
    "aws_session_token": "session_token",
    "all": "credentials",
}

_UUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_STAGE_LABEL = re.compile(r"[A-Z][A-Z0-9_]*")
_HEX32 = re.compile(r"[0-9a-fA-F]{32}")
_TOKEN_FIELD = re.compile(r"[a-z_]+")
_GCP_RESOURCE = re.compile(r"projects/([^/]+)/secrets/([^/]+)(?:/versions/([^/]+))?")
_KEYVAULT_URL = re.compile(r"https://([^/]+)\.vault\.azure\.net/secrets/([^/]+)(?:/([^/]*))?/?")


# ============================================================
# MOTIFS
# ============================================================


def split_selector(raw: str, marker: str = SELECTOR_MARKER) -> Tuple[str, Optional[str]]:
    """
    Split at the first occurrence of ``marker``.

    Returns:
        (head, selector); selector is None when the marker is absent or
        nothing follows it
    """
    head, sep, selector = raw.partition(marker)
    if not sep:
        return raw, None
    return head, selector or None


def split_version(
    raw: str, marker: str, shape: Callable[[str], Optional[V]]
) -> Tuple[str, Optional[V]]:
    """
    Strip a version suffix found at the last occurrence of ``marker``.

    ``shape`` converts the tail into a version or returns None when the tail
    is not a version, in which case the whole string is the name.
    """
    idx = raw.rfind(marker)
    if idx == -1:
        return raw, None
    version = shape(raw[idx + len(marker):])
    if version is None:
        return raw, None
    return raw[:idx], version


def numeric_version(text: str) -> Optional[int]:
    if text and text.isascii() and text.isdigit():
        return int(text)
    return None


def aws_version(text: str) -> Optional[str]:
    """Secrets Manager version ids are UUIDs; stages are upper-case labels."""
    if _UUID.fullmatch(text) or _STAGE_LABEL.fullmatch(text):
        return text
    return None


def gcp_version(text: str) -> Optional[str]:
    if text == "latest" or numeric_version(text) is not None:
        return text
    return None


def keyvault_version(text: str) -> Optional[str]:
    return text if _HEX32.fullmatch(text) else None


def token_field(text: str) -> Optional[str]:
    return text if _TOKEN_FIELD.fullmatch(text) else None


def _require(raw: str, name: str, what: str, suggestion: str = "") -> str:
    if not name:
        raise ReferenceParseError(raw, f"{what} cannot be empty", suggestion)
    return name


# ============================================================
# PER-BACKEND PARSERS
# ============================================================


def parse_plain_reference(key: str) -> StructuredReference:
    """Literal and environment keys: the key is the name."""
    return StructuredReference(name=_require(key, key, "key"))


def parse_json_file_reference(key: str) -> StructuredReference:
    """``KEY`` or ``KEY#.nested.path``."""
    name, selector = split_selector(key)
    return StructuredReference(name=_require(key, name, "key"), field=selector)


def parse_akeyless_reference(key: str) -> StructuredReference:
    """
    ``/path/to/item[@vN]``.

    Examples:
        "/prod/db/password@v2" -> name "/prod/db/password", version 2
        "prod/db@vlatest"      -> name "/prod/db@vlatest", no version
    """
    path, version = split_version(key, "@v", numeric_version)
    if not path.startswith("/"):
        path = "/" + path
    if path == "/":
        raise ReferenceParseError(
            key, "akeyless reference path cannot be empty", "Use a path like '/prod/db/password'"
        )
    return StructuredReference(name=path, version=version)


def parse_infisical_reference(key: str) -> StructuredReference:
    """``[folder/sub/]SECRET_NAME[@vN]``."""
    rest, version = split_version(key, "@v", numeric_version)
    folder, sep, name = rest.rpartition("/")
    _require(key, name, "infisical secret name", "Use 'SECRET_NAME' or 'folder/SECRET_NAME'")
    return StructuredReference(name=name, version=version, folder=folder if sep else None)


def parse_ssm_reference(key: str) -> StructuredReference:
    """``/parameter/path[@vN]`` or a parameter ARN."""
    name, version = split_version(key, "@v", numeric_version)
    return StructuredReference(name=_require(key, name, "parameter name"), version=version)


def parse_secrets_manager_reference(key: str) -> StructuredReference:
    """``name[@AWSPREVIOUS|@<version-uuid>][#.json.path]`` or a secret ARN."""
    head, selector = split_selector(key)
    name, version = split_version(head, "@", aws_version)
    _require(key, name, "secret name")
    return StructuredReference(name=name, version=version, field=selector)


def parse_gcp_reference(key: str) -> StructuredReference:
    """
    ``name[@version|:version][#.json.path]`` or a full resource name
    ``projects/P/secrets/S[/versions/V]``.

    For resource names the project id is carried in ``folder``.
    """
    head, selector = split_selector(key)
    if head.startswith("projects/"):
        match = _GCP_RESOURCE.fullmatch(head)
        if not match:
            raise ReferenceParseError(
                key,
                "invalid secret resource name",
                "Use 'projects/<project>/secrets/<name>[/versions/<version>]'",
            )
        project, name, version = match.groups()
        return StructuredReference(name=name, version=version, field=selector, folder=project)

    name, version = split_version(head, "@", gcp_version)
    if version is None:
        name, version = split_version(head, ":", gcp_version)
    _require(key, name, "secret name")
    return StructuredReference(name=name, version=version, field=selector)


def parse_keyvault_reference(key: str) -> StructuredReference:
    """
    ``name[/<32-hex version>][#.json.path]`` or a secret URL
    ``https://<vault>.vault.azure.net/secrets/<name>[/<version>]``.
    """
    head, selector = split_selector(key)
    match = _KEYVAULT_URL.fullmatch(head)
    if match:
        _, name, version = match.groups()
        return StructuredReference(name=name, version=version or None, field=selector)

    name, version = split_version(head, "/", keyvault_version)
    _require(key, name, "secret name")
    return StructuredReference(name=name, version=version, field=selector)


def parse_azure_identity_reference(key: str) -> StructuredReference:
    """
    ``scope[:field]``, field defaults to ``access_token``.

    Scopes are URLs, so the field is taken from the last colon and only when
    it looks like a field name.
    """
    scope, field = split_version(key, ":", token_field)
    _require(key, scope, "token scope", "Use a scope like 'https://vault.azure.net/.default'")
    return StructuredReference(name=scope, field=field or "access_token")


def parse_sts_reference(key: str) -> StructuredReference:
    """
    ``[role-arn#]field``, field defaults to ``credentials``.

    A bare field name targets the configured role/session, named "session".
    """
    head, field = split_selector(key)
    if field is None and head.lower() in STS_FIELDS:
        return StructuredReference(name="session", field=head.lower())
    _require(key, head, "role")
    field = (field or "credentials").lower()
    if field not in STS_FIELDS:
        raise ReferenceParseError(
            key,
            f"unknown credential field '{field}'",
            f"Use one of: {', '.join(sorted(STS_FIELDS))}",
        )
    return StructuredReference(name=head, field=field)


def sso_field(key: str) -> Optional[str]:
    """Canonical credential field for an SSO key, or None when it is not one."""
    lowered = key.strip().lower()
    lowered = SSO_FIELD_ALIASES.get(lowered, lowered)
    return lowered if lowered in STS_FIELDS else None


def parse_sso_reference(key: str) -> StructuredReference:
    """
    A credential field of the configured account and role.

    Examples:
        "" / "credentials" / "all"               -> whole credential set
        "AWS_ACCESS_KEY_ID" / "AccessKeyId"      -> access_key_id
    """
    if not key.strip():
        return StructuredReference(name="session", field="credentials")
    field = sso_field(key)
    if field is None:
        raise ReferenceParseError(
            key,
            f"unknown credential field '{key}'",
            f"Use one of: {', '.join(sorted(STS_FIELDS))}",
        )
    return StructuredReference(name="session", field=field)


def parse_vault_reference(key: str) -> StructuredReference:
    """``path/under/mount[@vN][#field]``."""
    if not key:
        raise ReferenceParseError(
            key, "empty vault key", "Provide a path like 'myapp/db' or 'myapp/db#password'"
        )
    head, field = split_selector(key)
    path, version = split_version(head, "@v", numeric_version)
    path = path.strip("/")
    _require(key, path, "vault path", "Provide a path like 'myapp/db'")
    return StructuredReference(name=path, version=version, field=field)


def parse_doppler_reference(key: str) -> StructuredReference:
    """``SECRET_NAME[#.json.path]``."""
    name, selector = split_selector(key.strip())
    return StructuredReference(name=_require(key, name, "secret name"), field=selector)


def parse_bitwarden_reference(key: str) -> StructuredReference:
    """``item[.field]``, field defaults to ``password``."""
    item, field = split_selector(key, FIELD_MARKER)
    _require(key, item, "item", "Use 'item-name' or 'item-name.username'")
    return StructuredReference(name=item, field=field or "password")


def parse_onepassword_reference(key: str) -> StructuredReference:
    """
    ``op://vault/item[/section]/field`` or ``item[.field]``.

    The vault is carried in ``folder``; field defaults to ``password``.
    """
    if key.startswith("op://"):
        parts = key[len("op://"):].split("/")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ReferenceParseError(
                key, "secret reference needs a vault and an item", "Use 'op://vault/item/field'"
            )
        field = parts[-1] if len(parts) >= 3 and parts[-1] else "password"
        return StructuredReference(name=parts[1], field=field, folder=parts[0])

    item, field = split_selector(key, FIELD_MARKER)
    _require(key, item, "item")
    return StructuredReference(name=item, field=field or "password")


def parse_pass_reference(key: str) -> StructuredReference:
    """``path/in/store[#key]``; without a key the first line is the secret."""
    head, field = split_selector(key)
    path = head.strip("/")
    _require(key, path, "pass entry path", "Check available entries with 'pass ls'")
    return StructuredReference(name=path, field=field)


# ============================================================
# SELECTOR EVALUATION
# ============================================================


def extract_json_path(document: str, path: str) -> str:
    """
    Navigate a JSON object with a dotted path such as ``.db.password``.

    Raises:
        ValueError: If the path or document is invalid, or a field is missing
    """
    if not path.startswith("."):
        raise ValueError("JSON path must start with '.'")

    try:
        current = json.loads(document)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}")

    for part in path[1:].split("."):
        if not part:
            continue
        if not isinstance(current, dict):
            raise ValueError(f"cannot navigate into non-object at path '{part}'")
        if part not in current:
            raise ValueError(f"field '{part}' is missing from JSON")
        current = current[part]

    if isinstance(current, str):
        return current
    if isinstance(current, bool):
        return "true" if current else "false"
    if isinstance(current, (int, float)):
        return str(int(current)) if float(current).is_integer() else str(current)
    if current is None:
        return ""
    return json.dumps(current)
