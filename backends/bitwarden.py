"""Bitwarden backend via the `bw` CLI."""

import json
from typing import Any, List, Mapping, Optional

from backends._cli import DEFAULT_TIMEOUT, run_cli
from core.config.fields import get_float, get_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_bitwarden_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

BITWARDEN_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"cli-session", "api-key"},
)


def extract_item_field(item: Mapping[str, Any], field: str) -> str:
    """
    Pick one field out of a `bw get item` document.

    Supports password, username, totp, notes, uri/uriN and custom field names.

    Raises:
        ValueError: If the item has no such field
    """
    login = item.get("login") or {}

    if field in ("password", "username", "totp"):
        value = login.get(field)
        if not value:
            raise ValueError(f"no {field} field found")
        return value

    if field == "notes":
        if not item.get("notes"):
            raise ValueError("no notes field found")
        return item["notes"]

    for custom in item.get("fields") or []:
        if custom.get("name") == field:
            return custom.get("value") or ""

    if field.startswith("uri"):
        uris = login.get("uris") or []
        index_text = field[3:] or "0"
        if not index_text.isdigit():
            raise ValueError(f"invalid URI field '{field}'")
        index = int(index_text)
        if index >= len(uris):
            raise ValueError(f"URI index {index} out of range, item has {len(uris)} URIs")
        return uris[index].get("uri") or ""

    raise ValueError(f"field '{field}' is missing from item")


class BitwardenAdapter(BackendAdapter):
    """
    Reads items with `bw get item`.

    Keys:
        github              -> password of item "github"
        github.username     -> login username
        github.uri1         -> second login URI
        github.api_token    -> custom field "api_token"
    """

    def __init__(self, session: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.session = session
        self.timeout = timeout

    def _bw(self, *args: str, operation: str) -> str:
        extra = ["--session", self.session] if self.session else []
        return run_cli("bw", [*args, *extra], operation, timeout=self.timeout)

    def _get_item(self, name: str) -> dict:
        output = self._bw("get", "item", name, operation="get")
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise AdapterError("get", f"unparseable bw output: {e}", path=name)

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        item = self._get_item(ref.name)
        try:
            value = extract_item_field(item, ref.field or "password")
        except ValueError as e:
            raise AdapterError("extract", f"failed to extract field '{ref.field}': {e}", path=ref.name)
        return RawSecret(
            value=value,
            metadata={"item_id": item.get("id", ""), "field": ref.field or "password"},
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        item = self._get_item(ref.name)
        tags = {"item_id": item.get("id", "")}
        if item.get("folderId"):
            tags["folder_id"] = item["folderId"]
        return Metadata(exists=True, type=str(item.get("type", "")), tags=tags)

    def status(self) -> str:
        """`bw status` -> "unauthenticated", "locked" or "unlocked"."""
        output = self._bw("status", operation="status")
        try:
            return json.loads(output).get("status", "")
        except json.JSONDecodeError as e:
            raise AdapterError("status", f"unparseable bw status: {e}")

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        status = self.status()
        if status == "unauthenticated":
            raise AdapterError("status", "not logged in. Run: bw login")
        if status == "locked":
            raise AdapterError("status", "vault is locked. Run: bw unlock")

        args = ["list", "items"] + (["--search", path] if path else [])
        items = json.loads(self._bw(*args, operation="list") or "[]")
        return [item.get("name", "") for item in items][:limit]


@register_provider("bitwarden")
def create_bitwarden_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    adapter = BitwardenAdapter(
        session=get_str(config, "session"),
        timeout=get_float(config, "timeout", DEFAULT_TIMEOUT),
    )
    return AdapterProvider(
        name, adapter, parse_bitwarden_reference, BITWARDEN_CAPABILITIES, backend="bitwarden"
    )
