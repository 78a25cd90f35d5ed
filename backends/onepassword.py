"""1Password backend via the `op` CLI."""

import json
from typing import Any, List, Mapping, Optional

from backends._cli import DEFAULT_TIMEOUT, run_cli
from core.config.fields import get_float, get_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_onepassword_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference

ONEPASSWORD_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"cli-session", "service-account"},
)


def extract_item_field(item: Mapping[str, Any], field: str) -> str:
    """
    Pick one field out of an `op item get --format json` document.

    Exact label or id wins; then password/username/url/notes/title shortcuts.

    Raises:
        ValueError: If the item has no such field
    """
    fields = item.get("fields") or []
    for entry in fields:
        if entry.get("label") == field or entry.get("id") == field:
            return entry.get("value") or ""

    wanted = field.lower()
    if wanted == "password":
        for entry in fields:
            if entry.get("type") == "CONCEALED" or (entry.get("label") or "").lower() == "password":
                return entry.get("value") or ""
    elif wanted == "username":
        for entry in fields:
            label = (entry.get("label") or "").lower()
            if entry.get("type") == "TEXT" and label in ("username", "email"):
                return entry.get("value") or ""
    elif wanted == "url":
        urls = item.get("urls") or []
        if urls:
            return urls[0].get("href") or ""
    elif wanted == "notes":
        return item.get("notes") or ""
    elif wanted in ("title", "name"):
        return item.get("title") or ""

    raise ValueError(f"field '{field}' isn't a field in item")


class OnePasswordAdapter(BackendAdapter):
    """Reads items with `op item get ITEM [--vault V] --format json`."""

    def __init__(self, account: Optional[str] = None, vault: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.account = account
        self.vault = vault
        self.timeout = timeout

    def _op(self, args: List[str], operation: str, vault: Optional[str] = None) -> str:
        vault = vault or self.vault
        if vault:
            args = args + ["--vault", vault]
        if self.account:
            args = args + ["--account", self.account]
        return run_cli("op", args + ["--format", "json"], operation, timeout=self.timeout)

    def _get_item(self, ref: StructuredReference) -> dict:
        output = self._op(["item", "get", ref.name], "get", vault=ref.folder)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise AdapterError("get", f"unparseable op output: {e}", path=ref.name)

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        item = self._get_item(ref)
        field = ref.field or "password"
        try:
            value = extract_item_field(item, field)
        except ValueError as e:
            raise AdapterError("extract", str(e), path=ref.name)
        vault = (item.get("vault") or {}).get("name", "")
        return RawSecret(value=value, metadata={"item_id": item.get("id", ""), "vault": vault, "field": field})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        item = self._get_item(ref)
        tags = {"item_id": item.get("id", ""), "vault": (item.get("vault") or {}).get("name", "")}
        for tag in item.get("tags") or []:
            tags[f"tag:{tag}"] = "true"
        return Metadata(exists=True, type=item.get("category"), tags=tags)

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        items = json.loads(self._op(["item", "list"], "list", vault=path) or "[]")
        return [item.get("title", "") for item in items][:limit]


@register_provider("onepassword")
def create_onepassword_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    adapter = OnePasswordAdapter(
        account=get_str(config, "account"),
        vault=get_str(config, "vault"),
        timeout=get_float(config, "timeout", DEFAULT_TIMEOUT),
    )
    return AdapterProvider(
        name, adapter, parse_onepassword_reference, ONEPASSWORD_CAPABILITIES, backend="onepassword"
    )
