"""Akeyless backend via the Akeyless gateway REST API."""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

import httpx

from backends._http import build_client, check_response
from core.config.fields import get_mapping, get_str, require_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_akeyless_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference

DEFAULT_GATEWAY_URL = "https://api.akeyless.io"

# Akeyless tokens are not returned with an expiry; assume 25 minutes
TOKEN_TTL = 25 * 60.0

AUTH_METHODS = ("api_key",)

AKEYLESS_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    requires_auth=True,
    auth_methods=set(AUTH_METHODS),
)


class AkeylessAdapter(BackendAdapter):
    """
    Reads static secrets by path.

    Every call is a POST with the token in the body, as the gateway API
    expects.
    """

    token_based = True

    def __init__(
        self,
        client: httpx.Client,
        access_id: str,
        access_key: str,
    ):
        self.client = client
        self.access_id = access_id
        self.access_key = access_key

    def authenticate(self) -> Tuple[str, float]:
        body = {"access-id": self.access_id, "access-key": self.access_key, "access-type": "access_key"}
        result = check_response(self.client.post("/auth", json=body), "auth")
        token = result.get("token")
        if not token:
            raise AdapterError("auth", "auth response has no token")
        return token, TOKEN_TTL

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        body = {"names": [ref.name], "token": token}
        if ref.version is not None:
            body["version"] = ref.version
        result = check_response(self.client.post("/get-secret-value", json=body), "get", path=ref.name)
        if ref.name not in result:
            raise AdapterError("get", "item not found", path=ref.name, status_code=404)
        return RawSecret(
            value=str(result[ref.name]),
            version=str(ref.version) if ref.version is not None else None,
            metadata={"path": ref.name},
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        result = check_response(
            self.client.post("/describe-item", json={"name": ref.name, "token": token}),
            "describe",
            path=ref.name,
        )
        tags = {f"tag:{t}": "true" for t in result.get("item_tags") or []}
        updated_at = None
        if result.get("modification_date"):
            try:
                updated_at = datetime.fromisoformat(result["modification_date"].replace("Z", "+00:00"))
            except ValueError:
                updated_at = None
        version = result.get("last_version")
        return Metadata(
            exists=True,
            version=str(version) if version is not None else None,
            updated_at=updated_at,
            type=result.get("item_type"),
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        body = {"token": token, "path": path or "/"}
        result = check_response(self.client.post("/list-items", json=body), "list")
        return [item.get("item_name", "") for item in result.get("items") or []][:limit]


@register_provider("akeyless")
def create_akeyless_provider(
    name: str, config: Mapping[str, Any], client: Optional[httpx.Client] = None
) -> AdapterProvider:
    access_id = require_str(config, "access_id", "Set 'access_id' (starts with 'p-')")

    auth = get_mapping(config, "auth")
    method = get_str(auth, "method", "api_key")
    if method not in AUTH_METHODS:
        raise SecretConfigError(
            "auth.method", f"unsupported method: {method}", f"Use one of: {', '.join(AUTH_METHODS)}"
        )
    access_key = require_str(auth, "access_key", "Set auth.access_key for api_key auth")

    client = client or build_client(get_str(config, "gateway_url", DEFAULT_GATEWAY_URL), config)
    adapter = AkeylessAdapter(client, access_id, access_key)
    return AdapterProvider(
        name, adapter, parse_akeyless_reference, AKEYLESS_CAPABILITIES, backend="akeyless"
    )
