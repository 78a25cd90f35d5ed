"""Doppler backend via the Doppler HTTP API."""

import os
from typing import Any, List, Mapping, Optional

import httpx

from backends._http import build_client, check_response
from core.config.fields import get_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import extract_json_path, parse_doppler_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference

DEFAULT_API_URL = "https://api.doppler.com"

DOPPLER_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"service-token"},
)


class DopplerAdapter(BackendAdapter):
    """
    Reads secrets from one Doppler project/config.

    Service tokens are scoped to a single config, so project and config
    may be omitted when using one.
    """

    def __init__(
        self,
        client: httpx.Client,
        project: Optional[str] = None,
        config_name: Optional[str] = None,
    ):
        self.client = client
        self.project = project
        self.config_name = config_name

    def _scope(self) -> dict:
        params = {}
        if self.project:
            params["project"] = self.project
        if self.config_name:
            params["config"] = self.config_name
        return params

    def _fetch(self, name: str) -> dict:
        response = self.client.get(
            "/v3/configs/config/secret", params={**self._scope(), "name": name}
        )
        return check_response(response, "get", path=name)

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        body = self._fetch(ref.name)
        value = body.get("value") or {}
        raw = value.get("computed")
        if raw is None:
            raw = value.get("raw")
        if raw is None:
            raise AdapterError("get", "secret has no value", path=ref.name)

        if ref.field:
            try:
                raw = extract_json_path(raw, ref.field)
            except ValueError as e:
                raise AdapterError("extract", str(e), path=ref.name, cause=e)

        metadata = {"project": self.project or "", "config": self.config_name or ""}
        return RawSecret(value=raw, metadata=metadata)

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        body = self._fetch(ref.name)
        raw = (body.get("value") or {}).get("raw") or ""
        return Metadata(exists=True, size=len(raw), type="doppler")

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        response = self.client.get("/v3/configs/config/secrets/names", params=self._scope())
        names = check_response(response, "list").get("names") or []
        return sorted(names)[:limit]


@register_provider("doppler")
def create_doppler_provider(
    name: str, config: Mapping[str, Any], client: Optional[httpx.Client] = None
) -> AdapterProvider:
    token = get_str(config, "token") or os.environ.get("DOPPLER_TOKEN")
    if not token:
        raise SecretConfigError(
            "token", "Doppler token is required", "Set 'token' or export DOPPLER_TOKEN"
        )
    client = client or build_client(
        get_str(config, "api_url", DEFAULT_API_URL),
        config,
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
    )
    adapter = DopplerAdapter(client, project=get_str(config, "project"), config_name=get_str(config, "config"))
    return AdapterProvider(name, adapter, parse_doppler_reference, DOPPLER_CAPABILITIES, backend="doppler")
