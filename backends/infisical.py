"""Infisical backend via the Infisical HTTP API."""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

import httpx

from backends._http import build_client, check_response
from core.config.fields import get_mapping, get_str, require_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_infisical_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HOST = "https://app.infisical.com"

# Used when the login response carries no expiresIn
DEFAULT_TOKEN_TTL = 30.0

# Static credentials never expire on our side
STATIC_TOKEN_TTL = 24 * 3600.0

AUTH_METHODS = ("machine_identity", "service_token", "api_key")

INFISICAL_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    requires_auth=True,
    auth_methods=set(AUTH_METHODS),
)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class InfisicalAdapter(BackendAdapter):
    """
    Reads raw secrets from one Infisical project/environment.

    Auth methods:
        machine_identity  universal-auth login with client_id/client_secret
        service_token     static Bearer token
        api_key           static X-API-Key header
    """

    token_based = True

    def __init__(
        self,
        client: httpx.Client,
        project_id: str,
        environment: str,
        method: str = "machine_identity",
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        static_token: Optional[str] = None,
    ):
        self.client = client
        self.project_id = project_id
        self.environment = environment
        self.method = method
        self.client_id = client_id
        self.client_secret = client_secret
        self.static_token = static_token

    def authenticate(self) -> Tuple[str, float]:
        if self.method != "machine_identity":
            return self.static_token, STATIC_TOKEN_TTL

        response = self.client.post(
            "/api/v1/auth/universal-auth/login",
            json={"clientId": self.client_id, "clientSecret": self.client_secret},
        )
        body = check_response(response, "auth")
        token = body.get("accessToken")
        if not token:
            raise AdapterError("auth", "login response has no accessToken")
        ttl = float(body.get("expiresIn") or DEFAULT_TOKEN_TTL)
        logger.debug(f"Infisical login succeeded, token valid for {ttl:.0f}s")
        return token, ttl

    def _headers(self, token: str) -> dict:
        if self.method == "api_key":
            return {"X-API-Key": token}
        return {"Authorization": f"Bearer {token}"}

    def _scope(self, folder: Optional[str]) -> dict:
        return {
            "workspaceId": self.project_id,
            "environment": self.environment,
            "secretPath": "/" + (folder or "").strip("/"),
        }

    def _fetch(self, token: str, ref: StructuredReference) -> dict:
        params = self._scope(ref.folder)
        if ref.version is not None:
            params["version"] = str(ref.version)
        response = self.client.get(
            f"/api/v3/secrets/raw/{ref.name}", params=params, headers=self._headers(token)
        )
        secret = check_response(response, "get", path=ref.name).get("secret")
        if not secret:
            raise AdapterError("get", "response has no secret", path=ref.name, status_code=404)
        return secret

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        secret = self._fetch(token, ref)
        metadata = {"environment": self.environment, "path": self._scope(ref.folder)["secretPath"]}
        if secret.get("type"):
            metadata["type"] = secret["type"]
        return RawSecret(
            value=secret.get("secretValue", ""),
            version=str(secret["version"]) if secret.get("version") is not None else None,
            updated_at=_parse_time(secret.get("updatedAt")),
            metadata=metadata,
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        secret = self._fetch(token, ref)
        tags = {}
        for tag in secret.get("tags") or []:
            label = tag.get("slug") or tag.get("name") if isinstance(tag, dict) else str(tag)
            tags[f"tag:{label}"] = "true"
        if secret.get("secretComment"):
            tags["comment"] = secret["secretComment"]
        return Metadata(
            exists=True,
            version=str(secret["version"]) if secret.get("version") is not None else None,
            updated_at=_parse_time(secret.get("updatedAt")),
            size=len(secret.get("secretValue", "")),
            type=secret.get("type"),
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        response = self.client.get(
            "/api/v3/secrets/raw", params=self._scope(path), headers=self._headers(token)
        )
        secrets = check_response(response, "list").get("secrets") or []
        return [s.get("secretKey", "") for s in secrets][:limit]


@register_provider("infisical")
def create_infisical_provider(
    name: str, config: Mapping[str, Any], client: Optional[httpx.Client] = None
) -> AdapterProvider:
    project_id = require_str(config, "project_id", "Set 'project_id' to the Infisical project id")
    environment = require_str(config, "environment", "Set 'environment' (e.g. dev, staging, prod)")

    auth = get_mapping(config, "auth")
    method = get_str(auth, "method", "machine_identity")
    if method not in AUTH_METHODS:
        raise SecretConfigError(
            "auth.method", f"unsupported method: {method}", f"Use one of: {', '.join(AUTH_METHODS)}"
        )

    client_id = client_secret = static_token = None
    if method == "machine_identity":
        client_id = require_str(auth, "client_id", "Set auth.client_id for machine identity login")
        client_secret = require_str(auth, "client_secret", "Set auth.client_secret")
    else:
        static_token = require_str(auth, method, f"Set auth.{method}")

    client = client or build_client(get_str(config, "host", DEFAULT_HOST), config)
    adapter = InfisicalAdapter(
        client,
        project_id,
        environment,
        method=method,
        client_id=client_id,
        client_secret=client_secret,
        static_token=static_token,
    )
    return AdapterProvider(
        name, adapter, parse_infisical_reference, INFISICAL_CAPABILITIES, backend="infisical"
    )
