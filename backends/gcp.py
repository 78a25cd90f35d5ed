"""Google Cloud Secret Manager backend and the unified "gcp" router."""

import re
from typing import Any, List, Mapping, Optional

from core.config.fields import get_mapping, get_str, require_str
from core.config.merger import deep_merge
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import extract_json_path, parse_gcp_reference
from core.secrets.registry import register_provider
from core.secrets.router import UnifiedRouter
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference

GCP_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    supports_binary=True,
    requires_auth=True,
    auth_methods={"adc", "service-account"},
)


def build_secret_manager_client(config: Mapping[str, Any]):
    """Application default credentials unless a key file is configured."""
    from google.cloud import secretmanager

    credentials_file = get_str(config, "credentials_file")
    if credentials_file:
        return secretmanager.SecretManagerServiceClient.from_service_account_file(credentials_file)
    return secretmanager.SecretManagerServiceClient()


class SecretManagerAdapter(BackendAdapter):
    """
    Reads secret versions.

    Resource names carry their own project; bare names use the configured
    ``project_id``.
    """

    def __init__(self, client, project_id: str):
        self.client = client
        self.project_id = project_id

    def secret_path(self, ref: StructuredReference) -> str:
        return f"projects/{ref.folder or self.project_id}/secrets/{ref.name}"

    def version_path(self, ref: StructuredReference) -> str:
        return f"{self.secret_path(ref)}/versions/{ref.version or 'latest'}"

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        response = self.client.access_secret_version(request={"name": self.version_path(ref)})
        try:
            raw = response.payload.data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AdapterError("get", "payload is not UTF-8 text", path=ref.name, cause=e)

        if ref.field:
            try:
                raw = extract_json_path(raw, ref.field)
            except ValueError as e:
                raise AdapterError("extract", str(e), path=ref.name, cause=e)

        # response.name ends in /versions/<n> even when "latest" was asked for
        version = response.name.rsplit("/", 1)[-1] if response.name else None
        return RawSecret(value=raw, version=version, metadata={"resource": response.name or ""})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        secret = self.client.get_secret(request={"name": self.secret_path(ref)})
        created = getattr(secret, "create_time", None)
        return Metadata(
            exists=True,
            version=str(ref.version) if ref.version else None,
            updated_at=created if created else None,
            type="secretmanager",
            tags={str(k): str(v) for k, v in dict(secret.labels or {}).items()},
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        request = {"parent": f"projects/{self.project_id}"}
        if path:
            request["filter"] = f"name:{path}"
        names = []
        for secret in self.client.list_secrets(request=request):
            names.append(secret.name.rsplit("/", 1)[-1])
            if limit and len(names) >= limit:
                break
        return names


@register_provider("gcp.secretmanager")
def create_secret_manager_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    project_id = require_str(config, "project_id", "Set 'project_id' to the GCP project holding the secrets")
    adapter = SecretManagerAdapter(client or build_secret_manager_client(config), project_id)
    return AdapterProvider(
        name, adapter, parse_gcp_reference, GCP_CAPABILITIES, backend="gcp.secretmanager"
    )


GCP_SERVICES = ("secretmanager",)

GCP_ALIASES = {
    "secretmanager": "secretmanager",
    "sm": "secretmanager",
    "secrets": "secretmanager",
}

_NAME_WITH_VERSION = re.compile(r"[^:]+:(\d+|latest)")

# Only numeric or "latest" tails after ':' count as versions. Any other
# "word:rest" key is read as an unknown service prefix and rejected rather
# than sent to Secret Manager; use "sm:word:rest" for such names.
GCP_RULES = [
    ("secretmanager", lambda key: key.startswith("projects/") and "/secrets/" in key),
    ("secretmanager", lambda key: _NAME_WITH_VERSION.fullmatch(key.partition("#")[0]) is not None),
    ("secretmanager", lambda key: "@" in key or "#" in key),
]


@register_provider("gcp")
def create_gcp_provider(name: str, config: Mapping[str, Any]) -> UnifiedRouter:
    default_service = get_str(config, "default_service", "secretmanager")
    if default_service not in GCP_SERVICES:
        raise SecretConfigError(
            "default_service", f"unknown service: {default_service}", "Use secretmanager"
        )

    common = {k: v for k, v in config.items() if k not in GCP_SERVICES + ("default_service",)}
    services = {
        "secretmanager": create_secret_manager_provider(
            f"{name}.secretmanager", deep_merge(common, get_mapping(config, "secretmanager"))
        )
    }
    return UnifiedRouter(
        name, "gcp", services, GCP_ALIASES, rules=GCP_RULES, default_service=default_service
    )
