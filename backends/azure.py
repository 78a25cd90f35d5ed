"""Azure backends: Key Vault secrets, identity tokens, and the unified "azure" router."""

import json
import time
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from core.config.fields import get_bool, get_mapping, get_str, require_str
from core.config.merger import deep_merge
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import (
    extract_json_path,
    parse_azure_identity_reference,
    parse_keyvault_reference,
)
from core.secrets.registry import register_provider
from core.secrets.router import UnifiedRouter
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

AZURE_AUTH_METHODS = {"managed_identity", "service_principal", "certificate", "default_credential"}

KEYVAULT_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    requires_auth=True,
    auth_methods=AZURE_AUTH_METHODS,
)

IDENTITY_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods=AZURE_AUTH_METHODS,
)

DEFAULT_SCOPE = "https://management.azure.com/.default"

TOKEN_FIELDS = ("access_token", "token", "expires_at", "expiration", "expires_in", "token_info", "all")


def build_credential(config: Mapping[str, Any]):
    """
    Pick a credential from the config.

    client_secret -> service principal, certificate_path -> certificate,
    use_managed_identity -> managed identity, otherwise the default chain.
    """
    from azure.identity import (
        CertificateCredential,
        ClientSecretCredential,
        DefaultAzureCredential,
        ManagedIdentityCredential,
    )

    if get_str(config, "client_secret"):
        return ClientSecretCredential(
            tenant_id=require_str(config, "tenant_id", "Service principal auth needs tenant_id"),
            client_id=require_str(config, "client_id", "Service principal auth needs client_id"),
            client_secret=get_str(config, "client_secret"),
        )
    if get_str(config, "certificate_path"):
        return CertificateCredential(
            tenant_id=require_str(config, "tenant_id", "Certificate auth needs tenant_id"),
            client_id=require_str(config, "client_id", "Certificate auth needs client_id"),
            certificate_path=get_str(config, "certificate_path"),
        )
    if get_bool(config, "use_managed_identity"):
        return ManagedIdentityCredential(client_id=get_str(config, "user_assigned_identity_id"))
    return DefaultAzureCredential()


def build_secret_client(config: Mapping[str, Any], credential=None):
    from azure.keyvault.secrets import SecretClient

    vault_url = require_str(config, "vault_url", "Set 'vault_url' (https://<name>.vault.azure.net/)")
    return SecretClient(vault_url=vault_url, credential=credential or build_credential(config))


# ============================================================
# KEY VAULT
# ============================================================


class KeyVaultAdapter(BackendAdapter):
    """Reads Key Vault secrets; the SDK handles token acquisition itself."""

    def __init__(self, client):
        self.client = client

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        secret = self.client.get_secret(ref.name, version=ref.version)
        value = secret.value or ""
        if ref.field:
            try:
                value = extract_json_path(value, ref.field)
            except ValueError as e:
                raise AdapterError("extract", str(e), path=ref.name, cause=e)

        props = secret.properties
        metadata = {"vault": getattr(props, "vault_url", "") or ""}
        if getattr(props, "content_type", None):
            metadata["content_type"] = props.content_type
        return RawSecret(
            value=value,
            version=getattr(props, "version", None),
            updated_at=getattr(props, "updated_on", None),
            metadata=metadata,
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        props = self.client.get_secret(ref.name, version=ref.version).properties
        tags = {str(k): str(v) for k, v in (props.tags or {}).items()}
        if props.enabled is False:
            tags["enabled"] = "false"
        return Metadata(
            exists=True,
            version=props.version,
            updated_at=props.updated_on,
            type=props.content_type or "keyvault",
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        names = []
        for props in self.client.list_properties_of_secrets():
            if path and not props.name.startswith(path):
                continue
            names.append(props.name)
            if limit and len(names) >= limit:
                break
        return names


# ============================================================
# IDENTITY
# ============================================================


class IdentityAdapter(BackendAdapter):
    """
    Hands out access tokens for a scope.

    Keys:
        https://vault.azure.net/.default              -> access token
        https://vault.azure.net/.default:expires_at   -> RFC 3339 expiry
        token_info                                    -> JSON for the configured scope
    """

    def __init__(self, credential, default_scope: str = DEFAULT_SCOPE, clock=time.time):
        self.credential = credential
        self.default_scope = default_scope
        self.clock = clock

    def _target(self, ref: StructuredReference):
        # A bare field name targets the configured scope
        if ref.name in TOKEN_FIELDS:
            return self.default_scope, ref.name
        return ref.name, ref.field or "access_token"

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        scope, field = self._target(ref)
        access = self.credential.get_token(scope)
        expires_at = datetime.fromtimestamp(access.expires_on, tz=timezone.utc).isoformat()
        expires_in = int(access.expires_on - self.clock())

        if field in ("access_token", "token"):
            value = access.token
        elif field in ("expires_at", "expiration"):
            value = expires_at
        elif field == "expires_in":
            value = str(expires_in)
        elif field in ("token_info", "all"):
            value = json.dumps(
                {
                    "access_token": access.token,
                    "token_type": "Bearer",
                    "expires_at": expires_at,
                    "expires_in": expires_in,
                }
            )
        else:
            raise AdapterError("get", f"unknown token field '{field}'", path=scope)

        logger.debug(f"Azure token for {scope} expires in {expires_in}s")
        return RawSecret(value=value, metadata={"scope": scope, "token_type": "Bearer", "expires_at": expires_at})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        scope, _ = self._target(ref)
        return Metadata(exists=True, type="access-token", tags={"scope": scope})

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        # Acquiring a token is the only cheap liveness probe
        self.credential.get_token(self.default_scope)
        return [self.default_scope][:limit]


# ============================================================
# FACTORIES
# ============================================================


@register_provider("azure.keyvault")
def create_keyvault_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    if client is None:
        client = build_secret_client(config)
    return AdapterProvider(
        name,
        KeyVaultAdapter(client),
        parse_keyvault_reference,
        KEYVAULT_CAPABILITIES,
        backend="azure.keyvault",
    )


@register_provider("azure.identity")
def create_identity_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    """``client`` here is a credential object (anything with get_token)."""
    adapter = IdentityAdapter(
        client or build_credential(config),
        default_scope=get_str(config, "scope", DEFAULT_SCOPE),
    )
    return AdapterProvider(
        name,
        adapter,
        parse_azure_identity_reference,
        IDENTITY_CAPABILITIES,
        backend="azure.identity",
    )


AZURE_ALIASES = {
    "keyvault": "keyvault",
    "kv": "keyvault",
    "vault": "keyvault",
    "secrets": "keyvault",
    "identity": "identity",
    "auth": "identity",
    "token": "identity",
    "managed": "identity",
}


def _looks_like_token_request(key: str) -> bool:
    lowered = key.lower()
    return "scope" in lowered or ".default" in lowered or lowered in TOKEN_FIELDS


AZURE_RULES = [
    ("identity", _looks_like_token_request),
    ("keyvault", lambda key: key.startswith("https://") and ".vault.azure.net/" in key),
    ("keyvault", lambda key: "/" in key or "#" in key),
]


@register_provider("azure")
def create_azure_provider(name: str, config: Mapping[str, Any]) -> UnifiedRouter:
    """
    One provider for Key Vault and identity tokens.

    Credential settings (tenant_id, client_id, client_secret, ...) are shared;
    ``keyvault`` and ``identity`` sections override them per service. Key
    Vault is only wired up when a vault_url is configured.
    """
    common = {k: v for k, v in config.items() if k not in ("keyvault", "identity", "default_service")}
    keyvault_config = deep_merge(common, get_mapping(config, "keyvault"))
    identity_config = deep_merge(common, get_mapping(config, "identity"))

    services = {}
    if get_str(keyvault_config, "vault_url"):
        services["keyvault"] = create_keyvault_provider(f"{name}.keyvault", keyvault_config)
    services["identity"] = create_identity_provider(f"{name}.identity", identity_config)

    default_service = get_str(config, "default_service", "keyvault")
    if default_service not in ("keyvault", "identity"):
        raise SecretConfigError("default_service", f"unknown service: {default_service}", "Use keyvault or identity")

    return UnifiedRouter(
        name, "azure", services, AZURE_ALIASES, rules=AZURE_RULES, default_service=default_service
    )
