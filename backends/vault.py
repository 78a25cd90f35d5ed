"""HashiCorp Vault backend (KV v1/v2) via hvac."""

import json
import os
from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

import hvac
from hvac.exceptions import InvalidPath

from core.config.fields import get_bool, get_float, get_int, get_mapping, get_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretBackendError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_vault_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

# Static tokens carry no expiry we can see without a lookup
STATIC_TOKEN_TTL = 3600.0

VAULT_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"token", "approle"},
)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # Vault reports nanoseconds; fromisoformat takes at most microseconds
        head, dot, frac = value.rstrip("Z").partition(".")
        return datetime.fromisoformat(f"{head}.{frac[:6]}+00:00" if dot else f"{head}+00:00")
    except ValueError:
        return None


class VaultAdapter(BackendAdapter):
    """
    Reads KV secrets.

    Keys:
        myapp/db              -> whole secret as JSON
        myapp/db#password     -> one field
        myapp/db@v3#password  -> one field of version 3 (KV v2)
    """

    token_based = True

    def __init__(
        self,
        client,
        mount: str = "secret",
        kv_version: int = 2,
        token: Optional[str] = None,
        role_id: Optional[str] = None,
        secret_id: Optional[str] = None,
        approle_mount: str = "approle",
    ):
        self.client = client
        self.mount = mount
        self.kv_version = kv_version
        self.token = token
        self.role_id = role_id
        self.secret_id = secret_id
        self.approle_mount = approle_mount

    def authenticate(self) -> Tuple[str, float]:
        """Log in and install the token on the shared client; reads never touch it."""
        if self.token:
            self.client.token = self.token
            return self.token, STATIC_TOKEN_TTL

        response = self.client.auth.approle.login(
            role_id=self.role_id, secret_id=self.secret_id, mount_point=self.approle_mount
        )
        auth = response.get("auth") or {}
        token = auth.get("client_token")
        if not token:
            raise AdapterError("auth", "approle login returned no client_token")
        self.client.token = token
        return token, float(auth.get("lease_duration") or STATIC_TOKEN_TTL)

    def _read(self, token: str, ref: StructuredReference) -> Tuple[dict, dict]:
        """Returns (data, metadata) for the referenced secret."""
        if self.kv_version == 1:
            if ref.version is not None:
                raise SecretBackendError(
                    message=f"KV v1 mount '{self.mount}' has no versions",
                    suggestion="Drop the @v suffix or set kv_version: 2",
                )
            response = self.client.secrets.kv.v1.read_secret(path=ref.name, mount_point=self.mount)
            return response.get("data") or {}, {}

        response = self.client.secrets.kv.v2.read_secret_version(
            path=ref.name,
            version=ref.version,
            mount_point=self.mount,
            raise_on_deleted_version=True,
        )
        body = response.get("data") or {}
        return body.get("data") or {}, body.get("metadata") or {}

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        data, meta = self._read(token, ref)

        if ref.field:
            if ref.field not in data:
                raise SecretBackendError(
                    message=f"Field '{ref.field}' not found in secret '{ref.name}'",
                    suggestion=f"Available fields: {', '.join(sorted(data)) or 'none'}",
                )
            value = _stringify(data[ref.field])
        else:
            value = json.dumps(data, sort_keys=True)

        version = meta.get("version")
        return RawSecret(
            value=value,
            version=str(version) if version is not None else None,
            updated_at=_parse_time(meta.get("created_time")),
            metadata={"path": ref.name, "mount": self.mount},
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        if self.kv_version == 1:
            data, _ = self._read(token, ref)
            return Metadata(exists=True, size=len(json.dumps(data)), type="kv-v1")

        response = self.client.secrets.kv.v2.read_secret_metadata(path=ref.name, mount_point=self.mount)
        meta = response.get("data") or {}
        tags = {str(k): str(v) for k, v in (meta.get("custom_metadata") or {}).items()}
        version = meta.get("current_version")
        return Metadata(
            exists=True,
            version=str(version) if version is not None else None,
            updated_at=_parse_time(meta.get("updated_time")),
            type="kv-v2",
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        kv = self.client.secrets.kv.v1 if self.kv_version == 1 else self.client.secrets.kv.v2
        try:
            response = kv.list_secrets(path=path or "", mount_point=self.mount)
        except InvalidPath:
            # An empty mount answers 404 to LIST
            return []
        keys = (response.get("data") or {}).get("keys") or []
        return keys[:limit]


def build_hvac_client(config: Mapping[str, Any], address: str) -> hvac.Client:
    verify: Any = True
    if get_bool(config, "insecure_skip_verify"):
        verify = False
    elif get_str(config, "ca_cert"):
        verify = get_str(config, "ca_cert")
    return hvac.Client(
        url=address,
        namespace=get_str(config, "namespace"),
        verify=verify,
        timeout=get_float(config, "timeout", 30.0),
    )


@register_provider("vault")
def create_vault_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    address = get_str(config, "address") or os.environ.get("VAULT_ADDR")
    if not address:
        raise SecretConfigError("address", "Vault address is required", "Set 'address' or export VAULT_ADDR")

    kv_version = get_int(config, "kv_version", 2)
    if kv_version not in (1, 2):
        raise SecretConfigError("kv_version", f"unsupported KV version: {kv_version}", "Use 1 or 2")

    approle = get_mapping(config, "approle")
    token = get_str(config, "token") or (None if approle else os.environ.get("VAULT_TOKEN"))
    if not token and not approle:
        raise SecretConfigError(
            "token",
            "no authentication configured",
            "Set 'token' (or export VAULT_TOKEN) or add an 'approle' section with role_id and secret_id",
        )
    if approle and not token:
        for field in ("role_id", "secret_id"):
            if not get_str(approle, field):
                raise SecretConfigError(f"approle.{field}", "required setting is missing")

    adapter = VaultAdapter(
        client or build_hvac_client(config, address),
        mount=get_str(config, "mount", "secret"),
        kv_version=kv_version,
        token=token,
        role_id=get_str(approle, "role_id"),
        secret_id=get_str(approle, "secret_id"),
        approle_mount=get_str(approle, "mount", "approle"),
    )
    return AdapterProvider(name, adapter, parse_vault_reference, VAULT_CAPABILITIES, backend="vault")
