"""Local backends: in-memory literals, environment variables and JSON files."""

import json
import os
from pathlib import Path
from typing import Any, List, Mapping, Optional

from core.config.fields import get_mapping, get_str, require_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretNotFoundError
from core.secrets.provider import AdapterProvider
from core.secrets.references import (
    extract_json_path,
    parse_json_file_reference,
    parse_plain_reference,
)
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

LOCAL_CAPABILITIES = Capabilities(supports_metadata=True)


class LiteralAdapter(BackendAdapter):
    """
    Serves values from a fixed mapping.

    Useful for tests and for non-sensitive defaults:
        providers:
          defaults:
            type: literal
            values: {LOG_LEVEL: info}
    """

    def __init__(self, values: Mapping[str, Any], provider: str = "literal"):
        self.values = {str(k): str(v) for k, v in values.items()}
        self.provider = provider

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        if ref.name not in self.values:
            raise SecretNotFoundError(self.provider, ref.name)
        return RawSecret(value=self.values[ref.name], metadata={"source": "literal"})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        if ref.name not in self.values:
            return Metadata(exists=False)
        return Metadata(exists=True, size=len(self.values[ref.name]), type="literal")

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        return sorted(self.values)[:limit]


class EnvAdapter(BackendAdapter):
    """
    Reads secrets from environment variables.

    Uses exact key match - no conversion.

    Examples:
        DB_PASSWORD            -> env var DB_PASSWORD
        DB_PASSWORD, prefix=APP_ -> env var APP_DB_PASSWORD
    """

    def __init__(self, prefix: str = "", provider: str = "env", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self.provider = provider
        self.environ = os.environ if environ is None else environ

    def _env_key(self, ref: StructuredReference) -> str:
        return f"{self.prefix}{ref.name}"

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        env_key = self._env_key(ref)
        value = self.environ.get(env_key)

        if value is None:
            raise SecretNotFoundError(self.provider, ref.name)

        logger.debug(f"Resolved secret '{ref.name}' from env var '{env_key}'")
        return RawSecret(value=value, metadata={"env_var": env_key})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        value = self.environ.get(self._env_key(ref))
        if value is None:
            return Metadata(exists=False)
        return Metadata(exists=True, size=len(value), type="env")

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        # Environment backend is always available
        names = sorted(k[len(self.prefix):] for k in self.environ if k.startswith(self.prefix))
        return names[:limit]


class JsonFileAdapter(BackendAdapter):
    """
    Reads secrets from a JSON file, re-read on every call.

    File format:
        {
            "DB_PASSWORD": "secret123",
            "database": {"user": "app", "password": "s3cret"}
        }

    Keys are top-level names, optionally followed by a JSON path:
        DB_PASSWORD
        database#.password
    """

    def __init__(self, path: str, provider: str = "json"):
        self.path = Path(path).expanduser()
        self.provider = provider

    def _load(self) -> dict:
        if not self.path.exists():
            raise AdapterError("read", "secrets file is missing", path=str(self.path))

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise AdapterError("read", f"invalid JSON: {e}", path=str(self.path), cause=e)

        if not isinstance(data, dict):
            raise AdapterError("read", "top level must be a JSON object", path=str(self.path))
        return data

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        data = self._load()
        if ref.name not in data:
            raise SecretNotFoundError(self.provider, ref.name)

        value = data[ref.name]
        raw = value if isinstance(value, str) else json.dumps(value)
        if ref.field:
            try:
                raw = extract_json_path(raw, ref.field)
            except ValueError as e:
                raise AdapterError("extract", str(e), path=ref.name, cause=e)
        return RawSecret(value=raw, metadata={"file": str(self.path)})

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        data = self._load()
        if ref.name not in data:
            return Metadata(exists=False)
        value = data[ref.name]
        kind = "string" if isinstance(value, str) else "json"
        return Metadata(exists=True, size=len(str(value)), type=kind)

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        return sorted(self._load())[:limit]


@register_provider("literal")
def create_literal_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    adapter = LiteralAdapter(get_mapping(config, "values"), provider=name)
    return AdapterProvider(name, adapter, parse_plain_reference, LOCAL_CAPABILITIES, backend="literal")


@register_provider("env")
def create_env_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    adapter = EnvAdapter(prefix=get_str(config, "prefix", ""), provider=name)
    return AdapterProvider(name, adapter, parse_plain_reference, LOCAL_CAPABILITIES, backend="env")


@register_provider("json")
def create_json_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    path = require_str(config, "path", "Point 'path' at a JSON secrets file")
    adapter = JsonFileAdapter(path, provider=name)
    return AdapterProvider(name, adapter, parse_json_file_reference, LOCAL_CAPABILITIES, backend="json")
