"""Unix `pass` password-store backend."""

import os
import re
from typing import Any, Dict, List, Mapping, Optional

from backends._cli import DEFAULT_TIMEOUT, run_cli
from core.config.fields import get_float, get_str
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError
from core.secrets.provider import AdapterProvider
from core.secrets.references import parse_pass_reference
from core.secrets.registry import register_provider
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference

PASS_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"gpg"},
)

# Leading tree drawing in `pass ls` output
_TREE_PREFIX = re.compile(r"^[\s│├└─`|\-]+")


def parse_entry(content: str) -> Dict[str, str]:
    """
    Split a pass entry into the password and "key: value" lines.

    The first line is the password; later lines of the form "key: value"
    become named fields.
    """
    lines = content.strip("\n").split("\n")
    fields = {"password": lines[0] if lines else ""}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if sep and key.strip():
            fields[key.strip()] = value.strip()
    return fields


class PassAdapter(BackendAdapter):
    """
    Reads entries with `pass show`.

    Keys:
        email/work          -> first line
        email/work#login    -> value of a "login: ..." line
    """

    def __init__(
        self,
        password_store: Optional[str] = None,
        gpg_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.password_store = password_store
        self.gpg_key = gpg_key
        self.timeout = timeout

    def _env(self) -> Optional[Dict[str, str]]:
        if not self.password_store and not self.gpg_key:
            return None
        env = dict(os.environ)
        if self.password_store:
            env["PASSWORD_STORE_DIR"] = os.path.expanduser(self.password_store)
        if self.gpg_key:
            env["PASSWORD_STORE_KEY"] = self.gpg_key
        return env

    def _show(self, path: str) -> str:
        return run_cli("pass", ["show", path], "show", timeout=self.timeout, env=self._env())

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        content = self._show(ref.name)
        fields = parse_entry(content)
        metadata = {"path": ref.name}

        if ref.field:
            if ref.field not in fields:
                raise AdapterError("extract", f"key '{ref.field}' is not in the entry", path=ref.name)
            return RawSecret(value=fields[ref.field], metadata=metadata)

        extra = content.strip("\n").split("\n")[1:]
        if extra:
            metadata["additional_data"] = "\n".join(extra)
        return RawSecret(value=fields["password"], metadata=metadata)

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        content = self._show(ref.name).strip("\n")
        tags = {"path": ref.name}
        folder, sep, _ = ref.name.rpartition("/")
        if sep:
            tags["folder"] = folder
        kind = "password_with_metadata" if "\n" in content else "password"
        return Metadata(exists=True, size=len(content), type=kind, tags=tags)

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        output = run_cli("pass", ["ls"] + ([path] if path else []), "list", timeout=self.timeout, env=self._env())
        # First line is the store root
        names = [_TREE_PREFIX.sub("", line) for line in output.splitlines()[1:]]
        return [n for n in names if n][:limit]


@register_provider("pass")
def create_pass_provider(name: str, config: Mapping[str, Any]) -> AdapterProvider:
    adapter = PassAdapter(
        password_store=get_str(config, "password_store"),
        gpg_key=get_str(config, "gpg_key"),
        timeout=get_float(config, "timeout", DEFAULT_TIMEOUT),
    )
    return AdapterProvider(name, adapter, parse_pass_reference, PASS_CAPABILITIES, backend="pass")
