"""httpx plumbing shared by the HTTP API backends."""

from typing import Any, Mapping, Optional, Union

import httpx

from core.config.fields import get_bool, get_float, get_str
from core.secrets.exceptions import AdapterError

DEFAULT_TIMEOUT = 30.0


def build_client(
    base_url: str,
    config: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.Client:
    """
    Client honoring the common ``timeout``, ``ca_cert`` and
    ``insecure_skip_verify`` settings.
    """
    verify: Union[bool, str] = True
    if get_bool(config, "insecure_skip_verify"):
        verify = False
    elif get_str(config, "ca_cert"):
        verify = get_str(config, "ca_cert")
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        timeout=get_float(config, "timeout", DEFAULT_TIMEOUT),
        verify=verify,
        headers=dict(headers or {}),
    )


def check_response(response: httpx.Response, operation: str, path: str = "") -> Any:
    """
    Return the decoded JSON body of a 2xx response.

    Raises:
        AdapterError: With the status code, for any other response
    """
    if response.status_code >= 400:
        message = _error_message(response)
        raise AdapterError(operation, message, path=path, status_code=response.status_code)
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise AdapterError(operation, f"invalid JSON response: {e}", path=path, cause=e)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "messages"):
            if body.get(key):
                value = body[key]
                return "; ".join(map(str, value)) if isinstance(value, list) else str(value)
    return response.reason_phrase
