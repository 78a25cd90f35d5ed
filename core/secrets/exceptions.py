"""Custom exceptions for secret resolution."""

from typing import Optional


class SecretError(Exception):
    """Base exception for everything raised by providers and routers."""

    pass


class SecretNotFoundError(SecretError):
    """Raised when the referenced secret does not exist in the backend."""

    def __init__(self, provider: str, key: str):
        self.provider = provider
        self.key = key
        super().__init__(f"secret not found: {key} in {provider}")


class SecretAuthError(SecretError):
    """Raised when authentication or authorization against a backend fails."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"authentication failed for {provider}: {message}")


class SecretConfigError(SecretError):
    """Raised at construction time when a provider setting is missing or invalid."""

    def __init__(self, field: str, message: str, suggestion: str = ""):
        self.field = field
        self.message = message
        self.suggestion = suggestion
        text = f"Configuration error in field '{field}': {message}"
        if suggestion:
            text += f"\n  Try: {suggestion}"
        super().__init__(text)


class SecretBackendError(SecretError):
    """
    User-facing operational error.

    Used for anything the operator can plausibly fix: permissions, network,
    malformed input, unknown services. Always carries a suggestion.
    """

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        details: str = "",
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.suggestion = suggestion
        self.details = details
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message or (str(self.cause) if self.cause else "")]
        if self.details:
            parts.append(f"\n  Details: {self.details}")
        if self.suggestion:
            parts.append(f"\n  Try: {self.suggestion}")
        return "".join(parts)


class ReferenceParseError(SecretBackendError):
    """Raised by reference parsers on malformed input. Never involves I/O."""

    def __init__(self, raw: str, message: str, suggestion: str = ""):
        self.raw = raw
        super().__init__(
            message=f"Malformed reference '{raw}': {message}",
            suggestion=suggestion or "Check the reference syntax for this provider",
        )


class AdapterError(Exception):
    """
    Error raised inside a single backend adapter.

    Providers convert it into one of the SecretError kinds at the boundary,
    so it never reaches callers of resolve/describe/validate.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        path: str = "",
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.message = message
        self.path = path
        self.status_code = status_code
        self.cause = cause
        if status_code:
            text = f"{operation} error (status {status_code}): {message}"
        elif path:
            text = f"{operation} error for {path}: {message}"
        else:
            text = f"{operation} error: {message}"
        super().__init__(text)
