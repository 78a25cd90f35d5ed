"""Subprocess helper shared by the password-manager CLI backends."""

import subprocess
from typing import Mapping, Optional, Sequence

from core.secrets.exceptions import AdapterError
from core.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


def run_cli(
    binary: str,
    args: Sequence[str],
    operation: str,
    timeout: float = DEFAULT_TIMEOUT,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Run a CLI and return its stdout.

    Raises:
        AdapterError: If the binary is missing, times out or exits non-zero.
            The message carries stderr so the provider can classify it.
    """
    cmd = [binary, *args]
    logger.debug(f"Running {binary} {args[0] if args else ''}")
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True, timeout=timeout, env=env
        )
    except FileNotFoundError as e:
        raise AdapterError(operation, f"'{binary}' is not installed or not on PATH", cause=e)
    except subprocess.TimeoutExpired as e:
        raise AdapterError(operation, f"'{binary}' timed out after {timeout:.0f}s", cause=e)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip() or (e.stdout or "").strip()
        raise AdapterError(operation, stderr or f"'{binary}' exited with status {e.returncode}")
    return result.stdout
