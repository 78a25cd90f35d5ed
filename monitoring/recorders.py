"""Metrics recorder - stateless functions to record metrics."""

import time
from contextlib import contextmanager
from typing import Generator, Optional

from monitoring.definitions import (
    SECRET_OPERATIONS,
    SECRET_OPERATION_LATENCY,
    SECRET_AUTH,
    SECRET_TOKEN_CACHE,
)


@contextmanager
def track_time() -> Generator[dict, None, None]:
    """
    Context manager to track execution time.

    Usage:
        with track_time() as t:
            do_work()
        print(t["duration"])  # seconds
    """
    result = {"duration": 0.0}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["duration"] = time.perf_counter() - start


class Metrics:
    """
    Stateless metrics recorder.

    Usage:
        from monitoring import Metrics, track_time

        with track_time() as t:
            adapter.get_secret(token, ref)
        Metrics.operation("vault", "resolve", "success", latency=t["duration"])
    """

    @staticmethod
    def operation(
        provider: str, operation: str, outcome: str, latency: Optional[float] = None
    ) -> None:
        """Record one provider operation and its outcome (success, not_found, auth_error, error)."""
        SECRET_OPERATIONS.labels(
            provider=provider, operation=operation, outcome=outcome
        ).inc()
        if latency:
            SECRET_OPERATION_LATENCY.labels(
                provider=provider, operation=operation
            ).observe(latency)

    @staticmethod
    def auth(provider: str, success: bool = True) -> None:
        """Record an authentication round-trip."""
        outcome = "success" if success else "error"
        SECRET_AUTH.labels(provider=provider, outcome=outcome).inc()

    @staticmethod
    def token_cache(provider: str, hit: bool) -> None:
        """Record a token cache lookup."""
        SECRET_TOKEN_CACHE.labels(
            provider=provider, result="hit" if hit else "miss"
        ).inc()
