"""Prometheus metric definitions."""

from prometheus_client import Counter, Histogram

# ============================================================
# PROVIDER OPERATION METRICS
# ============================================================

SECRET_OPERATIONS = Counter(
    "secret_operations_total",
    "Provider operations",
    ["provider", "operation", "outcome"],
)

SECRET_OPERATION_LATENCY = Histogram(
    "secret_operation_latency_seconds",
    "Time spent in a provider operation",
    ["provider", "operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ============================================================
# AUTHENTICATION METRICS
# ============================================================

SECRET_AUTH = Counter(
    "secret_auth_total", "Authentication round-trips", ["provider", "outcome"]
)

SECRET_TOKEN_CACHE = Counter(
    "secret_token_cache_total", "Token cache lookups", ["provider", "result"]
)
