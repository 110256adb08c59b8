"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes
application-level counters for policy evaluation, authorization
reconciliation and the holder handoff.
"""

import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Policy metrics ───────────────────────────────────────────────────────────

policy_evaluations_total = Counter(
    "policy_evaluations_total",
    "Total policy fact evaluations",
)

policy_templates_skipped_total = Counter(
    "policy_templates_skipped_total",
    "Requirement templates skipped because their predicate could not be parsed",
)

# ── Authorization metrics ────────────────────────────────────────────────────

authorization_transitions_total = Counter(
    "authorization_transitions_total",
    "Authorization rows appended, by status",
    ["status"],
)

reconciliation_errors_total = Counter(
    "reconciliation_errors_total",
    "Per-holder or per-asset reconciliation errors",
)

reconciliation_duration_seconds = Histogram(
    "reconciliation_duration_seconds",
    "Duration of one asset reconciliation pass in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

handoff_events_total = Counter(
    "handoff_events_total",
    "One-time authorization handoff events",
    ["event"],
)

_UUID_RE = re.compile(r"^[0-9a-fA-F-]{32,36}$")


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/assets/3f0c.../requirements → /api/assets/{id}/requirements
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (_UUID_RE.match(part) or part.isdigit() or len(part) > 20):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
