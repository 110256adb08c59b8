"""
Request context middleware.

Propagates (or mints) an X-Request-ID and binds the request id, tenant and
acting user to ContextVars, so every log line written while serving the
request can be traced back to who asked and on whose behalf.
"""

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")
_actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")

_CONTEXT_HEADERS = (
    (_tenant_id_var, "X-Tenant-Id"),
    (_actor_id_var, "X-Actor-Id"),
)


def get_request_id() -> str:
    return _request_id_var.get()


def get_tenant_id() -> str:
    """Tenant the current request is scoped to; empty for holder-facing calls."""
    return _tenant_id_var.get()


def get_actor_id() -> str:
    return _actor_id_var.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        tokens = [(_request_id_var, _request_id_var.set(request_id))]
        for var, header in _CONTEXT_HEADERS:
            tokens.append((var, var.set(request.headers.get(header, "").strip())))

        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "%s %s -> %s in %.0fms",
                request.method, request.url.path, response.status_code, duration_ms,
                extra={"duration_ms": duration_ms, "status_code": response.status_code},
            )
            return response
        finally:
            for var, token in reversed(tokens):
                var.reset(token)
