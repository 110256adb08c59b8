import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tokengate.config import settings
from tokengate.database import engine
from tokengate.errors import ComplianceError
from tokengate.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.json_logs)

from tokengate.api.policy import router as policy_router  # noqa: E402
from tokengate.api.templates import router as templates_router  # noqa: E402
from tokengate.api.requirements import router as requirements_router  # noqa: E402
from tokengate.api.issuances import router as issuances_router  # noqa: E402
from tokengate.api.authorizations import router as authorizations_router  # noqa: E402
from tokengate.api.authorization_requests import router as authorization_requests_router  # noqa: E402
from tokengate.api.metrics import router as metrics_router  # noqa: E402
from tokengate.middleware.metrics import PrometheusMiddleware  # noqa: E402
from tokengate.middleware.request_context import RequestContextMiddleware  # noqa: E402

logger = logging.getLogger("tokengate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("tokengate started (%s)", settings.environment)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="tokengate",
    description="Compliance core for regulated token issuance",
    version="0.1.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-ID", "X-Tenant-Id", "X-Actor-Id"],
)

# ── Request context (request ID, tenant ID, timing) ──────────────────────────
app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics ───────────────────────────────────────────────────────
app.add_middleware(PrometheusMiddleware)


@app.exception_handler(ComplianceError)
async def compliance_error_handler(request: Request, exc: ComplianceError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level, "%s on %s %s: %s %s",
        exc.code, request.method, request.url.path, exc.message, exc.context,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(policy_router)
app.include_router(templates_router)
app.include_router(requirements_router)
app.include_router(issuances_router)
app.include_router(authorizations_router)
app.include_router(authorization_requests_router)
app.include_router(metrics_router)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        # Inline reconciliation still works without the queue
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
