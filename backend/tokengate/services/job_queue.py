"""
Redis job queue for on-demand authorization reconciliation.

Each job has a status hash (24h expiry) that the API can poll; the
worker pops job payloads from a list.
"""

import json
import logging
from uuid import uuid4

import redis.asyncio as aioredis

from tokengate.config import settings
from tokengate.database import utcnow

logger = logging.getLogger(__name__)

QUEUE_KEY = "tokengate:reconcile:queue"
JOB_KEY_PREFIX = "tokengate:reconcile:job:"
JOB_TTL_SECONDS = 86400


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


async def enqueue_reconcile_job(asset_id: str | None = None, tenant_id: str | None = None) -> str:
    """Queue a reconciliation of one asset, or of all ACTIVE assets of a tenant."""
    job_id = f"RJOB-{uuid4().hex[:12].upper()}"
    r = await get_redis()

    job_data = {
        "job_id": job_id,
        "status": "queued",
        "asset_id": asset_id or "",
        "tenant_id": tenant_id or "",
        "started_at": "",
        "completed_at": "",
    }
    await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=job_data)
    await r.expire(f"{JOB_KEY_PREFIX}{job_id}", JOB_TTL_SECONDS)

    await r.lpush(QUEUE_KEY, json.dumps({
        "job_id": job_id,
        "asset_id": asset_id,
        "tenant_id": tenant_id,
    }))

    await r.aclose()
    logger.info("Queued reconcile job %s (asset=%s tenant=%s)", job_id, asset_id, tenant_id)
    return job_id


async def get_job_status(job_id: str) -> dict | None:
    r = await get_redis()
    data = await r.hgetall(f"{JOB_KEY_PREFIX}{job_id}")
    await r.aclose()
    if not data:
        return None
    if "result" in data:
        data["result"] = json.loads(data["result"])
    return data


async def update_job_status(job_id: str, *, status: str, result: dict | None = None):
    r = await get_redis()
    updates: dict = {"status": status}
    if status == "running":
        updates["started_at"] = utcnow().isoformat()
    if status in ("completed", "failed"):
        updates["completed_at"] = utcnow().isoformat()
    if result is not None:
        updates["result"] = json.dumps(result)

    await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=updates)
    await r.aclose()
