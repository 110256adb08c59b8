"""
Reconciliation worker — processes reconcile jobs from the Redis queue and,
every RECONCILE_INTERVAL_SECONDS, runs the periodic pass:
every ACTIVE asset reconciled, expired idempotency records swept, stale
authorization requests expired, submitted issuances polled.

Run with: python worker.py
"""

import asyncio
import json
import logging
import time

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tokengate.config import settings
from tokengate.errors import ComplianceError
from tokengate.ledger import get_ledger_adapter
from tokengate.middleware.logging_config import configure_logging
from tokengate.services.handoff import AuthorizationHandoff
from tokengate.services.idempotency import IdempotencyGuard
from tokengate.services.issuance_service import IssuanceService
from tokengate.services.job_queue import QUEUE_KEY, update_job_status
from tokengate.services.reconciliation import ReconciliationEngine, ReconciliationResult

configure_logging(settings.log_level, settings.json_logs)
logger = logging.getLogger("worker")


async def process_reconcile_job(job_data: dict, SessionMaker):
    job_id = job_data["job_id"]
    asset_id = job_data.get("asset_id")
    tenant_id = job_data.get("tenant_id")

    await update_job_status(job_id, status="running")
    t_start = time.time()

    async with SessionMaker() as db:
        try:
            engine = ReconciliationEngine(db, get_ledger_adapter())
            if asset_id:
                result = await engine.reconcile_asset(asset_id)
            else:
                result = await engine.reconcile_tenant(tenant_id)
            await db.commit()
        except Exception as exc:
            logger.error("Job %s failed: %s", job_id, exc, exc_info=True)
            await db.rollback()
            await update_job_status(job_id, status="failed", result={"error": str(exc)})
            return

    summary = result.to_dict()
    summary["duration_seconds"] = round(time.time() - t_start, 3)
    await update_job_status(job_id, status="completed", result=summary)
    logger.info("Job %s completed: %s", job_id, summary)


async def run_periodic_pass(SessionMaker):
    """One maintenance sweep; each asset commits on its own."""
    ledger = get_ledger_adapter()

    async with SessionMaker() as db:
        asset_ids = await ReconciliationEngine(db, ledger).active_asset_ids()

    total = ReconciliationResult()
    for asset_id in asset_ids:
        async with SessionMaker() as db:
            try:
                total.add(await ReconciliationEngine(db, ledger).reconcile_asset(asset_id))
                await db.commit()
            except ComplianceError as exc:
                await db.rollback()
                total.errors.append(f"Asset {asset_id}: {exc.message}")
            except Exception as exc:
                logger.error("Reconciliation of asset %s failed: %s", asset_id, exc, exc_info=True)
                await db.rollback()
                total.errors.append(f"Asset {asset_id}: {exc}")

    async with SessionMaker() as db:
        removed = await IdempotencyGuard(db).cleanup_expired()
        expired = await AuthorizationHandoff(db, ledger).expire_stale_requests()
        issuances = IssuanceService(db, ledger)
        for issuance_id in await issuances.pending_submissions():
            try:
                async with db.begin_nested():
                    await issuances.refresh_status(issuance_id)
            except ComplianceError as exc:
                logger.warning("Could not refresh issuance %s: %s", issuance_id, exc.message)
            except Exception as exc:
                logger.error("Refreshing issuance %s failed: %s", issuance_id, exc, exc_info=True)
        await db.commit()

    summary = {
        "assets": len(asset_ids),
        "appended": total.external + total.authorized + total.limit_updated + total.closed,
        "errors": list(total.errors),
        "idempotency_removed": removed,
        "requests_expired": expired,
    }
    logger.info(
        "Periodic pass: %d assets, %d rows appended, %d errors, %d idempotency records removed, %d requests expired",
        summary["assets"], summary["appended"], len(summary["errors"]), removed, expired,
    )
    return summary


async def main():
    """Main worker loop — polls Redis for reconcile jobs."""
    engine = create_async_engine(settings.database_url, echo=False)
    SessionMaker = async_sessionmaker(engine, expire_on_commit=False)

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", QUEUE_KEY)

    last_pass = 0.0
    while True:
        try:
            if time.time() - last_pass >= settings.reconcile_interval_seconds:
                await run_periodic_pass(SessionMaker)
                last_pass = time.time()

            # Block-pop from queue (5 second timeout)
            result = await r.brpop(QUEUE_KEY, timeout=5)
            if result is None:
                continue
            _, raw = result
            job_data = json.loads(raw)
            logger.info("Processing job: %s", job_data.get("job_id"))
            await process_reconcile_job(job_data, SessionMaker)
        except Exception as exc:
            logger.error("Worker loop error: %s", exc, exc_info=True)
            await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
