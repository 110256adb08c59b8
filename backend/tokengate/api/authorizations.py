"""
Authorizations API — reconcile trustlines against the ledger and read the
append-only authorization history.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_ledger, get_tenant_asset, get_tenant_context
from tokengate.ledger import LedgerAdapter
from tokengate.schemas.schemas import (
    AuthorizationListResponse,
    AuthorizationResponse,
    QueuedJobResponse,
    ReconcileResponse,
)
from tokengate.services.job_queue import enqueue_reconcile_job, get_job_status
from tokengate.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/api", tags=["authorizations"])


@router.post(
    "/assets/{asset_id}/authorizations/reconcile",
    response_model=ReconcileResponse | QueuedJobResponse,
)
async def reconcile_asset(
    asset_id: str,
    queue: bool = Query(False, description="Run in the background worker instead of inline"),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    await get_tenant_asset(db, asset_id, ctx)
    if queue:
        job_id = await enqueue_reconcile_job(asset_id=asset_id, tenant_id=ctx.tenant_id)
        return QueuedJobResponse(job_id=job_id)
    result = await ReconciliationEngine(db, ledger).reconcile_asset(asset_id)
    return ReconcileResponse(**result.to_dict())


@router.post("/authorizations/reconcile", response_model=ReconcileResponse)
async def reconcile_tenant(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    """Reconcile every ACTIVE asset of the calling tenant."""
    result = await ReconciliationEngine(db, ledger).reconcile_tenant(ctx.tenant_id)
    return ReconcileResponse(**result.to_dict())


@router.get("/authorizations/jobs/{job_id}")
async def reconcile_job_status(
    job_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
):
    status = await get_job_status(job_id)
    if status is None or status.get("tenant_id") != ctx.tenant_id:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return status


@router.get("/assets/{asset_id}/authorizations", response_model=AuthorizationListResponse)
async def list_authorizations(
    asset_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    """Current state per holder (latest row each)."""
    await get_tenant_asset(db, asset_id, ctx)
    rows = await ReconciliationEngine(db, ledger).current_authorizations(asset_id)
    items = [AuthorizationResponse.model_validate(r) for r in rows]
    return AuthorizationListResponse(authorizations=items, total=len(items))


@router.get(
    "/assets/{asset_id}/authorizations/{holder_address}/history",
    response_model=AuthorizationListResponse,
)
async def authorization_history(
    asset_id: str,
    holder_address: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    await get_tenant_asset(db, asset_id, ctx)
    rows = await ReconciliationEngine(db, ledger).authorization_history(asset_id, holder_address)
    items = [AuthorizationResponse.model_validate(r) for r in rows]
    return AuthorizationListResponse(authorizations=items, total=len(items))
