"""
Issuances API — gated issuance, frozen requirement snapshots, manifests.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_ledger, get_tenant_asset, get_tenant_context
from tokengate.ledger import LedgerAdapter
from tokengate.schemas.schemas import (
    IssuanceCreateRequest,
    IssuanceCreateResponse,
    IssuanceResponse,
    ManifestResponse,
    RequirementInstanceResponse,
    SnapshotResponse,
)
from tokengate.services.issuance_service import IssuanceService
from tokengate.services.manifest import ComplianceManifestBuilder, generate_manifest_hash
from tokengate.services.requirement_snapshot import RequirementSnapshotService

router = APIRouter(prefix="/api", tags=["issuances"])


@router.post("/assets/{asset_id}/issuances", response_model=IssuanceCreateResponse, status_code=201)
async def create_issuance(
    asset_id: str,
    body: IssuanceCreateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    """Gate, snapshot and record an issuance; submit it when a signed blob is given."""
    await get_tenant_asset(db, asset_id, ctx)
    record = await IssuanceService(db, ledger).issue(
        asset_id,
        amount=body.amount,
        holder_address=body.holder_address,
        extra_facts=body.extra_facts,
        signed_tx_blob=body.signed_tx_blob,
    )
    return IssuanceCreateResponse(
        issuance=IssuanceResponse.model_validate(record.issuance),
        manifest_hash=record.manifest_hash,
        snapshot_count=record.snapshot_count,
    )


@router.get("/issuances/{issuance_id}", response_model=IssuanceResponse)
async def get_issuance(
    issuance_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    service = IssuanceService(db, ledger)
    issuance = await service.get_issuance(issuance_id)
    await get_tenant_asset(db, issuance.asset_id, ctx)
    issuance = await service.refresh_status(issuance_id)
    return IssuanceResponse.model_validate(issuance)


@router.get("/issuances/{issuance_id}/snapshot", response_model=SnapshotResponse)
async def get_snapshot(
    issuance_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    issuance = await IssuanceService(db).get_issuance(issuance_id)
    await get_tenant_asset(db, issuance.asset_id, ctx)
    snapshot = await RequirementSnapshotService(db).get_issuance_snapshot(issuance_id)
    items = [RequirementInstanceResponse.model_validate(r) for r in snapshot]
    return SnapshotResponse(issuance_id=issuance_id, requirements=items, total=len(items))


@router.get("/issuances/{issuance_id}/manifest", response_model=ManifestResponse)
async def get_manifest(
    issuance_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    """Rebuild the manifest from stored rows and compare with the recorded hash."""
    issuance = await IssuanceService(db).get_issuance(issuance_id)
    await get_tenant_asset(db, issuance.asset_id, ctx)
    manifest = await ComplianceManifestBuilder(db).build_manifest(issuance_id)
    manifest_hash = generate_manifest_hash(manifest)
    return ManifestResponse(
        manifest=manifest,
        manifest_hash=manifest_hash,
        stored_hash=issuance.manifest_hash,
        matches_stored=manifest_hash == issuance.manifest_hash,
    )
