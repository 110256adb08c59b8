"""
Requirements API — live requirement instances of an asset, the issuance
gate check, and verification actions.
"""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_tenant_asset, get_tenant_context
from tokengate.policy.kernel import PolicyKernel
from tokengate.schemas.schemas import (
    AcknowledgeRequirementRequest,
    CreateRequirementsRequest,
    PolicyEvaluationResponse,
    RequirementInstanceResponse,
    RequirementListResponse,
    ValidationResponse,
    VerifyRequirementRequest,
)
from tokengate.services.requirement_service import RequirementService
from tokengate.services.requirement_snapshot import RequirementSnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["requirements"])


# ── GET /api/assets/{asset_id}/requirements ─────────────────────────────────

@router.get("/assets/{asset_id}/requirements", response_model=RequirementListResponse)
async def list_requirements(
    asset_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    await get_tenant_asset(db, asset_id, ctx)
    instances = await RequirementService(db).list_live(asset_id)
    items = [RequirementInstanceResponse.model_validate(i) for i in instances]
    return RequirementListResponse(requirements=items, total=len(items))


# ── POST /api/assets/{asset_id}/requirements — evaluate + instantiate ──────

@router.post("/assets/{asset_id}/requirements", response_model=PolicyEvaluationResponse)
async def create_requirements(
    asset_id: str,
    body: CreateRequirementsRequest | None = Body(None),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    """Evaluate the asset's facts and create any missing live requirements."""
    await get_tenant_asset(db, asset_id, ctx)
    kernel = PolicyKernel(db)
    facts = body.facts if body is not None and body.facts is not None else await kernel.facts_for_asset(asset_id)
    result = await kernel.create_requirement_instances(asset_id, facts)
    return result.to_dict()


# ── GET /api/assets/{asset_id}/requirements/validation ──────────────────────

@router.get("/assets/{asset_id}/requirements/validation", response_model=ValidationResponse)
async def validate_requirements(
    asset_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    await get_tenant_asset(db, asset_id, ctx)
    return await RequirementSnapshotService(db).validate_issuance_requirements(asset_id)


# ── POST /api/requirements/{instance_id}/verify ─────────────────────────────

@router.post("/requirements/{instance_id}/verify", response_model=RequirementInstanceResponse)
async def verify_requirement(
    instance_id: str,
    body: VerifyRequirementRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    service = RequirementService(db)
    instance = await service.get(instance_id)
    await get_tenant_asset(db, instance.asset_id, ctx)
    instance = await service.verify(
        instance_id,
        status=body.status,
        verifier_id=ctx.actor,
        evidence_refs=body.evidence_refs,
        exception_reason=body.exception_reason,
    )
    return RequirementInstanceResponse.model_validate(instance)


# ── POST /api/requirements/{instance_id}/acknowledge ────────────────────────

@router.post("/requirements/{instance_id}/acknowledge", response_model=RequirementInstanceResponse)
async def acknowledge_requirement(
    instance_id: str,
    body: AcknowledgeRequirementRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    service = RequirementService(db)
    instance = await service.get(instance_id)
    await get_tenant_asset(db, instance.asset_id, ctx)
    instance = await service.acknowledge(instance_id, acknowledged_by=ctx.actor, reason=body.reason)
    return RequirementInstanceResponse.model_validate(instance)
