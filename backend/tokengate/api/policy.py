"""
Policy API — evaluate regulatory facts without persisting anything.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_tenant_asset, get_tenant_context
from tokengate.policy.kernel import PolicyKernel
from tokengate.schemas.schemas import PolicyEvaluateRequest, PolicyEvaluationResponse

router = APIRouter(prefix="/api/policy", tags=["policy"])


@router.post("/evaluate", response_model=PolicyEvaluationResponse)
async def evaluate_policy(
    body: PolicyEvaluateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    """Applicable requirements, enforcement plan and rationale for a set of facts."""
    if body.asset_id:
        await get_tenant_asset(db, body.asset_id, ctx)
    result = await PolicyKernel(db).evaluate_facts(body.facts, asset_id=body.asset_id)
    return result.to_dict()
