"""
Requirement Templates API — list effective templates, publish new versions.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_tenant_context
from tokengate.schemas.schemas import TemplateListResponse, TemplatePublishRequest, TemplateResponse
from tokengate.services.template_store import TemplateStore

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    at: datetime | None = Query(None, description="Evaluation instant; defaults to now"),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    templates = await TemplateStore(db).get_effective_templates(_naive_utc(at) if at else None)
    items = [TemplateResponse.model_validate(t) for t in templates]
    return TemplateListResponse(templates=items, total=len(items))


@router.post("", response_model=TemplateResponse, status_code=201)
async def publish_template(
    body: TemplatePublishRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    """Publish a template version (camelCase fields accepted)."""
    template = await TemplateStore(db).publish_template(
        body.id,
        regime_id=body.regime_id,
        name=body.name,
        applicability_expr=body.applicability_expr,
        version=body.version,
        effective_from=_naive_utc(body.effective_from),
        code=body.code,
        description=body.description,
        data_points=body.data_points,
        enforcement_hints=body.enforcement_hints,
        effective_to=_naive_utc(body.effective_to) if body.effective_to else None,
    )
    return TemplateResponse.model_validate(template)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
