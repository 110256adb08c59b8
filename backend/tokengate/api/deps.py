"""
API Dependencies — DB session, tenant context, ledger adapter.

Tenant resolution: every tenant-scoped endpoint requires an
``X-Tenant-Id`` header naming an existing organization. ``X-Actor-Id``
optionally names the human or system acting, recorded as verifier on
requirement actions.
"""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import async_session
from tokengate.errors import AssetNotFound
from tokengate.ledger import LedgerAdapter, get_ledger_adapter
from tokengate.models import Asset, Organization

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "api"


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Ledger ───────────────────────────────────────────────────────────────────

def get_ledger() -> LedgerAdapter:
    return get_ledger_adapter()


# ── Tenant context ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    actor: str = DEFAULT_ACTOR


async def get_tenant_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    tenant_id = request.headers.get("X-Tenant-Id", "").strip()
    if not tenant_id:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-Id header")

    organization = await db.get(Organization, tenant_id)
    if organization is None:
        logger.debug("Unknown tenant %s", tenant_id)
        raise HTTPException(status_code=403, detail="Unknown tenant")

    actor = request.headers.get("X-Actor-Id", "").strip() or DEFAULT_ACTOR
    return TenantContext(tenant_id=tenant_id, actor=actor)


async def get_tenant_asset(db: AsyncSession, asset_id: str, ctx: TenantContext) -> Asset:
    """Load an asset, hiding assets of other tenants behind AssetNotFound."""
    result = await db.execute(select(Asset).where(Asset.id == asset_id))
    asset = result.scalar_one_or_none()
    if asset is None or asset.tenant_id != ctx.tenant_id:
        raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
    return asset
