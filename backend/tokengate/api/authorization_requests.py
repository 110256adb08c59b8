"""
Authorization Requests API — one-time holder handoff.

Issuer-side endpoints are tenant scoped. The token lookup and the holder
callback are called from the holder portal and carry no tenant header:
the token, or the on-ledger proof, is the credential.
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import TenantContext, get_db, get_ledger, get_tenant_context
from tokengate.errors import RequestExpired
from tokengate.ledger import LedgerAdapter
from tokengate.models import AuthorizationRequestStatus
from tokengate.schemas.schemas import (
    AuthorizationRequestCreate,
    AuthorizationRequestCreated,
    AuthorizationRequestListResponse,
    AuthorizationRequestResponse,
    HolderAssetInfo,
    HolderCallbackRequest,
    HolderCallbackResponse,
    IssuerAuthorizeRequest,
    IssuerAuthorizeResponse,
    TokenLookupResponse,
)
from tokengate.services.handoff import AuthorizationHandoff

router = APIRouter(prefix="/api/authorization-requests", tags=["authorization-requests"])


@router.post("", response_model=AuthorizationRequestCreated, status_code=201)
async def create_authorization_request(
    body: AuthorizationRequestCreate,
    response: Response,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    """Invite a holder; the auth URL is only returned on first creation."""
    created = await AuthorizationHandoff(db, ledger).create_request(
        ctx.tenant_id,
        body.asset_id,
        body.holder_address,
        body.requested_limit,
        ttl_hours=body.ttl_hours,
    )
    if created["is_duplicate"]:
        response.status_code = 200
    return AuthorizationRequestCreated(
        id=created["id"],
        status=created["status"],
        expires_at=created["expires_at"],
        auth_url=created["auth_url"],
        is_duplicate=created["is_duplicate"],
    )


@router.get("", response_model=AuthorizationRequestListResponse)
async def list_authorization_requests(
    status: AuthorizationRequestStatus | None = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    requests = await AuthorizationHandoff(db, ledger).list_requests(ctx.tenant_id, status)
    items = [AuthorizationRequestResponse.model_validate(r) for r in requests]
    return AuthorizationRequestListResponse(requests=items, total=len(items))


@router.get("/token/{token}", response_model=TokenLookupResponse)
async def get_request_by_token(
    token: str,
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    handoff = AuthorizationHandoff(db, ledger)
    try:
        request = await handoff.get_request_by_token(token)
    except RequestExpired:
        # The EXPIRED transition outlives the failed request
        await db.commit()
        raise
    asset = await handoff.get_asset(request.asset_id)
    return TokenLookupResponse(
        request=AuthorizationRequestResponse.model_validate(request),
        asset=HolderAssetInfo(
            code=asset.code,
            ledger=asset.ledger.value,
            network=asset.network,
            issuing_address=asset.issuing_address,
        ),
    )


@router.post("/{request_id}/holder-callback", response_model=HolderCallbackResponse)
async def holder_callback(
    request_id: str,
    body: HolderCallbackRequest,
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    """Record the holder's TrustSet once it is validated on the ledger."""
    try:
        return await AuthorizationHandoff(db, ledger).complete_callback(request_id, body.tx_hash)
    except RequestExpired:
        await db.commit()
        raise


@router.post("/{request_id}/authorize", response_model=IssuerAuthorizeResponse)
async def authorize_request(
    request_id: str,
    body: IssuerAuthorizeRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    return await AuthorizationHandoff(db, ledger).authorize(
        request_id, body.signed_tx_blob, tenant_id=ctx.tenant_id,
    )


@router.post("/{request_id}/cancel", response_model=AuthorizationRequestResponse)
async def cancel_request(
    request_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerAdapter = Depends(get_ledger),
):
    request = await AuthorizationHandoff(db, ledger).cancel(request_id, tenant_id=ctx.tenant_id)
    return AuthorizationRequestResponse.model_validate(request)
