"""
One-Time Authorization Handoff

Issuer invites a holder with a single-use link, the holder opens a
trustline with their own wallet, and the callback proves it on the
ledger before the request is consumed:

    INVITED ──callback(valid TrustSet)──▶ CONSUMED ──authorize──▶ ISSUER_AUTHORIZED row
       │
       ├──cancel──▶ CANCELLED
       └──ttl─────▶ EXPIRED

Consumption is a conditional UPDATE on ``status = INVITED``; of any number
of concurrent callbacks exactly one wins, the rest get
RequestAlreadyProcessed. Issuer authorization is keyed on the request
and never appends a second ISSUER_AUTHORIZED row to the holder's chain.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.config import settings
from tokengate.database import utcnow
from tokengate.errors import (
    AssetNotActive, AssetNotFound, InvalidProof, RequestAlreadyProcessed,
    RequestExpired, RequestNotFound,
)
from tokengate.ledger.base import LedgerAdapter
from tokengate.ledger.currency import same_currency
from tokengate.middleware.metrics import handoff_events_total
from tokengate.models import (
    Asset, AssetLedger, AssetStatus, AuthorizationInitiator, AuthorizationRequest,
    AuthorizationRequestStatus, AuthorizationStatus,
)
from tokengate.services import one_time_token
from tokengate.services.authorization_history import AuthorizationHistory
from tokengate.services.idempotency import IdempotencyGuard, generate_idempotency_key

logger = logging.getLogger(__name__)

Notifier = Callable[[AuthorizationRequest, str], Awaitable[Any]]


class AuthorizationHandoff:
    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerAdapter,
        idempotency: IdempotencyGuard | None = None,
        notifier: Notifier | None = None,
    ):
        self.session = session
        self.ledger = ledger
        self.idempotency = idempotency or IdempotencyGuard(session)
        self.notifier = notifier
        self.history = AuthorizationHistory(session)

    async def create_request(
        self,
        tenant_id: str,
        asset_id: str,
        holder_address: str,
        requested_limit: str,
        ttl_hours: int | None = None,
    ) -> dict:
        """
        Invite a holder to open an authorized trustline.

        A fresh request returns ``token`` and ``auth_url``; these are the
        only places the raw token ever appears. A retried create with the
        same tenant, asset, holder and limit returns the original request,
        with its live status, ``is_duplicate`` set and no token, for as long
        as that request is still open. Once it is cancelled, consumed or
        expired the holder can be invited again.
        """
        ttl = ttl_hours if ttl_hours is not None else settings.authorization_request_ttl_hours
        issued: dict = {}

        async def _create() -> dict:
            asset = await self._get_tenant_asset(tenant_id, asset_id)
            await self._check_require_auth(asset)

            token = one_time_token.generate_token()
            request = AuthorizationRequest(
                tenant_id=tenant_id,
                asset_id=asset.id,
                holder_address=holder_address,
                requested_limit=requested_limit,
                one_time_token_hash=one_time_token.hash_token(token),
                status=AuthorizationRequestStatus.INVITED,
                expires_at=one_time_token.expiration_time(ttl),
                created_at=utcnow(),
            )
            self.session.add(request)
            await self.session.flush()

            issued["token"] = token
            issued["request"] = request
            return {
                "id": request.id,
                "status": request.status.value,
                "expires_at": request.expires_at,
            }

        key = generate_idempotency_key("create_authorization_request", {
            "tenant_id": tenant_id,
            "asset_id": asset_id,
            "holder_address": holder_address,
            "requested_limit": requested_limit,
        })
        outcome = await self.idempotency.check(key, _create, operation_name="create_authorization_request")
        if outcome.is_duplicate and not await self._still_open(outcome.result["id"]):
            # The stored invitation was cancelled, consumed or has lapsed
            await self.idempotency.forget(key)
            outcome = await self.idempotency.check(key, _create, operation_name="create_authorization_request")

        if outcome.is_duplicate:
            request = await self.get_request(outcome.result["id"])
            logger.info("Authorization request %s for %s on asset %s replayed", request.id, holder_address, asset_id)
            return {
                "id": request.id,
                "status": request.status.value,
                "expires_at": request.expires_at,
                "token": None,
                "auth_url": None,
                "is_duplicate": True,
            }

        auth_url = one_time_token.build_auth_url(settings.ui_origin, issued["token"])
        handoff_events_total.labels(event="created").inc()
        logger.info(
            "Authorization request %s created for holder %s on asset %s",
            outcome.result["id"], holder_address, asset_id,
        )

        if self.notifier is not None:
            try:
                await self.notifier(issued["request"], auth_url)
            except Exception:
                logger.exception("Notifying holder %s about request %s failed", holder_address, outcome.result["id"])

        return {**outcome.result, "token": issued["token"], "auth_url": auth_url, "is_duplicate": False}

    async def get_request_by_token(self, token: str) -> AuthorizationRequest:
        """Resolve a holder link; only INVITED, unexpired requests resolve."""
        result = await self.session.execute(
            select(AuthorizationRequest).where(
                AuthorizationRequest.one_time_token_hash == one_time_token.hash_token(token),
            )
        )
        request = result.scalar_one_or_none()
        if request is None or not one_time_token.verify_token(token, request.one_time_token_hash):
            raise RequestNotFound("Authorization request not found")
        if request.status != AuthorizationRequestStatus.INVITED:
            raise RequestAlreadyProcessed(
                "Authorization request already processed",
                request_id=request.id, status=request.status.value,
            )
        if one_time_token.is_expired(request.expires_at):
            await self._expire(request)
            raise RequestExpired("Authorization request has expired", request_id=request.id)
        return request

    async def complete_callback(self, request_id: str, tx_hash: str) -> dict:
        """Verify the holder's TrustSet and consume the request."""
        request = await self.get_request(request_id)
        if request.status != AuthorizationRequestStatus.INVITED:
            handoff_events_total.labels(event="rejected").inc()
            raise RequestAlreadyProcessed(
                "Authorization request already processed",
                request_id=request.id, status=request.status.value,
            )
        if one_time_token.is_expired(request.expires_at):
            await self._expire(request)
            handoff_events_total.labels(event="expired").inc()
            raise RequestExpired("Authorization request has expired", request_id=request.id)

        asset = await self.get_asset(request.asset_id)
        tx = await self.ledger.get_transaction(tx_hash)
        self._verify_trustset(request, asset, tx, tx_hash)

        now = utcnow()
        consumed = await self.session.execute(
            update(AuthorizationRequest)
            .where(
                AuthorizationRequest.id == request.id,
                AuthorizationRequest.status == AuthorizationRequestStatus.INVITED,
            )
            .values(
                status=AuthorizationRequestStatus.CONSUMED,
                consumed_at=now,
                consumed_tx_hash=tx_hash,
            )
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            handoff_events_total.labels(event="rejected").inc()
            raise RequestAlreadyProcessed(
                "Authorization request already processed", request_id=request.id,
            )
        await self.session.refresh(request)

        prior = await self.history.latest(asset.id, request.holder_address)
        await self.history.append(
            asset,
            request.holder_address,
            AuthorizationStatus.HOLDER_REQUESTED,
            request.requested_limit,
            AuthorizationInitiator.HOLDER,
            expected_prior_id=prior.id if prior is not None else None,
            tx_hash=tx_hash,
        )

        handoff_events_total.labels(event="consumed").inc()
        logger.info("Authorization request %s consumed by tx %s", request.id, tx_hash)
        return {"id": request.id, "status": request.status.value, "recorded": AuthorizationStatus.HOLDER_REQUESTED.value}

    async def authorize(self, request_id: str, signed_tx_blob: str, tenant_id: str | None = None) -> dict:
        """
        Submit the issuer's pre-signed authorization for a consumed request.

        Keyed on the request, so a retry returns the first outcome without a
        second submission. When the holder's chain already carries an
        ISSUER_AUTHORIZED row, for instance because reconciliation saw the
        ledger flag first, nothing is submitted or appended.
        """
        request = await self.get_request(request_id, tenant_id)
        if request.status != AuthorizationRequestStatus.CONSUMED:
            raise RequestAlreadyProcessed(
                "Authorization request is not awaiting issuer authorization",
                request_id=request.id, status=request.status.value,
            )

        authorized = AuthorizationStatus.ISSUER_AUTHORIZED.value

        async def _authorize() -> dict:
            asset = await self.get_asset(request.asset_id)
            if await self.history.authorized_in_chain(asset.id, request.holder_address):
                logger.info("Holder %s on asset %s is already authorized", request.holder_address, asset.id)
                return {"id": request.id, "tx_hash": None, "status": authorized, "recorded": False}

            submitted = await self.ledger.authorize_trustline(signed_tx_blob)
            if not submitted.accepted:
                raise InvalidProof(
                    f"Ledger rejected issuer authorization: {submitted.engine_result}",
                    request_id=request.id, tx_hash=submitted.tx_hash,
                )

            prior = await self.history.latest(asset.id, request.holder_address)
            await self.history.append(
                asset,
                request.holder_address,
                AuthorizationStatus.ISSUER_AUTHORIZED,
                request.requested_limit,
                AuthorizationInitiator.ISSUER,
                expected_prior_id=prior.id if prior is not None else None,
                tx_hash=submitted.tx_hash,
            )
            return {"id": request.id, "tx_hash": submitted.tx_hash, "status": authorized, "recorded": True}

        key = generate_idempotency_key("issuer_authorization", {
            "request_id": request.id,
            "status": authorized,
        })
        outcome = await self.idempotency.check(key, _authorize, operation_name="issuer_authorization")
        if outcome.is_duplicate:
            logger.info("Issuer authorization of request %s replayed", request.id)
        elif outcome.result["recorded"]:
            handoff_events_total.labels(event="authorized").inc()
        return {**outcome.result, "is_duplicate": outcome.is_duplicate}

    async def cancel(self, request_id: str, tenant_id: str | None = None) -> AuthorizationRequest:
        request = await self.get_request(request_id, tenant_id)
        if request.status != AuthorizationRequestStatus.INVITED:
            raise RequestAlreadyProcessed(
                "Only invited requests can be cancelled",
                request_id=request.id, status=request.status.value,
            )
        request.status = AuthorizationRequestStatus.CANCELLED
        await self.session.flush()
        handoff_events_total.labels(event="cancelled").inc()
        return request

    async def expire_stale_requests(self) -> int:
        result = await self.session.execute(
            update(AuthorizationRequest)
            .where(
                AuthorizationRequest.status == AuthorizationRequestStatus.INVITED,
                AuthorizationRequest.expires_at < utcnow(),
            )
            .values(status=AuthorizationRequestStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        count = result.rowcount or 0
        if count:
            handoff_events_total.labels(event="expired").inc(count)
            logger.info("Expired %d stale authorization requests", count)
        return count

    async def get_request(self, request_id: str, tenant_id: str | None = None) -> AuthorizationRequest:
        request = await self.session.get(AuthorizationRequest, request_id)
        if request is None or (tenant_id is not None and request.tenant_id != tenant_id):
            raise RequestNotFound("Authorization request not found", request_id=request_id)
        return request

    async def list_requests(
        self, tenant_id: str, status: AuthorizationRequestStatus | None = None,
    ) -> list[AuthorizationRequest]:
        stmt = select(AuthorizationRequest).where(AuthorizationRequest.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(AuthorizationRequest.status == status)
        result = await self.session.execute(stmt.order_by(AuthorizationRequest.created_at.desc()))
        return list(result.scalars())

    # ── Internals ──

    @staticmethod
    def _verify_trustset(request: AuthorizationRequest, asset: Asset, tx: dict | None, tx_hash: str) -> None:
        def reject(reason: str):
            handoff_events_total.labels(event="invalid_proof").inc()
            logger.warning("Rejected proof %s for request %s: %s", tx_hash, request.id, reason)
            raise InvalidProof(reason, request_id=request.id, tx_hash=tx_hash, holder_address=request.holder_address)

        if tx is None:
            reject("Transaction not found on ledger")
        if tx.get("TransactionType") != "TrustSet":
            reject("Invalid transaction type - expected TrustSet")
        if tx.get("validated") is not True:
            reject("Transaction not yet validated on ledger")
        if tx.get("Account") != request.holder_address:
            reject("Transaction account does not match holder address")

        limit_amount = tx.get("LimitAmount")
        if not isinstance(limit_amount, dict):
            reject("Transaction missing LimitAmount")
        if not same_currency(str(limit_amount.get("currency", "")), asset.code):
            reject("Transaction currency does not match asset code")
        if limit_amount.get("issuer") != asset.issuing_address:
            reject("Transaction issuer does not match asset issuer")

        try:
            value = Decimal(str(limit_amount.get("value")))
            requested = Decimal(request.requested_limit)
        except InvalidOperation:
            reject("Transaction limit is not a number")
        if value <= 0:
            reject("TrustSet limit must be greater than 0")
        if value != requested:
            reject("Transaction limit does not match requested limit")

    async def _check_require_auth(self, asset: Asset) -> None:
        if asset.ledger != AssetLedger.XRPL:
            return
        if not await self.ledger.requires_auth(asset.issuing_address):
            raise AssetNotActive(
                "The issuing account does not have RequireAuth enabled",
                asset_id=asset.id, issuing_address=asset.issuing_address,
            )

    async def _still_open(self, request_id: str) -> bool:
        request = await self.session.get(AuthorizationRequest, request_id)
        if request is None or request.status != AuthorizationRequestStatus.INVITED:
            return False
        if one_time_token.is_expired(request.expires_at):
            await self._expire(request)
            return False
        return True

    async def _expire(self, request: AuthorizationRequest) -> None:
        request.status = AuthorizationRequestStatus.EXPIRED
        await self.session.flush()
        logger.info("Authorization request %s expired", request.id)

    async def get_asset(self, asset_id: str) -> Asset:
        result = await self.session.execute(select(Asset).where(Asset.id == asset_id))
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
        return asset

    async def _get_tenant_asset(self, tenant_id: str, asset_id: str) -> Asset:
        asset = await self.get_asset(asset_id)
        if asset.tenant_id != tenant_id:
            raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
        if asset.status != AssetStatus.ACTIVE:
            raise AssetNotActive(
                f"Asset {asset_id} is {asset.status.value}, not ACTIVE", asset_id=asset_id,
            )
        if not asset.issuing_address:
            raise AssetNotActive(f"Asset {asset_id} has no issuing address", asset_id=asset_id)
        return asset
