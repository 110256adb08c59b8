"""
Authorization Reconciliation Engine

Brings the append-only authorization history of an asset in line with
the trustlines the ledger reports for its issuing account:

    new line              → ISSUER_AUTHORIZED or EXTERNAL
    authorization flipped → ISSUER_AUTHORIZED
    holder limit changed  → LIMIT_UPDATED
    line disappeared      → TRUSTLINE_CLOSED (once)

Holders are processed sequentially within an asset, each inside its own
savepoint; one holder's failure is rolled back, recorded, and the pass
continues. If the ledger cannot be read nothing is closed, since an empty
answer would otherwise look like every line disappeared.
"""

import logging
import time
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.errors import AssetNotActive, AssetNotFound, ComplianceError, LedgerUnavailable
from tokengate.ledger.base import AccountLine, LedgerAdapter
from tokengate.ledger.currency import same_currency
from tokengate.middleware.metrics import reconciliation_duration_seconds, reconciliation_errors_total
from tokengate.models import (
    Asset, AssetLedger, AssetStatus, Authorization, AuthorizationInitiator,
    AuthorizationStatus, Product,
)
from tokengate.services.authorization_history import AuthorizationHistory, limits_equal
from tokengate.services.idempotency import IdempotencyGuard, generate_idempotency_key

logger = logging.getLogger(__name__)

CLOSED_LIMIT = "0"


@dataclass
class ReconciliationResult:
    processed: int = 0
    external: int = 0
    authorized: int = 0
    limit_updated: int = 0
    closed: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, other: "ReconciliationResult") -> None:
        self.processed += other.processed
        self.external += other.external
        self.authorized += other.authorized
        self.limit_updated += other.limit_updated
        self.closed += other.closed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "external": self.external,
            "authorized": self.authorized,
            "limit_updated": self.limit_updated,
            "closed": self.closed,
            "errors": list(self.errors),
        }


class ReconciliationEngine:
    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerAdapter,
        idempotency: IdempotencyGuard | None = None,
    ):
        self.session = session
        self.ledger = ledger
        self.history = AuthorizationHistory(session)
        self.idempotency = idempotency or IdempotencyGuard(session)

    async def reconcile_asset(self, asset_id: str) -> ReconciliationResult:
        result = ReconciliationResult()
        asset = await self._get_asset(asset_id)

        if not asset.issuing_address:
            raise AssetNotActive(
                f"Asset {asset_id} has no issuing address to reconcile", asset_id=asset_id,
            )

        if asset.ledger != AssetLedger.XRPL:
            self._record_error(result, f"No trustline reconciliation for ledger {asset.ledger.value}")
            return result

        start = time.time()
        try:
            lines = await self.ledger.get_account_lines(asset.issuing_address)
        except LedgerUnavailable as exc:
            logger.warning("Ledger unavailable for asset %s: %s", asset_id, exc.message)
            self._record_error(result, f"Ledger unavailable: {exc.message}")
            return result

        seen: set[str] = set()
        for line in lines:
            if not same_currency(line.currency, asset.code):
                continue
            seen.add(line.account)
            result.processed += 1
            holder_result = ReconciliationResult()
            try:
                async with self.session.begin_nested():
                    await self._reconcile_line(asset, line, holder_result)
            except Exception as exc:
                logger.warning("Reconciliation of holder %s on asset %s failed: %s", line.account, asset_id, exc)
                self._record_error(result, f"Error processing holder {line.account}: {exc}")
            else:
                result.add(holder_result)

        for row in await self.history.current_for_asset(asset.id):
            if row.holder_address in seen or row.status == AuthorizationStatus.TRUSTLINE_CLOSED:
                continue
            try:
                async with self.session.begin_nested():
                    closed_id = await self._append(
                        asset, row.holder_address, row.id,
                        AuthorizationStatus.TRUSTLINE_CLOSED, CLOSED_LIMIT, AuthorizationInitiator.HOLDER,
                    )
                if closed_id is not None:
                    result.closed += 1
            except Exception as exc:
                logger.warning("Closing trustline of %s on asset %s failed: %s", row.holder_address, asset_id, exc)
                self._record_error(result, f"Error closing holder {row.holder_address}: {exc}")

        reconciliation_duration_seconds.observe(time.time() - start)
        logger.info(
            "Reconciled asset %s: processed=%d external=%d authorized=%d limit_updated=%d closed=%d errors=%d",
            asset_id, result.processed, result.external, result.authorized,
            result.limit_updated, result.closed, len(result.errors),
            extra={"asset_id": asset_id},
        )
        return result

    async def reconcile_tenant(self, tenant_id: str) -> ReconciliationResult:
        """Reconcile every ACTIVE asset of a tenant, summing the results."""
        total = ReconciliationResult()
        for asset_id in await self.active_asset_ids(tenant_id):
            try:
                async with self.session.begin_nested():
                    total.add(await self.reconcile_asset(asset_id))
            except ComplianceError as exc:
                self._record_error(total, f"Asset {asset_id}: {exc.message}")
            except Exception as exc:
                logger.error("Reconciliation of asset %s failed: %s", asset_id, exc, exc_info=True)
                self._record_error(total, f"Asset {asset_id}: {exc}")
        return total

    async def active_asset_ids(self, tenant_id: str | None = None) -> list[str]:
        stmt = select(Asset.id).where(Asset.status == AssetStatus.ACTIVE)
        if tenant_id is not None:
            stmt = stmt.join(Product, Asset.product_id == Product.id).where(
                Product.organization_id == tenant_id,
            )
        result = await self.session.execute(stmt.order_by(Asset.id))
        return list(result.scalars())

    async def current_authorizations(self, asset_id: str) -> list[Authorization]:
        await self._get_asset(asset_id)
        return await self.history.current_for_asset(asset_id)

    async def authorization_history(self, asset_id: str, holder_address: str) -> list[Authorization]:
        await self._get_asset(asset_id)
        return await self.history.history(asset_id, holder_address)

    # ── Internals ──

    async def _reconcile_line(self, asset: Asset, line: AccountLine, result: ReconciliationResult) -> None:
        holder = line.account
        holder_limit = line.holder_limit
        prior = await self.history.latest(asset.id, holder)

        if prior is None or prior.status == AuthorizationStatus.TRUSTLINE_CLOSED:
            prior_id = prior.id if prior is not None else None
            if line.is_authorized:
                if await self._append(
                    asset, holder, prior_id, AuthorizationStatus.ISSUER_AUTHORIZED,
                    holder_limit, AuthorizationInitiator.SYSTEM,
                ):
                    result.authorized += 1
            elif await self._append(
                asset, holder, prior_id, AuthorizationStatus.EXTERNAL,
                holder_limit, AuthorizationInitiator.SYSTEM, external=True,
            ):
                result.external += 1
            return

        latest_id = prior.id
        if line.is_authorized and not await self.history.authorized_in_chain(asset.id, holder):
            new_id = await self._append(
                asset, holder, latest_id, AuthorizationStatus.ISSUER_AUTHORIZED,
                holder_limit, AuthorizationInitiator.SYSTEM,
            )
            if new_id is not None:
                result.authorized += 1
                latest_id = new_id

        # Compared against the row that was latest before this pass
        if not limits_equal(prior.limit, holder_limit):
            if await self._append(
                asset, holder, latest_id, AuthorizationStatus.LIMIT_UPDATED,
                holder_limit, AuthorizationInitiator.HOLDER,
            ):
                result.limit_updated += 1

    async def _append(
        self,
        asset: Asset,
        holder: str,
        prior_id: int | None,
        status: AuthorizationStatus,
        limit: str,
        initiated_by: AuthorizationInitiator,
        external: bool = False,
    ) -> int | None:
        """Keyed compare-and-append. Returns the new row id, or None on replay."""
        key = generate_idempotency_key("authorization_transition", {
            "asset_id": asset.id,
            "holder_address": holder,
            "prior_id": prior_id,
            "status": status.value,
            "limit": limit,
        })

        async def _do_append() -> dict:
            row = await self.history.append(
                asset, holder, status, limit, initiated_by,
                expected_prior_id=prior_id,
                external=external,
                external_source="ledger" if external else None,
            )
            return {"id": row.id}

        outcome = await self.idempotency.check(key, _do_append, operation_name="authorization_transition")
        if outcome.is_duplicate:
            logger.debug("Transition %s for %s already recorded", status.value, holder)
            return None
        return outcome.result["id"]

    async def _get_asset(self, asset_id: str) -> Asset:
        result = await self.session.execute(select(Asset).where(Asset.id == asset_id))
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
        return asset

    @staticmethod
    def _record_error(result: ReconciliationResult, message: str) -> None:
        result.errors.append(message)
        reconciliation_errors_total.inc()
