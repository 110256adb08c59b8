"""
Issuance gate.

Issuing is where compliance becomes binding: unless the asset runs with
compliance mode OFF, an issuance is refused while any live requirement is
still REQUIRED. Every accepted issuance gets a requirement snapshot and a
manifest hash before anything reaches the ledger.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import AssetNotActive, AssetNotFound, IssuanceBlocked, IssuanceNotFound
from tokengate.ledger.base import LedgerAdapter
from tokengate.models import Asset, AssetStatus, ComplianceMode, Issuance, IssuanceStatus
from tokengate.services.manifest import ComplianceManifest, ComplianceManifestBuilder, generate_manifest_hash
from tokengate.services.requirement_snapshot import RequirementSnapshotService

logger = logging.getLogger(__name__)

SUCCESS_RESULT = "tesSUCCESS"


@dataclass
class IssuanceRecord:
    issuance: Issuance
    manifest: ComplianceManifest
    manifest_hash: str
    snapshot_count: int


class IssuanceService:
    def __init__(self, session: AsyncSession, ledger: LedgerAdapter | None = None):
        self.session = session
        self.ledger = ledger
        self.snapshots = RequirementSnapshotService(session)
        self.manifests = ComplianceManifestBuilder(session)

    async def issue(
        self,
        asset_id: str,
        amount: str,
        holder_address: str,
        extra_facts: dict | None = None,
        signed_tx_blob: str | None = None,
    ) -> IssuanceRecord:
        result = await self.session.execute(select(Asset).where(Asset.id == asset_id))
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
        if asset.status != AssetStatus.ACTIVE:
            raise AssetNotActive(
                f"Asset {asset_id} is {asset.status.value}, not ACTIVE", asset_id=asset_id,
            )

        if asset.compliance_mode != ComplianceMode.OFF:
            validation = await self.snapshots.validate_issuance_requirements(asset_id)
            if not validation["valid"]:
                blocked = validation["blocked_requirements"]
                logger.warning(
                    "Issuance on asset %s blocked by %d requirements", asset_id, len(blocked),
                )
                raise IssuanceBlocked(
                    f"Issuance blocked: {len(blocked)} requirement(s) still REQUIRED",
                    asset_id=asset_id,
                    blocked_requirements=blocked,
                )

        issuance = Issuance(
            asset_id=asset.id,
            amount=amount,
            holder_address=holder_address,
            status=IssuanceStatus.PENDING,
            issuance_facts=dict(extra_facts or {}),
            created_at=utcnow(),
        )
        self.session.add(issuance)
        await self.session.flush()

        snapshot = await self.snapshots.create_issuance_snapshot(asset.id, issuance.id)
        manifest = await self.manifests.build_manifest(issuance.id)
        manifest_hash = generate_manifest_hash(manifest)
        issuance.manifest_hash = manifest_hash
        await self.session.flush()
        logger.info(
            "Issuance %s on asset %s recorded with %d snapshot requirements (manifest %s)",
            issuance.id, asset_id, len(snapshot), manifest_hash[:12],
            extra={"asset_id": asset_id, "issuance_id": issuance.id},
        )

        if signed_tx_blob:
            await self._submit(issuance, signed_tx_blob)

        return IssuanceRecord(
            issuance=issuance,
            manifest=manifest,
            manifest_hash=manifest_hash,
            snapshot_count=len(snapshot),
        )

    async def get_issuance(self, issuance_id: str) -> Issuance:
        result = await self.session.execute(select(Issuance).where(Issuance.id == issuance_id))
        issuance = result.scalar_one_or_none()
        if issuance is None:
            raise IssuanceNotFound(f"Issuance {issuance_id} not found", issuance_id=issuance_id)
        return issuance

    async def refresh_status(self, issuance_id: str) -> Issuance:
        """Move a SUBMITTED issuance to VALIDATED or FAILED once its tx is validated."""
        issuance = await self.get_issuance(issuance_id)
        if issuance.status != IssuanceStatus.SUBMITTED or not issuance.tx_hash or self.ledger is None:
            return issuance

        tx = await self.ledger.get_transaction(issuance.tx_hash)
        if not tx or tx.get("validated") is not True:
            return issuance

        engine_result = (tx.get("meta") or {}).get("TransactionResult")
        if engine_result == SUCCESS_RESULT:
            issuance.status = IssuanceStatus.VALIDATED
            issuance.validated_at = utcnow()
        else:
            issuance.status = IssuanceStatus.FAILED
            issuance.failure_code = engine_result
        await self.session.flush()
        logger.info("Issuance %s is %s (%s)", issuance.id, issuance.status.value, engine_result)
        return issuance

    async def pending_submissions(self) -> list[str]:
        result = await self.session.execute(
            select(Issuance.id).where(Issuance.status == IssuanceStatus.SUBMITTED).order_by(Issuance.created_at)
        )
        return list(result.scalars())

    async def _submit(self, issuance: Issuance, signed_tx_blob: str) -> None:
        if self.ledger is None:
            raise AssetNotActive("No ledger adapter configured for submission", issuance_id=issuance.id)
        submitted = await self.ledger.issue_token(signed_tx_blob)
        issuance.tx_hash = submitted.tx_hash
        if submitted.accepted:
            issuance.status = IssuanceStatus.SUBMITTED
        else:
            issuance.status = IssuanceStatus.FAILED
            issuance.failure_code = submitted.engine_result
        await self.session.flush()
