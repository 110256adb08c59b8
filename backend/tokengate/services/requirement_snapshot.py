"""
Requirement Snapshot Service

At issuance time every live requirement instance of the asset is copied
into an issuance-scoped snapshot row. Snapshots are written once, all
together or not at all, and afterwards only read for audit.
"""

import logging
from copy import deepcopy

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import SnapshotCreationFailed
from tokengate.models import RequirementInstance, RequirementStatus, RequirementTemplate

logger = logging.getLogger(__name__)


class RequirementSnapshotService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_issuance_snapshot(self, asset_id: str, issuance_id: str) -> list[RequirementInstance]:
        """
        Freeze the asset's live requirements for one issuance.

        Returns the snapshot rows; an asset without live requirements is a
        logged no-op. Any persistence failure rolls the session back and
        raises SnapshotCreationFailed, so an issuance is never left
        partially frozen.
        """
        result = await self.session.execute(
            select(RequirementInstance)
            .where(
                RequirementInstance.asset_id == asset_id,
                RequirementInstance.issuance_id.is_(None),
            )
            .order_by(RequirementInstance.created_at, RequirementInstance.id)
        )
        live = list(result.scalars().unique())

        if not live:
            logger.info("No live requirements for asset %s; issuance %s has an empty snapshot", asset_id, issuance_id)
            return []

        now = utcnow()
        snapshots = [
            RequirementInstance(
                asset_id=req.asset_id,
                requirement_template_id=req.requirement_template_id,
                issuance_id=issuance_id,
                status=req.status,
                rationale=req.rationale,
                evidence_refs=deepcopy(req.evidence_refs),
                exception_reason=req.exception_reason,
                verifier_id=req.verifier_id,
                verified_at=req.verified_at,
                platform_acknowledged=req.platform_acknowledged,
                platform_acknowledged_by=req.platform_acknowledged_by,
                platform_acknowledged_at=req.platform_acknowledged_at,
                platform_acknowledgement_reason=req.platform_acknowledgement_reason,
                created_at=now,
                updated_at=now,
            )
            for req in live
        ]

        try:
            self.session.add_all(snapshots)
            await self.session.flush()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Snapshot for issuance %s failed, rolled back: %s", issuance_id, exc)
            raise SnapshotCreationFailed(
                f"Could not freeze requirements for issuance {issuance_id}",
                asset_id=asset_id,
                issuance_id=issuance_id,
            ) from exc

        logger.info("Created %d requirement snapshots for issuance %s", len(snapshots), issuance_id)
        return snapshots

    async def validate_issuance_requirements(self, asset_id: str) -> dict:
        """
        The issuance gate: valid iff no live requirement is still REQUIRED.

        Every blocking requirement is listed by id and template name.
        """
        result = await self.session.execute(
            select(RequirementInstance, RequirementTemplate)
            .join(RequirementTemplate, RequirementInstance.requirement_template_id == RequirementTemplate.id)
            .where(
                RequirementInstance.asset_id == asset_id,
                RequirementInstance.issuance_id.is_(None),
                RequirementInstance.status == RequirementStatus.REQUIRED,
            )
            .order_by(RequirementInstance.requirement_template_id)
        )
        blocked = [
            {
                "id": instance.id,
                "requirement_template_id": template.id,
                "name": template.name,
                "status": instance.status.value,
                "rationale": instance.rationale,
            }
            for instance, template in result.unique().all()
        ]
        return {"valid": not blocked, "blocked_requirements": blocked}

    async def get_issuance_snapshot(self, issuance_id: str) -> list[RequirementInstance]:
        result = await self.session.execute(
            select(RequirementInstance)
            .where(RequirementInstance.issuance_id == issuance_id)
            .order_by(RequirementInstance.created_at, RequirementInstance.id)
        )
        return list(result.scalars().unique())
