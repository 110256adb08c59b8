"""
Requirement Instance Store — live requirement state and verification actions.

Live instances (issuance_id IS NULL) are mutated by verification actions,
human or automated. Snapshot instances are frozen and reject every
mutation.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import InvalidRequirementTransition, RequirementNotFound, SnapshotImmutable
from tokengate.models import RequirementInstance, RequirementStatus

logger = logging.getLogger(__name__)


class RequirementService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_live(self, asset_id: str) -> list[RequirementInstance]:
        result = await self.session.execute(
            select(RequirementInstance)
            .where(
                RequirementInstance.asset_id == asset_id,
                RequirementInstance.issuance_id.is_(None),
            )
            .order_by(RequirementInstance.created_at, RequirementInstance.requirement_template_id)
        )
        return list(result.scalars().unique())

    async def get(self, instance_id: str) -> RequirementInstance:
        result = await self.session.execute(
            select(RequirementInstance).where(RequirementInstance.id == instance_id)
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            raise RequirementNotFound(
                f"Requirement instance {instance_id} not found", requirement_instance_id=instance_id,
            )
        return instance

    async def verify(
        self,
        instance_id: str,
        status: RequirementStatus,
        verifier_id: str,
        evidence_refs: dict | None = None,
        exception_reason: str | None = None,
    ) -> RequirementInstance:
        """Record a verification outcome on a live requirement."""
        instance = await self._get_live(instance_id)
        status = RequirementStatus(status)

        if status == RequirementStatus.EXCEPTION and not (exception_reason or "").strip():
            raise InvalidRequirementTransition(
                "An exception reason is required when marking a requirement EXCEPTION",
                requirement_instance_id=instance_id,
                requirement_template_id=instance.requirement_template_id,
            )

        old_status = instance.status
        instance.status = status
        instance.verifier_id = verifier_id
        instance.verified_at = utcnow()
        if evidence_refs is not None:
            instance.evidence_refs = dict(evidence_refs)
        instance.exception_reason = exception_reason if status == RequirementStatus.EXCEPTION else None
        await self.session.flush()

        logger.info(
            "Requirement %s (%s) %s -> %s by %s",
            instance.id, instance.requirement_template_id, old_status.value, status.value, verifier_id,
        )
        return instance

    async def acknowledge(self, instance_id: str, acknowledged_by: str, reason: str | None = None) -> RequirementInstance:
        """Platform acknowledgement of a live requirement."""
        instance = await self._get_live(instance_id)
        instance.platform_acknowledged = True
        instance.platform_acknowledged_by = acknowledged_by
        instance.platform_acknowledged_at = utcnow()
        instance.platform_acknowledgement_reason = reason
        await self.session.flush()
        return instance

    async def _get_live(self, instance_id: str) -> RequirementInstance:
        instance = await self.get(instance_id)
        if instance.is_snapshot:
            raise SnapshotImmutable(
                f"Requirement instance {instance_id} is an issuance snapshot and cannot be modified",
                requirement_instance_id=instance_id,
                issuance_id=instance.issuance_id,
            )
        return instance
