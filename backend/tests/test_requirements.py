"""Tests for live requirement actions, the issuance gate and snapshots."""

import pytest

from tokengate.errors import InvalidRequirementTransition, RequirementNotFound, SnapshotImmutable
from tokengate.models import Issuance, RequirementStatus
from tokengate.policy.kernel import PolicyKernel
from tokengate.services.requirement_service import RequirementService
from tokengate.services.requirement_snapshot import RequirementSnapshotService


async def _instantiate(session, asset):
    kernel = PolicyKernel(session)
    await kernel.create_requirement_instances(asset.id, await kernel.facts_for_asset(asset.id))
    return await RequirementService(session).list_live(asset.id)


async def _issuance(session, asset) -> Issuance:
    issuance = Issuance(asset_id=asset.id, amount="1000", holder_address="rHolder1")
    session.add(issuance)
    await session.flush()
    return issuance


@pytest.mark.asyncio
class TestVerification:
    async def test_satisfy_records_verifier_and_evidence(self, seeded_session, asset):
        instance = (await _instantiate(seeded_session, asset))[0]
        updated = await RequirementService(seeded_session).verify(
            instance.id, RequirementStatus.SATISFIED, verifier_id="officer-1",
            evidence_refs={"document": "s3://evidence/whitepaper.pdf"},
        )
        assert updated.status == RequirementStatus.SATISFIED
        assert updated.verifier_id == "officer-1"
        assert updated.verified_at is not None
        assert updated.evidence_refs == {"document": "s3://evidence/whitepaper.pdf"}

    async def test_exception_requires_reason(self, seeded_session, asset):
        instance = (await _instantiate(seeded_session, asset))[0]
        service = RequirementService(seeded_session)
        with pytest.raises(InvalidRequirementTransition):
            await service.verify(instance.id, RequirementStatus.EXCEPTION, verifier_id="officer-1")

        updated = await service.verify(
            instance.id, RequirementStatus.EXCEPTION, verifier_id="officer-1",
            exception_reason="Grandfathered under transitional regime",
        )
        assert updated.exception_reason == "Grandfathered under transitional regime"

    async def test_exception_reason_cleared_when_satisfied(self, seeded_session, asset):
        instance = (await _instantiate(seeded_session, asset))[0]
        service = RequirementService(seeded_session)
        await service.verify(instance.id, "EXCEPTION", verifier_id="officer-1", exception_reason="temporary")
        updated = await service.verify(instance.id, "SATISFIED", verifier_id="officer-2")
        assert updated.exception_reason is None

    async def test_acknowledge(self, seeded_session, asset):
        instance = (await _instantiate(seeded_session, asset))[0]
        updated = await RequirementService(seeded_session).acknowledge(
            instance.id, acknowledged_by="platform-ops", reason="reviewed",
        )
        assert updated.platform_acknowledged is True
        assert updated.platform_acknowledged_by == "platform-ops"
        assert updated.platform_acknowledged_at is not None

    async def test_unknown_instance(self, seeded_session):
        with pytest.raises(RequirementNotFound):
            await RequirementService(seeded_session).get("missing")


@pytest.mark.asyncio
class TestValidation:
    async def test_blocked_while_required(self, seeded_session, asset):
        live = await _instantiate(seeded_session, asset)
        service = RequirementService(seeded_session)
        for instance in live[1:]:
            await service.verify(instance.id, RequirementStatus.SATISFIED, verifier_id="officer-1")

        validation = await RequirementSnapshotService(seeded_session).validate_issuance_requirements(asset.id)

        assert validation["valid"] is False
        assert len(validation["blocked_requirements"]) == 1
        blocked = validation["blocked_requirements"][0]
        assert blocked["id"] == live[0].id
        assert blocked["requirement_template_id"] == live[0].requirement_template_id
        assert blocked["name"]
        assert blocked["status"] == "REQUIRED"

    async def test_valid_when_all_settled(self, seeded_session, asset):
        service = RequirementService(seeded_session)
        for i, instance in enumerate(await _instantiate(seeded_session, asset)):
            if i % 2:
                await service.verify(instance.id, "EXCEPTION", verifier_id="officer-1", exception_reason="waived")
            else:
                await service.verify(instance.id, "SATISFIED", verifier_id="officer-1")

        validation = await RequirementSnapshotService(seeded_session).validate_issuance_requirements(asset.id)
        assert validation == {"valid": True, "blocked_requirements": []}

    async def test_no_requirements_is_valid(self, seeded_session, asset):
        validation = await RequirementSnapshotService(seeded_session).validate_issuance_requirements(asset.id)
        assert validation["valid"] is True


@pytest.mark.asyncio
class TestSnapshots:
    async def test_snapshot_copies_every_live_instance(self, seeded_session, asset):
        live = await _instantiate(seeded_session, asset)
        await RequirementService(seeded_session).verify(
            live[0].id, "SATISFIED", verifier_id="officer-1", evidence_refs={"doc": "a"},
        )
        issuance = await _issuance(seeded_session, asset)

        snapshots = await RequirementSnapshotService(seeded_session).create_issuance_snapshot(asset.id, issuance.id)

        assert len(snapshots) == len(live)
        assert all(s.issuance_id == issuance.id for s in snapshots)
        assert {s.requirement_template_id for s in snapshots} == {r.requirement_template_id for r in live}
        frozen = {s.requirement_template_id: s for s in snapshots}[live[0].requirement_template_id]
        assert frozen.status == RequirementStatus.SATISFIED
        assert frozen.evidence_refs == {"doc": "a"}
        assert frozen.verifier_id == "officer-1"

    async def test_snapshot_is_immutable(self, seeded_session, asset):
        await _instantiate(seeded_session, asset)
        issuance = await _issuance(seeded_session, asset)
        snapshots = await RequirementSnapshotService(seeded_session).create_issuance_snapshot(asset.id, issuance.id)

        service = RequirementService(seeded_session)
        with pytest.raises(SnapshotImmutable):
            await service.verify(snapshots[0].id, "SATISFIED", verifier_id="officer-1")
        with pytest.raises(SnapshotImmutable):
            await service.acknowledge(snapshots[0].id, acknowledged_by="platform-ops")

    async def test_later_live_changes_do_not_touch_snapshot(self, seeded_session, asset):
        live = await _instantiate(seeded_session, asset)
        issuance = await _issuance(seeded_session, asset)
        snapshot_service = RequirementSnapshotService(seeded_session)
        await snapshot_service.create_issuance_snapshot(asset.id, issuance.id)

        await RequirementService(seeded_session).verify(live[0].id, "SATISFIED", verifier_id="officer-1")

        frozen = await snapshot_service.get_issuance_snapshot(issuance.id)
        assert all(s.status == RequirementStatus.REQUIRED for s in frozen)
        assert len(await RequirementService(seeded_session).list_live(asset.id)) == len(live)

    async def test_no_live_requirements_is_noop(self, seeded_session, asset):
        issuance = await _issuance(seeded_session, asset)
        assert await RequirementSnapshotService(seeded_session).create_issuance_snapshot(asset.id, issuance.id) == []
