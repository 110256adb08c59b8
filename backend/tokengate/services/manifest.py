"""
Compliance Manifest Builder

The manifest is the audit document of one issuance: who issued, under
which regime versions, with which requirements in which state (frozen by
the snapshot), under which enforcement plan. Its SHA-256 over canonical
JSON is stored on the issuance and can be recomputed at any time from
the same rows.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.errors import IssuanceNotFound
from tokengate.models import (
    ComplianceMode, Issuance, Regime, RequirementInstance, RequirementStatus, RequirementTemplate,
)
from tokengate.policy.enforcement import build_enforcement_plan
from tokengate.services.canonical import sha256_hex

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"


class RegimeVersion(BaseModel):
    name: str
    version: str


class RequirementSnapshotEntry(BaseModel):
    requirement_instance_id: str
    requirement_template_id: str
    status: str
    evidence_digest: str | None = None
    rationale: str | None = None


class ManifestEnforcementPlan(BaseModel):
    ledger: str
    network: str
    compliance_mode: str
    gating_enabled: bool
    controls: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ComplianceManifest(BaseModel):
    org_id: str
    product_id: str
    asset_id: str
    issuance_id: str
    regime_versions: list[RegimeVersion]
    requirements_snapshot: list[RequirementSnapshotEntry]
    enforcement_plan: ManifestEnforcementPlan
    issuance_facts: dict[str, Any]
    timestamp: str
    manifest_version: str = MANIFEST_VERSION


def evidence_digest(evidence_refs: dict | None) -> str | None:
    if not evidence_refs or not isinstance(evidence_refs, dict):
        return None
    return sha256_hex(evidence_refs)


def generate_manifest_hash(manifest: ComplianceManifest | dict) -> str:
    """64-char hex SHA-256 of the manifest's canonical JSON."""
    if isinstance(manifest, ComplianceManifest):
        manifest = manifest.model_dump(mode="json")
    return sha256_hex(manifest)


class ComplianceManifestBuilder:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def build_manifest(self, issuance_id: str, extra_facts: dict | None = None) -> ComplianceManifest:
        result = await self.session.execute(select(Issuance).where(Issuance.id == issuance_id))
        issuance = result.scalar_one_or_none()
        if issuance is None:
            raise IssuanceNotFound(f"Issuance {issuance_id} not found", issuance_id=issuance_id)

        asset = issuance.asset
        product = asset.product

        rows = await self.session.execute(
            select(RequirementInstance, RequirementTemplate, Regime)
            .join(RequirementTemplate, RequirementInstance.requirement_template_id == RequirementTemplate.id)
            .join(Regime, RequirementTemplate.regime_id == Regime.id)
            .where(RequirementInstance.issuance_id == issuance_id)
            .order_by(RequirementInstance.created_at, RequirementInstance.id)
        )
        snapshot = rows.unique().all()

        regimes = sorted({(regime.name, regime.version) for _, _, regime in snapshot})
        applicable = [template for instance, template, _ in snapshot if instance.status != RequirementStatus.NA]
        controls = build_enforcement_plan(applicable)

        facts = {"amount": issuance.amount, "holder": issuance.holder_address}
        facts.update(issuance.issuance_facts or {})
        facts.update(extra_facts or {})

        manifest = ComplianceManifest(
            org_id=product.organization_id,
            product_id=product.id,
            asset_id=asset.id,
            issuance_id=issuance.id,
            regime_versions=[RegimeVersion(name=name, version=version) for name, version in regimes],
            requirements_snapshot=[
                RequirementSnapshotEntry(
                    requirement_instance_id=instance.id,
                    requirement_template_id=instance.requirement_template_id,
                    status=instance.status.value,
                    evidence_digest=evidence_digest(instance.evidence_refs),
                    rationale=instance.rationale,
                )
                for instance, _, _ in snapshot
            ],
            enforcement_plan=ManifestEnforcementPlan(
                ledger=asset.ledger.value,
                network=asset.network,
                compliance_mode=asset.compliance_mode.value,
                gating_enabled=asset.compliance_mode != ComplianceMode.OFF,
                controls=controls.to_dict(),
            ),
            issuance_facts=facts,
            timestamp=issuance.created_at.isoformat() + "Z",
        )
        logger.debug("Built manifest for issuance %s with %d requirements", issuance_id, len(snapshot))
        return manifest

    @staticmethod
    def generate_manifest_hash(manifest: ComplianceManifest | dict) -> str:
        return generate_manifest_hash(manifest)
