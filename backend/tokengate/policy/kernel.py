"""
Policy Kernel

Evaluates an asset's regulatory facts against every requirement template
effective at the kernel clock (wall time unless one is injected), proposes
requirement instances, merges the matched templates' enforcement hints into
one plan, and explains each match.

Templates whose predicate cannot be parsed are logged, reported in
``skipped_templates`` and left out of the result; they never abort the
evaluation of the remaining templates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import AssetNotFound, MalformedExpression
from tokengate.middleware.metrics import policy_evaluations_total, policy_templates_skipped_total
from tokengate.models import Asset, RequirementInstance, RequirementStatus, RequirementTemplate
from tokengate.policy import expression
from tokengate.policy.enforcement import EnforcementPlan
from tokengate.policy.facts import PolicyFacts
from tokengate.services.template_store import TemplateStore

logger = logging.getLogger(__name__)

# Statuses that a re-evaluation must never regress to REQUIRED
_SETTLED = {RequirementStatus.SATISFIED, RequirementStatus.EXCEPTION}


@dataclass
class ProposedRequirement:
    requirement_template_id: str
    template_name: str
    status: RequirementStatus
    rationale: str
    instance_id: str | None = None  # set when a live row exists

    def to_dict(self) -> dict:
        return {
            "id": self.instance_id,
            "requirement_template_id": self.requirement_template_id,
            "template_name": self.template_name,
            "status": self.status.value,
            "rationale": self.rationale,
        }


@dataclass
class RationaleEntry:
    template_id: str
    template_name: str
    matched_on: dict
    text: str

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "matched_on": dict(self.matched_on),
            "text": self.text,
        }


@dataclass
class PolicyEvaluationResult:
    requirement_instances: list[ProposedRequirement] = field(default_factory=list)
    enforcement_plan: EnforcementPlan = field(default_factory=EnforcementPlan)
    rationale: list[RationaleEntry] = field(default_factory=list)
    skipped_templates: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requirement_instances": [r.to_dict() for r in self.requirement_instances],
            "enforcement_plan": self.enforcement_plan.to_dict(),
            "enforcement_conflicts": list(self.enforcement_plan.conflicts),
            "rationale": [r.to_dict() for r in self.rationale],
            "skipped_templates": list(self.skipped_templates),
        }


def _coerce_facts(facts: PolicyFacts | dict) -> dict:
    if isinstance(facts, PolicyFacts):
        return facts.as_record()
    return {k: v for k, v in dict(facts).items() if v is not None}


def _literal(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return repr(value)


def _describe_match(template: RequirementTemplate, matched_on: dict) -> str:
    if not matched_on:
        return f"{template.name} is applicable"
    reasons = ", ".join(f"{k} == {_literal(v)}" for k, v in matched_on.items())
    return f"{template.name} applies because {reasons}"


class PolicyKernel:
    """Regulatory-fact evaluation and requirement instantiation."""

    def __init__(
        self,
        session: AsyncSession,
        template_store: TemplateStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.templates = template_store or TemplateStore(session)
        self.clock = clock or utcnow

    async def evaluate_facts(
        self, facts: PolicyFacts | dict, asset_id: str | None = None,
    ) -> PolicyEvaluationResult:
        """
        Evaluate facts against all effective templates.

        When ``asset_id`` is given, templates whose live instance is already
        SATISFIED or EXCEPTION keep that status in the proposal.
        """
        record = _coerce_facts(facts)
        result = PolicyEvaluationResult()
        matched_templates: list[RequirementTemplate] = []

        live = await self._live_instances(asset_id) if asset_id else {}
        templates = await self.templates.get_effective_templates(at=self.clock())
        logger.debug("Evaluating %d effective templates", len(templates))

        for template in templates:
            try:
                applicable = expression.evaluate(template.applicability_expr, record)
            except MalformedExpression as exc:
                logger.warning(
                    "Skipping template %s: %s (expression=%r)",
                    template.id, exc.message, template.applicability_expr,
                )
                policy_templates_skipped_total.inc()
                result.skipped_templates.append({
                    "template_id": template.id,
                    "reason": exc.message,
                    "position": exc.position,
                })
                continue

            if not applicable:
                continue

            matched_templates.append(template)
            terms = expression.matched_terms(template.applicability_expr, record)
            matched_on = {term.field: record.get(term.field) for term in terms}
            text = _describe_match(template, matched_on)

            existing = live.get(template.id)
            status = RequirementStatus.REQUIRED
            if existing is not None and existing.status in _SETTLED:
                status = existing.status

            result.requirement_instances.append(ProposedRequirement(
                requirement_template_id=template.id,
                template_name=template.name,
                status=status,
                rationale=text,
                instance_id=existing.id if existing is not None else None,
            ))
            result.rationale.append(RationaleEntry(
                template_id=template.id,
                template_name=template.name,
                matched_on=matched_on,
                text=text,
            ))

        for template in matched_templates:
            result.enforcement_plan.merge_hints(template.id, template.enforcement_hints)

        policy_evaluations_total.inc()
        logger.info(
            "Policy evaluation matched %d of %d templates (%d skipped)",
            len(matched_templates), len(templates), len(result.skipped_templates),
        )
        return result

    async def create_requirement_instances(
        self, asset_id: str, facts: PolicyFacts | dict,
    ) -> PolicyEvaluationResult:
        """
        Evaluate and persist live requirement instances for an asset.

        Upserts by (asset_id, template_id): rows that already exist are left
        untouched, newly applicable templates get a REQUIRED row. Running it
        twice with the same templates and facts creates nothing new.
        """
        await self._get_asset(asset_id)
        result = await self.evaluate_facts(facts, asset_id=asset_id)

        created = 0
        for proposal in result.requirement_instances:
            if proposal.instance_id is not None:
                continue
            instance = RequirementInstance(
                asset_id=asset_id,
                requirement_template_id=proposal.requirement_template_id,
                status=proposal.status,
                rationale=proposal.rationale,
                issuance_id=None,
            )
            self.session.add(instance)
            await self.session.flush()
            proposal.instance_id = instance.id
            created += 1

        logger.info(
            "Asset %s: %d requirement instances created, %d already live",
            asset_id, created, len(result.requirement_instances) - created,
        )
        return result

    async def facts_for_asset(self, asset_id: str) -> PolicyFacts:
        """Derive the fact record from the asset's organization/product/asset context."""
        asset = await self._get_asset(asset_id)
        product = asset.product
        organization = product.organization
        return PolicyFacts(
            issuer_country=organization.country,
            asset_class=product.asset_class.value,
            target_markets=list(product.target_markets or []),
            ledger=asset.ledger.value,
            distribution_type=asset.distribution_type,
            investor_audience=asset.investor_audience,
            is_casp_involved=asset.is_casp_involved,
            transfer_type=asset.transfer_type,
        )

    async def _get_asset(self, asset_id: str) -> Asset:
        result = await self.session.execute(select(Asset).where(Asset.id == asset_id))
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFound(f"Asset {asset_id} not found", asset_id=asset_id)
        return asset

    async def _live_instances(self, asset_id: str) -> dict[str, RequirementInstance]:
        result = await self.session.execute(
            select(RequirementInstance).where(
                RequirementInstance.asset_id == asset_id,
                RequirementInstance.issuance_id.is_(None),
            )
        )
        return {ri.requirement_template_id: ri for ri in result.scalars().unique()}
