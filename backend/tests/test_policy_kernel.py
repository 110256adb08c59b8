"""Tests for the policy kernel: template evaluation, instantiation and enforcement plans."""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from tokengate.errors import AssetNotFound
from tokengate.models import RequirementInstance, RequirementStatus, RequirementTemplate
from tokengate.policy.enforcement import build_enforcement_plan
from tokengate.policy.facts import PolicyFacts
from tokengate.policy.kernel import PolicyKernel
from tokengate.services.requirement_service import RequirementService
from tokengate.services.template_store import TemplateStore

ART_XRPL_CASP = {
    "assetClass": "ART",
    "ledger": "XRPL",
    "isCaspInvolved": True,
    "transferType": "CASP_TO_CASP",
}


async def _count_live(session, asset_id):
    result = await session.execute(
        select(func.count()).select_from(RequirementInstance).where(
            RequirementInstance.asset_id == asset_id,
            RequirementInstance.issuance_id.is_(None),
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
class TestEvaluateFacts:
    async def test_art_xrpl_casp_scenario(self, seeded_session):
        result = await PolicyKernel(seeded_session).evaluate_facts(ART_XRPL_CASP)

        matched = {r.requirement_template_id for r in result.requirement_instances}
        assert {"mica-whitepaper-art", "xrpl-trustline-auth", "travel-rule-payload"} <= matched
        assert "evm-allowlist-gating" not in matched
        assert "mica-right-of-withdrawal" not in matched  # no investorAudience fact

        plan = result.enforcement_plan
        assert plan.is_set("xrpl", "requireAuth")
        assert plan.is_set("xrpl", "trustlineAuthorization")
        assert all(r.status == RequirementStatus.REQUIRED for r in result.requirement_instances)

    async def test_emt_ethereum_scenario(self, seeded_session):
        result = await PolicyKernel(seeded_session).evaluate_facts({"assetClass": "EMT", "ledger": "ETHEREUM"})

        controls = result.enforcement_plan.to_dict()
        assert controls["evm"]["allowlistGating"] is True
        assert controls["evm"]["pauseControl"] is True
        assert controls["evm"]["mintControl"] is False
        assert controls["xrpl"]["freezeControl"] is False

        matched = [r.requirement_template_id for r in result.requirement_instances]
        assert matched == [
            "evm-allowlist-gating",
            "mica-issuer-auth-art-emt",
            "mica-kyc-tier-art-emt",
            "mica-marketing-communications",
        ]

    async def test_rationale_names_matched_facts(self, seeded_session):
        result = await PolicyKernel(seeded_session).evaluate_facts(ART_XRPL_CASP)
        by_template = {r.template_id: r for r in result.rationale}

        payload = by_template["travel-rule-payload"]
        assert payload.matched_on == {"isCaspInvolved": True, "transferType": "CASP_TO_CASP"}
        assert payload.text == (
            "Travel Rule Information Payload applies because "
            "isCaspInvolved == true, transferType == 'CASP_TO_CASP'"
        )
        assert by_template["mica-whitepaper-art"].matched_on == {"assetClass": "ART"}

    async def test_accepts_policy_facts_model(self, seeded_session):
        facts = PolicyFacts(asset_class="EMT", ledger="ETHEREUM")
        result = await PolicyKernel(seeded_session).evaluate_facts(facts)
        assert len(result.requirement_instances) == 4

    async def test_no_match_yields_baseline_plan(self, seeded_session):
        result = await PolicyKernel(seeded_session).evaluate_facts({"assetClass": "OTHER"})
        assert result.requirement_instances == []
        assert not result.enforcement_plan.is_set("xrpl", "requireAuth")
        assert not result.enforcement_plan.is_set("evm", "allowlistGating")

    async def test_malformed_template_is_skipped(self, seeded_session):
        # Inserted directly: the store itself refuses unparsable predicates
        seeded_session.add(RequirementTemplate(
            id="broken-template",
            code="broken-template",
            regime_id="mica-eu-v1",
            name="Broken",
            applicability_expr="assetClass = 'ART'",
            data_points=[],
            enforcement_hints={"xrpl": {"freezeControl": True}},
            version="1.0",
            effective_from=datetime(2025, 1, 1),
        ))
        await seeded_session.flush()

        result = await PolicyKernel(seeded_session).evaluate_facts({"assetClass": "EMT", "ledger": "ETHEREUM"})

        assert [s["template_id"] for s in result.skipped_templates] == ["broken-template"]
        assert len(result.requirement_instances) == 4
        assert not result.enforcement_plan.is_set("xrpl", "freezeControl")

    async def test_clock_selects_template_versions(self, seeded_session):
        await TemplateStore(seeded_session).publish_template(
            "xrpl-trustline-auth-v2",
            regime_id="mica-eu-v1",
            name="XRPL Trustline Authorization",
            applicability_expr="ledger == 'XRPL' && isCaspInvolved == true",
            version="2.0",
            effective_from=datetime(2025, 6, 1),
            code="xrpl-trustline-auth",
        )

        async def matched_at(instant):
            kernel = PolicyKernel(seeded_session, clock=lambda: instant)
            result = await kernel.evaluate_facts(ART_XRPL_CASP)
            return {r.requirement_template_id for r in result.requirement_instances}

        assert await matched_at(datetime(2024, 6, 1)) == set()
        before = await matched_at(datetime(2025, 3, 1))
        after = await matched_at(datetime(2025, 7, 1))
        assert "xrpl-trustline-auth" in before and "xrpl-trustline-auth-v2" not in before
        assert "xrpl-trustline-auth-v2" in after and "xrpl-trustline-auth" not in after

    async def test_to_dict_shape(self, seeded_session):
        data = (await PolicyKernel(seeded_session).evaluate_facts(ART_XRPL_CASP)).to_dict()
        assert set(data) == {
            "requirement_instances", "enforcement_plan", "enforcement_conflicts",
            "rationale", "skipped_templates",
        }
        assert data["requirement_instances"][0]["status"] == "REQUIRED"


@pytest.mark.asyncio
class TestCreateRequirementInstances:
    async def test_creates_required_instances(self, seeded_session, asset):
        kernel = PolicyKernel(seeded_session)
        facts = await kernel.facts_for_asset(asset.id)
        result = await kernel.create_requirement_instances(asset.id, facts)

        assert all(r.instance_id for r in result.requirement_instances)
        assert await _count_live(seeded_session, asset.id) == len(result.requirement_instances) == 7

    async def test_facts_derived_from_registry(self, seeded_session, asset):
        facts = await PolicyKernel(seeded_session).facts_for_asset(asset.id)
        record = facts.as_record()
        assert record["issuerCountry"] == "DE"
        assert record["assetClass"] == "ART"
        assert record["ledger"] == "XRPL"
        assert record["investorAudience"] == "retail"
        assert record["isCaspInvolved"] is True
        assert record["targetMarkets"] == ["EU"]

    async def test_idempotent(self, seeded_session, asset):
        kernel = PolicyKernel(seeded_session)
        first = await kernel.create_requirement_instances(asset.id, ART_XRPL_CASP)
        second = await kernel.create_requirement_instances(asset.id, ART_XRPL_CASP)

        assert await _count_live(seeded_session, asset.id) == len(first.requirement_instances)
        assert [r.instance_id for r in first.requirement_instances] == [
            r.instance_id for r in second.requirement_instances
        ]

    async def test_settled_status_never_regresses(self, seeded_session, asset):
        kernel = PolicyKernel(seeded_session)
        first = await kernel.create_requirement_instances(asset.id, ART_XRPL_CASP)
        target = first.requirement_instances[0]
        await RequirementService(seeded_session).verify(
            target.instance_id, RequirementStatus.SATISFIED, verifier_id="officer-1",
        )

        again = await kernel.create_requirement_instances(asset.id, ART_XRPL_CASP)
        by_template = {r.requirement_template_id: r for r in again.requirement_instances}
        assert by_template[target.requirement_template_id].status == RequirementStatus.SATISFIED

        stored = await RequirementService(seeded_session).get(target.instance_id)
        assert stored.status == RequirementStatus.SATISFIED

    async def test_unknown_asset(self, seeded_session):
        with pytest.raises(AssetNotFound):
            await PolicyKernel(seeded_session).create_requirement_instances("missing", ART_XRPL_CASP)


class TestEnforcementPlan:
    class _Template:
        def __init__(self, id, hints):
            self.id = id
            self.enforcement_hints = hints

    def test_boolean_flags_or_merge(self):
        plan = build_enforcement_plan([
            self._Template("a", {"xrpl": {"requireAuth": True}}),
            self._Template("b", {"xrpl": {"requireAuth": False, "freezeControl": True}}),
        ])
        assert plan.is_set("xrpl", "requireAuth")
        assert plan.is_set("xrpl", "freezeControl")
        assert not plan.is_set("xrpl", "trustlineAuthorization")

    def test_enum_conflict_keeps_first_value(self):
        plan = build_enforcement_plan([
            self._Template("a", {"evm": {"standard": "ERC-3643"}}),
            self._Template("b", {"evm": {"standard": "ERC-1400"}}),
        ])
        assert plan.controls["evm"]["standard"] == "ERC-3643"
        assert plan.conflicts == [{
            "ledger": "evm",
            "flag": "standard",
            "kept": "ERC-3643",
            "ignored": "ERC-1400",
            "template_id": "b",
        }]

    def test_baseline_is_not_shared(self):
        plan = build_enforcement_plan([self._Template("a", {"xrpl": {"requireAuth": True}})])
        assert not build_enforcement_plan([]).is_set("xrpl", "requireAuth")
        assert plan.is_set("xrpl", "requireAuth")
