"""
Regulatory reference seed — EU MiCA and EU Travel Rule regimes with their
requirement templates.

Publishing goes through TemplateStore, so re-running is a no-op for
anything already published.

Usage:
    python -m tokengate.seed.regulatory_data
"""

import asyncio
import time
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tokengate.config import settings
from tokengate.services.template_store import TemplateStore

EFFECTIVE_FROM = datetime(2024, 12, 30)

REGIMES = [
    {
        "id": "mica-eu-v1",
        "name": "EU: MiCA",
        "version": "1.0",
        "description": "Markets in Crypto-Assets Regulation (EU) 2023/1114",
        "details": {
            "jurisdiction": "EU",
            "scope": "Crypto-asset service providers and issuers",
            "authority": "European Securities and Markets Authority (ESMA)",
        },
    },
    {
        "id": "travel-rule-eu-v1",
        "name": "EU: Travel Rule",
        "version": "1.0",
        "description": (
            "Regulation (EU) 2023/1113 on information accompanying transfers "
            "of funds and certain crypto-assets"
        ),
        "details": {
            "jurisdiction": "EU",
            "scope": "Crypto-asset transfers",
            "authority": "European Banking Authority (EBA)",
        },
    },
]

ART_OR_EMT = "assetClass == 'ART' || assetClass == 'EMT'"

TEMPLATES = [
    # MiCA
    {
        "id": "mica-issuer-auth-art-emt",
        "regime_id": "mica-eu-v1",
        "name": "Issuer Authorization (ART/EMT)",
        "description": "Authorization to issue Asset-Referenced Tokens or E-Money Tokens under MiCA",
        "applicability_expr": ART_OR_EMT,
        "data_points": ["authorizationDocument", "authorityName", "authorizationDate"],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True, "trustlineAuthorization": True},
            "evm": {"allowlistGating": True, "pauseControl": True},
        },
    },
    {
        "id": "mica-whitepaper-art",
        "regime_id": "mica-eu-v1",
        "name": "Crypto-Asset White Paper (ART)",
        "description": "White paper requirement for Asset-Referenced Tokens under MiCA Article 6",
        "applicability_expr": "assetClass == 'ART'",
        "data_points": ["whitePaperUrl", "whitePaperHash", "issuerName", "issuerAddress"],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True},
            "evm": {"allowlistGating": True},
        },
    },
    {
        "id": "mica-kyc-tier-art-emt",
        "regime_id": "mica-eu-v1",
        "name": "KYC Requirements by Asset Class",
        "description": "Know Your Customer requirements based on asset class",
        "applicability_expr": ART_OR_EMT,
        "data_points": ["kycTier", "kycProvider", "kycPolicy"],
        "enforcement_hints": {
            "xrpl": {"trustlineAuthorization": True},
            "evm": {"allowlistGating": True},
        },
    },
    {
        "id": "mica-right-of-withdrawal",
        "regime_id": "mica-eu-v1",
        "name": "Right of Withdrawal (Art. 13)",
        "description": "Right of withdrawal for retail investors under MiCA Article 13",
        "applicability_expr": "assetClass == 'ART' && investorAudience == 'retail'",
        "data_points": ["withdrawalPeriod", "withdrawalTerms", "refundPolicy"],
        "enforcement_hints": {
            "xrpl": {"freezeControl": True},
            "evm": {"pauseControl": True},
        },
    },
    {
        "id": "mica-marketing-communications",
        "regime_id": "mica-eu-v1",
        "name": "Marketing Communications",
        "description": "Requirements for marketing communications under MiCA",
        "applicability_expr": ART_OR_EMT,
        "data_points": ["marketingPolicy", "communicationGuidelines"],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True},
            "evm": {"allowlistGating": True},
        },
    },
    # Travel Rule
    {
        "id": "travel-rule-payload",
        "regime_id": "travel-rule-eu-v1",
        "name": "Travel Rule Information Payload",
        "description": "Required information for crypto-asset transfers under EU Travel Rule",
        "applicability_expr": "isCaspInvolved == true && transferType == 'CASP_TO_CASP'",
        "data_points": [
            "originatorName", "originatorAddress", "beneficiaryName",
            "beneficiaryAddress", "transferAmount",
        ],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True},
            "evm": {"allowlistGating": True},
        },
    },
    {
        "id": "travel-rule-self-hosted",
        "regime_id": "travel-rule-eu-v1",
        "name": "Self-Hosted Wallet Transfers",
        "description": "Requirements for transfers involving self-hosted wallets",
        "applicability_expr": "transferType == 'CASP_TO_SELF_HOSTED' || transferType == 'SELF_HOSTED_TO_CASP'",
        "data_points": ["walletAddress", "transferAmount", "riskAssessment"],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True},
            "evm": {"allowlistGating": True},
        },
    },
    # Ledger-specific
    {
        "id": "xrpl-trustline-auth",
        "regime_id": "mica-eu-v1",
        "name": "XRPL Trustline Authorization",
        "description": "Trustline authorization requirement for XRPL assets",
        "applicability_expr": "ledger == 'XRPL'",
        "data_points": ["trustlineLimit", "authorizationPolicy"],
        "enforcement_hints": {
            "xrpl": {"requireAuth": True, "trustlineAuthorization": True},
        },
    },
    {
        "id": "evm-allowlist-gating",
        "regime_id": "mica-eu-v1",
        "name": "EVM Allowlist Gating",
        "description": "Allowlist gating requirement for EVM assets",
        "applicability_expr": "ledger == 'ETHEREUM' || ledger == 'HEDERA'",
        "data_points": ["allowlistPolicy", "mintControl", "transferControl"],
        "enforcement_hints": {
            "evm": {"allowlistGating": True, "pauseControl": True},
        },
    },
]


async def seed_regulatory_data(session: AsyncSession) -> int:
    """Publish the built-in regimes and templates; returns the template count."""
    store = TemplateStore(session)
    for regime in REGIMES:
        await store.publish_regime(
            regime["id"],
            name=regime["name"],
            version=regime["version"],
            effective_from=EFFECTIVE_FROM,
            description=regime["description"],
            details=regime["details"],
        )
    for template in TEMPLATES:
        await store.publish_template(
            template["id"],
            regime_id=template["regime_id"],
            name=template["name"],
            applicability_expr=template["applicability_expr"],
            version="1.0",
            effective_from=EFFECTIVE_FROM,
            description=template["description"],
            data_points=template["data_points"],
            enforcement_hints=template["enforcement_hints"],
        )
    return len(TEMPLATES)


async def main():
    start = time.time()
    engine = create_async_engine(settings.database_url, echo=False)
    async_sess = async_sessionmaker(engine, expire_on_commit=False)

    async with async_sess() as session:
        count = await seed_regulatory_data(session)
        await session.commit()

    await engine.dispose()
    print(f"Seeded {len(REGIMES)} regimes and {count} requirement templates in {time.time() - start:.1f}s")


if __name__ == "__main__":
    asyncio.run(main())
