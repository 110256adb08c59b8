"""
PolicyFacts — the flat fact record templates are evaluated against.

The known fields come from the organization (issuerCountry), the product
(assetClass, targetMarkets) and the asset (everything else). Extra fields
are allowed so new templates can reference new facts without a code
change; fields left unset are omitted from the record and therefore
evaluate as missing.
"""

from pydantic import BaseModel, ConfigDict, Field


class PolicyFacts(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    issuer_country: str | None = Field(None, alias="issuerCountry")
    asset_class: str | None = Field(None, alias="assetClass")
    target_markets: list[str] | None = Field(None, alias="targetMarkets")
    ledger: str | None = None
    distribution_type: str | None = Field(None, alias="distributionType")
    investor_audience: str | None = Field(None, alias="investorAudience")
    is_casp_involved: bool | None = Field(None, alias="isCaspInvolved")
    transfer_type: str | None = Field(None, alias="transferType")

    def as_record(self) -> dict:
        """Flat camelCase record as referenced by applicability expressions."""
        return self.model_dump(by_alias=True, exclude_none=True)
