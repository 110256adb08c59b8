from tokengate.models.registry import Organization, Product, Asset, Issuance  # noqa: F401
from tokengate.models.regulatory import Regime, RequirementTemplate, RequirementInstance  # noqa: F401
from tokengate.models.authorization import (  # noqa: F401
    Authorization, AuthorizationRequest, IdempotencyRecord,
)
from tokengate.models.enums import (  # noqa: F401
    RequirementStatus, AuthorizationStatus, AuthorizationInitiator,
    AuthorizationRequestStatus, AssetClass, AssetLedger, AssetStatus,
    ComplianceMode, IssuanceStatus,
)
