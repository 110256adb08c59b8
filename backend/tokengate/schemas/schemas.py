"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tokengate.models import (
    AuthorizationInitiator, AuthorizationRequestStatus, AuthorizationStatus,
    IssuanceStatus, RequirementStatus,
)
from tokengate.policy.facts import PolicyFacts
from tokengate.services.manifest import ComplianceManifest


# ── Policy ──

class PolicyEvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    facts: PolicyFacts
    asset_id: str | None = Field(None, alias="assetId")


class RequirementProposal(BaseModel):
    id: str | None = None
    requirement_template_id: str
    template_name: str
    status: RequirementStatus
    rationale: str


class RationaleItem(BaseModel):
    template_id: str
    template_name: str
    matched_on: dict[str, Any]
    text: str


class SkippedTemplate(BaseModel):
    template_id: str
    reason: str
    position: int | None = None


class PolicyEvaluationResponse(BaseModel):
    requirement_instances: list[RequirementProposal]
    enforcement_plan: dict[str, dict[str, Any]]
    enforcement_conflicts: list[dict[str, Any]] = []
    rationale: list[RationaleItem]
    skipped_templates: list[SkippedTemplate] = []


class CreateRequirementsRequest(BaseModel):
    """Optional fact overrides; by default facts are derived from the asset."""
    facts: PolicyFacts | None = None


# ── Templates ──

class TemplatePublishRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    regime_id: str = Field(alias="regimeId")
    code: str | None = None
    name: str
    description: str | None = None
    applicability_expr: str = Field(alias="applicabilityExpr")
    data_points: list[str] = Field(default_factory=list, alias="dataPoints")
    enforcement_hints: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="enforcementHints")
    version: str
    effective_from: datetime = Field(alias="effectiveFrom")
    effective_to: datetime | None = Field(None, alias="effectiveTo")


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    regime_id: str
    name: str
    description: str | None = None
    applicability_expr: str
    data_points: list[str]
    enforcement_hints: dict[str, Any]
    version: str
    effective_from: datetime
    effective_to: datetime | None = None


class TemplateListResponse(BaseModel):
    templates: list[TemplateResponse]
    total: int


# ── Requirements ──

class RequirementInstanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    asset_id: str
    requirement_template_id: str
    issuance_id: str | None = None
    status: RequirementStatus
    rationale: str | None = None
    evidence_refs: dict[str, Any] | None = None
    exception_reason: str | None = None
    verifier_id: str | None = None
    verified_at: datetime | None = None
    platform_acknowledged: bool = False
    platform_acknowledged_by: str | None = None
    platform_acknowledged_at: datetime | None = None
    platform_acknowledgement_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class RequirementListResponse(BaseModel):
    requirements: list[RequirementInstanceResponse]
    total: int


class VerifyRequirementRequest(BaseModel):
    status: RequirementStatus
    evidence_refs: dict[str, Any] | None = None
    exception_reason: str | None = None


class AcknowledgeRequirementRequest(BaseModel):
    reason: str | None = None


class BlockedRequirement(BaseModel):
    id: str
    requirement_template_id: str
    name: str
    status: RequirementStatus
    rationale: str | None = None


class ValidationResponse(BaseModel):
    valid: bool
    blocked_requirements: list[BlockedRequirement]


# ── Issuances ──

class IssuanceCreateRequest(BaseModel):
    amount: str = Field(..., min_length=1)
    holder_address: str = Field(..., min_length=1)
    extra_facts: dict[str, Any] | None = None
    signed_tx_blob: str | None = None


class IssuanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    asset_id: str
    amount: str
    holder_address: str
    status: IssuanceStatus
    tx_hash: str | None = None
    failure_code: str | None = None
    manifest_hash: str | None = None
    created_at: datetime
    validated_at: datetime | None = None


class IssuanceCreateResponse(BaseModel):
    issuance: IssuanceResponse
    manifest_hash: str
    snapshot_count: int


class SnapshotResponse(BaseModel):
    issuance_id: str
    requirements: list[RequirementInstanceResponse]
    total: int


class ManifestResponse(BaseModel):
    manifest: ComplianceManifest
    manifest_hash: str
    stored_hash: str | None = None
    matches_stored: bool


# ── Authorizations ──

class ReconcileResponse(BaseModel):
    processed: int
    external: int
    authorized: int
    limit_updated: int
    closed: int
    errors: list[str]


class QueuedJobResponse(BaseModel):
    job_id: str
    status: str = "queued"


class AuthorizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: str
    ledger: str
    currency: str
    holder_address: str
    limit: str
    status: AuthorizationStatus
    initiated_by: AuthorizationInitiator
    tx_hash: str | None = None
    external: bool
    external_source: str | None = None
    created_at: datetime


class AuthorizationListResponse(BaseModel):
    authorizations: list[AuthorizationResponse]
    total: int


# ── Authorization requests (holder handoff) ──

class AuthorizationRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    asset_id: str = Field(alias="assetId")
    holder_address: str = Field(..., min_length=1, alias="holderAddress")
    requested_limit: str = Field(..., min_length=1, alias="requestedLimit")
    ttl_hours: int | None = Field(None, ge=1, le=168, alias="ttlHours")


class AuthorizationRequestCreated(BaseModel):
    id: str
    status: AuthorizationRequestStatus
    expires_at: datetime
    auth_url: str | None = None
    is_duplicate: bool = False


class AuthorizationRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    asset_id: str
    holder_address: str
    requested_limit: str
    status: AuthorizationRequestStatus
    expires_at: datetime
    consumed_at: datetime | None = None
    consumed_tx_hash: str | None = None
    created_at: datetime


class AuthorizationRequestListResponse(BaseModel):
    requests: list[AuthorizationRequestResponse]
    total: int


class HolderAssetInfo(BaseModel):
    code: str
    ledger: str
    network: str
    issuing_address: str | None = None


class TokenLookupResponse(BaseModel):
    request: AuthorizationRequestResponse
    asset: HolderAssetInfo


class HolderCallbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., min_length=1, alias="txHash")


class HolderCallbackResponse(BaseModel):
    id: str
    status: AuthorizationRequestStatus
    recorded: AuthorizationStatus


class IssuerAuthorizeRequest(BaseModel):
    signed_tx_blob: str = Field(..., min_length=1)


class IssuerAuthorizeResponse(BaseModel):
    id: str
    tx_hash: str | None = None
    status: AuthorizationStatus
    recorded: bool = True
    is_duplicate: bool = False
