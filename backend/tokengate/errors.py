"""
Domain error taxonomy.

Every error names the requirement, holder, request or asset that caused
it, so failures surfaced to callers stay auditable. The API layer renders
them as ``{"error": code, "detail": message, "context": {...}}``.
"""

from __future__ import annotations


class ComplianceError(Exception):
    """Base class for all domain errors."""

    code: str = "compliance_error"
    status_code: int = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, "context": self.context}


# ── Policy ───────────────────────────────────────────────────────────────────

class MalformedExpression(ComplianceError):
    code = "malformed_expression"
    status_code = 422

    def __init__(self, expression: str, reason: str, position: int | None = None):
        super().__init__(
            f"Cannot parse applicability expression: {reason}",
            expression=expression,
            position=position,
        )
        self.expression = expression
        self.position = position


class TemplateVersionConflict(ComplianceError):
    code = "template_version_conflict"
    status_code = 409


class TemplateNotFound(ComplianceError):
    code = "template_not_found"
    status_code = 404


# ── Requirements / snapshots ─────────────────────────────────────────────────

class RequirementNotFound(ComplianceError):
    code = "requirement_not_found"
    status_code = 404


class InvalidRequirementTransition(ComplianceError):
    code = "invalid_requirement_transition"
    status_code = 422


class SnapshotImmutable(ComplianceError):
    code = "snapshot_immutable"
    status_code = 409


class SnapshotCreationFailed(ComplianceError):
    code = "snapshot_creation_failed"
    status_code = 500


# ── Assets / issuance ────────────────────────────────────────────────────────

class AssetNotFound(ComplianceError):
    code = "asset_not_found"
    status_code = 404


class AssetNotActive(ComplianceError):
    code = "asset_not_active"
    status_code = 409


class IssuanceNotFound(ComplianceError):
    code = "issuance_not_found"
    status_code = 404


class IssuanceBlocked(ComplianceError):
    code = "issuance_blocked"
    status_code = 409


# ── Ledger ───────────────────────────────────────────────────────────────────

class LedgerUnavailable(ComplianceError):
    code = "ledger_unavailable"
    status_code = 503


# ── Authorization handoff ────────────────────────────────────────────────────

class RequestNotFound(ComplianceError):
    code = "request_not_found"
    status_code = 404


class RequestExpired(ComplianceError):
    code = "request_expired"
    status_code = 410


class RequestAlreadyProcessed(ComplianceError):
    code = "request_already_processed"
    status_code = 409


class InvalidProof(ComplianceError):
    code = "invalid_proof"
    status_code = 400


class ConcurrentAppend(ComplianceError):
    code = "concurrent_append"
    status_code = 409
