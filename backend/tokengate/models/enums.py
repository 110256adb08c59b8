"""
Closed status vocabularies.

Stored as non-native SQL enums (VARCHAR + CHECK) so the same values work
on PostgreSQL and SQLite.
"""

from enum import Enum


class RequirementStatus(str, Enum):
    NA = "NA"
    REQUIRED = "REQUIRED"
    SATISFIED = "SATISFIED"
    EXCEPTION = "EXCEPTION"


class AuthorizationStatus(str, Enum):
    EXTERNAL = "EXTERNAL"
    ISSUER_AUTHORIZED = "ISSUER_AUTHORIZED"
    HOLDER_REQUESTED = "HOLDER_REQUESTED"
    LIMIT_UPDATED = "LIMIT_UPDATED"
    TRUSTLINE_CLOSED = "TRUSTLINE_CLOSED"


class AuthorizationInitiator(str, Enum):
    HOLDER = "HOLDER"
    ISSUER = "ISSUER"
    SYSTEM = "SYSTEM"


class AuthorizationRequestStatus(str, Enum):
    INVITED = "INVITED"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class AssetClass(str, Enum):
    ART = "ART"
    EMT = "EMT"
    OTHER = "OTHER"


class AssetLedger(str, Enum):
    XRPL = "XRPL"
    ETHEREUM = "ETHEREUM"
    HEDERA = "HEDERA"


class AssetStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    RETIRED = "RETIRED"


class ComplianceMode(str, Enum):
    OFF = "OFF"
    RECORD_ONLY = "RECORD_ONLY"
    GATED_BEFORE = "GATED_BEFORE"


class IssuanceStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    VALIDATED = "VALIDATED"
    FAILED = "FAILED"
