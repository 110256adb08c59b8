"""
Holder authorization history, one-time authorization requests and
idempotency records.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from tokengate.database import Base, JSONType, utcnow
from tokengate.models.enums import (
    AuthorizationStatus, AuthorizationInitiator, AuthorizationRequestStatus,
)


class Authorization(Base):
    """Append-only event row. Current state = latest row per (asset, holder)."""
    __tablename__ = "authorizations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id"), index=True)
    ledger: Mapped[str] = mapped_column(String(40))
    currency: Mapped[str] = mapped_column(String(40))
    holder_address: Mapped[str] = mapped_column(String(100))
    limit: Mapped[str] = mapped_column(String(50))
    status: Mapped[AuthorizationStatus] = mapped_column(
        SAEnum(AuthorizationStatus, native_enum=False, length=30),
    )
    initiated_by: Mapped[AuthorizationInitiator] = mapped_column(
        SAEnum(AuthorizationInitiator, native_enum=False, length=10),
    )
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    external: Mapped[bool] = mapped_column(Boolean, default=False)
    external_source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_authorizations_asset_holder_created", "asset_id", "holder_address", "created_at"),
    )


class AuthorizationRequest(Base):
    """Single-use invitation for a holder to open an authorized trustline."""
    __tablename__ = "authorization_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id"), index=True)
    holder_address: Mapped[str] = mapped_column(String(100))
    requested_limit: Mapped[str] = mapped_column(String(50))
    one_time_token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[AuthorizationRequestStatus] = mapped_column(
        SAEnum(AuthorizationRequestStatus, native_enum=False, length=20),
        default=AuthorizationRequestStatus.INVITED,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    consumed_tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    operation: Mapped[str | None] = mapped_column(String(100), nullable=True)
    result: Mapped[dict | list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
