"""
Read models for the organization/product/asset registry.

These rows are owned by the platform's CRUD surface. The compliance core
reads them for context and only ever writes Issuance.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokengate.database import Base, JSONType, utcnow
from tokengate.models.enums import (
    AssetClass, AssetLedger, AssetStatus, ComplianceMode, IssuanceStatus,
)


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(200))
    country: Mapped[str] = mapped_column(String(2))
    jurisdiction: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    asset_class: Mapped[AssetClass] = mapped_column(SAEnum(AssetClass, native_enum=False, length=10))
    target_markets: Mapped[list] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    organization: Mapped[Organization] = relationship(lazy="joined")


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    code: Mapped[str] = mapped_column(String(40))
    ledger: Mapped[AssetLedger] = mapped_column(SAEnum(AssetLedger, native_enum=False, length=20))
    network: Mapped[str] = mapped_column(String(20), default="testnet")
    status: Mapped[AssetStatus] = mapped_column(
        SAEnum(AssetStatus, native_enum=False, length=20), default=AssetStatus.DRAFT,
    )
    compliance_mode: Mapped[ComplianceMode] = mapped_column(
        SAEnum(ComplianceMode, native_enum=False, length=20), default=ComplianceMode.RECORD_ONLY,
    )
    issuing_address: Mapped[str | None] = mapped_column(String(100), nullable=True)
    distribution_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # offer | admission | private
    investor_audience: Mapped[str | None] = mapped_column(String(20), nullable=True)  # retail | professional | institutional
    is_casp_involved: Mapped[bool] = mapped_column(Boolean, default=False)
    transfer_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    registry: Mapped[dict] = mapped_column(JSONType, default=dict)
    controls: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    product: Mapped[Product] = relationship(lazy="joined")

    @property
    def ledger_label(self) -> str:
        """e.g. ``XRPL-testnet``, as recorded on Authorization rows."""
        return f"{self.ledger.value}-{self.network}"

    @property
    def tenant_id(self) -> str:
        return self.product.organization_id


class Issuance(Base):
    __tablename__ = "issuances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id"), index=True)
    amount: Mapped[str] = mapped_column(String(50))
    holder_address: Mapped[str] = mapped_column(String(100))
    status: Mapped[IssuanceStatus] = mapped_column(
        SAEnum(IssuanceStatus, native_enum=False, length=20), default=IssuanceStatus.PENDING,
    )
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    issuance_facts: Mapped[dict] = mapped_column(JSONType, default=dict)
    manifest_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    asset: Mapped[Asset] = relationship(lazy="joined")
