"""
Regulatory reference data and evaluated requirement state.

Regimes and templates are versioned, read-mostly records: a template is
superseded by publishing a new version in the same ``code`` lineage,
never edited in place. RequirementInstance rows with ``issuance_id`` set
are frozen snapshots.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    String, Text, Boolean, DateTime, ForeignKey, Index, Enum as SAEnum, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokengate.database import Base, JSONType, utcnow
from tokengate.models.enums import RequirementStatus


class Regime(Base):
    __tablename__ = "regimes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    version: Mapped[str] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    templates: Mapped[list["RequirementTemplate"]] = relationship(back_populates="regime")


class RequirementTemplate(Base):
    __tablename__ = "requirement_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    code: Mapped[str] = mapped_column(String(100), index=True)  # version lineage
    regime_id: Mapped[str] = mapped_column(ForeignKey("regimes.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    applicability_expr: Mapped[str] = mapped_column(Text)
    data_points: Mapped[list] = mapped_column(JSONType, default=list)
    enforcement_hints: Mapped[dict] = mapped_column(JSONType, default=dict)
    version: Mapped[str] = mapped_column(String(20))
    effective_from: Mapped[datetime] = mapped_column(DateTime)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    regime: Mapped[Regime] = relationship(back_populates="templates", lazy="joined")

    __table_args__ = (
        Index("ix_requirement_templates_code_from", "code", "effective_from"),
    )


class RequirementInstance(Base):
    __tablename__ = "requirement_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id"), index=True)
    requirement_template_id: Mapped[str] = mapped_column(
        ForeignKey("requirement_templates.id"), index=True,
    )
    issuance_id: Mapped[str | None] = mapped_column(
        ForeignKey("issuances.id"), nullable=True, index=True,
    )
    status: Mapped[RequirementStatus] = mapped_column(
        SAEnum(RequirementStatus, native_enum=False, length=20),
        default=RequirementStatus.REQUIRED,
    )
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_refs: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    exception_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    verifier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    platform_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)
    platform_acknowledged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    platform_acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    platform_acknowledgement_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    requirement_template: Mapped[RequirementTemplate] = relationship(lazy="joined")

    __table_args__ = (
        # At most one live instance per (asset, template)
        Index(
            "uq_requirement_instances_live",
            "asset_id", "requirement_template_id",
            unique=True,
            postgresql_where=text("issuance_id IS NULL"),
            sqlite_where=text("issuance_id IS NULL"),
        ),
    )

    @property
    def is_snapshot(self) -> bool:
        return self.issuance_id is not None
