"""
Requirement Template Store.

Versioned, regime-scoped rule definitions. Templates are never edited or
deleted: a new version is published into the same ``code`` lineage and the
previously open version is closed at the new version's effective_from, so
validity windows in a lineage never overlap and historical evaluations
stay reproducible.
"""

import logging
from datetime import datetime

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import TemplateNotFound, TemplateVersionConflict
from tokengate.models import Regime, RequirementTemplate
from tokengate.policy import expression

logger = logging.getLogger(__name__)


class TemplateStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_effective_templates(self, at: datetime | None = None) -> list[RequirementTemplate]:
        """Templates whose [effective_from, effective_to) window contains ``at``."""
        at = at or utcnow()
        result = await self.session.execute(
            select(RequirementTemplate)
            .where(
                RequirementTemplate.effective_from <= at,
                or_(
                    RequirementTemplate.effective_to.is_(None),
                    RequirementTemplate.effective_to > at,
                ),
            )
            .order_by(RequirementTemplate.id)
        )
        return list(result.scalars().unique())

    async def get_template(self, template_id: str) -> RequirementTemplate:
        template = await self.session.get(RequirementTemplate, template_id)
        if template is None:
            raise TemplateNotFound(f"Requirement template {template_id} not found", template_id=template_id)
        return template

    async def get_regime(self, regime_id: str) -> Regime | None:
        return await self.session.get(Regime, regime_id)

    async def publish_regime(
        self,
        regime_id: str,
        name: str,
        version: str,
        effective_from: datetime,
        description: str | None = None,
        details: dict | None = None,
    ) -> Regime:
        """Publish a regime version. Re-publishing an existing id is a no-op."""
        existing = await self.get_regime(regime_id)
        if existing is not None:
            return existing
        regime = Regime(
            id=regime_id,
            name=name,
            version=version,
            description=description,
            effective_from=effective_from,
            details=details or {},
        )
        self.session.add(regime)
        await self.session.flush()
        logger.info("Published regime %s (%s v%s)", regime_id, name, version)
        return regime

    async def publish_template(
        self,
        template_id: str,
        regime_id: str,
        name: str,
        applicability_expr: str,
        version: str,
        effective_from: datetime,
        code: str | None = None,
        description: str | None = None,
        data_points: list[str] | None = None,
        enforcement_hints: dict | None = None,
        effective_to: datetime | None = None,
    ) -> RequirementTemplate:
        """
        Publish a template version.

        Raises MalformedExpression if the predicate cannot be parsed and
        TemplateVersionConflict if the new window would overlap the history
        of its lineage.
        """
        expression.parse(applicability_expr)

        existing = await self.session.get(RequirementTemplate, template_id)
        if existing is not None:
            if existing.version != version or existing.applicability_expr != applicability_expr:
                raise TemplateVersionConflict(
                    f"Template {template_id} is already published with different content",
                    template_id=template_id,
                )
            return existing

        if await self.get_regime(regime_id) is None:
            raise TemplateNotFound(f"Regime {regime_id} not found", regime_id=regime_id)

        code = code or template_id
        lineage = await self.session.execute(
            select(RequirementTemplate)
            .where(RequirementTemplate.code == code)
            .order_by(RequirementTemplate.effective_from.desc())
        )
        versions = list(lineage.scalars().unique())
        if versions:
            latest = versions[0]
            if effective_from <= latest.effective_from:
                raise TemplateVersionConflict(
                    f"Template {template_id} would start before the current version "
                    f"{latest.id} of lineage {code}",
                    template_id=template_id,
                    superseded_template_id=latest.id,
                )
            if latest.effective_to is None or latest.effective_to > effective_from:
                latest.effective_to = effective_from
                logger.info("Template %s superseded by %s at %s", latest.id, template_id, effective_from)

        template = RequirementTemplate(
            id=template_id,
            code=code,
            regime_id=regime_id,
            name=name,
            description=description,
            applicability_expr=applicability_expr,
            data_points=list(data_points or []),
            enforcement_hints=dict(enforcement_hints or {}),
            version=version,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        self.session.add(template)
        await self.session.flush()
        logger.info("Published requirement template %s v%s (lineage %s)", template_id, version, code)
        return template
