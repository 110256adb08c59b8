"""
Append-only authorization history.

Every change of a holder's trustline state is a new Authorization row;
rows are never updated or deleted. The current state of a holder is the
latest row by (created_at, id). Appends are compare-and-append: the
caller names the row it believes is latest and the append is refused
with ConcurrentAppend if someone else got there first.
"""

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.database import utcnow
from tokengate.errors import ConcurrentAppend
from tokengate.middleware.metrics import authorization_transitions_total
from tokengate.models import Asset, Authorization, AuthorizationInitiator, AuthorizationStatus

logger = logging.getLogger(__name__)


def limits_equal(a: str | None, b: str | None) -> bool:
    """Numeric comparison of ledger limit strings ("100" == "100.0")."""
    try:
        return Decimal(a or "0") == Decimal(b or "0")
    except InvalidOperation:
        return (a or "") == (b or "")


class AuthorizationHistory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest(self, asset_id: str, holder_address: str) -> Authorization | None:
        result = await self.session.execute(
            select(Authorization)
            .where(
                Authorization.asset_id == asset_id,
                Authorization.holder_address == holder_address,
            )
            .order_by(Authorization.created_at.desc(), Authorization.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, asset_id: str, holder_address: str) -> list[Authorization]:
        result = await self.session.execute(
            select(Authorization)
            .where(
                Authorization.asset_id == asset_id,
                Authorization.holder_address == holder_address,
            )
            .order_by(Authorization.created_at, Authorization.id)
        )
        return list(result.scalars())

    async def current_for_asset(self, asset_id: str) -> list[Authorization]:
        """Latest row per holder, ordered by holder address."""
        result = await self.session.execute(
            select(Authorization)
            .where(Authorization.asset_id == asset_id)
            .order_by(Authorization.holder_address, Authorization.created_at, Authorization.id)
        )
        latest: dict[str, Authorization] = {}
        for row in result.scalars():
            latest[row.holder_address] = row
        return list(latest.values())

    async def authorized_in_chain(self, asset_id: str, holder_address: str) -> bool:
        """True once an ISSUER_AUTHORIZED row follows the last closure."""
        authorized = False
        for row in await self.history(asset_id, holder_address):
            if row.status == AuthorizationStatus.TRUSTLINE_CLOSED:
                authorized = False
            elif row.status == AuthorizationStatus.ISSUER_AUTHORIZED:
                authorized = True
        return authorized

    async def append(
        self,
        asset: Asset,
        holder_address: str,
        status: AuthorizationStatus,
        limit: str,
        initiated_by: AuthorizationInitiator,
        expected_prior_id: int | None,
        tx_hash: str | None = None,
        external: bool = False,
        external_source: str | None = None,
    ) -> Authorization:
        current = await self.latest(asset.id, holder_address)
        current_id = current.id if current is not None else None
        if current_id != expected_prior_id:
            raise ConcurrentAppend(
                f"Authorization history for {holder_address} changed during append",
                asset_id=asset.id,
                holder_address=holder_address,
                expected_prior_id=expected_prior_id,
                actual_prior_id=current_id,
            )

        row = Authorization(
            tenant_id=asset.tenant_id,
            asset_id=asset.id,
            ledger=asset.ledger_label,
            currency=asset.code,
            holder_address=holder_address,
            limit=limit,
            status=status,
            initiated_by=initiated_by,
            tx_hash=tx_hash,
            external=external,
            external_source=external_source,
            created_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()

        authorization_transitions_total.labels(status=status.value).inc()
        logger.info(
            "Authorization %s for %s on asset %s (limit=%s, by=%s)",
            status.value, holder_address, asset.id, limit, initiated_by.value,
        )
        return row
