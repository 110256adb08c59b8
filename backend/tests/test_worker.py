"""Tests for the reconciliation worker's periodic pass."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import worker
from tokengate.database import utcnow
from tokengate.ledger.base import AccountLine
from tokengate.ledger.currency import currency_to_hex
from tokengate.models import (
    Authorization, AuthorizationRequest, AuthorizationRequestStatus, AuthorizationStatus,
    Issuance, IssuanceStatus,
)
from tokengate.services.reconciliation import ReconciliationEngine

HOLDER = "rHolderAAAAAAAAAAAAAAAAAAAAAAAAAA"


@pytest.mark.asyncio
async def test_periodic_pass(engine, db_session, asset, ledger, monkeypatch):
    ledger.set_lines(asset.issuing_address, [
        AccountLine(account=HOLDER, currency=currency_to_hex(asset.code), limit_peer="100", authorized=True),
    ])
    ledger.transactions["ISSUETX"] = {"validated": True, "meta": {"TransactionResult": "tesSUCCESS"}}
    db_session.add_all([
        AuthorizationRequest(
            tenant_id="org-1",
            asset_id=asset.id,
            holder_address=HOLDER,
            requested_limit="100",
            one_time_token_hash="0" * 64,
            expires_at=utcnow() - timedelta(hours=1),
        ),
        Issuance(
            asset_id=asset.id,
            amount="1000",
            holder_address=HOLDER,
            status=IssuanceStatus.SUBMITTED,
            tx_hash="ISSUETX",
        ),
    ])
    await db_session.commit()
    monkeypatch.setattr(worker, "get_ledger_adapter", lambda: ledger)

    await worker.run_periodic_pass(async_sessionmaker(engine, expire_on_commit=False))

    rows = (await db_session.execute(select(Authorization))).scalars().all()
    assert [r.status for r in rows] == [AuthorizationStatus.ISSUER_AUTHORIZED]

    db_session.expire_all()
    request = (await db_session.execute(select(AuthorizationRequest))).scalar_one()
    assert request.status == AuthorizationRequestStatus.EXPIRED
    issuance = (await db_session.execute(select(Issuance))).scalars().unique().one()
    assert issuance.status == IssuanceStatus.VALIDATED


@pytest.mark.asyncio
async def test_failing_asset_does_not_stop_the_pass(engine, db_session, asset, foreign_asset, ledger, monkeypatch):
    db_session.add(AuthorizationRequest(
        tenant_id="org-1",
        asset_id=asset.id,
        holder_address=HOLDER,
        requested_limit="100",
        one_time_token_hash="1" * 64,
        expires_at=utcnow() - timedelta(hours=1),
    ))
    await db_session.commit()
    monkeypatch.setattr(worker, "get_ledger_adapter", lambda: ledger)

    attempted = []
    reconcile_asset = ReconciliationEngine.reconcile_asset

    async def flaky_reconcile(self, asset_id):
        attempted.append(asset_id)
        if asset_id == "asset-1":
            raise RuntimeError("connection reset by peer")
        return await reconcile_asset(self, asset_id)

    monkeypatch.setattr(ReconciliationEngine, "reconcile_asset", flaky_reconcile)

    summary = await worker.run_periodic_pass(async_sessionmaker(engine, expire_on_commit=False))

    assert attempted == ["asset-1", "asset-2"]
    assert summary["assets"] == 2
    assert "Asset asset-1: connection reset by peer" in summary["errors"]
    assert summary["requests_expired"] == 1

    db_session.expire_all()
    request = (await db_session.execute(select(AuthorizationRequest))).scalar_one()
    assert request.status == AuthorizationRequestStatus.EXPIRED
