"""Shared test fixtures for backend tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import tokengate.models  # noqa: F401  (registers every table on Base.metadata)
from tokengate.database import Base
from tokengate.errors import LedgerUnavailable
from tokengate.ledger.base import LSF_REQUIRE_AUTH, AccountLine, LedgerAdapter, TxResult
from tokengate.models import (
    Asset, AssetClass, AssetLedger, AssetStatus, ComplianceMode, Organization, Product,
)
from tokengate.seed.regulatory_data import seed_regulatory_data

ISSUER = "rIssuerXXXXXXXXXXXXXXXXXXXXXXXXXX"
ASSET_CODE = "EUROART"


class FakeLedger(LedgerAdapter):
    """In-memory ledger: trustlines, transactions and account flags set by the test."""

    name = "fake"

    def __init__(self):
        self.lines: dict[str, list[AccountLine]] = {}
        self.transactions: dict[str, dict] = {}
        self.flags: dict[str, int] = {}
        self.submit_result = TxResult(tx_hash="SUBMITTEDTX", engine_result="tesSUCCESS", accepted=True)
        self.submitted: list[str] = []
        self.unavailable = False

    def set_lines(self, account: str, lines: list[AccountLine]) -> None:
        self.lines[account] = list(lines)

    async def get_account_lines(self, account, peer=None, ledger_index="validated"):
        if self.unavailable:
            raise LedgerUnavailable("fake ledger offline", account=account)
        return list(self.lines.get(account, []))

    async def get_transaction(self, tx_hash):
        if self.unavailable:
            raise LedgerUnavailable("fake ledger offline", tx_hash=tx_hash)
        return self.transactions.get(tx_hash)

    async def get_account_flags(self, account):
        return self.flags.get(account, LSF_REQUIRE_AUTH)

    async def submit(self, signed_tx_blob):
        self.submitted.append(signed_tx_blob)
        return self.submit_result


# ── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSession() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_session(db_session: AsyncSession) -> AsyncSession:
    """Session with the built-in MiCA and Travel Rule templates published."""
    await seed_regulatory_data(db_session)
    return db_session


# ── Registry rows ────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(id="org-1", name="Acme Tokens GmbH", country="DE", jurisdiction="EU")
    db_session.add(org)
    await db_session.flush()
    return org


@pytest_asyncio.fixture
async def other_organization(db_session: AsyncSession) -> Organization:
    org = Organization(id="org-2", name="Other Issuer SA", country="FR", jurisdiction="EU")
    db_session.add(org)
    await db_session.flush()
    return org


@pytest_asyncio.fixture
async def product(db_session: AsyncSession, organization: Organization) -> Product:
    product = Product(
        id="prod-1",
        organization=organization,
        name="Euro Basket Token",
        asset_class=AssetClass.ART,
        target_markets=["EU"],
    )
    db_session.add(product)
    await db_session.flush()
    return product


@pytest_asyncio.fixture
async def asset(db_session: AsyncSession, product: Product) -> Asset:
    """ACTIVE, gated ART asset on XRPL testnet with a CASP-to-CASP transfer profile."""
    asset = Asset(
        id="asset-1",
        product=product,
        code=ASSET_CODE,
        ledger=AssetLedger.XRPL,
        network="testnet",
        status=AssetStatus.ACTIVE,
        compliance_mode=ComplianceMode.GATED_BEFORE,
        issuing_address=ISSUER,
        distribution_type="offer",
        investor_audience="retail",
        is_casp_involved=True,
        transfer_type="CASP_TO_CASP",
    )
    db_session.add(asset)
    await db_session.flush()
    return asset


@pytest_asyncio.fixture
async def foreign_asset(db_session: AsyncSession, other_organization: Organization) -> Asset:
    product = Product(
        id="prod-2",
        organization=other_organization,
        name="Other Product",
        asset_class=AssetClass.EMT,
        target_markets=["EU"],
    )
    asset = Asset(
        id="asset-2",
        product=product,
        code="EURX",
        ledger=AssetLedger.ETHEREUM,
        network="sepolia",
        status=AssetStatus.ACTIVE,
        compliance_mode=ComplianceMode.RECORD_ONLY,
        issuing_address="0x0000000000000000000000000000000000000001",
    )
    db_session.add_all([product, asset])
    await db_session.flush()
    return asset


# ── Ledger ───────────────────────────────────────────────────────────────────

@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


# ── HTTP client ──────────────────────────────────────────────────────────────

def _override_db(session: AsyncSession):
    """Create a dependency override for get_db."""
    async def _get_db():
        yield session
    return _get_db


@pytest_asyncio.fixture
async def client(seeded_session: AsyncSession, ledger: FakeLedger, asset: Asset) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client scoped to tenant org-1, backed by the test session and fake ledger."""
    from tokengate.api.deps import get_db, get_ledger
    from tokengate.main import app

    app.dependency_overrides[get_db] = _override_db(seeded_session)
    app.dependency_overrides[get_ledger] = lambda: ledger
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Tenant-Id": "org-1", "X-Actor-Id": "compliance-officer-1"},
    ) as c:
        yield c
    app.dependency_overrides.clear()
