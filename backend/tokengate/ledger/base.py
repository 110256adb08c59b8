"""
Ledger adapter contract.

The compliance core only ever talks to a ledger through this interface:
read trustlines, look up transactions, and submit pre-signed blobs.
Signing happens client-side; no adapter ever sees a secret.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

# lsfRequireAuth on an XRPL AccountRoot
LSF_REQUIRE_AUTH = 0x00040000


@dataclass(frozen=True)
class AccountLine:
    """One trustline as seen from the issuing account."""
    account: str           # the holder (counterparty)
    currency: str
    balance: str = "0"
    limit: str = "0"       # issuer's own limit on the line
    limit_peer: str = "0"  # holder's limit
    authorized: bool = False
    peer_authorized: bool = False

    @property
    def is_authorized(self) -> bool:
        return self.authorized or self.peer_authorized

    @property
    def holder_limit(self) -> str:
        return self.limit_peer


@dataclass(frozen=True)
class TxResult:
    tx_hash: str | None
    engine_result: str | None = None
    accepted: bool = False


class LedgerAdapter(ABC):
    name: str = "ledger"

    @abstractmethod
    async def get_account_lines(
        self, account: str, peer: str | None = None, ledger_index: str = "validated",
    ) -> list[AccountLine]:
        """All trustlines of ``account``; raises LedgerUnavailable on failure."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> dict | None:
        """Validated or pending transaction JSON, or None if unknown."""

    @abstractmethod
    async def get_account_flags(self, account: str) -> int | None: ...

    @abstractmethod
    async def submit(self, signed_tx_blob: str) -> TxResult: ...

    async def create_trustline(self, signed_tx_blob: str) -> TxResult:
        return await self.submit(signed_tx_blob)

    async def authorize_trustline(self, signed_tx_blob: str) -> TxResult:
        return await self.submit(signed_tx_blob)

    async def issue_token(self, signed_tx_blob: str) -> TxResult:
        return await self.submit(signed_tx_blob)

    async def requires_auth(self, account: str) -> bool:
        """True when the issuing account only accepts authorized trustlines."""
        flags = await self.get_account_flags(account)
        return bool(flags is not None and flags & LSF_REQUIRE_AUTH)
