"""
Ledger adapters.

Only XRPL is wired today; EVM ledgers share the contract but have no
adapter yet, so their reconciliation reports an error per asset.
"""

from tokengate.ledger.base import AccountLine, LedgerAdapter, TxResult
from tokengate.ledger.xrpl import XrplJsonRpcAdapter

__all__ = ["AccountLine", "LedgerAdapter", "TxResult", "XrplJsonRpcAdapter", "get_ledger_adapter"]

_adapter: LedgerAdapter | None = None


def get_ledger_adapter() -> LedgerAdapter:
    """Process-wide XRPL adapter (FastAPI dependency)."""
    global _adapter
    if _adapter is None:
        _adapter = XrplJsonRpcAdapter()
    return _adapter
