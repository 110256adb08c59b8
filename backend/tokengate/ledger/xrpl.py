"""
XRPL adapter over the rippled JSON-RPC API.

Transport failures, timeouts and rippled error responses all surface as
LedgerUnavailable so callers can record them without guessing at causes.
"""

import logging

import httpx

from tokengate.config import settings
from tokengate.errors import LedgerUnavailable
from tokengate.ledger.base import AccountLine, LedgerAdapter, TxResult

logger = logging.getLogger(__name__)

_ACCEPTED_PREFIXES = ("tes", "ter")
_MAX_PAGES = 50


class XrplJsonRpcAdapter(LedgerAdapter):
    name = "XRPL"

    def __init__(self, rpc_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.rpc_url = rpc_url or settings.xrpl_rpc_url
        self.timeout = timeout if timeout is not None else settings.ledger_timeout_seconds
        self._transport = transport

    async def _call(self, method: str, params: dict) -> dict:
        payload = {"method": method, "params": [params]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.rpc_url, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as exc:
            raise LedgerUnavailable(f"XRPL {method} timed out", method=method) from exc
        except httpx.HTTPError as exc:
            raise LedgerUnavailable(f"XRPL {method} failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise LedgerUnavailable(f"XRPL {method} returned invalid JSON", method=method) from exc

        return body.get("result") or {}

    async def get_account_lines(
        self, account: str, peer: str | None = None, ledger_index: str = "validated",
    ) -> list[AccountLine]:
        lines: list[AccountLine] = []
        marker = None
        for _ in range(_MAX_PAGES):
            params: dict = {"account": account, "ledger_index": ledger_index}
            if peer:
                params["peer"] = peer
            if marker is not None:
                params["marker"] = marker

            result = await self._call("account_lines", params)
            if result.get("status") == "error":
                error = result.get("error")
                if error == "actNotFound":
                    return []
                raise LedgerUnavailable(
                    f"XRPL account_lines error: {result.get('error_message') or error}",
                    account=account,
                )

            for line in result.get("lines", []):
                lines.append(AccountLine(
                    account=line.get("account", ""),
                    currency=line.get("currency", ""),
                    balance=str(line.get("balance", "0")),
                    limit=str(line.get("limit", "0")),
                    limit_peer=str(line.get("limit_peer", "0")),
                    authorized=bool(line.get("authorized", False)),
                    peer_authorized=bool(line.get("peer_authorized", False)),
                ))

            marker = result.get("marker")
            if marker is None:
                break
        else:
            logger.warning("account_lines for %s truncated after %d pages", account, _MAX_PAGES)

        return lines

    async def get_transaction(self, tx_hash: str) -> dict | None:
        result = await self._call("tx", {"transaction": tx_hash, "binary": False})
        if result.get("status") == "error":
            if result.get("error") in ("txnNotFound", "notFound"):
                return None
            raise LedgerUnavailable(
                f"XRPL tx lookup error: {result.get('error_message') or result.get('error')}",
                tx_hash=tx_hash,
            )
        return result

    async def get_account_flags(self, account: str) -> int | None:
        result = await self._call("account_info", {"account": account, "ledger_index": "validated"})
        if result.get("status") == "error":
            if result.get("error") == "actNotFound":
                return None
            raise LedgerUnavailable(
                f"XRPL account_info error: {result.get('error_message') or result.get('error')}",
                account=account,
            )
        return int(result.get("account_data", {}).get("Flags", 0))

    async def submit(self, signed_tx_blob: str) -> TxResult:
        result = await self._call("submit", {"tx_blob": signed_tx_blob})
        if result.get("status") == "error":
            raise LedgerUnavailable(
                f"XRPL submit error: {result.get('error_message') or result.get('error')}",
            )
        engine_result = result.get("engine_result")
        tx_hash = (result.get("tx_json") or {}).get("hash")
        accepted = bool(engine_result) and engine_result.startswith(_ACCEPTED_PREFIXES)
        logger.info("Submitted tx %s: %s", tx_hash, engine_result)
        return TxResult(tx_hash=tx_hash, engine_result=engine_result, accepted=accepted)
