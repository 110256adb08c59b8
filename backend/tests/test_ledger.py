"""Tests for currency helpers and the XRPL JSON-RPC adapter."""

import json

import httpx
import pytest

from tokengate.errors import LedgerUnavailable
from tokengate.ledger.base import LSF_REQUIRE_AUTH
from tokengate.ledger.currency import (
    currency_to_hex, hex_currency_to_ascii, is_hex_currency, normalize_currency, same_currency,
)
from tokengate.ledger.xrpl import XrplJsonRpcAdapter

ISSUER = "rIssuerXXXXXXXXXXXXXXXXXXXXXXXXXX"


class TestCurrency:
    def test_long_code_to_hex(self):
        hexed = currency_to_hex("EUROART")
        assert hexed == "4555524F415254" + "0" * 26
        assert is_hex_currency(hexed)
        assert hex_currency_to_ascii(hexed) == "EUROART"

    def test_same_currency_across_forms(self):
        assert same_currency(currency_to_hex("EUROART"), "EUROART")
        assert same_currency("USD", "USD")
        assert not same_currency("USD", "EUR")

    def test_non_hex_passthrough(self):
        assert normalize_currency("USD") == "USD"
        assert hex_currency_to_ascii("USD") is None


def _adapter(handler) -> XrplJsonRpcAdapter:
    return XrplJsonRpcAdapter(
        rpc_url="http://rippled.test", timeout=1.0, transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
class TestXrplAdapter:
    async def test_account_lines_follow_markers(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            params = body["params"][0]
            calls.append(params)
            assert body["method"] == "account_lines"
            if "marker" not in params:
                return httpx.Response(200, json={"result": {
                    "status": "success",
                    "lines": [{"account": "rA", "currency": "USD", "limit_peer": "100", "authorized": True}],
                    "marker": "page-2",
                }})
            return httpx.Response(200, json={"result": {
                "status": "success",
                "lines": [{"account": "rB", "currency": "USD", "limit_peer": "5"}],
            }})

        lines = await _adapter(handler).get_account_lines(ISSUER)

        assert [(line.account, line.holder_limit, line.is_authorized) for line in lines] == [
            ("rA", "100", True), ("rB", "5", False),
        ]
        assert calls[1]["marker"] == "page-2"
        assert calls[0]["ledger_index"] == "validated"

    async def test_unfunded_account_has_no_lines(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"status": "error", "error": "actNotFound"}})

        assert await _adapter(handler).get_account_lines(ISSUER) == []

    async def test_rpc_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"status": "error", "error": "tooBusy"}})

        with pytest.raises(LedgerUnavailable):
            await _adapter(handler).get_account_lines(ISSUER)

    async def test_http_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(LedgerUnavailable):
            await _adapter(handler).get_account_lines(ISSUER)

    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(LedgerUnavailable):
            await _adapter(handler).get_transaction("A" * 64)

    async def test_unknown_transaction(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"status": "error", "error": "txnNotFound"}})

        assert await _adapter(handler).get_transaction("A" * 64) is None

    async def test_require_auth_flag(self):
        def handler(request):
            return httpx.Response(200, json={"result": {
                "status": "success",
                "account_data": {"Account": ISSUER, "Flags": LSF_REQUIRE_AUTH | 0x00800000},
            }})

        assert await _adapter(handler).requires_auth(ISSUER) is True

    async def test_unfunded_issuer_does_not_require_auth(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"status": "error", "error": "actNotFound"}})

        assert await _adapter(handler).requires_auth(ISSUER) is False

    async def test_submit(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["params"][0]["tx_blob"] == "DEADBEEF"
            return httpx.Response(200, json={"result": {
                "status": "success",
                "engine_result": "tesSUCCESS",
                "tx_json": {"hash": "HASH1"},
            }})

        result = await _adapter(handler).submit("DEADBEEF")
        assert (result.tx_hash, result.engine_result, result.accepted) == ("HASH1", "tesSUCCESS", True)

    async def test_submit_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"result": {
                "status": "success",
                "engine_result": "tecNO_AUTH",
                "tx_json": {"hash": "HASH2"},
            }})

        result = await _adapter(handler).issue_token("DEADBEEF")
        assert result.accepted is False
