"""Tests for the payment executors.

Run:
    pytest tests/test_executor.py -v
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from mcp.types import TextContent

from shakepay.config import PaymentPolicy, Settings
from shakepay.errors import PaymentError
from shakepay.payment.executor import (
    DryRunPaymentExecutor,
    LocusRestPaymentExecutor,
    McpPaymentExecutor,
    build_executor,
)

from conftest import ALICE_WALLET


def _rest(handler, api_key="locus-key") -> LocusRestPaymentExecutor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LocusRestPaymentExecutor(api_key, "https://locus.test/", client=client)


class TestRestExecutor:
    @pytest.mark.asyncio
    async def test_posts_once_and_parses_result(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "loc-1", "tx_hash": "0xhash", "status": "pending"})

        result = await _rest(handler).send(ALICE_WALLET, 20.0, "Payment to Alice")

        assert result.tx_id == "loc-1"
        assert result.tx_hash == "0xhash"
        assert result.status == "pending"
        assert len(seen) == 1
        assert str(seen[0].url) == "https://locus.test/api/payments/send-to-address"
        assert seen[0].headers["Authorization"] == "Bearer locus-key"
        assert json.loads(seen[0].content) == {"address": ALICE_WALLET, "amount": 20.0, "memo": "Payment to Alice"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, fragment",
        [(401, "authentication"), (403, "authorization"), (429, "rate limit"), (503, "503")],
    )
    async def test_http_errors_raise_without_retry(self, status, fragment):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(status, json={"message": "nope"})

        with pytest.raises(PaymentError, match=fragment):
            await _rest(handler).send(ALICE_WALLET, 5.0, "m")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PaymentError, match="unavailable"):
            await _rest(handler).send(ALICE_WALLET, 5.0, "m")

    @pytest.mark.asyncio
    async def test_response_without_transaction_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "pending"})

        with pytest.raises(PaymentError, match="no transaction id"):
            await _rest(handler).send(ALICE_WALLET, 5.0, "m")

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        executor = _rest(lambda r: httpx.Response(200, json={"id": "x"}), api_key="")
        with pytest.raises(PaymentError, match="not configured"):
            await executor.send(ALICE_WALLET, 5.0, "m")


class TestMcpExecutor:
    def _connected(self, result) -> tuple[McpPaymentExecutor, AsyncMock]:
        executor = McpPaymentExecutor("https://mcp.test/mcp", "key")
        session = AsyncMock()
        session.call_tool.return_value = result
        executor._session = session
        return executor, session

    @pytest.mark.asyncio
    async def test_calls_send_to_address(self):
        result = MagicMock(isError=False, structuredContent=None)
        result.content = [TextContent(type="text", text=json.dumps({"transactionId": "t-9", "status": "queued"}))]
        executor, session = self._connected(result)

        out = await executor.send(ALICE_WALLET, 12.5, "Payment to Alice")

        session.call_tool.assert_awaited_once_with(
            "send_to_address",
            arguments={"address": ALICE_WALLET, "amount": 12.5, "memo": "Payment to Alice"},
        )
        assert out.tx_id == "t-9"
        assert out.status == "queued"

    @pytest.mark.asyncio
    async def test_structured_content_preferred(self):
        result = MagicMock(isError=False, structuredContent={"transaction_id": "t-10"})
        result.content = []
        executor, _ = self._connected(result)
        assert (await executor.send(ALICE_WALLET, 1.0, "m")).tx_id == "t-10"

    @pytest.mark.asyncio
    async def test_tool_error_raises(self):
        result = MagicMock(isError=True, structuredContent=None)
        result.content = [TextContent(type="text", text="insufficient balance")]
        executor, _ = self._connected(result)
        with pytest.raises(PaymentError, match="insufficient balance"):
            await executor.send(ALICE_WALLET, 1.0, "m")

    @pytest.mark.asyncio
    async def test_non_json_output_raises(self):
        result = MagicMock(isError=False, structuredContent=None)
        result.content = [TextContent(type="text", text="sent!")]
        executor, _ = self._connected(result)
        with pytest.raises(PaymentError, match="non-JSON"):
            await executor.send(ALICE_WALLET, 1.0, "m")

    @pytest.mark.asyncio
    async def test_call_failure_wrapped(self):
        executor, session = self._connected(None)
        session.call_tool.side_effect = ConnectionError("dropped")
        with pytest.raises(PaymentError, match="dropped"):
            await executor.send(ALICE_WALLET, 1.0, "m")

    @pytest.mark.asyncio
    async def test_unconfigured_url_raises(self):
        with pytest.raises(PaymentError, match="LOCUS_MCP_URL"):
            await McpPaymentExecutor("").send(ALICE_WALLET, 1.0, "m")


@pytest.mark.asyncio
async def test_dry_run_records_and_moves_nothing():
    executor = DryRunPaymentExecutor()
    result = await executor.send(ALICE_WALLET, 3.0, "m")
    assert result.tx_id.startswith("dry-run-")
    assert result.status == "simulated"
    assert executor.sent == [(ALICE_WALLET, 3.0, "m")]


@pytest.mark.parametrize(
    "backend, cls",
    [("mcp", McpPaymentExecutor), ("rest", LocusRestPaymentExecutor), ("dry-run", DryRunPaymentExecutor)],
)
def test_build_executor(backend, cls):
    settings = Settings(policy=PaymentPolicy(), data_dir=Path("."), payment_backend=backend)
    assert isinstance(build_executor(settings), cls)


def test_build_executor_unknown_backend():
    settings = Settings(policy=PaymentPolicy(), data_dir=Path("."), payment_backend="paypal")
    with pytest.raises(ValueError, match="paypal"):
        build_executor(settings)
