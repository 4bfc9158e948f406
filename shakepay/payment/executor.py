"""Payment executors: one ``send(to_address, amount, memo)`` interface.

Three interchangeable strategies:

* ``McpPaymentExecutor``: calls the Locus ``send_to_address`` MCP tool over
  streamable HTTP (or a local stdio server).
* ``LocusRestPaymentExecutor``: POSTs to the Locus REST API with httpx.
* ``DryRunPaymentExecutor``: logs and returns a synthetic transaction id.

Executors never retry.  Every failure surfaces as ``PaymentError``; the
Payment Gate turns that into a ``payment-failed`` event.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from shakepay.config import Settings
from shakepay.constants import LOCUS_SEND_TOOL, PAYMENT_TIMEOUT
from shakepay.errors import PaymentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    tx_id: str
    status: str = "pending"
    tx_hash: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class PaymentExecutor(Protocol):
    name: str

    async def initialize(self) -> None: ...

    async def send(self, to_address: str, amount: float, memo: str) -> PaymentResult: ...

    async def shutdown(self) -> None: ...


def _result_from_payload(payload: dict[str, Any]) -> PaymentResult:
    tx_id = payload.get("transactionId") or payload.get("transaction_id") or payload.get("id") or ""
    tx_hash = payload.get("txHash") or payload.get("tx_hash") or payload.get("transactionHash") or ""
    if not tx_id and not tx_hash:
        raise PaymentError(f"payment response carried no transaction id: {payload!r}")
    return PaymentResult(
        tx_id=str(tx_id or tx_hash),
        status=str(payload.get("status") or "pending"),
        tx_hash=str(tx_hash),
        raw=payload,
    )


# ---------------------------------------------------------------------------
# MCP
# ---------------------------------------------------------------------------


class McpPaymentExecutor:
    """Sends payments through a Locus MCP server.

    Parameters
    ----------
    url : str
        Streamable-HTTP endpoint of the MCP server.  Ignored when *command* is set.
    api_key : str
        Sent as a Bearer token on the HTTP transport.
    command : str
        Optional shell-style command line for a local stdio MCP server.
    """

    name = "mcp"

    def __init__(self, url: str = "", api_key: str = "", *, command: str = "") -> None:
        self._url = url
        self._api_key = api_key
        self._command = command
        self._exit_stack: AsyncExitStack | None = None
        self._session: Any = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._lock:
            if self._session is None:
                await self._connect()

    async def _connect(self) -> None:
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client
        from mcp.client.streamable_http import streamablehttp_client

        stack = AsyncExitStack()
        try:
            if self._command:
                argv = shlex.split(self._command)
                params = StdioServerParameters(command=argv[0], args=argv[1:])
                logger.info("[Payment] Connecting to MCP server '%s' (stdio)", argv[0])
                read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
            else:
                if not self._url:
                    raise PaymentError("LOCUS_MCP_URL is not configured")
                headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
                logger.info("[Payment] Connecting to MCP server %s", self._url)
                read_stream, write_stream, _ = await stack.enter_async_context(
                    streamablehttp_client(self._url, headers=headers)
                )
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
            tools = await session.list_tools()
        except PaymentError:
            await stack.aclose()
            raise
        except Exception as exc:
            await stack.aclose()
            raise PaymentError(f"MCP payment server unavailable: {exc}") from exc

        names = {t.name for t in tools.tools}
        if LOCUS_SEND_TOOL not in names:
            await stack.aclose()
            raise PaymentError(f"MCP server does not expose {LOCUS_SEND_TOOL}")

        self._exit_stack = stack
        self._session = session
        logger.info("[Payment] MCP ready, %d tools exposed", len(names))

    async def send(self, to_address: str, amount: float, memo: str) -> PaymentResult:
        await self.initialize()
        logger.info("[Payment] MCP %s: %s USDC to %s", LOCUS_SEND_TOOL, amount, to_address)
        try:
            result = await self._session.call_tool(
                LOCUS_SEND_TOOL,
                arguments={"address": to_address, "amount": float(amount), "memo": memo},
            )
        except Exception as exc:
            raise PaymentError(f"{LOCUS_SEND_TOOL} call failed: {exc}") from exc

        texts = [b.text for b in result.content if hasattr(b, "text")]
        if getattr(result, "isError", False):
            raise PaymentError(f"{LOCUS_SEND_TOOL} returned an error: {' '.join(texts)}")

        structured = getattr(result, "structuredContent", None)
        if isinstance(structured, dict) and structured:
            return _result_from_payload(structured)
        body = "\n".join(texts)
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            raise PaymentError(f"{LOCUS_SEND_TOOL} returned non-JSON output: {body[:200]}") from None
        if not isinstance(payload, dict):
            raise PaymentError(f"{LOCUS_SEND_TOOL} returned unexpected output: {body[:200]}")
        return _result_from_payload(payload)

    async def shutdown(self) -> None:
        async with self._lock:
            if self._exit_stack is not None:
                try:
                    await self._exit_stack.aclose()
                except Exception as exc:
                    logger.warning("[Payment] MCP shutdown error: %s", exc)
            self._exit_stack = None
            self._session = None
        logger.info("[Payment] MCP connection closed")


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


class LocusRestPaymentExecutor:
    """Sends payments with one POST to ``/api/payments/send-to-address``."""

    name = "rest"
    SEND_PATH = "/api/payments/send-to-address"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = PAYMENT_TIMEOUT,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        if not self._api_key:
            logger.warning("[Payment] LOCUS_API_KEY not set; payments will fail.")

    async def send(self, to_address: str, amount: float, memo: str) -> PaymentResult:
        if not self._api_key:
            raise PaymentError("Locus API key not configured")
        if self._client is None:
            await self.initialize()

        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        payload = {"address": to_address, "amount": float(amount), "memo": memo}
        logger.info("[Payment] REST send: %s USDC to %s", amount, to_address)
        try:
            response = await self._client.post(f"{self._base_url}{self.SEND_PATH}", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 401:
                raise PaymentError("Locus authentication failed - check API key") from exc
            if status == 403:
                raise PaymentError("Locus authorization failed - check policy group permissions") from exc
            if status == 429:
                raise PaymentError("Locus rate limit exceeded") from exc
            raise PaymentError(f"Locus API error {status}: {exc.response.text[:200]}") from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise PaymentError(f"Locus API unavailable: {exc}") from exc
        except ValueError as exc:
            raise PaymentError("Locus API returned a non-JSON body") from exc

        if not isinstance(data, dict):
            raise PaymentError(f"Locus API returned unexpected body: {data!r}")
        return _result_from_payload(data)

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


class DryRunPaymentExecutor:
    """Records what would have been paid; moves no money."""

    name = "dry-run"

    def __init__(self) -> None:
        self.sent: list[tuple[str, float, str]] = []

    async def initialize(self) -> None:
        logger.warning("[Payment] Dry-run executor active; no funds will move.")

    async def send(self, to_address: str, amount: float, memo: str) -> PaymentResult:
        self.sent.append((to_address, amount, memo))
        tx_id = f"dry-run-{uuid.uuid4().hex[:12]}"
        logger.info("[Payment] DRY RUN %s USDC to %s (%s)", amount, to_address, tx_id)
        return PaymentResult(tx_id=tx_id, status="simulated")

    async def shutdown(self) -> None:
        return None


def build_executor(settings: Settings) -> PaymentExecutor:
    """Pick the executor named by ``PAYMENT_BACKEND``."""
    backend = settings.payment_backend
    if backend == "mcp":
        return McpPaymentExecutor(settings.locus_mcp_url, settings.locus_api_key)
    if backend == "rest":
        return LocusRestPaymentExecutor(settings.locus_api_key, settings.locus_api_url)
    if backend in ("dry-run", "dryrun", "none"):
        return DryRunPaymentExecutor()
    raise ValueError(f"Unknown PAYMENT_BACKEND {backend!r} (expected mcp, rest or dry-run)")
