"""Payment Gate: the last check between an accepted request and real money.

The gate trusts nothing the session sends it: it re-checks the amount bounds
on its own, accepts at most one request per session id, and calls the
executor exactly once.  It returns the event the client should see and
appends every outcome to the ledger.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from shakepay.config import PaymentPolicy
from shakepay.constants import PAYMENT_TIMEOUT
from shakepay.errors import PaymentError
from shakepay.session.events import BlockCode, EventType, OutboundEvent, blocked
from shakepay.telemetry import current_trace_id, session_span

from .executor import PaymentExecutor
from .ledger import PaymentLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentRequest:
    session_id: str
    candidate_id: str
    recipient: str
    wallet_address: str
    amount: float
    quote: str | None = None
    confidence: float = 0.0

    @classmethod
    def from_event(cls, session_id: str, event: OutboundEvent) -> "PaymentRequest":
        """Build a request from a ``ready-for-payment`` event."""
        if event.type is not EventType.READY_FOR_PAYMENT:
            raise ValueError(f"expected ready-for-payment, got {event.type.value}")
        candidate: dict[str, Any] = event.payload.get("candidate") or {}
        return cls(
            session_id=session_id,
            candidate_id=str(candidate.get("id") or ""),
            recipient=str(candidate.get("name") or ""),
            wallet_address=str(candidate.get("walletAddress") or ""),
            amount=float(event.payload["amount"]),
            quote=event.payload.get("quote"),
            confidence=float(event.payload.get("confidence") or 0.0),
        )


class PaymentGate:
    """Executes at most one payment per session id.

    Parameters
    ----------
    executor : PaymentExecutor
        The single strategy used for every transfer.
    policy : PaymentPolicy
        Amount bounds re-checked here independently of the session.
    ledger : PaymentLedger
        Receives one entry per outcome.
    timeout : float
        Upper bound on one executor call; exceeding it is a failure, not a retry.

    Claimed session ids are kept for the life of the process and never
    evicted; a session id must stay spent even after its socket closes.
    Each id is a short string, and the ledger is the durable record across
    restarts.
    """

    def __init__(
        self,
        executor: PaymentExecutor,
        policy: PaymentPolicy,
        ledger: PaymentLedger,
        *,
        timeout: float = PAYMENT_TIMEOUT,
    ) -> None:
        self._executor = executor
        self._policy = policy
        self._ledger = ledger
        self._timeout = timeout
        self._claimed: set[str] = set()

    def has_processed(self, session_id: str) -> bool:
        return session_id in self._claimed

    async def process(self, request: PaymentRequest) -> OutboundEvent:
        # Claim before the first await so two concurrent requests cannot both pass.
        if request.session_id in self._claimed:
            return await self._block(request, "already executed this session", BlockCode.ALREADY_EXECUTED)
        self._claimed.add(request.session_id)

        violation = self._policy.amount_violation(request.amount)
        if violation:
            return await self._block(request, violation, BlockCode.AMOUNT_OUT_OF_POLICY)
        if not request.wallet_address:
            return await self._block(request, "recipient has no wallet address", BlockCode.CONDITIONS_UNMET)

        with session_span(
            "payment", request.session_id, amount=request.amount, backend=self._executor.name
        ) as span:
            trace_id = current_trace_id()

            logger.info(
                "[Gate] Executing %s USDC to %s (%s) for %s via %s",
                request.amount,
                request.recipient,
                request.wallet_address,
                request.session_id,
                self._executor.name,
            )
            try:
                result = await asyncio.wait_for(
                    self._executor.send(request.wallet_address, request.amount, f"Payment to {request.recipient}"),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                reason = f"payment timed out after {self._timeout:g}s"
            except PaymentError as exc:
                reason = str(exc)
            except Exception as exc:
                logger.exception("[Gate] Executor %s raised unexpectedly", self._executor.name)
                reason = f"payment executor error: {exc}"
            else:
                span.set_attribute("shakepay.tx_id", result.tx_id)
                logger.info("[Gate] Payment complete for %s: %s (%s)", request.session_id, result.tx_id, result.status)
                await asyncio.to_thread(
                    self._ledger.append,
                    session_id=request.session_id,
                    outcome="complete",
                    amount=request.amount,
                    recipient=request.recipient,
                    wallet_address=request.wallet_address,
                    tx_id=result.tx_id,
                    status=result.status,
                    quote=request.quote,
                    confidence=request.confidence,
                    backend=self._executor.name,
                    trace_id=trace_id,
                )
                return OutboundEvent(
                    EventType.PAYMENT_COMPLETE,
                    {
                        "txId": result.tx_id,
                        "amount": request.amount,
                        "recipient": request.recipient,
                        "status": result.status,
                    },
                )

            span.set_attribute("shakepay.failure", reason)
            logger.error("[Gate] Payment failed for %s: %s", request.session_id, reason)
            await asyncio.to_thread(
                self._ledger.append,
                session_id=request.session_id,
                outcome="failed",
                amount=request.amount,
                recipient=request.recipient,
                wallet_address=request.wallet_address,
                reason=reason,
                quote=request.quote,
                confidence=request.confidence,
                backend=self._executor.name,
                trace_id=trace_id,
            )
            return OutboundEvent(
                EventType.PAYMENT_FAILED,
                {"reason": reason, "code": BlockCode.PAYMENT_RAIL_FAILURE.value},
            )

    async def _block(self, request: PaymentRequest, reason: str, code: BlockCode) -> OutboundEvent:
        logger.warning("[Gate] Blocked %s: %s", request.session_id, reason)
        await asyncio.to_thread(
            self._ledger.append,
            session_id=request.session_id,
            outcome="blocked",
            amount=request.amount,
            recipient=request.recipient,
            wallet_address=request.wallet_address,
            reason=reason,
            quote=request.quote,
            confidence=request.confidence,
            backend=self._executor.name,
        )
        return blocked(reason, code)
