"""SessionAdapter: bridges one client connection to one model peer.

Client media goes out to the peer (video throttled, audio buffered); function
calls come back, are decoded into typed calls and applied to the session's
state machine.  Each call is answered before the next one is looked at, and
all state changes happen on the peer receive task in arrival order.

A ``ready-for-payment`` event is handed to the Payment Gate as a background
job, so the model gets its response immediately and the payment outlives the
connection if the client goes away.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from shakepay.config import PaymentPolicy
from shakepay.constants import MAX_REFERENCE_IMAGES
from shakepay.errors import ErrorCode, PeerError, ProtocolError
from shakepay.payment.gate import PaymentGate, PaymentRequest
from shakepay.peer.base import FunctionCallRequest, ModelPeer, ReferencePerson
from shakepay.session.calls import UnknownFunctionError, decode_call
from shakepay.session.events import BlockCode, EventType, OutboundEvent
from shakepay.telemetry import session_span
from shakepay.utils import generate_job_id

from .background import BackgroundJobQueue
from .media import AudioBuffer, VideoThrottle, decode_base64_media
from .session_context import SessionContext

logger = logging.getLogger(__name__)


def reference_people(ctx: SessionContext) -> list[ReferencePerson]:
    """Decode up to ``MAX_REFERENCE_IMAGES`` photos for every enrolled candidate."""
    people = []
    for candidate in ctx.machine.candidates:
        images: list[bytes] = []
        for raw in candidate.reference_images[:MAX_REFERENCE_IMAGES]:
            try:
                images.append(decode_base64_media(raw))
            except ProtocolError as exc:
                logger.warning("[Adapter] Skipping unreadable photo for %s: %s", candidate.name, exc)
        people.append(ReferencePerson(candidate.name, candidate.wallet_address, tuple(images)))
    return people


class SessionAdapter:
    """Owns the model peer for one session.

    Parameters
    ----------
    ctx : SessionContext
        Socket, session id and state machine of this connection.
    peer_factory : Callable[[], ModelPeer]
        Builds a fresh, unopened peer for every ``start()``.
    gate : PaymentGate
        Process-wide gate that executes accepted payments.
    jobs : BackgroundJobQueue
        Process-wide queue the payment jobs run on.
    policy : PaymentPolicy
        Supplies the video interval and audio buffer size.
    """

    def __init__(
        self,
        ctx: SessionContext,
        peer_factory: Callable[[], ModelPeer],
        gate: PaymentGate,
        jobs: BackgroundJobQueue,
        policy: PaymentPolicy,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ctx = ctx
        self._peer_factory = peer_factory
        self._gate = gate
        self._jobs = jobs
        self._video = VideoThrottle(policy.video_interval_s, clock=clock)
        self._audio = AudioBuffer(policy.audio_buffer_bytes)
        self._peer: ModelPeer | None = None
        self._rx_task: asyncio.Task | None = None
        self._starting = False
        self._not_started_reported = False

    @property
    def session_id(self) -> str:
        return self._ctx.session_id

    @property
    def context(self) -> SessionContext:
        return self._ctx

    @property
    def streaming(self) -> bool:
        return self._peer is not None

    def state_message(self) -> dict[str, Any]:
        return {
            "type": EventType.STATE.value,
            "sessionId": self.session_id,
            "streaming": self.streaming,
            **self._ctx.machine.to_dict(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Open the peer, send the enrolled references and start receiving.

        Returns False when the session is already streaming or the peer could
        not be opened; the client has been told why in both cases.
        """
        if self._peer is not None or self._starting:
            await self._ctx.error(ErrorCode.E_ALREADY_STARTED, "Stream already started")
            return False

        self._starting = True
        peer = self._peer_factory()
        try:
            with session_span("peer_start", self.session_id, enrolled=len(self._ctx.machine.candidates)):
                await peer.open()
                await peer.send_references(reference_people(self._ctx))
        except PeerError as exc:
            logger.error("[Adapter] Peer start failed for %s: %s", self.session_id, exc)
            await peer.close()
            await self._ctx.error(ErrorCode.E_PEER_CONNECT_FAILED, str(exc))
            return False
        finally:
            self._starting = False

        self._peer = peer
        self._video.reset()
        self._audio.discard()
        self._not_started_reported = False
        logger.info("[Adapter] Stream started for %s", self.session_id)
        await self._ctx.emit(OutboundEvent(EventType.STREAM_STARTED, {"sessionId": self.session_id}))
        if self._peer is peer:
            self._rx_task = asyncio.create_task(self._receive_loop(peer), name=f"peer-rx-{self.session_id}")
        return True

    async def stop(self) -> None:
        """Tear the peer down and reset authorization; safe to call repeatedly."""
        peer, task = self._peer, self._rx_task
        self._peer = None
        self._rx_task = None
        if peer is None:
            return

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        try:
            await peer.close()
        except Exception as exc:
            logger.warning("[Adapter] Peer close failed for %s: %s", self.session_id, exc)

        self._video.reset()
        self._audio.discard()
        self._ctx.machine.reset()
        logger.info("[Adapter] Stream stopped for %s (metrics=%s)", self.session_id, self._ctx.metrics)
        await self._ctx.emit(OutboundEvent(EventType.STREAM_STOPPED, {"sessionId": self.session_id}))

    # ------------------------------------------------------------------
    # Client → peer
    # ------------------------------------------------------------------

    async def _report_not_started(self) -> None:
        if not self._not_started_reported:
            self._not_started_reported = True
            await self._ctx.error(ErrorCode.E_NOT_STARTED, "Media received before start; send 'start' first")

    async def forward_video_frame(self, frame: str) -> bool:
        """Forward one frame if the throttle admits it; returns True when sent."""
        peer = self._peer
        if peer is None:
            await self._report_not_started()
            return False
        if not self._video.admit():
            self._ctx.metrics["frames_dropped"] += 1
            return False
        try:
            data = decode_base64_media(frame)
        except ProtocolError as exc:
            await self._ctx.error(ErrorCode.E_BAD_MESSAGE, f"Bad video frame: {exc}")
            return False
        try:
            await peer.send_video(data)
        except PeerError as exc:
            await self._peer_failed(ErrorCode.E_PEER_SEND_FAILED, exc)
            return False
        self._ctx.metrics["frames_forwarded"] += 1
        return True

    async def forward_audio_chunk(self, chunk: str | bytes) -> bool:
        """Buffer one PCM chunk; forwards the buffer once it is full."""
        peer = self._peer
        if peer is None:
            await self._report_not_started()
            return False
        if isinstance(chunk, str):
            try:
                chunk = decode_base64_media(chunk)
            except ProtocolError as exc:
                await self._ctx.error(ErrorCode.E_BAD_MESSAGE, f"Bad audio chunk: {exc}")
                return False
        pcm = self._audio.add(chunk)
        if pcm is None:
            return False
        try:
            await peer.send_audio(pcm)
        except PeerError as exc:
            await self._peer_failed(ErrorCode.E_PEER_SEND_FAILED, exc)
            return False
        self._ctx.metrics["audio_forwards"] += 1
        return True

    # ------------------------------------------------------------------
    # Peer → session
    # ------------------------------------------------------------------

    async def handle_function_call(self, request: FunctionCallRequest) -> dict[str, Any]:
        """Decode, apply and publish one function call; returns the peer response."""
        self._ctx.metrics["function_calls"] += 1
        with session_span("function_call", self.session_id, function=request.name):
            try:
                call = decode_call(request.name, request.args)
            except UnknownFunctionError as exc:
                logger.warning("[Adapter] %s", exc)
                return {"acknowledged": True, "error": str(exc)}
            except ProtocolError as exc:
                logger.warning("[Adapter] Rejected %s: %s", request.name, exc)
                return {"acknowledged": False, "error": str(exc)}

            step = self._ctx.machine.apply(call)
            for event in step.events:
                await self._ctx.emit(event)
                if event.type is EventType.READY_FOR_PAYMENT:
                    self._submit_payment(event)
            return step.response

    def _submit_payment(self, event: OutboundEvent) -> None:
        request = PaymentRequest.from_event(self.session_id, event)
        ctx = self._ctx

        async def _on_complete(job_id: str, result: Any, error: BaseException | None) -> None:
            if isinstance(result, OutboundEvent):
                await ctx.emit(result)
            elif error is not None:
                await ctx.emit(
                    OutboundEvent(
                        EventType.PAYMENT_FAILED,
                        {"reason": f"payment job {job_id} did not finish", "code": BlockCode.PAYMENT_RAIL_FAILURE.value},
                    )
                )

        self._jobs.submit(f"pay-{generate_job_id()}", self._gate.process(request), _on_complete)

    async def _receive_loop(self, peer: ModelPeer) -> None:
        try:
            async for message in peer.messages():
                if message.text:
                    await self._ctx.emit(OutboundEvent(EventType.NARRATION, {"text": message.text}))
                for request in message.function_calls:
                    response = await self.handle_function_call(request)
                    try:
                        await peer.send_tool_response(request, response)
                    except PeerError as exc:
                        if self._peer is peer:
                            await self._peer_failed(ErrorCode.E_PEER_SEND_FAILED, exc)
                        return
        except asyncio.CancelledError:
            raise
        except PeerError as exc:
            if self._peer is peer:
                await self._peer_failed(ErrorCode.E_PEER_DISCONNECTED, exc)
            return
        except Exception as exc:
            logger.error("[Adapter] Receive loop crashed for %s: %s", self.session_id, exc, exc_info=True)
            if self._peer is peer:
                await self._peer_failed(ErrorCode.E_PEER_DISCONNECTED, exc)
            return

        if self._peer is peer:
            await self._peer_failed(ErrorCode.E_PEER_DISCONNECTED, PeerError("model closed the session"))

    async def _peer_failed(self, code: ErrorCode, exc: BaseException) -> None:
        logger.error("[Adapter] %s for %s: %s", code.value, self.session_id, exc)
        await self._ctx.error(code, str(exc), recoverable=True)
        await self.stop()
