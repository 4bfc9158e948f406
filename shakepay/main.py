"""FastAPI app: health check, enrollment/history REST and the session WebSocket.

Data flow:
  1. The capture client connects to ``/ws/stream``; a session is created with a
     snapshot of the enrolled people.
  2. ``start`` opens a model peer; video frames (throttled) and PCM audio
     (buffered) are forwarded to it.
  3. The peer's function calls drive the session state machine; every state
     change is pushed back to the client as an event.
  4. An accepted ``executeTransaction`` hands the payment to the Payment Gate,
     which runs it in the background and reports the outcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from shakepay import __version__
from shakepay.config import Settings
from shakepay.constants import PAYMENT_TIMEOUT, WEBSOCKET_RECEIVE_TIMEOUT
from shakepay.enrollment.routes import router as enrollment_router
from shakepay.enrollment.store import EnrollmentStore
from shakepay.errors import ErrorCode
from shakepay.payment.executor import PaymentExecutor, build_executor
from shakepay.payment.gate import PaymentGate
from shakepay.payment.ledger import PaymentLedger
from shakepay.payment.routes import router as transactions_router
from shakepay.peer.base import ModelPeer
from shakepay.pipeline.adapter import SessionAdapter
from shakepay.pipeline.background import BackgroundJobQueue
from shakepay.pipeline.session_context import SessionContext
from shakepay.session.events import EventType, OutboundEvent
from shakepay.session.machine import SessionStateMachine
from shakepay.session.registry import SessionRegistry
from shakepay.telemetry import flush_telemetry, init_telemetry
from shakepay.utils import generate_session_id

load_dotenv()
logger = logging.getLogger(__name__)

PeerFactory = Callable[[], ModelPeer]


def _gemini_peer_factory(settings: Settings) -> PeerFactory:
    from shakepay.peer.gemini_live import GeminiLivePeer

    def _factory() -> ModelPeer:
        return GeminiLivePeer(settings.gemini_api_key, settings.gemini_model)

    return _factory


def create_app(
    settings: Settings | None = None,
    *,
    peer_factory: PeerFactory | None = None,
    executor: PaymentExecutor | None = None,
) -> FastAPI:
    """Build the app; tests pass a fake peer factory and executor."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        init_telemetry(settings)

        if not settings.gemini_api_key and peer_factory is None:
            logger.warning("[Config] GEMINI_API_KEY not set; 'start' will fail to connect.")

        pay = executor or build_executor(settings)
        try:
            await pay.initialize()
        except Exception:
            # The executor reconnects lazily on the first payment.
            logger.exception("[Payment] %s executor failed to initialise", pay.name)

        app.state.settings = settings
        app.state.enrollment = EnrollmentStore(settings.people_path)
        app.state.ledger = PaymentLedger(settings.payments_path)
        app.state.jobs = BackgroundJobQueue()
        app.state.gate = PaymentGate(pay, settings.policy, app.state.ledger)
        app.state.registry = SessionRegistry()
        app.state.peer_factory = peer_factory or _gemini_peer_factory(settings)
        logger.info(
            "[Startup] shakepay %s ready (payments=%s, bounds=%g..%g, min confidence=%g)",
            __version__,
            pay.name,
            settings.policy.min_amount,
            settings.policy.max_amount,
            settings.policy.min_confidence,
        )

        yield

        for adapter in app.state.registry:
            await adapter.stop()
        await app.state.jobs.drain(PAYMENT_TIMEOUT)
        await pay.shutdown()
        flush_telemetry()

    app = FastAPI(title="shakepay session engine", version=__version__, lifespan=lifespan)
    app.include_router(enrollment_router)
    app.include_router(transactions_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "sessions": len(app.state.registry)}

    @app.websocket("/ws/stream")
    async def stream(websocket: WebSocket) -> None:
        await websocket.accept()
        state = websocket.app.state
        session_id = generate_session_id()
        candidates = await asyncio.to_thread(state.enrollment.snapshot)
        machine = SessionStateMachine(candidates, state.settings.policy, session_id=session_id)
        ctx = SessionContext(websocket=websocket, session_id=session_id, machine=machine)
        adapter = SessionAdapter(ctx, state.peer_factory, state.gate, state.jobs, state.settings.policy)
        state.registry.add(adapter)
        logger.info("[Session] New session %s with %d enrolled", session_id, len(candidates))
        await ctx.emit(
            OutboundEvent(EventType.SESSION_CREATED, {"sessionId": session_id, "enrolledCount": len(candidates)})
        )

        try:
            while True:
                try:
                    message = await asyncio.wait_for(websocket.receive(), timeout=WEBSOCKET_RECEIVE_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.debug("[WS] Receive timeout for %s, continuing", session_id)
                    continue
                except RuntimeError:
                    # "Cannot call receive once a disconnect message has been received"
                    logger.info("[WS] Client disconnected (runtime): %s", session_id)
                    break

                if message.get("type") == "websocket.disconnect":
                    logger.info("[WS] Client disconnected: %s", session_id)
                    break

                if message.get("bytes") is not None:
                    # Raw binary frames are PCM audio.
                    await adapter.forward_audio_chunk(message["bytes"])
                    continue

                text = message.get("text")
                if text is None:
                    continue
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning("[WS] Non-JSON text message ignored")
                    await ctx.error(ErrorCode.E_BAD_MESSAGE, "Message is not valid JSON")
                    continue
                if not isinstance(payload, dict):
                    await ctx.error(ErrorCode.E_BAD_MESSAGE, "Message must be a JSON object")
                    continue

                msg_type = payload.get("type", "")
                if msg_type == "video-frame":
                    await adapter.forward_video_frame(payload.get("frame", ""))
                elif msg_type == "audio-chunk":
                    await adapter.forward_audio_chunk(payload.get("audio", ""))
                elif msg_type == "start":
                    await adapter.start()
                elif msg_type == "stop":
                    await adapter.stop()
                elif msg_type == "get-state":
                    await ctx.send(adapter.state_message())
                else:
                    logger.debug("[WS] Unknown message type %r", msg_type)
                    await ctx.error(ErrorCode.E_BAD_MESSAGE, f"Unknown message type: {msg_type!r}")
        except WebSocketDisconnect:
            logger.info("[WS] Client disconnected: %s", session_id)
        finally:
            ctx.closed = True
            await adapter.stop()
            state.registry.remove(session_id)

    return app


app = create_app()
