"""GeminiLivePeer: ModelPeer over the Gemini Live API (google-genai).

One instance owns one live connection.  Text narration and tool calls arrive
through ``messages()``; everything else is fire-and-forget sends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator

from google import genai
from google.genai import types

from shakepay.constants import AUDIO_MIME_TYPE, DEFAULT_GEMINI_MODEL, MAX_REFERENCE_IMAGES, VIDEO_MIME_TYPE
from shakepay.errors import PeerError

from .base import FunctionCallRequest, PeerMessage, ReferencePerson
from .tools import SYSTEM_INSTRUCTION, function_declarations, reference_prompt

logger = logging.getLogger(__name__)


def build_live_config() -> types.LiveConnectConfig:
    tools = [
        types.Tool(
            function_declarations=[
                types.FunctionDeclaration(
                    name=decl["name"],
                    description=decl["description"],
                    parameters_json_schema=decl["parameters"],
                )
                for decl in function_declarations()
            ]
        )
    ]
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.TEXT],
        system_instruction=types.Content(parts=[types.Part(text=SYSTEM_INSTRUCTION)]),
        tools=tools,
    )


def _to_peer_message(msg: Any) -> PeerMessage | None:
    text = ""
    server_content = getattr(msg, "server_content", None)
    model_turn = getattr(server_content, "model_turn", None) if server_content else None
    if model_turn and model_turn.parts:
        text = "".join(p.text for p in model_turn.parts if getattr(p, "text", None))

    calls: list[FunctionCallRequest] = []
    tool_call = getattr(msg, "tool_call", None)
    if tool_call and tool_call.function_calls:
        for fc in tool_call.function_calls:
            calls.append(FunctionCallRequest(id=fc.id or "", name=fc.name or "", args=dict(fc.args or {})))

    if not text and not calls:
        return None
    return PeerMessage(text=text, function_calls=tuple(calls))


class GeminiLivePeer:
    """Duplex connection to a Gemini Live model with the payment tools declared."""

    def __init__(self, api_key: str, model: str = DEFAULT_GEMINI_MODEL) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._session_cm: Any = None
        self._session: Any = None
        self._closed = asyncio.Event()

    async def open(self) -> None:
        logger.info("[Gemini] Connecting live session (model=%s)", self._model)
        try:
            self._session_cm = self._client.aio.live.connect(model=self._model, config=build_live_config())
            self._session = await self._session_cm.__aenter__()
        except Exception as exc:
            self._session_cm = None
            raise PeerError(f"Could not connect to {self._model}: {exc}") from exc
        logger.info("[Gemini] Connected")

    def _require_session(self) -> Any:
        if self._session is None or self._closed.is_set():
            raise PeerError("Live session is not open")
        return self._session

    async def send_references(self, people: list[ReferencePerson]) -> None:
        session = self._require_session()
        parts: list[types.Part] = [
            types.Part(text=reference_prompt([(p.name, p.wallet_address, min(len(p.images), MAX_REFERENCE_IMAGES)) for p in people]))
        ]
        for person in people:
            for image in person.images[:MAX_REFERENCE_IMAGES]:
                parts.append(types.Part(text=f"Reference photo of {person.name}:"))
                parts.append(types.Part.from_bytes(data=image, mime_type=VIDEO_MIME_TYPE))
        try:
            await session.send_client_content(
                turns=types.Content(role="user", parts=parts),
                turn_complete=True,
            )
        except Exception as exc:
            raise PeerError(f"Failed to send reference images: {exc}") from exc
        logger.info("[Gemini] Sent %d reference people", len(people))

    async def send_video(self, frame: bytes) -> None:
        session = self._require_session()
        try:
            await session.send_realtime_input(video=types.Blob(data=frame, mime_type=VIDEO_MIME_TYPE))
        except Exception as exc:
            raise PeerError(f"Failed to send video frame: {exc}") from exc

    async def send_audio(self, pcm: bytes) -> None:
        session = self._require_session()
        try:
            await session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=AUDIO_MIME_TYPE))
        except Exception as exc:
            raise PeerError(f"Failed to send audio: {exc}") from exc

    async def send_tool_response(self, call: FunctionCallRequest, response: dict[str, Any]) -> None:
        session = self._require_session()
        try:
            await session.send_tool_response(
                function_responses=[types.FunctionResponse(id=call.id, name=call.name, response=response)]
            )
        except Exception as exc:
            raise PeerError(f"Failed to answer {call.name}: {exc}") from exc

    async def messages(self) -> AsyncIterator[PeerMessage]:
        """Yield normalized messages until ``close()`` or the connection drops.

        ``session.receive()`` ends after every model turn, so it is re-entered
        in a loop.  A dropped connection surfaces as ``PeerError``.
        """
        session = self._require_session()
        try:
            while not self._closed.is_set():
                async for msg in session.receive():
                    converted = _to_peer_message(msg)
                    if converted is not None:
                        yield converted
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closed.is_set():
                return
            raise PeerError(f"Live session ended: {exc}") from exc

    async def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._session_cm is not None:
            with contextlib.suppress(Exception):
                await self._session_cm.__aexit__(None, None, None)
        self._session = None
        self._session_cm = None
        logger.info("[Gemini] Session closed")
