"""Shared fixtures: enrolled candidates, a policy and a scriptable model peer."""

from __future__ import annotations

import asyncio
import base64
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock

import pytest

from shakepay.config import PaymentPolicy
from shakepay.enrollment.store import Candidate
from shakepay.errors import PeerError
from shakepay.peer.base import FunctionCallRequest, PeerMessage, ReferencePerson
from shakepay.pipeline.session_context import SessionContext
from shakepay.session.machine import SessionStateMachine

ALICE_WALLET = "0x" + "a" * 40
BOB_WALLET = "0x" + "b" * 40
JPEG_B64 = base64.b64encode(b"\xff\xd8\xff\xe0fake-jpeg").decode()


class FakePeer:
    """In-memory ModelPeer; tests push messages and inspect what was sent."""

    def __init__(self, *, fail_open: bool = False, fail_send: bool = False) -> None:
        self.fail_open = fail_open
        self.fail_send = fail_send
        self.opened = False
        self.closed = False
        self.references: list[ReferencePerson] = []
        self.videos: list[bytes] = []
        self.audio: list[bytes] = []
        self.tool_responses: list[tuple[FunctionCallRequest, dict[str, Any]]] = []
        self._inbox: asyncio.Queue[PeerMessage | BaseException | None] = asyncio.Queue()
        self._answered = asyncio.Condition()

    async def open(self) -> None:
        if self.fail_open:
            raise PeerError("connection refused")
        self.opened = True

    async def send_references(self, people: list[ReferencePerson]) -> None:
        self.references = list(people)

    async def send_video(self, frame: bytes) -> None:
        if self.fail_send:
            raise PeerError("socket closed")
        self.videos.append(frame)

    async def send_audio(self, pcm: bytes) -> None:
        if self.fail_send:
            raise PeerError("socket closed")
        self.audio.append(pcm)

    async def send_tool_response(self, call: FunctionCallRequest, response: dict[str, Any]) -> None:
        async with self._answered:
            self.tool_responses.append((call, response))
            self._answered.notify_all()

    async def messages(self) -> AsyncIterator[PeerMessage]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True

    # -- test helpers ----------------------------------------------------

    def push_call(self, name: str, call_id: str = "", **args: Any) -> None:
        self._inbox.put_nowait(PeerMessage(function_calls=(FunctionCallRequest(call_id or name, name, args),)))

    def push(self, message: PeerMessage) -> None:
        self._inbox.put_nowait(message)

    def disconnect(self, exc: BaseException | None = None) -> None:
        self._inbox.put_nowait(exc)

    async def wait_for_responses(self, count: int, timeout: float = 2.0) -> None:
        async def _wait() -> None:
            async with self._answered:
                await self._answered.wait_for(lambda: len(self.tool_responses) >= count)

        await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def policy() -> PaymentPolicy:
    return PaymentPolicy(min_amount=0.01, max_amount=50.0, min_confidence=0.7, video_interval_s=1.0, audio_buffer_s=0.001)


@pytest.fixture
def candidates() -> tuple[Candidate, ...]:
    return (
        Candidate(id="c-alice", name="Alice", wallet_address=ALICE_WALLET, reference_images=(JPEG_B64,)),
        Candidate(id="c-bob", name="Bob", wallet_address=BOB_WALLET),
    )


@pytest.fixture
def machine(candidates, policy) -> SessionStateMachine:
    return SessionStateMachine(candidates, policy, session_id="session-test")


@pytest.fixture
def websocket() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def ctx(websocket, machine) -> SessionContext:
    return SessionContext(websocket=websocket, session_id="session-test", machine=machine)


def sent_types(websocket: AsyncMock) -> list[str]:
    return [c.args[0]["type"] for c in websocket.send_json.call_args_list]


def sent_of_type(websocket: AsyncMock, kind: str) -> list[dict[str, Any]]:
    return [c.args[0] for c in websocket.send_json.call_args_list if c.args[0]["type"] == kind]
