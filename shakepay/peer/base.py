"""ModelPeer interface and the normalized messages it yields."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol


@dataclass(frozen=True)
class FunctionCallRequest:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PeerMessage:
    """One inbound message: free-text narration and/or function calls."""

    text: str = ""
    function_calls: tuple[FunctionCallRequest, ...] = ()


@dataclass(frozen=True)
class ReferencePerson:
    """Enrollment material sent to the model once per connection."""

    name: str
    wallet_address: str
    images: tuple[bytes, ...] = ()


class ModelPeer(Protocol):
    """What the session adapter needs from a multimodal model connection."""

    async def open(self) -> None: ...

    async def send_references(self, people: list[ReferencePerson]) -> None: ...

    async def send_video(self, frame: bytes) -> None: ...

    async def send_audio(self, pcm: bytes) -> None: ...

    async def send_tool_response(self, call: FunctionCallRequest, response: dict[str, Any]) -> None: ...

    def messages(self) -> AsyncIterator[PeerMessage]: ...

    async def close(self) -> None: ...
