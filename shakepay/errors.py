"""StreamError envelope: structured error reporting over WebSocket.

Every transport-level error sent to the capture client follows one JSON shape
so the UI can explain what happened and the backend logs stay
machine-parseable.  Authorization rejections are *not* errors: they travel as
``blocked`` events (see ``session.events``).

Error codes
-----------
E_PEER_CONNECT_FAILED  Model peer connection could not be opened.
E_PEER_SEND_FAILED     Forwarding media or a tool response to the peer failed.
E_PEER_DISCONNECTED    Model peer closed the connection mid-session.
E_ALREADY_STARTED      ``start`` received while the session is streaming.
E_NOT_STARTED          Media received before ``start``.
E_BAD_MESSAGE          Inbound WebSocket message was not valid JSON / unknown.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ErrorCode(str, enum.Enum):
    E_PEER_CONNECT_FAILED = "E_PEER_CONNECT_FAILED"
    E_PEER_SEND_FAILED = "E_PEER_SEND_FAILED"
    E_PEER_DISCONNECTED = "E_PEER_DISCONNECTED"
    E_ALREADY_STARTED = "E_ALREADY_STARTED"
    E_NOT_STARTED = "E_NOT_STARTED"
    E_BAD_MESSAGE = "E_BAD_MESSAGE"


class ProtocolError(Exception):
    """A model function call that cannot be decoded into a typed call."""


class PeerError(Exception):
    """The model peer connection failed to open, send or receive."""


class PaymentError(Exception):
    """The payment executor could not complete a transfer."""


@dataclass
class StreamError:
    code: str
    message: str
    recoverable: bool = True
    session_id: str = ""
    details: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": "error",
            "code": self.code.value if isinstance(self.code, ErrorCode) else self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "session_id": self.session_id,
        }
        if self.details:
            d["details"] = self.details
        return d


async def send_error(websocket: WebSocket, error: StreamError) -> None:
    """Serialize *error* and send it as a JSON message on *websocket*.

    Silently catches send failures (the socket may already be closed).
    """
    try:
        await websocket.send_json(error.to_dict())
        logger.warning(
            "[StreamError] Sent %s to client: %s (session=%s)",
            error.code,
            error.message,
            error.session_id,
        )
    except Exception as exc:
        logger.debug("[StreamError] Failed to send error to client: %s", exc)
