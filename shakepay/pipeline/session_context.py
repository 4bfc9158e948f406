"""SessionContext: per-connection state shared by the adapter and the endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket

from shakepay.errors import StreamError, send_error
from shakepay.session.events import OutboundEvent
from shakepay.session.machine import SessionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Everything one WebSocket connection owns."""

    websocket: WebSocket
    session_id: str
    machine: SessionStateMachine
    closed: bool = False
    metrics: dict[str, int] = field(default_factory=lambda: {
        "frames_forwarded": 0,
        "frames_dropped": 0,
        "audio_forwards": 0,
        "function_calls": 0,
    })

    async def send(self, message: dict[str, Any]) -> bool:
        """Send *message* as JSON; a closed socket is logged, never raised."""
        if self.closed:
            logger.debug("[Session %s] Dropped %s after close", self.session_id, message.get("type"))
            return False
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as exc:
            logger.debug("[Session %s] Send failed (%s): %s", self.session_id, message.get("type"), exc)
            return False

    async def emit(self, event: OutboundEvent) -> bool:
        return await self.send(event.to_message())

    async def error(self, code: str, message: str, *, recoverable: bool = True, details: dict | None = None) -> None:
        if self.closed:
            return
        await send_error(
            self.websocket,
            StreamError(code=code, message=message, recoverable=recoverable, session_id=self.session_id, details=details),
        )
