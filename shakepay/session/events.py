"""Outbound events emitted by a session towards the capture client."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(str, enum.Enum):
    SESSION_CREATED = "session-created"
    STREAM_STARTED = "stream-started"
    STREAM_STOPPED = "stream-stopped"
    NARRATION = "narration"
    STATUS_UPDATE = "status-update"
    PERSON_IDENTIFIED = "person-identified"
    PERSON_UNKNOWN = "person-unknown"
    VERBAL_STATUS = "verbal-status"
    HANDSHAKE_STATUS = "handshake-status"
    CONDITIONS_MET = "conditions-met"
    READY_FOR_PAYMENT = "ready-for-payment"
    BLOCKED = "blocked"
    PAYMENT_COMPLETE = "payment-complete"
    PAYMENT_FAILED = "payment-failed"
    STATE = "state"


class BlockCode(str, enum.Enum):
    """Why a payment did not fire, in terms the UI can explain."""

    CONDITIONS_UNMET = "conditions_unmet"
    ALREADY_EXECUTED = "already_executed"
    LOW_CONFIDENCE = "low_confidence"
    AMOUNT_OUT_OF_POLICY = "amount_out_of_policy"
    PAYMENT_RAIL_FAILURE = "payment_rail_failure"


@dataclass(frozen=True)
class OutboundEvent:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.payload}


def blocked(reason: str, code: BlockCode) -> OutboundEvent:
    return OutboundEvent(EventType.BLOCKED, {"reason": reason, "code": code.value})
