"""Pure transition functions for the session state machine.

``step(snapshot, call, candidates, policy)`` returns the next snapshot, the
events to emit and the response owed to the model peer.  It never mutates its
inputs and never performs I/O, so every ordering of calls can be replayed in a
unit test without a socket or a model.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from shakepay.config import PaymentPolicy
from shakepay.enrollment.store import Candidate, match_candidate

from .calls import (
    ConfirmHandshake,
    ConfirmVerbalAgreement,
    ExecuteTransaction,
    FunctionCall,
    IdentifyPerson,
    UpdateStatus,
)
from .events import BlockCode, EventType, OutboundEvent, blocked
from .state import AuthorizationState, HandshakeState, PersonState, VerbalState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything the state machine remembers between calls.

    Fields
    ------
    auth : the three confirmations.
    transaction_fired : latched true by the first accepted execute request.
    ready_notified : a ready-notification was sent for the current ready interval.
    """

    auth: AuthorizationState = field(default_factory=AuthorizationState)
    transaction_fired: bool = False
    ready_notified: bool = False


@dataclass(frozen=True)
class Step:
    snapshot: SessionSnapshot
    events: tuple[OutboundEvent, ...] = ()
    response: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return bool(self.response.get("accepted"))


def candidate_payload(person: PersonState) -> dict[str, Any]:
    return {
        "id": person.candidate_id,
        "name": person.name,
        "walletAddress": person.wallet_address,
    }


def reset(snapshot: SessionSnapshot) -> SessionSnapshot:
    """Clear all confirmations; a fired session stays fired."""
    return SessionSnapshot(transaction_fired=snapshot.transaction_fired)


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


def _settle(
    snapshot: SessionSnapshot,
    auth: AuthorizationState,
    policy: PaymentPolicy,
) -> tuple[SessionSnapshot, list[OutboundEvent]]:
    """Install *auth* and emit a ready-notification on a false→true edge."""
    if not auth.ready:
        return dataclasses.replace(snapshot, auth=auth, ready_notified=False), []

    if snapshot.ready_notified or snapshot.transaction_fired:
        return dataclasses.replace(snapshot, auth=auth), []

    violation = policy.amount_violation(auth.verbal.amount)
    if violation:
        event = blocked(violation, BlockCode.AMOUNT_OUT_OF_POLICY)
    else:
        event = OutboundEvent(
            EventType.CONDITIONS_MET,
            {
                "candidate": candidate_payload(auth.person),
                "amount": auth.verbal.amount,
                "quote": auth.verbal.quote,
            },
        )
    return dataclasses.replace(snapshot, auth=auth, ready_notified=True), [event]


# ---------------------------------------------------------------------------
# Per-call handlers
# ---------------------------------------------------------------------------


def _on_status(
    snapshot: SessionSnapshot, call: UpdateStatus, candidates: tuple[Candidate, ...], policy: PaymentPolicy
) -> Step:
    event = OutboundEvent(
        EventType.STATUS_UPDATE,
        {
            "visual": call.visual_observation,
            "audio": call.audio_observation,
            "person": call.person_description,
        },
    )
    return Step(snapshot, (event,), {"acknowledged": True})


def _on_identify(
    snapshot: SessionSnapshot, call: IdentifyPerson, candidates: tuple[Candidate, ...], policy: PaymentPolicy
) -> Step:
    match = match_candidate(candidates, call.description_text)
    if match is None:
        event = OutboundEvent(EventType.PERSON_UNKNOWN, {"description": call.description_text})
        return Step(
            snapshot,
            (event,),
            {"identified": False, "message": "No matching enrolled person found"},
        )

    person = PersonState(
        identified=True,
        candidate_id=match.id,
        name=match.name,
        wallet_address=match.wallet_address,
        confidence=call.confidence,
    )
    identified = OutboundEvent(
        EventType.PERSON_IDENTIFIED,
        {"name": match.name, "walletAddress": match.wallet_address, "confidence": call.confidence},
    )
    nxt, extra = _settle(snapshot, dataclasses.replace(snapshot.auth, person=person), policy)
    return Step(
        nxt,
        (identified, *extra),
        {"identified": True, "name": match.name, "wallet": match.wallet_address},
    )


def _on_verbal(
    snapshot: SessionSnapshot, call: ConfirmVerbalAgreement, candidates: tuple[Candidate, ...], policy: PaymentPolicy
) -> Step:
    verbal = VerbalState(
        agreed=call.agreed,
        amount=call.amount,
        quote=call.quote,
        confidence=call.confidence,
    )
    status = OutboundEvent(
        EventType.VERBAL_STATUS,
        {"agreed": call.agreed, "amount": call.amount, "quote": call.quote, "confidence": call.confidence},
    )
    nxt, extra = _settle(snapshot, dataclasses.replace(snapshot.auth, verbal=verbal), policy)
    return Step(
        nxt,
        (status, *extra),
        {"acknowledged": True, "status": "Agreement confirmed" if call.agreed else "Agreement retracted"},
    )


def _on_handshake(
    snapshot: SessionSnapshot, call: ConfirmHandshake, candidates: tuple[Candidate, ...], policy: PaymentPolicy
) -> Step:
    handshake = HandshakeState(
        active=call.handshake_active,
        description=call.description_text,
        confidence=call.confidence,
        stable_duration=call.stable_duration,
    )
    status = OutboundEvent(
        EventType.HANDSHAKE_STATUS,
        {
            "active": call.handshake_active,
            "description": call.description_text,
            "confidence": call.confidence,
            "stableDuration": call.stable_duration,
        },
    )
    nxt, extra = _settle(snapshot, dataclasses.replace(snapshot.auth, handshake=handshake), policy)
    return Step(
        nxt,
        (status, *extra),
        {"acknowledged": True, "status": "Handshake detected" if call.handshake_active else "Handshake lost"},
    )


def _reject(snapshot: SessionSnapshot, reason: str, code: BlockCode) -> Step:
    logger.warning("[Session] Transaction blocked: %s", reason)
    return Step(snapshot, (blocked(reason, code),), {"accepted": False, "error": reason})


def _on_execute(
    snapshot: SessionSnapshot, call: ExecuteTransaction, candidates: tuple[Candidate, ...], policy: PaymentPolicy
) -> Step:
    auth = snapshot.auth
    # call.handshake_confirmed is informational only; our own state decides.
    if not auth.person.identified:
        return _reject(snapshot, "person not identified", BlockCode.CONDITIONS_UNMET)
    if not auth.verbal.agreed:
        return _reject(snapshot, "no verbal agreement", BlockCode.CONDITIONS_UNMET)
    if not auth.handshake.active:
        return _reject(snapshot, "no active handshake", BlockCode.CONDITIONS_UNMET)
    if snapshot.transaction_fired:
        return _reject(snapshot, "already executed this session", BlockCode.ALREADY_EXECUTED)
    if not call.overall_confidence >= policy.min_confidence:
        return _reject(snapshot, "confidence too low", BlockCode.LOW_CONFIDENCE)
    violation = policy.amount_violation(call.amount)
    if violation:
        return _reject(snapshot, violation, BlockCode.AMOUNT_OUT_OF_POLICY)

    if auth.verbal.amount is not None and auth.verbal.amount != call.amount:
        logger.warning(
            "[Session] Execute amount %s differs from agreed amount %s, paying the requested amount",
            call.amount,
            auth.verbal.amount,
        )

    quote = call.verbal_confirmation_quote or auth.verbal.quote
    ready = OutboundEvent(
        EventType.READY_FOR_PAYMENT,
        {
            "candidate": candidate_payload(auth.person),
            "amount": call.amount,
            "quote": quote,
            "confidence": call.overall_confidence,
        },
    )
    logger.info("[Session] Transaction ready for %s: %s", auth.person.name, call.amount)
    return Step(
        dataclasses.replace(snapshot, transaction_fired=True),
        (ready,),
        {
            "accepted": True,
            "message": "Transaction accepted and handed to the payment gate",
            "recipient": auth.person.name,
            "amount": call.amount,
        },
    )


_HANDLERS: dict[type, Callable[..., Step]] = {
    UpdateStatus: _on_status,
    IdentifyPerson: _on_identify,
    ConfirmVerbalAgreement: _on_verbal,
    ConfirmHandshake: _on_handshake,
    ExecuteTransaction: _on_execute,
}


def step(
    snapshot: SessionSnapshot,
    call: FunctionCall,
    candidates: tuple[Candidate, ...],
    policy: PaymentPolicy,
) -> Step:
    """Apply one typed function call to *snapshot*."""
    handler = _HANDLERS[type(call)]
    return handler(snapshot, call, candidates, policy)
