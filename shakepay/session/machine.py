"""SessionStateMachine: one session's authority over the payment decision.

The model peer only *reports* observations and *asks* to execute; this class
decides.  It holds the current ``SessionSnapshot`` and advances it through
``transitions.step``.  Operations return a ``Step`` (new events + the response
owed to the peer) and never raise for routine rejections.
"""

from __future__ import annotations

import logging
from typing import Any

from shakepay.config import PaymentPolicy
from shakepay.enrollment.store import Candidate

from . import transitions
from .calls import (
    ConfirmHandshake,
    ConfirmVerbalAgreement,
    ExecuteTransaction,
    FunctionCall,
    IdentifyPerson,
    UpdateStatus,
)
from .state import AuthorizationState
from .transitions import SessionSnapshot, Step

logger = logging.getLogger(__name__)


class SessionStateMachine:
    """Arbitrates identity, verbal and handshake signals into one payment.

    Parameters
    ----------
    candidates : tuple[Candidate, ...]
        Enrollment snapshot taken when the session was created.
    policy : PaymentPolicy
        Amount bounds and confidence threshold.
    session_id : str
        Used in log lines only.
    """

    def __init__(
        self,
        candidates: tuple[Candidate, ...],
        policy: PaymentPolicy,
        *,
        session_id: str = "",
    ) -> None:
        self._candidates = tuple(candidates)
        self._policy = policy
        self._session_id = session_id
        self._snapshot = SessionSnapshot()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def candidates(self) -> tuple[Candidate, ...]:
        return self._candidates

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> AuthorizationState:
        return self._snapshot.auth

    @property
    def ready(self) -> bool:
        return self._snapshot.auth.ready

    @property
    def transaction_fired(self) -> bool:
        return self._snapshot.transaction_fired

    def to_dict(self) -> dict[str, Any]:
        d = self._snapshot.auth.to_dict()
        d["transactionFired"] = self._snapshot.transaction_fired
        return d

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def apply(self, call: FunctionCall) -> Step:
        """Advance the session by one decoded function call."""
        result = transitions.step(self._snapshot, call, self._candidates, self._policy)
        self._snapshot = result.snapshot
        logger.debug(
            "[Session %s] %s → ready=%s fired=%s",
            self._session_id,
            call.function.value,
            self.ready,
            self.transaction_fired,
        )
        return result

    def on_status(self, visual_observation: str, audio_observation: str, person_description: str = "") -> Step:
        return self.apply(
            UpdateStatus(
                visual_observation=visual_observation,
                audio_observation=audio_observation,
                person_description=person_description,
            )
        )

    def on_identify(self, description: str, confidence: float) -> Step:
        return self.apply(IdentifyPerson(description=description, confidence=confidence))

    def on_verbal(
        self,
        agreed: bool,
        amount: float | None = None,
        quote: str | None = None,
        confidence: float = 0.0,
    ) -> Step:
        return self.apply(
            ConfirmVerbalAgreement(agreed=agreed, amount=amount, quote=quote, confidence=confidence)
        )

    def on_handshake(
        self,
        active: bool,
        description: str = "",
        confidence: float = 0.0,
        stable_duration: float = 0.0,
    ) -> Step:
        return self.apply(
            ConfirmHandshake(
                handshake_active=active,
                description=description,
                confidence=confidence,
                stable_duration=stable_duration,
            )
        )

    def on_execute_request(
        self,
        person_description: str,
        amount: float,
        verbal_quote: str,
        handshake_confirmed: bool,
        overall_confidence: float,
    ) -> Step:
        return self.apply(
            ExecuteTransaction(
                person_description=person_description,
                amount=amount,
                verbal_confirmation_quote=verbal_quote,
                handshake_confirmed=handshake_confirmed,
                overall_confidence=overall_confidence,
            )
        )

    def reset(self) -> None:
        """Clear the confirmations without re-arming a fired session."""
        self._snapshot = transitions.reset(self._snapshot)
        logger.info("[Session %s] Authorization state reset (fired=%s)", self._session_id, self.transaction_fired)
