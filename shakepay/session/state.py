"""AuthorizationState: the per-session record of the three confirmations."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class PersonState:
    identified: bool = False
    candidate_id: str = ""
    name: str = ""
    wallet_address: str = ""
    confidence: float = 0.0


@dataclass(frozen=True)
class VerbalState:
    agreed: bool = False
    amount: float | None = None
    quote: str | None = None
    confidence: float = 0.0


@dataclass(frozen=True)
class HandshakeState:
    active: bool = False
    description: str = ""
    confidence: float = 0.0
    stable_duration: float = 0.0


@dataclass(frozen=True)
class AuthorizationState:
    """Immutable snapshot of identity, verbal and handshake confirmations.

    ``ready`` is derived, never stored, so it cannot drift from the three
    fields it summarizes.
    """

    person: PersonState = field(default_factory=PersonState)
    verbal: VerbalState = field(default_factory=VerbalState)
    handshake: HandshakeState = field(default_factory=HandshakeState)

    @property
    def ready(self) -> bool:
        return self.person.identified and self.verbal.agreed and self.handshake.active

    def to_dict(self) -> dict[str, Any]:
        return {
            "person": asdict(self.person),
            "verbal": asdict(self.verbal),
            "handshake": asdict(self.handshake),
            "ready": self.ready,
        }
