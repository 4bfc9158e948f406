"""Typed function calls issued by the model peer.

The peer sends ``(name, args)`` pairs with loosely shaped arguments.
``decode_call`` turns each pair into exactly one of the argument records below
or raises ``ProtocolError``; the state machine only ever sees the typed
records.
"""

from __future__ import annotations

import enum
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shakepay.errors import ProtocolError


class FunctionName(str, enum.Enum):
    UPDATE_STATUS = "updateStatus"
    IDENTIFY_PERSON = "identifyPerson"
    CONFIRM_VERBAL_AGREEMENT = "confirmVerbalAgreement"
    CONFIRM_HANDSHAKE = "confirmHandshake"
    EXECUTE_TRANSACTION = "executeTransaction"


class UnknownFunctionError(ProtocolError):
    """The peer called a function that was never declared."""


class _CallArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True, allow_inf_nan=False)

    function: ClassVar[FunctionName]
    tool_description: ClassVar[str]


class UpdateStatus(_CallArgs):
    function = FunctionName.UPDATE_STATUS
    tool_description = (
        "Report current observations from video and audio. "
        "Call this frequently to provide real-time updates."
    )

    visual_observation: str = Field(..., description="What you currently see in the video (people, hands, gestures)")
    audio_observation: str = Field(..., description="What you currently hear (conversation, keywords)")
    person_description: str = Field("", description="Description of person in frame (if visible)")


class IdentifyPerson(_CallArgs):
    function = FunctionName.IDENTIFY_PERSON
    tool_description = (
        "Identify the person you see. Include the enrolled person's name in the "
        "description when they match one of the reference people."
    )

    description_text: str = Field(
        ...,
        alias="description",
        description="Name of the matching enrolled person plus appearance details",
    )
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence level 0-1")


class ConfirmVerbalAgreement(_CallArgs):
    function = FunctionName.CONFIRM_VERBAL_AGREEMENT
    tool_description = (
        "Call this when you detect a CLEAR verbal agreement to a payment with a "
        "specific amount, or with agreed=false when the agreement is retracted."
    )

    agreed: bool = Field(..., description="true if agreement is detected, false if retracted")
    amount: float | None = Field(None, description="Payment amount in USD")
    quote: str | None = Field(None, description="Exact quote of the verbal agreement")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence level 0-1")


class ConfirmHandshake(_CallArgs):
    function = FunctionName.CONFIRM_HANDSHAKE
    tool_description = "Call this when you detect or lose detection of a handshake gesture."

    handshake_active: bool = Field(..., description="true if handshake is currently happening, false if stopped")
    description_text: str = Field(
        ...,
        alias="description",
        description="Description of what you see with the hands",
    )
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence level 0-1")
    stable_duration: float = Field(0.0, ge=0.0, description="How many seconds the handshake has been stable (estimate)")


class ExecuteTransaction(_CallArgs):
    function = FunctionName.EXECUTE_TRANSACTION
    tool_description = (
        "Execute the payment. ONLY call this when the person is identified and BOTH "
        "verbal agreement AND handshake are confirmed simultaneously."
    )

    person_description: str = Field(..., description="Description of the identified person")
    amount: float = Field(..., description="Payment amount in USD")
    verbal_confirmation_quote: str = Field(..., description="Quote of the verbal agreement")
    handshake_confirmed: bool = Field(..., description="Handshake is currently active and stable")
    overall_confidence: float = Field(..., ge=0.0, le=1.0, description="Overall confidence in all conditions 0-1")


FunctionCall = Union[UpdateStatus, IdentifyPerson, ConfirmVerbalAgreement, ConfirmHandshake, ExecuteTransaction]

CALL_TYPES: dict[FunctionName, type[_CallArgs]] = {
    cls.function: cls
    for cls in (UpdateStatus, IdentifyPerson, ConfirmVerbalAgreement, ConfirmHandshake, ExecuteTransaction)
}


def decode_call(name: str, args: dict[str, Any] | None) -> FunctionCall:
    """Validate *args* against the record declared for *name*.

    Raises:
        UnknownFunctionError: *name* is not one of ``FunctionName``.
        ProtocolError: a required argument is missing or has the wrong type.
    """
    try:
        function = FunctionName(name)
    except ValueError:
        raise UnknownFunctionError(f"Unknown function: {name}") from None

    try:
        return CALL_TYPES[function].model_validate(args or {})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<args>'}: {err['msg']}" for err in exc.errors()
        )
        raise ProtocolError(f"Invalid arguments for {name}: {problems}") from exc
