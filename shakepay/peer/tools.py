"""Tool declarations and system instruction for the model peer.

The five function declarations are generated from the pydantic argument
records in ``session.calls`` so the schema the model sees and the schema the
decoder enforces can never disagree.
"""

from __future__ import annotations

from typing import Any

from shakepay.session.calls import CALL_TYPES, FunctionName

SYSTEM_INSTRUCTION = """You are a payment witness for smart-glasses crypto payments.

MISSION: Watch the video and listen to the audio for TWO confirmations before a payment:

1. VERBAL CONFIRMATION
   - Listen for a payment amount ("$20", "twenty dollars", ...)
   - Listen for CLEAR agreement from BOTH parties ("yes", "deal", "agreed", "I agree")
   - You MUST hear explicit confirmation of the amount

2. HANDSHAKE CONFIRMATION
   - Two hands clasped in a handshake, stable for at least 2 seconds
   - Hands merely near each other do not count

PERSON IDENTIFICATION
   - Compare the person in frame with the reference people you were given
   - When they match, call identifyPerson with that person's name in the description

RULES
   - Call updateStatus() frequently with what you observe
   - Call confirmVerbalAgreement() when agreement is heard, and again with agreed=false if it is retracted
   - Call confirmHandshake() when a handshake starts, and again with handshake_active=false when it ends
   - Call executeTransaction() ONLY when BOTH verbal AND handshake are confirmed at the same time
   - State amounts clearly; give confidence scores between 0 and 1
   - Keep narration brief and real-time
"""


def _clean_schema(node: Any) -> Any:
    """Strip pydantic-only keys and collapse ``Optional[X]`` to ``X``."""
    if isinstance(node, list):
        return [_clean_schema(n) for n in node]
    if not isinstance(node, dict):
        return node

    any_of = node.get("anyOf")
    if isinstance(any_of, list):
        non_null = [s for s in any_of if s.get("type") != "null"]
        if len(non_null) == 1:
            merged = {k: v for k, v in node.items() if k != "anyOf"}
            merged.update(non_null[0])
            node = merged

    return {k: _clean_schema(v) for k, v in node.items() if k not in ("title", "default")}


def function_declarations() -> list[dict[str, Any]]:
    """Return ``[{name, description, parameters}]`` for every declared function."""
    declarations = []
    for name in FunctionName:
        model = CALL_TYPES[name]
        declarations.append({
            "name": name.value,
            "description": model.tool_description,
            "parameters": _clean_schema(model.model_json_schema(by_alias=True)),
        })
    return declarations


def reference_prompt(people: list[tuple[str, str, int]]) -> str:
    """Text that introduces the reference images that follow it.

    *people* holds ``(name, wallet_address, image_count)`` triples.
    """
    if not people:
        return "No people are enrolled. Report anyone you see as unknown."
    lines = ["These are the enrolled people who may receive payments. Their reference photos follow in order."]
    for name, wallet, count in people:
        lines.append(f"- {name} (wallet {wallet}): {count} reference photo{'s' if count != 1 else ''}")
    lines.append("Only these people can be identified. Do not guess a name for anyone else.")
    return "\n".join(lines)
