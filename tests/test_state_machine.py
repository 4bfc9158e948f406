"""Tests for the session state machine and its pure transitions.

Run:
    pytest tests/test_state_machine.py -v
"""

from __future__ import annotations

import itertools

import pytest

from shakepay.config import PaymentPolicy
from shakepay.enrollment.store import Candidate
from shakepay.session import transitions
from shakepay.session.calls import ConfirmHandshake, ConfirmVerbalAgreement, IdentifyPerson
from shakepay.session.events import EventType
from shakepay.session.machine import SessionStateMachine

from conftest import ALICE_WALLET, BOB_WALLET


def _types(step) -> list[str]:
    return [e.type.value for e in step.events]


def _make_ready(machine: SessionStateMachine, amount: float = 20.0) -> None:
    machine.on_identify("Alice, brown hair, blue jacket", 0.9)
    machine.on_verbal(True, amount, "yes, twenty dollars", 0.9)
    machine.on_handshake(True, "hands clasped", 0.9, 2.5)


def _execute(machine: SessionStateMachine, amount: float = 20.0, confidence: float = 0.9):
    return machine.on_execute_request("Alice", amount, "yes, twenty dollars", True, confidence)


class TestIdentify:
    def test_resolves_enrolled_name_case_insensitively(self, machine):
        step = machine.on_identify("i think this is ALICE from the photos", 0.88)
        assert machine.state.person.identified
        assert machine.state.person.name == "Alice"
        assert machine.state.person.wallet_address == ALICE_WALLET
        assert _types(step) == ["person-identified"]
        assert step.response == {"identified": True, "name": "Alice", "wallet": ALICE_WALLET}
        assert step.events[0].payload["confidence"] == 0.88

    def test_unresolved_description_leaves_state_unchanged(self, machine):
        before = machine.snapshot
        step = machine.on_identify("a tall man in a red hat", 0.9)
        assert machine.snapshot == before
        assert not machine.state.person.identified
        assert _types(step) == ["person-unknown"]
        assert step.response["identified"] is False

    def test_unresolved_after_resolved_keeps_identity(self, machine):
        machine.on_identify("Alice", 0.9)
        machine.on_identify("someone else entirely", 0.9)
        assert machine.state.person.name == "Alice"

    def test_overlapping_names_identify_the_right_payee(self, policy):
        people = (
            Candidate(id="c-ann", name="Ann", wallet_address=ALICE_WALLET),
            Candidate(id="c-joanna", name="Joanna", wallet_address=BOB_WALLET),
        )
        m = SessionStateMachine(people, policy)
        m.on_identify("This is Joanna, brown hair", 0.9)
        assert m.state.person.name == "Joanna"
        assert m.state.person.wallet_address == BOB_WALLET

    def test_no_candidates_never_identifies(self, policy):
        empty = SessionStateMachine((), policy)
        step = empty.on_identify("Alice", 0.99)
        assert not empty.state.person.identified
        assert _types(step) == ["person-unknown"]


class TestVerbalAndHandshake:
    def test_verbal_status_emitted_on_every_call(self, machine):
        assert _types(machine.on_verbal(True, 5.0, "deal", 0.9)) == ["verbal-status"]
        assert _types(machine.on_verbal(True, 5.0, "deal", 0.9)) == ["verbal-status"]
        step = machine.on_verbal(False, None, None, 0.8)
        assert _types(step) == ["verbal-status"]
        assert step.response["status"] == "Agreement retracted"
        assert machine.state.verbal.amount is None

    def test_handshake_replaced_wholesale(self, machine):
        machine.on_handshake(True, "clasped", 0.9, 3.0)
        step = machine.on_handshake(False, "hands apart", 0.6)
        assert machine.state.handshake.active is False
        assert machine.state.handshake.stable_duration == 0.0
        assert step.events[0].payload == {
            "active": False,
            "description": "hands apart",
            "confidence": 0.6,
            "stableDuration": 0.0,
        }

    def test_status_never_mutates_state(self, machine):
        machine.on_identify("Alice", 0.9)
        before = machine.snapshot
        step = machine.on_status("two people", "talking about lunch", "Alice")
        assert machine.snapshot == before
        assert _types(step) == ["status-update"]
        assert step.response == {"acknowledged": True}


class TestReadiness:
    @pytest.mark.parametrize("order", list(itertools.permutations(["identify", "verbal", "handshake"])))
    def test_ready_is_order_independent(self, machine, order):
        ops = {
            "identify": lambda: machine.on_identify("Alice", 0.9),
            "verbal": lambda: machine.on_verbal(True, 20.0, "yes", 0.9),
            "handshake": lambda: machine.on_handshake(True, "clasped", 0.9, 2.0),
        }
        steps = [ops[name]() for name in order]
        assert machine.ready
        notified = [t for s in steps for t in _types(s) if t == "conditions-met"]
        assert notified == ["conditions-met"]
        # Only the final call completes readiness.
        assert "conditions-met" in _types(steps[-1])

    def test_conditions_met_payload(self, machine):
        machine.on_identify("Alice", 0.9)
        machine.on_verbal(True, 12.5, "twelve fifty, deal", 0.9)
        step = machine.on_handshake(True, "clasped", 0.9, 2.0)
        met = [e for e in step.events if e.type is EventType.CONDITIONS_MET][0]
        assert met.payload == {
            "candidate": {"id": "c-alice", "name": "Alice", "walletAddress": ALICE_WALLET},
            "amount": 12.5,
            "quote": "twelve fifty, deal",
        }

    def test_one_notification_per_ready_interval(self, machine):
        _make_ready(machine)
        again = machine.on_handshake(True, "still clasped", 0.95, 4.0)
        assert "conditions-met" not in _types(again)

        machine.on_handshake(False, "released", 0.9)
        assert not machine.ready
        step = machine.on_handshake(True, "clasped again", 0.9, 2.0)
        assert "conditions-met" in _types(step)

    def test_retraction_clears_ready(self, machine):
        _make_ready(machine)
        machine.on_verbal(False, None, None, 0.9)
        assert not machine.ready
        step = _execute(machine)
        assert not step.accepted
        assert step.response["error"] == "no verbal agreement"

    def test_amount_out_of_bounds_reported_as_blocked_at_ready(self, machine):
        machine.on_identify("Alice", 0.9)
        machine.on_verbal(True, 500.0, "five hundred", 0.9)
        step = machine.on_handshake(True, "clasped", 0.9, 2.0)
        assert "conditions-met" not in _types(step)
        block = [e for e in step.events if e.type is EventType.BLOCKED][0]
        assert block.payload["code"] == "amount_out_of_policy"

    def test_ready_with_no_amount_is_blocked(self, machine):
        machine.on_identify("Alice", 0.9)
        machine.on_verbal(True, None, "yes", 0.9)
        step = machine.on_handshake(True, "clasped", 0.9, 2.0)
        block = [e for e in step.events if e.type is EventType.BLOCKED][0]
        assert block.payload["reason"] == "no amount was agreed"

    def test_no_notification_after_fired(self, machine):
        _make_ready(machine)
        assert _execute(machine).accepted
        machine.on_handshake(False, "released", 0.9)
        step = machine.on_handshake(True, "clasped", 0.9, 2.0)
        assert "conditions-met" not in _types(step)


class TestExecute:
    def test_happy_path(self, machine):
        _make_ready(machine)
        step = _execute(machine)
        assert step.accepted
        assert machine.transaction_fired
        assert _types(step) == ["ready-for-payment"]
        payload = step.events[0].payload
        assert payload["amount"] == 20.0
        assert payload["candidate"]["walletAddress"] == ALICE_WALLET
        assert payload["confidence"] == 0.9
        assert step.response["recipient"] == "Alice"

    @pytest.mark.parametrize(
        "setup, reason",
        [
            ([], "person not identified"),
            (["identify"], "no verbal agreement"),
            (["identify", "verbal"], "no active handshake"),
        ],
    )
    def test_rejects_missing_conditions_in_order(self, machine, setup, reason):
        if "identify" in setup:
            machine.on_identify("Alice", 0.9)
        if "verbal" in setup:
            machine.on_verbal(True, 20.0, "yes", 0.9)
        step = _execute(machine)
        assert not step.accepted
        assert step.response["error"] == reason
        assert step.events[0].payload == {"reason": reason, "code": "conditions_unmet"}
        assert not machine.transaction_fired

    def test_restated_handshake_flag_is_not_trusted(self, machine):
        machine.on_identify("Alice", 0.9)
        machine.on_verbal(True, 20.0, "yes", 0.9)
        step = machine.on_execute_request("Alice", 20.0, "yes", True, 0.99)
        assert step.response["error"] == "no active handshake"

    def test_duplicate_request_rejected(self, machine):
        _make_ready(machine)
        assert _execute(machine).accepted
        step = _execute(machine)
        assert not step.accepted
        assert step.response["error"] == "already executed this session"
        assert step.events[0].payload["code"] == "already_executed"

    def test_low_confidence(self, machine):
        _make_ready(machine)
        step = _execute(machine, confidence=0.5)
        assert step.response["error"] == "confidence too low"
        assert step.events[0].payload["code"] == "low_confidence"
        assert not machine.transaction_fired

    def test_confidence_at_threshold_is_accepted(self, machine):
        _make_ready(machine)
        assert _execute(machine, confidence=0.7).accepted

    @pytest.mark.parametrize("amount, fragment", [(75.0, "exceeds the maximum"), (0.001, "below the minimum")])
    def test_amount_outside_bounds(self, machine, amount, fragment):
        _make_ready(machine)
        step = _execute(machine, amount=amount)
        assert not step.accepted
        assert fragment in step.response["error"]
        assert step.events[0].payload["code"] == "amount_out_of_policy"
        assert not machine.transaction_fired

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_amount_blocked(self, machine, amount):
        _make_ready(machine)
        step = _execute(machine, amount=amount)
        assert not step.accepted
        assert "not a finite number" in step.response["error"]
        assert step.events[0].payload["code"] == "amount_out_of_policy"
        assert not machine.transaction_fired

    def test_nan_confidence_is_too_low(self, machine):
        _make_ready(machine)
        step = _execute(machine, confidence=float("nan"))
        assert step.response["error"] == "confidence too low"
        assert step.events[0].payload["code"] == "low_confidence"
        assert not machine.transaction_fired

    def test_bounds_are_inclusive(self, candidates):
        policy = PaymentPolicy(min_amount=1.0, max_amount=50.0)
        m = SessionStateMachine(candidates, policy)
        _make_ready(m, amount=50.0)
        assert _execute(m, amount=50.0).accepted

    def test_handshake_lost_before_execute(self, machine):
        _make_ready(machine)
        machine.on_handshake(False, "released", 0.9)
        step = _execute(machine)
        assert step.response["error"] == "no active handshake"

    def test_fired_survives_reset(self, machine):
        _make_ready(machine)
        assert _execute(machine).accepted
        machine.reset()
        assert not machine.ready
        assert machine.transaction_fired
        _make_ready(machine)
        assert _execute(machine).response["error"] == "already executed this session"

    @pytest.mark.parametrize("attempts", [2, 5])
    def test_at_most_one_acceptance(self, machine, attempts):
        _make_ready(machine)
        accepted = [_execute(machine).accepted for _ in range(attempts)]
        assert accepted.count(True) == 1


class TestPureStep:
    def test_step_does_not_mutate_input(self, candidates, policy):
        start = transitions.SessionSnapshot()
        result = transitions.step(start, IdentifyPerson(description="Bob", confidence=0.8), candidates, policy)
        assert start == transitions.SessionSnapshot()
        assert result.snapshot.auth.person.name == "Bob"

    def test_replayed_sequence_is_deterministic(self, candidates, policy):
        calls = [
            IdentifyPerson(description="Alice", confidence=0.9),
            ConfirmVerbalAgreement(agreed=True, amount=3.0, quote="ok", confidence=0.9),
            ConfirmHandshake(handshake_active=True, description="clasped", confidence=0.9),
        ]
        snapshots = []
        for _ in range(2):
            snap = transitions.SessionSnapshot()
            for call in calls:
                snap = transitions.step(snap, call, candidates, policy).snapshot
            snapshots.append(snap)
        assert snapshots[0] == snapshots[1]
        assert snapshots[0].ready_notified

    def test_reset_clears_latch_but_not_fired(self):
        snap = transitions.SessionSnapshot(transaction_fired=True, ready_notified=True)
        cleared = transitions.reset(snap)
        assert cleared.transaction_fired
        assert not cleared.ready_notified
        assert not cleared.auth.ready


def test_to_dict_shape(machine):
    _make_ready(machine)
    d = machine.to_dict()
    assert d["ready"] is True
    assert d["transactionFired"] is False
    assert d["person"]["name"] == "Alice"
    assert d["handshake"]["stable_duration"] == 2.5
