"""Tests for the quote state machine table.

Covers:
- Allowed-from sets for each transition
- Terminal and not-payable sets
- Payment transition per mode
- Order independence: the final status depends only on which events arrived
"""

from __future__ import annotations

import itertools

import pytest

from quotepay.models.enums import PaymentMode, QuoteStatus
from quotepay.quotes.states import (
    NOT_PAYABLE,
    RANK,
    TERMINAL,
    TRANSITIONS,
    can_apply,
    is_terminal,
    payment_transition,
)


def _apply(status: QuoteStatus, name: str) -> QuoteStatus:
    """What a compare-and-set UPDATE would leave behind."""
    return TRANSITIONS[name].target if can_apply(status, name) else status


class TestTransitionTable:
    def test_send_only_from_draft(self):
        assert can_apply("DRAFT", "send")
        for status in ("SENT", "DEPOSIT_PAID", "PAID", "REFUNDED", "CANCELED"):
            assert not can_apply(status, "send")

    def test_payment_accepts_draft(self):
        # the completed-checkout webhook may land before DRAFT→SENT
        assert can_apply(QuoteStatus.DRAFT, "deposit_paid")
        assert can_apply(QuoteStatus.DRAFT, "paid")

    def test_deposit_never_downgrades_paid(self):
        assert not can_apply(QuoteStatus.PAID, "deposit_paid")

    def test_cancel_only_before_payment(self):
        assert can_apply(QuoteStatus.DRAFT, "cancel")
        assert can_apply(QuoteStatus.SENT, "cancel")
        assert not can_apply(QuoteStatus.DEPOSIT_PAID, "cancel")
        assert not can_apply(QuoteStatus.PAID, "cancel")

    def test_nothing_leaves_terminal(self):
        for status in TERMINAL:
            for name in TRANSITIONS:
                assert not can_apply(status, name)

    def test_ranked_transitions_move_up(self):
        for transition in TRANSITIONS.values():
            if transition.target not in RANK:
                continue
            for source in transition.allowed_from:
                assert RANK[source] < RANK[transition.target]

    def test_not_payable(self):
        assert {QuoteStatus.PAID, QuoteStatus.REFUNDED, QuoteStatus.CANCELED} == NOT_PAYABLE
        assert QuoteStatus.DEPOSIT_PAID not in NOT_PAYABLE

    def test_is_terminal(self):
        assert is_terminal("REFUNDED")
        assert is_terminal(QuoteStatus.CANCELED)
        assert not is_terminal("PAID")

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            can_apply("ARCHIVED", "send")


class TestPaymentTransition:
    def test_deposit(self):
        assert payment_transition(PaymentMode.DEPOSIT).target == QuoteStatus.DEPOSIT_PAID

    def test_full(self):
        assert payment_transition(PaymentMode.FULL).target == QuoteStatus.PAID


_EVENTS = ("send", "deposit_paid", "paid", "refund")
_EVENT_SETS = [combo for n in range(1, len(_EVENTS) + 1) for combo in itertools.combinations(_EVENTS, n)]


class TestOrderIndependence:
    @pytest.mark.parametrize("events", _EVENT_SETS)
    def test_final_status_depends_only_on_event_set(self, events):
        finals = set()
        for order in itertools.permutations(events):
            status = QuoteStatus.DRAFT
            for name in order:
                status = _apply(status, name)
            finals.add(status)
        assert len(finals) == 1, f"{events} produced {finals}"

    def test_duplicates_are_no_ops(self):
        status = QuoteStatus.DRAFT
        for name in ("paid", "paid", "deposit_paid", "paid"):
            status = _apply(status, name)
        assert status == QuoteStatus.PAID

    def test_send_after_payment_keeps_paid(self):
        status = _apply(QuoteStatus.DRAFT, "paid")
        assert _apply(status, "send") == QuoteStatus.PAID
