"""Quote state definitions and transition map.

Every transition is applied as one compare-and-set UPDATE whose WHERE clause
is the action's ``allowed_from`` set, so the table below is the whole state
machine. Statuses only move up in rank; CANCELED sits outside the ranked
chain and, like REFUNDED, is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass

from quotepay.models.enums import PaymentMode, QuoteStatus

RANK: dict[QuoteStatus, int] = {
    QuoteStatus.DRAFT: 0,
    QuoteStatus.SENT: 1,
    QuoteStatus.DEPOSIT_PAID: 2,
    QuoteStatus.PAID: 3,
    QuoteStatus.REFUNDED: 4,
}

TERMINAL: frozenset[QuoteStatus] = frozenset({QuoteStatus.REFUNDED, QuoteStatus.CANCELED})

# No new payable links once money has fully settled or the quote is closed
NOT_PAYABLE: frozenset[QuoteStatus] = frozenset(
    {QuoteStatus.PAID, QuoteStatus.REFUNDED, QuoteStatus.CANCELED}
)

# Items and policy are editable only here
EDITABLE: frozenset[QuoteStatus] = frozenset({QuoteStatus.DRAFT})


@dataclass(frozen=True)
class Transition:
    name: str
    allowed_from: frozenset[QuoteStatus]
    target: QuoteStatus
    timestamp_field: str


# Payment transitions accept DRAFT: the completed-checkout webhook may land
# before the dispatcher's DRAFT→SENT write. Refund accepts every pre-refund
# status so the final state depends only on which events arrived.
TRANSITIONS: dict[str, Transition] = {
    "send": Transition(
        "send",
        frozenset({QuoteStatus.DRAFT}),
        QuoteStatus.SENT,
        "sent_at",
    ),
    "deposit_paid": Transition(
        "deposit_paid",
        frozenset({QuoteStatus.DRAFT, QuoteStatus.SENT}),
        QuoteStatus.DEPOSIT_PAID,
        "deposit_paid_at",
    ),
    "paid": Transition(
        "paid",
        frozenset({QuoteStatus.DRAFT, QuoteStatus.SENT, QuoteStatus.DEPOSIT_PAID}),
        QuoteStatus.PAID,
        "paid_at",
    ),
    "refund": Transition(
        "refund",
        frozenset(
            {QuoteStatus.DRAFT, QuoteStatus.SENT, QuoteStatus.DEPOSIT_PAID, QuoteStatus.PAID}
        ),
        QuoteStatus.REFUNDED,
        "refunded_at",
    ),
    "cancel": Transition(
        "cancel",
        frozenset({QuoteStatus.DRAFT, QuoteStatus.SENT}),
        QuoteStatus.CANCELED,
        "canceled_at",
    ),
}


def payment_transition(mode: PaymentMode) -> Transition:
    """The transition a completed checkout in *mode* applies."""
    return TRANSITIONS["deposit_paid" if mode == PaymentMode.DEPOSIT else "paid"]


def can_apply(current: QuoteStatus | str, transition: str) -> bool:
    return QuoteStatus(current) in TRANSITIONS[transition].allowed_from


def is_terminal(status: QuoteStatus | str) -> bool:
    return QuoteStatus(status) in TERMINAL
