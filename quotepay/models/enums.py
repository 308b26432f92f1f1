"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the ``.value``.
"""

from __future__ import annotations

from enum import Enum


class QuoteStatus(str, Enum):
    """Quote lifecycle — see quotepay.quotes.states for the transition table."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    CANCELED = "CANCELED"


class PaymentMode(str, Enum):
    """What a checkout session charges for."""

    DEPOSIT = "deposit"
    FULL = "full"


class CheckoutSessionStatus(str, Enum):
    """Local mirror of the gateway session state."""

    OPEN = "open"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ServiceType(str, Enum):
    """Inquiry service types the restaurant quotes for (drives CC routing)."""

    CATERING = "CATERING"
    FOOD_TRUCK = "FOOD_TRUCK"
    MOBILE_BAR = "MOBILE_BAR"
    PRIVATE_EVENT = "PRIVATE_EVENT"
    RESERVATION = "RESERVATION"
