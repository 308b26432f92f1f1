"""SQLAlchemy ORM models for quotepay.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from quotepay.models.audit import AuditLog
from quotepay.models.base import Base
from quotepay.models.checkout import CheckoutSession
from quotepay.models.email_attempt import EmailAttempt
from quotepay.models.enums import CheckoutSessionStatus, PaymentMode, QuoteStatus, ServiceType
from quotepay.models.inquiry import Inquiry
from quotepay.models.quote import Quote, QuoteItem

__all__ = [
    # Base
    "Base",
    # Models
    "Inquiry",
    "Quote",
    "QuoteItem",
    "CheckoutSession",
    "EmailAttempt",
    "AuditLog",
    # Enums
    "QuoteStatus",
    "PaymentMode",
    "CheckoutSessionStatus",
    "ServiceType",
]
