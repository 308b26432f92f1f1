"""Quote totals calculator.

Pure Python, Decimal arithmetic, round-half-up to cents:
- subtotal = sum of line totals, or the explicit override when set
- tax = subtotal × tax_pct
- gratuity = subtotal × gratuity_pct
- total = subtotal + tax + gratuity
- deposit = total × deposit_pct

Percentages are fractions in [0, 1]. Missing percentages count as zero,
except deposit which falls back to the policy default in
``compute_quote_totals``.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Protocol

from quotepay.schemas.quotes import ComputedTotals

if TYPE_CHECKING:
    from quotepay.models.quote import Quote
    from quotepay.policy import QuotePolicy

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
_ONE = Decimal("1")


class PricedLine(Protocol):
    quantity: Decimal
    unit_price: Decimal


def to_money(value: Decimal | int | str) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: Decimal | int | str, unit_price: Decimal | int | str) -> Decimal:
    """Total for one line item: round(quantity × unit_price, 2)."""
    return to_money(Decimal(quantity) * Decimal(unit_price))


def _fraction(value: Decimal | int | str | None, name: str) -> Decimal:
    if value is None:
        return _ZERO
    pct = Decimal(value)
    if not _ZERO <= pct <= _ONE:
        msg = f"{name} must be a fraction between 0 and 1, got {pct}"
        raise ValueError(msg)
    return pct


def compute_totals(
    items: Iterable[PricedLine],
    tax_pct: Decimal | None = None,
    gratuity_pct: Decimal | None = None,
    deposit_pct: Decimal | None = None,
    subtotal_override: Decimal | None = None,
) -> ComputedTotals:
    """Compute subtotal, tax, gratuity, total and deposit for a set of items.

    Args:
        items: Anything with ``quantity`` and ``unit_price``.
        tax_pct: Tax fraction, e.g. Decimal("0.09"). None means no tax.
        gratuity_pct: Gratuity fraction. None means no gratuity.
        deposit_pct: Deposit fraction of the grand total. None means zero.
        subtotal_override: Explicit subtotal (>= 0) that wins over the items.

    Returns:
        ComputedTotals with every amount rounded to cents.

    Raises:
        ValueError: a percentage outside [0, 1] or a negative override.
    """
    tax_rate = _fraction(tax_pct, "tax_pct")
    gratuity_rate = _fraction(gratuity_pct, "gratuity_pct")
    deposit_rate = _fraction(deposit_pct, "deposit_pct")

    if subtotal_override is not None:
        if Decimal(subtotal_override) < _ZERO:
            msg = f"subtotal_override must be >= 0, got {subtotal_override}"
            raise ValueError(msg)
        subtotal = to_money(subtotal_override)
    else:
        subtotal = to_money(
            sum((line_total(i.quantity, i.unit_price) for i in items), start=_ZERO)
        )

    tax = to_money(subtotal * tax_rate)
    gratuity = to_money(subtotal * gratuity_rate)
    total = subtotal + tax + gratuity
    deposit = to_money(total * deposit_rate)

    return ComputedTotals(
        subtotal=subtotal,
        tax=tax,
        gratuity=gratuity,
        total=total,
        deposit_amount=deposit,
        tax_pct=tax_rate,
        gratuity_pct=gratuity_rate,
        deposit_pct=deposit_rate,
    )


def compute_quote_totals(quote: Quote, policy: QuotePolicy) -> ComputedTotals:
    """Totals for a stored quote, falling back to *policy* for unset percentages."""
    return compute_totals(
        quote.items,
        tax_pct=quote.tax_pct if quote.tax_pct is not None else policy.default_tax_pct,
        gratuity_pct=(
            quote.gratuity_pct if quote.gratuity_pct is not None else policy.default_gratuity_pct
        ),
        deposit_pct=(
            quote.deposit_pct if quote.deposit_pct is not None else policy.default_deposit_pct
        ),
        subtotal_override=quote.total_override,
    )
