"""Formatting helpers shared by the PDF, HTML and text renderers.

The composer applies them while building the document context, so every
renderer receives strings that are already formatted.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal


def format_currency(value: Decimal | float | int | None) -> str:
    """US currency: 1234.5 -> "$1,234.50"."""
    if value is None:
        return "-"
    d = Decimal(str(value))
    sign = "-" if d < 0 else ""
    return f"{sign}${abs(d):,.2f}"


def format_quantity(value: Decimal | int | None) -> str:
    """Drop a zero fractional part: 2.00 -> "2", 1.50 -> "1.5"."""
    if value is None:
        return "-"
    d = Decimal(str(value))
    if d == d.to_integral_value():
        return str(d.quantize(Decimal("1")))
    return str(d.normalize())


def format_percentage(value: Decimal | float | None) -> str:
    """Fraction as percentage: 0.2 -> "20%", 0.0875 -> "8.75%"."""
    if value is None:
        return "-"
    pct = (Decimal(str(value)) * 100).normalize()
    if pct == pct.to_integral_value():
        return f"{pct.quantize(Decimal('1'))}%"
    return f"{pct}%"


def format_date(value: date | datetime | None) -> str:
    """Long US date: "March 14, 2026"."""
    if value is None:
        return "-"
    return f"{value:%B} {value.day}, {value.year}"


def format_service_type(value: str | None) -> str:
    """FOOD_TRUCK -> "Food Truck"."""
    if not value:
        return "-"
    return value.replace("_", " ").title()
