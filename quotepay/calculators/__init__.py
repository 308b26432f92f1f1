"""Quote pricing — line totals, tax, gratuity, deposit."""

from quotepay.calculators.totals import compute_quote_totals, compute_totals, line_total, to_money

__all__ = [
    "compute_quote_totals",
    "compute_totals",
    "line_total",
    "to_money",
]
