"""
Pricing & tax calculation and currency formatting.

Pure functions only. Amounts stay Decimal end to end; rounding to paisa
happens in quantize_money, called when values are persisted or displayed.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple

from django.conf import settings

CENT = Decimal('0.01')
DEFAULT_VAT_RATE = Decimal('0.13')


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def get_vat_rate() -> Decimal:
    return Decimal(str(getattr(settings, 'VAT_RATE', DEFAULT_VAT_RATE)))


def quantize_money(amount) -> Decimal:
    """Round to 2 decimal places, half up."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(lines: Iterable[Tuple[Decimal, int]], vat_rate: Optional[Decimal] = None) -> Totals:
    """
    Price a list of (unit_price, quantity) lines.

    >>> compute_totals([(Decimal('1500'), 2), (Decimal('800'), 1)])
    Totals(subtotal=Decimal('3800'), tax=Decimal('494.00'), total=Decimal('4294.00'))
    """
    rate = get_vat_rate() if vat_rate is None else Decimal(str(vat_rate))
    subtotal = Decimal('0')
    for unit_price, quantity in lines:
        subtotal += Decimal(str(unit_price)) * quantity
    tax = subtotal * rate
    return Totals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def to_minor_units(amount) -> int:
    """NPR to paisa, as the Khalti API expects."""
    return int((quantize_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _group(amount: Decimal, places: int) -> str:
    return f"{amount:,.{places}f}"


def format_npr(amount) -> str:
    """'रु 1,200.00'"""
    return f"रु {_group(quantize_money(amount), 2)}"


def format_npr_compact(amount) -> str:
    """'रु 1,200' with no decimals, for product cards."""
    whole = Decimal(str(amount)).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return f"रु {_group(whole, 0)}"


def format_rs(amount) -> str:
    """'Rs. 1,200.00', used on invoices and notifications."""
    return f"Rs. {_group(quantize_money(amount), 2)}"


def format_usd(amount) -> str:
    return f"${_group(quantize_money(amount), 2)}"
