"""
Invoice numbering - sequential, year-scoped invoice identifiers.

Numbers look like TT-2026-0042. The read-then-insert is only safe inside
the checkout transaction; concurrent losers hit the unique constraint on
Invoice.invoice_number and are retried by the orchestrator.
"""
import re
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .models import Invoice

_SEQUENCE_RE = re.compile(r'-(\d+)$')


def invoice_prefix() -> str:
    return getattr(settings, 'INVOICE_PREFIX', 'TT')


def format_invoice_number(year: int, sequence: int, prefix: Optional[str] = None) -> str:
    return f"{prefix or invoice_prefix()}-{year}-{sequence:04d}"


def next_invoice_number(year: Optional[int] = None) -> str:
    """Return the invoice number following the latest one issued in year."""
    if year is None:
        year = timezone.localdate().year
    prefix = invoice_prefix()

    latest = (
        Invoice.objects.filter(invoice_number__startswith=f"{prefix}-{year}-")
        .order_by('-created_at', '-pk')
        .values_list('invoice_number', flat=True)
        .first()
    )

    sequence = 1
    if latest:
        match = _SEQUENCE_RE.search(latest)
        if match:
            sequence = int(match.group(1)) + 1

    return format_invoice_number(year, sequence, prefix)
