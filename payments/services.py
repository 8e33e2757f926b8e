"""
Payment initiation.

The amount is always derived from the order's invoice, never from the
client. The provider reference (eSewa transaction uuid or Khalti pidx) is
stored on the order so the callback can be matched against it.
"""
import logging
from typing import Dict, Optional, Union

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from orders.models import Invoice, Order
from orders.pricing import to_minor_units
from .exceptions import PaymentNotAllowed
from .gateways import EsewaFormPayload, EsewaGateway, KhaltiGateway, KhaltiPayment

logger = logging.getLogger(__name__)

PROVIDERS = ('ESEWA', 'KHALTI')


def get_payable_order(order_id, provider: str) -> Order:
    """
    Load an order that can still be paid through provider.

    Raises:
        PaymentNotAllowed: If the order is unknown, not PENDING, booked
            under another payment method, or has no open invoice
    """
    try:
        order = Order.objects.select_related('invoice').get(pk=order_id)
    except (Order.DoesNotExist, ValueError, DjangoValidationError):
        raise PaymentNotAllowed(f"Order {order_id} not found")

    if order.status != Order.Status.PENDING:
        raise PaymentNotAllowed(f"Order {order.id} is {order.status}, not awaiting payment")

    if order.payment_method != provider:
        raise PaymentNotAllowed(f"Order {order.id} is not a {provider} order")

    try:
        invoice = order.invoice
    except Invoice.DoesNotExist:
        raise PaymentNotAllowed(f"Order {order.id} has no invoice")

    if invoice.status != Invoice.Status.UNPAID:
        raise PaymentNotAllowed(f"Invoice {invoice.invoice_number} is {invoice.status}")

    return order


def _store_reference(order: Order, reference: str) -> None:
    updated = Order.objects.filter(pk=order.pk, status=Order.Status.PENDING).update(
        payment_reference=reference,
        updated_at=timezone.now()
    )
    if updated == 0:
        raise PaymentNotAllowed(f"Order {order.id} left PENDING during payment initiation")


def start_payment(order_id, provider: str, email: Optional[str] = None) -> Union[EsewaFormPayload, KhaltiPayment]:
    """
    Hand a PENDING order off to its payment provider.

    Args:
        order_id: Order to pay for
        provider: ESEWA or KHALTI
        email: Optional contact email sent to Khalti

    Returns:
        EsewaFormPayload for eSewa, KhaltiPayment for Khalti

    Raises:
        PaymentNotAllowed: If the order cannot be paid for
        GatewayConfigError: If provider credentials are missing
        GatewayInitiationFailed: If Khalti rejects the initiation
    """
    provider = (provider or '').upper()
    if provider not in PROVIDERS:
        raise PaymentNotAllowed(f"Unknown payment provider: {provider}")

    order = get_payable_order(order_id, provider)
    amount_due = order.invoice.amount_due

    if provider == 'ESEWA':
        result = EsewaGateway().build_payload(order.id, amount_due)
        reference = result.transaction_uuid
    else:
        customer: Dict[str, str] = {
            'name': order.customer_name,
            'phone': order.contact_phone,
            'email': email or (order.user.email if order.user_id else ''),
        }
        result = KhaltiGateway().initiate(order.id, to_minor_units(amount_due), customer)
        reference = result.pidx

    _store_reference(order, reference)
    logger.info(f"Payment started for order {order.id} via {provider} ({reference})")
    return result
