"""
Payment callback reconciliation.

Provider redirects are never trusted on their own. eSewa callbacks are
checked by recomputing the HMAC signature over the decoded payload; Khalti
callbacks are checked with a fresh server-to-server lookup. A verified
payment confirms the order and captures its invoice; anything else cancels
the order and reports a reason code. A callback for an order checked out
with another payment method is ignored.

Callbacks replayed after the order has left PENDING change nothing.
"""
import base64
import binascii
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from orders.models import Invoice, Order
from orders.pricing import quantize_money, to_minor_units
from orders.state_machine import capture_invoice_payment, transition_order
from .exceptions import (
    CallbackVerificationFailed,
    InvalidCallback,
    PaymentError,
    PaymentNotCompleted,
)
from .gateways import ESEWA_SIGNED_FIELDS, EsewaGateway, KhaltiGateway

logger = logging.getLogger(__name__)

CONFIRMED_LINE = {
    Order.Status.CONFIRMED,
    Order.Status.PACKED,
    Order.Status.SHIPPED,
    Order.Status.OUT_FOR_DELIVERY,
    Order.Status.DELIVERED,
}


@dataclass
class CallbackOutcome:
    order_id: Optional[str]
    succeeded: bool
    reason: Optional[str] = None


def _load_order(order_id) -> Optional[Order]:
    if not order_id:
        return None
    try:
        return Order.objects.select_related('invoice').get(pk=order_id)
    except (Order.DoesNotExist, ValueError, DjangoValidationError):
        return None


def _replay_outcome(order: Order) -> CallbackOutcome:
    logger.info(f"Callback replay for order {order.id} in status {order.status}; ignoring")
    if order.status in CONFIRMED_LINE:
        return CallbackOutcome(str(order.id), True)
    return CallbackOutcome(str(order.id), False, 'order_closed')


def _invoice_amount(order: Order):
    try:
        return order.invoice.amount_due
    except Invoice.DoesNotExist:
        raise InvalidCallback(f"Order {order.id} has no invoice")


def _confirm(order: Order) -> CallbackOutcome:
    # Confirmation and capture land together or not at all
    with transaction.atomic():
        transition_order(order.pk, Order.Status.CONFIRMED, expected_status=Order.Status.PENDING)
        capture_invoice_payment(order.pk, trusted=True)
    logger.info(f"Payment verified; order {order.id} confirmed")
    return CallbackOutcome(str(order.id), True)


def _cancel_quietly(order_id, reason: str) -> None:
    """Best-effort cancellation. A failure here is logged, never raised."""
    if order_id is None:
        return
    try:
        transition_order(order_id, Order.Status.CANCELED, expected_status=Order.Status.PENDING)
        logger.warning(f"Order {order_id} canceled after failed payment callback ({reason})")
    except Exception as e:
        logger.error(f"Could not cancel order {order_id} after failed callback ({reason}): {e}")


def _fail(order: Optional[Order], order_id, reason: str) -> CallbackOutcome:
    _cancel_quietly(order.pk if order is not None else None, reason)
    return CallbackOutcome(str(order.id) if order is not None else order_id, False, reason)


def _wrong_provider(order: Order, provider: str) -> Optional[CallbackOutcome]:
    """A callback for an order checked out with another method leaves the order untouched."""
    if order.payment_method == provider:
        return None
    logger.warning(
        f"{provider} callback for order {order.id} paid by {order.payment_method}; ignoring"
    )
    return CallbackOutcome(str(order.id), False, InvalidCallback.reason)


# =============================================================================
# eSewa
# =============================================================================

def decode_esewa_data(encoded_data: str) -> Dict:
    """Decode the base64 JSON blob eSewa appends to its success redirect."""
    if not encoded_data:
        raise InvalidCallback("Missing eSewa data")
    try:
        decoded = base64.b64decode(encoded_data, validate=False)
        payload = json.loads(decoded.decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidCallback("eSewa data is not valid base64 JSON")
    if not isinstance(payload, dict):
        raise InvalidCallback("eSewa data is not a JSON object")
    return payload


def verify_esewa_payload(payload: Dict, order: Order, gateway: EsewaGateway) -> None:
    """
    Check an eSewa callback payload against the order.

    Raises:
        CallbackVerificationFailed: On any mismatch or a non-COMPLETE status
    """
    failed = 'esewa_verification_failed'

    signed_field_names = str(payload.get('signed_field_names', ''))
    fields = [name.strip() for name in signed_field_names.split(',') if name.strip()]
    if not set(ESEWA_SIGNED_FIELDS).issubset(fields):
        raise CallbackVerificationFailed("Signed fields do not cover the amount and reference", reason=failed)

    values = {name: str(payload.get(name, '')) for name in fields}
    expected = gateway.sign(fields, values)
    signature = str(payload.get('signature', ''))
    if not hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8')):
        raise CallbackVerificationFailed("eSewa signature mismatch", reason=failed)

    if payload.get('status') != 'COMPLETE':
        raise CallbackVerificationFailed(f"eSewa status is {payload.get('status')}", reason=failed)

    if payload.get('product_code') != gateway.product_code:
        raise CallbackVerificationFailed("eSewa product code mismatch", reason=failed)

    paid = str(payload.get('total_amount', '')).replace(',', '')
    try:
        paid_amount = quantize_money(Decimal(paid))
    except InvalidOperation:
        raise CallbackVerificationFailed(f"eSewa amount {paid!r} is not a number", reason=failed)
    if paid_amount != quantize_money(_invoice_amount(order)):
        raise CallbackVerificationFailed(f"eSewa amount {paid} does not match invoice", reason=failed)

    # Only a payment started for this order can settle it
    if not order.payment_reference or payload.get('transaction_uuid') != order.payment_reference:
        raise CallbackVerificationFailed("eSewa transaction uuid does not match order", reason=failed)


def reconcile_esewa(order_id, encoded_data: str) -> CallbackOutcome:
    """
    Finalize or cancel an order from an eSewa success redirect.

    Args:
        order_id: orderId query parameter
        encoded_data: data query parameter (base64 JSON)
    """
    order = _load_order(order_id)
    if order is None:
        logger.warning(f"eSewa callback for unknown order {order_id!r}")
        return CallbackOutcome(order_id, False, InvalidCallback.reason)

    mismatch = _wrong_provider(order, 'ESEWA')
    if mismatch is not None:
        return mismatch

    if order.status != Order.Status.PENDING:
        return _replay_outcome(order)

    try:
        gateway = EsewaGateway()
        gateway.ensure_configured()
        payload = decode_esewa_data(encoded_data)
        verify_esewa_payload(payload, order, gateway)
        return _confirm(order)
    except PaymentError as e:
        logger.warning(f"eSewa callback rejected for order {order.id}: {e}")
        return _fail(order, order_id, e.reason)
    except Exception as e:
        logger.exception(f"Error processing eSewa callback for order {order.id}: {e}")
        return _fail(order, order_id, 'esewa_processing_failed')


# =============================================================================
# Khalti
# =============================================================================

def khalti_status_reason(provider_status) -> str:
    """
    >>> khalti_status_reason('User canceled')
    'khalti_user_canceled'
    """
    if not provider_status:
        return 'khalti_not_completed'
    return 'khalti_' + str(provider_status).strip().lower().replace(' ', '_')


def verify_khalti_lookup(lookup: Dict, pidx: str, order: Order) -> None:
    """
    Check a Khalti lookup response against the order.

    Raises:
        PaymentNotCompleted: If Khalti does not report the payment Completed
        CallbackVerificationFailed: On an amount or reference mismatch
    """
    provider_status = lookup.get('status')
    if provider_status != 'Completed':
        raise PaymentNotCompleted(
            f"Khalti status is {provider_status}", reason=khalti_status_reason(provider_status)
        )

    mismatch = 'khalti_verification_failed'
    if lookup.get('pidx') and lookup.get('pidx') != pidx:
        raise CallbackVerificationFailed("Khalti lookup pidx mismatch", reason=mismatch)

    if not order.payment_reference or pidx != order.payment_reference:
        raise CallbackVerificationFailed("Khalti pidx does not match order", reason=mismatch)

    expected_paisa = to_minor_units(_invoice_amount(order))
    try:
        paid_paisa = int(lookup.get('total_amount'))
    except (TypeError, ValueError):
        raise CallbackVerificationFailed("Khalti lookup has no amount", reason=mismatch)
    if paid_paisa != expected_paisa:
        raise CallbackVerificationFailed(
            f"Khalti amount {paid_paisa} does not match invoice {expected_paisa}", reason=mismatch
        )


def reconcile_khalti(order_id, pidx: str) -> CallbackOutcome:
    """
    Finalize or cancel an order from a Khalti return redirect.

    The redirect's own status parameters are ignored; only the lookup
    response decides.
    """
    order = _load_order(order_id)
    if order is None:
        logger.warning(f"Khalti callback for unknown order {order_id!r}")
        return CallbackOutcome(order_id, False, InvalidCallback.reason)

    mismatch = _wrong_provider(order, 'KHALTI')
    if mismatch is not None:
        return mismatch

    if order.status != Order.Status.PENDING:
        return _replay_outcome(order)

    try:
        if not pidx:
            raise InvalidCallback("Missing Khalti pidx")
        gateway = KhaltiGateway()
        lookup = gateway.lookup(pidx)
        verify_khalti_lookup(lookup, pidx, order)
        return _confirm(order)
    except PaymentError as e:
        logger.warning(f"Khalti callback rejected for order {order.id}: {e}")
        return _fail(order, order_id, e.reason)
    except Exception as e:
        logger.exception(f"Error processing Khalti callback for order {order.id}: {e}")
        return _fail(order, order_id, 'khalti_processing_failed')
