"""
Order status state machine.

Forward progression is one step at a time:
    PENDING -> CONFIRMED -> PACKED -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED
Any non-terminal state may move to CANCELED; DELIVERED may move to RETURNED.

Side effects:
    - RETURNED restocks every line item.
    - CANCELED before the parcel leaves (PENDING/CONFIRMED/PACKED) releases
      the reserved stock and cancels an unpaid invoice.
    - CONFIRMED/SHIPPED/DELIVERED queue a customer notification after commit.

The status write is a compare-and-set on the previous status, so a retried
or concurrent transition applies its side effects at most once.
"""
import logging
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from core.roles import Role, ORDER_OPERATORS, PAYMENT_COLLECTORS, require_role
from inventory import ledger
from .exceptions import InvalidStatusTransition, OrderNotFound, OrderValidationError
from .models import Order, Invoice

logger = logging.getLogger(__name__)

Status = Order.Status

FORWARD_FLOW = [
    Status.PENDING,
    Status.CONFIRMED,
    Status.PACKED,
    Status.SHIPPED,
    Status.OUT_FOR_DELIVERY,
    Status.DELIVERED,
]

TERMINAL_STATES = {Status.DELIVERED, Status.CANCELED, Status.RETURNED}

RESTOCK_ON_CANCEL_FROM = {Status.PENDING, Status.CONFIRMED, Status.PACKED}

NOTIFY_ON = {Status.CONFIRMED, Status.SHIPPED, Status.DELIVERED}


def _build_transitions():
    transitions = {status: set() for status in Status}
    for current, following in zip(FORWARD_FLOW, FORWARD_FLOW[1:]):
        transitions[current].add(following)
    for status in Status:
        if status not in TERMINAL_STATES:
            transitions[status].add(Status.CANCELED)
    transitions[Status.DELIVERED].add(Status.RETURNED)
    return transitions


ALLOWED_TRANSITIONS = _build_transitions()


def can_transition(current: str, new: str) -> bool:
    return Status(new) in ALLOWED_TRANSITIONS[Status(current)]


def _get_order(order_id) -> Order:
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, ValueError, DjangoValidationError):
        # Malformed UUIDs raise ValidationError from the UUID field
        raise OrderNotFound(order_id)


def _restock_items(order: Order) -> None:
    for variant_id, quantity in order.items.values_list('variant_id', 'quantity'):
        ledger.restock(variant_id, quantity)


def queue_notification(order_id, status: str) -> None:
    """Fire-and-forget: a broken queue must not undo the transition."""
    try:
        from .tasks import notify_order_status
        notify_order_status.delay(str(order_id), status)
        logger.info(f"Queued {status} notification for order {order_id}")
    except Exception as e:
        logger.error(f"Failed to queue {status} notification for order {order_id}: {e}")


def transition_order(order_id, new_status: str, expected_status: Optional[str] = None) -> Order:
    """
    Move an order to new_status and apply the side effects of entering it.

    Requesting the status the order already has is a no-op. When
    expected_status is given, the transition only happens from that status;
    otherwise InvalidStatusTransition is raised.

    Raises:
        OrderNotFound: If the order does not exist
        InvalidStatusTransition: If the move is not allowed
    """
    new_status = Status(new_status)

    with transaction.atomic():
        order = _get_order(order_id)
        current = Status(order.status)

        if current == new_status:
            logger.info(f"Order {order.id} already {new_status}; nothing to do")
            return order

        if expected_status is not None and current != Status(expected_status):
            raise InvalidStatusTransition(current, new_status)

        if not can_transition(current, new_status):
            raise InvalidStatusTransition(current, new_status)

        updated = Order.objects.filter(pk=order.pk, status=current).update(
            status=new_status,
            updated_at=timezone.now()
        )
        if updated == 0:
            # Lost a race with another transition; report what it left behind
            order.refresh_from_db()
            if order.status == new_status:
                return order
            raise InvalidStatusTransition(order.status, new_status)

        if new_status == Status.RETURNED:
            _restock_items(order)
        elif new_status == Status.CANCELED:
            if current in RESTOCK_ON_CANCEL_FROM:
                _restock_items(order)
            Invoice.objects.filter(order=order, status=Invoice.Status.UNPAID).update(
                status=Invoice.Status.CANCELLED,
                updated_at=timezone.now()
            )

        if new_status in NOTIFY_ON:
            transaction.on_commit(
                lambda: queue_notification(order.pk, new_status.value)
            )

        order.refresh_from_db()

    logger.info(f"Order {order.id}: {current} -> {new_status}")
    return order


def update_order_status(order_id, new_status: str, acting_role: Optional[Role]) -> Order:
    """Operator entry point for status changes."""
    require_role(acting_role, ORDER_OPERATORS)
    if new_status not in Status.values:
        raise OrderValidationError(f"Unknown order status: {new_status}")
    return transition_order(order_id, new_status)


def capture_invoice_payment(order_id, acting_role: Optional[Role] = None, *, trusted: bool = False) -> Invoice:
    """
    Record full payment on the order's invoice.

    Operators call this when cash is collected (COD); the payment
    reconciler calls it with trusted=True after verifying the provider.
    Capturing an already-paid invoice changes nothing.
    """
    if not trusted:
        require_role(acting_role, PAYMENT_COLLECTORS)

    with transaction.atomic():
        try:
            invoice = Invoice.objects.select_for_update().get(order_id=order_id)
        except (Invoice.DoesNotExist, ValueError, DjangoValidationError):
            raise OrderNotFound(order_id)

        if invoice.status == Invoice.Status.PAID:
            return invoice
        if invoice.status == Invoice.Status.CANCELLED:
            raise InvalidStatusTransition(invoice.status, Invoice.Status.PAID)

        invoice.status = Invoice.Status.PAID
        invoice.amount_paid = invoice.amount_due
        invoice.paid_at = timezone.now()
        invoice.save(update_fields=['status', 'amount_paid', 'paid_at', 'updated_at'])

    logger.info(f"Invoice {invoice.invoice_number} captured: Rs. {invoice.amount_paid}")
    return invoice


def correct_payment_method(order_id, payment_method: str, acting_role: Optional[Role]) -> Order:
    """Fix the payment method of an order that has not been confirmed yet."""
    require_role(acting_role, ORDER_OPERATORS)
    payment_method = (payment_method or '').strip().upper()
    if not payment_method:
        raise OrderValidationError("Payment method is required")

    order = _get_order(order_id)
    updated = Order.objects.filter(pk=order.pk, status=Status.PENDING).update(
        payment_method=payment_method,
        payment_reference='',
        updated_at=timezone.now()
    )
    if updated == 0:
        order.refresh_from_db()
        raise OrderValidationError(
            f"Payment method can only be corrected on a pending order (order is {order.status})"
        )

    logger.info(f"Order {order_id}: payment method corrected to {payment_method}")
    return _get_order(order_id)
