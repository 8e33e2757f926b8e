"""
Order Service Layer - Atomic checkout logic.

create_order runs one transaction:
1. Bulk-fetch every referenced variant with its product
2. Fail fast on unknown variants or short stock
3. Reserve stock through the ledger (conditional UPDATE per line)
4. Price the lines with snapshotted unit prices
5. Insert Order + OrderItems
6. Issue the next invoice number and insert the Invoice
Any failure rolls all of it back; callers get a CheckoutResult instead of
an exception.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction, IntegrityError, DatabaseError
from django.db.models import DecimalField, F, Sum
from django.utils import timezone

from core.roles import Role, ACCOUNTS_VIEWERS, PAYMENT_COLLECTORS, require_role
from inventory import ledger
from inventory.models import ProductVariant
from .exceptions import (
    CheckoutError,
    InsufficientStock,
    OrderNotFound,
    OrderValidationError,
    TransactionConflict,
    VariantNotFound,
)
from .invoicing import next_invoice_number
from .models import Order, OrderItem, Invoice
from .pricing import compute_totals, quantize_money
from .state_machine import NOTIFY_ON, queue_notification

logger = logging.getLogger(__name__)

INVOICE_NUMBER_ATTEMPTS = 2

CUSTOMER_FIELDS = ('customer_name', 'contact_phone', 'shipping_address')


@dataclass
class CheckoutResult:
    success: bool
    order: Optional[Order] = None
    invoice: Optional[Invoice] = None
    error: Optional[Exception] = None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    @property
    def error_code(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, InsufficientStock):
            return 'insufficient_stock'
        return getattr(self.error, 'code', 'checkout_failed')


def validate_order_items(items: List[Dict]) -> None:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'variant_id' and 'quantity'

    Raises:
        OrderValidationError: If validation fails
    """
    if not items:
        raise OrderValidationError("Order must contain at least one item")

    seen_variants = set()
    for idx, item in enumerate(items):
        if 'variant_id' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'variant_id'")
        if 'quantity' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'quantity'")

        variant_id = item['variant_id']
        quantity = item['quantity']

        if isinstance(variant_id, bool) or not isinstance(variant_id, int):
            raise OrderValidationError(f"Item {idx}: variant_id must be an integer")

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise OrderValidationError(f"Item {idx}: quantity must be a positive integer")

        if variant_id in seen_variants:
            raise OrderValidationError(f"Item {idx}: duplicate variant_id {variant_id}")
        seen_variants.add(variant_id)


def validate_customer(customer: Dict) -> None:
    for field in CUSTOMER_FIELDS:
        if not str(customer.get(field) or '').strip():
            raise OrderValidationError(f"'{field}' is required")


def initial_status_for(payment_method: str, acting_role: Optional[Role] = None) -> str:
    """
    Counter-settled methods (CASH by default) are confirmed on the spot, but
    only for a sale rung up by staff who can collect payment. Every other
    checkout waits: COD/BANK/CASH for an operator, gateways for their
    payment callback.
    """
    if acting_role not in PAYMENT_COLLECTORS:
        return Order.Status.PENDING
    if payment_method in getattr(settings, 'IMMEDIATE_SETTLEMENT_METHODS', ['CASH']):
        return Order.Status.CONFIRMED
    return Order.Status.PENDING


def _place_order(customer: Dict, payment_method: str, items: List[Dict], user, acting_role) -> tuple:
    with transaction.atomic():
        variant_ids = [item['variant_id'] for item in items]

        variants = {
            v.id: v for v in ProductVariant.objects.select_related('product').filter(
                id__in=variant_ids,
                product__is_active=True
            )
        }

        # FAIL-FAST: check every line before touching stock
        for item in items:
            variant = variants.get(item['variant_id'])
            if variant is None:
                raise VariantNotFound(item['variant_id'])
            if variant.stock_count < item['quantity']:
                raise InsufficientStock(variant.sku, item['quantity'], variant.stock_count)

        # Authoritative check: the conditional UPDATE refuses to go negative
        # even if another checkout took the stock after our read.
        for item in sorted(items, key=lambda i: i['variant_id']):
            variant = variants[item['variant_id']]
            ledger.reserve(variant.id, item['quantity'], sku=variant.sku)

        lines = [
            (variants[item['variant_id']].product.base_price, item['quantity'])
            for item in items
        ]
        totals = compute_totals(lines)
        total_amount = quantize_money(totals.subtotal)
        tax_amount = quantize_money(totals.tax)

        status = initial_status_for(payment_method, acting_role)

        order = Order.objects.create(
            user=user if user is not None and getattr(user, 'is_authenticated', False) else None,
            customer_name=customer['customer_name'].strip(),
            contact_phone=customer['contact_phone'].strip(),
            shipping_address=customer['shipping_address'].strip(),
            is_international=bool(customer.get('is_international', False)),
            payment_method=payment_method,
            status=status,
            total_amount=total_amount,
            tax_amount=tax_amount,
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                variant_id=item['variant_id'],
                quantity=item['quantity'],
                price_at_purchase=variants[item['variant_id']].product.base_price,
            )
            for item in items
        ])

        amount_due = total_amount + tax_amount
        settled = status == Order.Status.CONFIRMED
        invoice_number = next_invoice_number()
        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    order=order,
                    invoice_number=invoice_number,
                    amount_due=amount_due,
                    tax_amount=tax_amount,
                    amount_paid=amount_due if settled else Decimal('0.00'),
                    status=Invoice.Status.PAID if settled else Invoice.Status.UNPAID,
                    paid_at=timezone.now() if settled else None,
                )
        except IntegrityError:
            raise TransactionConflict(f"Invoice number {invoice_number} already issued")

        if status in NOTIFY_ON:
            transaction.on_commit(lambda: queue_notification(order.pk, str(status)))

        return order, invoice


def create_order(
    customer: Dict,
    payment_method: str,
    items: List[Dict],
    user=None,
    acting_role: Optional[Role] = None,
) -> CheckoutResult:
    """
    Create an order, its line items and its invoice in one transaction.

    Args:
        customer: Dict with customer_name, contact_phone, shipping_address
            and optional is_international
        payment_method: Payment channel (COD, BANK, CASH, ESEWA, KHALTI, ...)
        items: List of dicts with 'variant_id' and 'quantity'
        user: Owning user, or None for guest checkout
        acting_role: Role of the caller; only payment collectors settle
            counter methods at checkout

    Returns:
        CheckoutResult; on failure no stock, order or invoice change persists

    Raises:
        OrderValidationError: If the input is malformed
    """
    validate_order_items(items)
    validate_customer(customer)
    payment_method = (payment_method or '').strip().upper()
    if not payment_method:
        raise OrderValidationError("'payment_method' is required")

    for attempt in range(1, INVOICE_NUMBER_ATTEMPTS + 1):
        try:
            order, invoice = _place_order(customer, payment_method, items, user, acting_role)
        except TransactionConflict as e:
            if attempt < INVOICE_NUMBER_ATTEMPTS:
                logger.warning(f"{e}; retrying checkout (attempt {attempt})")
                continue
            logger.error(f"Checkout failed after {attempt} attempts: {e}")
            return CheckoutResult(success=False, error=e)
        except (CheckoutError, InsufficientStock) as e:
            logger.warning(f"Checkout rejected: {e}")
            return CheckoutResult(success=False, error=e)
        except DatabaseError as e:
            logger.exception(f"Checkout transaction failed: {e}")
            return CheckoutResult(success=False, error=CheckoutError("Checkout transaction failed"))

        logger.info(
            f"Order {order.id} placed ({order.status}): {len(items)} items, "
            f"subtotal Rs. {order.total_amount}, VAT Rs. {order.tax_amount}, "
            f"invoice {invoice.invoice_number}"
        )
        return CheckoutResult(success=True, order=order, invoice=invoice)


def get_order(order_id) -> Order:
    try:
        return Order.objects.select_related('invoice').prefetch_related(
            'items__variant__product'
        ).get(pk=order_id)
    except (Order.DoesNotExist, ValueError, DjangoValidationError):
        raise OrderNotFound(order_id)


def get_order_summary(order_id) -> Dict:
    """
    Get detailed order summary with optimized queries.

    Uses select_related and prefetch_related to minimize database hits.
    """
    order = get_order(order_id)
    invoice = getattr(order, 'invoice', None)

    return {
        'id': str(order.id),
        'customer_name': order.customer_name,
        'status': order.status,
        'payment_method': order.payment_method,
        'total_amount': str(order.total_amount),
        'tax_amount': str(order.tax_amount),
        'grand_total': str(order.grand_total),
        'item_count': len(order.items.all()),
        'items': [
            {
                'variant_id': item.variant.id,
                'sku': item.variant.sku,
                'product_title': item.variant.product.title,
                'quantity': item.quantity,
                'price_at_purchase': str(item.price_at_purchase),
                'subtotal': str(item.subtotal)
            }
            for item in order.items.all()
        ],
        'invoice': {
            'invoice_number': invoice.invoice_number,
            'status': invoice.status,
            'amount_due': str(invoice.amount_due),
            'amount_paid': str(invoice.amount_paid),
        } if invoice else None,
        'created_at': order.created_at.isoformat(),
        'updated_at': order.updated_at.isoformat()
    }


def get_sales_analytics(acting_role: Optional[Role], now: Optional[datetime] = None) -> Dict:
    """
    Month-to-date revenue, cost of goods and gross profit.

    Canceled and returned orders are excluded. Revenue is the pre-VAT
    merchandise total.
    """
    require_role(acting_role, ACCOUNTS_VIEWERS)

    now = now or timezone.now()
    start_of_month = timezone.localtime(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    orders = Order.objects.filter(created_at__gte=start_of_month).exclude(
        status__in=[Order.Status.CANCELED, Order.Status.RETURNED]
    )

    revenue = orders.aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')
    cogs = OrderItem.objects.filter(order__in=orders).aggregate(
        total=Sum(
            F('quantity') * F('variant__product__cogs'),
            output_field=DecimalField(max_digits=14, decimal_places=2)
        )
    )['total'] or Decimal('0.00')

    revenue = quantize_money(revenue)
    cogs = quantize_money(cogs)

    return {
        'revenue': str(revenue),
        'cogs': str(cogs),
        'gross_profit': str(revenue - cogs),
        'order_count': orders.count(),
    }
