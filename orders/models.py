"""
Order Models - Order, OrderItem and Invoice entities with status tracking.

Order Status Flow:
    PENDING -> CONFIRMED -> PACKED -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED
    any non-terminal state -> CANCELED
    DELIVERED -> RETURNED
"""
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator

from inventory.models import ProductVariant


class Order(models.Model):
    """
    Order entity representing one checkout attempt.

    total_amount is the merchandise subtotal before VAT; the invoice carries
    the amount due (total_amount + tax_amount). Orders are never deleted,
    only moved through their lifecycle.
    """

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        CONFIRMED = 'CONFIRMED', 'Confirmed'
        PACKED = 'PACKED', 'Packed'
        SHIPPED = 'SHIPPED', 'Shipped'
        OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY', 'Out for delivery'
        DELIVERED = 'DELIVERED', 'Delivered'
        CANCELED = 'CANCELED', 'Canceled'
        RETURNED = 'RETURNED', 'Returned'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
        help_text="Owning account; empty for guest checkout"
    )
    customer_name = models.CharField(max_length=200)
    contact_phone = models.CharField(max_length=32)
    shipping_address = models.TextField()
    is_international = models.BooleanField(default=False)
    payment_method = models.CharField(
        max_length=50,
        help_text="Payment channel, e.g. COD, BANK, CASH, ESEWA, KHALTI"
    )
    payment_reference = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Gateway transaction id issued at payment initiation"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Merchandise subtotal before VAT"
    )
    tax_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="VAT charged on the subtotal"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
        ]

    def __str__(self):
        return f"Order #{self.short_code} - {self.customer_name} ({self.status})"

    @property
    def short_code(self) -> str:
        return self.id.hex[-8:].upper()

    @property
    def grand_total(self) -> Decimal:
        return self.total_amount + self.tax_amount

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING

    @property
    def is_confirmed(self) -> bool:
        return self.status == self.Status.CONFIRMED

    @property
    def item_count(self) -> int:
        return self.items.count()


class OrderItem(models.Model):
    """
    OrderItem entity representing a variant in an order.

    Stores the price at time of order to preserve historical pricing.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.PROTECT,  # Prevent deletion of variants with orders
        related_name='order_items',
        help_text="Ordered variant"
    )
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    price_at_purchase = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.variant.sku} @ Rs. {self.price_at_purchase}"

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.quantity * self.price_at_purchase


class Invoice(models.Model):
    """
    Billing record, one per Order, created in the checkout transaction.

    invoice_number is unique; the constraint is what rejects the loser of two
    concurrent checkouts that computed the same sequence number.
    """

    class Status(models.TextChoices):
        UNPAID = 'UNPAID', 'Unpaid'
        PAID = 'PAID', 'Paid'
        OVERDUE = 'OVERDUE', 'Overdue'
        CANCELLED = 'CANCELLED', 'Cancelled'

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name='invoice'
    )
    invoice_number = models.CharField(max_length=32, unique=True)
    amount_due = models.DecimalField(max_digits=12, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.UNPAID,
        db_index=True
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Invoice'
        verbose_name_plural = 'Invoices'
        ordering = ['-created_at']

    def __str__(self):
        return f"Invoice {self.invoice_number} ({self.status})"

    @property
    def is_paid(self) -> bool:
        return self.status == self.Status.PAID
