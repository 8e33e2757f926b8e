"""
Stock Ledger - atomic stock counters for product variants.

Every mutation is a single UPDATE with an F() expression so the database,
not application code, serializes concurrent checkouts. reserve() carries
its precondition in the WHERE clause; two requests racing for the last unit
cannot both match it.
"""
import logging
from typing import Optional

from django.db.models import F
from django.utils import timezone

from core.roles import Role, INVENTORY_MANAGERS, require_role
from .models import ProductVariant

logger = logging.getLogger(__name__)


class InsufficientStock(Exception):
    """Raised when a variant cannot cover the requested quantity."""
    def __init__(self, sku: str, requested: int = None, available: int = None):
        self.sku = sku
        self.requested = requested
        self.available = available
        if requested is not None and available is not None:
            message = (
                f"Insufficient stock for SKU: {sku} "
                f"(requested {requested}, available {available})"
            )
        else:
            message = f"Insufficient stock for SKU: {sku}"
        super().__init__(message)


class StockUpdateError(Exception):
    """Raised when a manual stock correction is invalid."""
    pass


def reserve(variant_id: int, quantity: int, sku: Optional[str] = None) -> None:
    """
    Decrement stock by quantity if, and only if, enough is available.

    Must run inside the checkout transaction so a later failure rolls the
    decrement back.

    Raises:
        InsufficientStock: If fewer than quantity units remain
    """
    updated = ProductVariant.objects.filter(
        pk=variant_id,
        stock_count__gte=quantity
    ).update(
        stock_count=F('stock_count') - quantity,
        updated_at=timezone.now()
    )
    if updated == 0:
        if sku is None:
            sku = (
                ProductVariant.objects.filter(pk=variant_id)
                .values_list('sku', flat=True)
                .first()
            ) or str(variant_id)
        logger.warning(f"Reservation of {quantity} x {sku} refused: insufficient stock")
        raise InsufficientStock(sku)

    logger.debug(f"Reserved {quantity} of variant {variant_id}")


def restock(variant_id: int, quantity: int) -> None:
    """Return quantity units to a variant's stock."""
    ProductVariant.objects.filter(pk=variant_id).update(
        stock_count=F('stock_count') + quantity,
        updated_at=timezone.now()
    )
    logger.info(f"Restocked {quantity} of variant {variant_id}")


def set_stock(variant_id: int, new_count: int, acting_role: Optional[Role]) -> ProductVariant:
    """
    Overwrite a variant's stock count (manual stock take).

    Raises:
        AccessDenied: If the role is not an inventory manager
        StockUpdateError: If the count is negative
        ProductVariant.DoesNotExist: If the variant is unknown
    """
    require_role(acting_role, INVENTORY_MANAGERS)
    if new_count < 0:
        raise StockUpdateError("Stock count cannot be negative")

    variant = ProductVariant.objects.get(pk=variant_id)
    variant.stock_count = new_count
    variant.save(update_fields=['stock_count', 'updated_at'])
    logger.info(f"Stock for {variant.sku} set to {new_count}")
    return variant


def low_stock_variants():
    """Variants at or below their low stock threshold, lowest first."""
    return (
        ProductVariant.objects.select_related('product')
        .filter(stock_count__lte=F('low_stock_threshold'), product__is_active=True)
        .order_by('stock_count', 'sku')
    )
