"""
Order-domain exceptions.

Checkout failures derive from CheckoutError so the orchestrator can turn
them into a failed CheckoutResult at the transaction boundary.
"""
from inventory.ledger import InsufficientStock  # noqa: F401


class OrderValidationError(Exception):
    """Raised when checkout input is malformed; no transaction is started."""
    pass


class CheckoutError(Exception):
    """Base class for failures inside the checkout transaction."""
    code = 'checkout_failed'


class VariantNotFound(CheckoutError):
    code = 'variant_not_found'

    def __init__(self, variant_id):
        self.variant_id = variant_id
        super().__init__(f"Variant not found: {variant_id}")


class TransactionConflict(CheckoutError):
    """Invoice number collided with a concurrent checkout."""
    code = 'transaction_conflict'


class OrderNotFound(Exception):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidStatusTransition(Exception):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")
