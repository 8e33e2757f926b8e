"""
Payment exceptions.

Each carries the reason code used in the checkout failure redirect, so the
storefront can show an accurate message.
"""


class PaymentError(Exception):
    reason = 'payment_failed'

    def __init__(self, message: str = '', reason: str = None):
        if reason:
            self.reason = reason
        super().__init__(message or self.reason)


class GatewayConfigError(PaymentError):
    """Provider credentials are missing; raised before any signing or network call."""
    reason = 'server_config'


class GatewayInitiationFailed(PaymentError):
    """Provider rejected or could not be reached during payment initiation."""
    reason = 'initiation_failed'


class InvalidCallback(PaymentError):
    reason = 'invalid_callback'


class CallbackVerificationFailed(PaymentError):
    pass


class PaymentNotCompleted(PaymentError):
    pass


class CallbackLookupFailed(PaymentError):
    pass


class PaymentNotAllowed(PaymentError):
    """The order cannot be paid for (unknown, not pending, wrong method)."""
    reason = 'order_not_payable'
