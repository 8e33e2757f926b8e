"""
Payment gateway adapters.

EsewaGateway builds a signed form payload the browser POSTs to eSewa; it
never touches the network. KhaltiGateway talks to Khalti server-to-server
for initiation and lookup. Neither may be called while a database
transaction is open.
"""
import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional
from urllib.parse import urlencode

import httpx
from django.conf import settings

from orders.pricing import quantize_money
from .exceptions import CallbackLookupFailed, GatewayConfigError, GatewayInitiationFailed

logger = logging.getLogger(__name__)

ESEWA_SIGNED_FIELDS = ('total_amount', 'transaction_uuid', 'product_code')


def esewa_signing_string(fields: Iterable[str], values: Dict[str, str]) -> str:
    """'total_amount=100.00,transaction_uuid=...,product_code=...'"""
    return ','.join(f"{field}={values.get(field, '')}" for field in fields)


def hmac_sha256_base64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def order_short_code(order_id) -> str:
    return str(order_id).replace('-', '')[-8:].upper()


def callback_url(provider: str, order_id) -> str:
    return f"{settings.SITE_BASE_URL}/api/payments/{provider}/callback/?{urlencode({'orderId': str(order_id)})}"


def failure_url(reason: str) -> str:
    return f"{settings.CHECKOUT_FAILURE_URL}?{urlencode({'reason': reason})}"


def success_url(order_id) -> str:
    return f"{settings.CHECKOUT_SUCCESS_URL}?{urlencode({'orderId': str(order_id)})}"


@dataclass
class EsewaFormPayload:
    endpoint: str
    fields: Dict[str, str]

    @property
    def transaction_uuid(self) -> str:
        return self.fields['transaction_uuid']


@dataclass
class KhaltiPayment:
    payment_url: str
    pidx: str


class EsewaGateway:
    """eSewa ePay v2 redirect-form adapter."""

    def __init__(self, secret_key: Optional[str] = None, product_code: Optional[str] = None,
                 form_url: Optional[str] = None):
        self.secret_key = settings.ESEWA_SECRET_KEY if secret_key is None else secret_key
        self.product_code = product_code or settings.ESEWA_PRODUCT_CODE
        self.form_url = form_url or settings.ESEWA_FORM_URL

    def ensure_configured(self) -> None:
        if not self.secret_key:
            logger.error("ESEWA_SECRET_KEY is not configured")
            raise GatewayConfigError("eSewa secret key is not configured.")

    def sign(self, fields: Iterable[str], values: Dict[str, str]) -> str:
        self.ensure_configured()
        return hmac_sha256_base64(self.secret_key, esewa_signing_string(fields, values))

    def build_payload(self, order_id, amount: Decimal, now_ms: Optional[int] = None) -> EsewaFormPayload:
        """
        Build the signed form fields for an order.

        Args:
            order_id: Order being paid for
            amount: Amount due in NPR (VAT included)
            now_ms: Millisecond timestamp for the transaction uuid

        Raises:
            GatewayConfigError: If the secret key is missing
        """
        self.ensure_configured()

        if now_ms is None:
            now_ms = int(time.time() * 1000)
        transaction_uuid = f"{settings.INVOICE_PREFIX}-{order_short_code(order_id)}-{now_ms}"
        total_amount = f"{quantize_money(amount):.2f}"

        fields = {
            'amount': total_amount,
            'tax_amount': '0',
            'total_amount': total_amount,
            'transaction_uuid': transaction_uuid,
            'product_code': self.product_code,
            'product_service_charge': '0',
            'product_delivery_charge': '0',
            'success_url': callback_url('esewa', order_id),
            'failure_url': failure_url('esewa_payment_failed'),
            'signed_field_names': ','.join(ESEWA_SIGNED_FIELDS),
        }
        fields['signature'] = self.sign(ESEWA_SIGNED_FIELDS, fields)

        logger.info(f"Built eSewa payload {transaction_uuid} for Rs. {total_amount}")
        return EsewaFormPayload(endpoint=self.form_url, fields=fields)


class KhaltiGateway:
    """Khalti ePayment v2 server-initiated adapter."""

    def __init__(self, secret_key: Optional[str] = None, api_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.secret_key = settings.KHALTI_SECRET_KEY if secret_key is None else secret_key
        self.api_url = (api_url or settings.KHALTI_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.PAYMENT_GATEWAY_TIMEOUT

    def ensure_configured(self) -> None:
        if not self.secret_key:
            logger.error("KHALTI_SECRET_KEY is not configured")
            raise GatewayConfigError("Khalti secret key is not configured.")

    def _post(self, path: str, body: Dict) -> httpx.Response:
        return httpx.post(
            f"{self.api_url}{path}",
            json=body,
            headers={
                'Authorization': f"Key {self.secret_key}",
                'Content-Type': 'application/json',
            },
            timeout=self.timeout,
        )

    def initiate(self, order_id, amount_paisa: int, customer: Dict[str, str]) -> KhaltiPayment:
        """
        Register a payment with Khalti and get the hosted payment page.

        Args:
            order_id: Order being paid for
            amount_paisa: Amount due in paisa (1 NPR = 100 paisa)
            customer: Dict with name, phone and optional email

        Raises:
            GatewayConfigError: If the secret key is missing
            GatewayInitiationFailed: On network errors or a non-2xx response
        """
        self.ensure_configured()

        body = {
            'return_url': callback_url('khalti', order_id),
            'website_url': settings.SITE_BASE_URL,
            'amount': int(round(amount_paisa)),
            'purchase_order_id': str(order_id),
            'purchase_order_name': f"{settings.STORE_NAME} Order #{order_short_code(order_id)}",
            'customer_info': {
                'name': customer.get('name', ''),
                'email': customer.get('email') or settings.DEFAULT_FROM_EMAIL,
                'phone': customer.get('phone', ''),
            },
        }

        try:
            response = self._post('/epayment/initiate/', body)
        except httpx.HTTPError as e:
            logger.error(f"Khalti initiation network error for order {order_id}: {e}")
            raise GatewayInitiationFailed("Network error reaching Khalti.")

        if not response.is_success:
            logger.error(
                f"Khalti initiation failed for order {order_id}: "
                f"{response.status_code} {response.text}"
            )
            raise GatewayInitiationFailed("Khalti payment initiation failed. Please try again.")

        data = response.json()
        if not data.get('payment_url') or not data.get('pidx'):
            logger.error(f"Khalti initiation response missing fields for order {order_id}: {data}")
            raise GatewayInitiationFailed("Khalti payment initiation failed. Please try again.")

        logger.info(f"Khalti payment {data['pidx']} initiated for order {order_id}")
        return KhaltiPayment(payment_url=data['payment_url'], pidx=data['pidx'])

    def lookup(self, pidx: str) -> Dict:
        """
        Ask Khalti for the authoritative state of a payment.

        Raises:
            GatewayConfigError: If the secret key is missing
            CallbackLookupFailed: On network errors or a non-2xx response
        """
        self.ensure_configured()

        try:
            response = self._post('/epayment/lookup/', {'pidx': pidx})
        except httpx.HTTPError as e:
            logger.error(f"Khalti lookup network error for {pidx}: {e}")
            raise CallbackLookupFailed("Network error reaching Khalti.", reason='khalti_lookup_failed')

        if not response.is_success:
            logger.error(f"Khalti lookup failed for {pidx}: {response.status_code} {response.text}")
            raise CallbackLookupFailed(
                f"Khalti lookup returned {response.status_code}", reason='khalti_lookup_failed'
            )

        try:
            return response.json()
        except ValueError:
            raise CallbackLookupFailed("Khalti lookup returned invalid JSON", reason='khalti_lookup_failed')
