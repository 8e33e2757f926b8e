"""
Tests for payment initiation and callback reconciliation.

Test Cases:
1. eSewa payload is signed over total_amount, transaction_uuid, product_code
2. Khalti initiation and lookup go through httpx with the secret key
3. A verified callback confirms the order and captures the invoice
4. Tampered, incomplete or mismatched callbacks cancel the order
5. Replayed callbacks change nothing
6. Callback endpoints redirect to the storefront success or failure page
"""
import base64
import hashlib
import hmac
import json
import re
from decimal import Decimal
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
from django.conf import settings
from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.roles import Role
from inventory.models import Product, ProductVariant
from orders.models import Invoice, Order
from orders.services import create_order
from orders.state_machine import correct_payment_method
from payments.exceptions import (
    CallbackLookupFailed,
    GatewayConfigError,
    GatewayInitiationFailed,
    PaymentNotAllowed,
)
from payments.gateways import EsewaGateway, KhaltiGateway
from payments.reconciler import khalti_status_reason, reconcile_esewa, reconcile_khalti
from payments.services import start_payment

CUSTOMER = {
    'customer_name': 'Anita Gurung',
    'contact_phone': '9811111111',
    'shipping_address': 'Lakeside, Pokhara',
}


def sign(message):
    digest = hmac.new(settings.ESEWA_SECRET_KEY.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def esewa_data(order, status='COMPLETE', total_amount=None, signature=None, **overrides):
    """Encode a callback payload the way eSewa appends it to the success URL."""
    payload = {
        'transaction_code': '000AWEO',
        'status': status,
        'total_amount': total_amount or f"{order.invoice.amount_due:,.1f}",
        'transaction_uuid': order.payment_reference,
        'product_code': settings.ESEWA_PRODUCT_CODE,
        'signed_field_names': 'transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names',
    }
    payload.update(overrides)
    fields = payload['signed_field_names'].split(',')
    payload['signature'] = signature or sign(','.join(f"{f}={payload[f]}" for f in fields))
    return base64.b64encode(json.dumps(payload).encode()).decode()


def khalti_response(status_code=200, **body):
    return httpx.Response(status_code, json=body)


class PaymentTestMixin:

    def setUp(self):
        product = Product.objects.create(
            title='Festive Frock', category=Product.Category.TODDLER, base_price=Decimal('1000.00')
        )
        self.variant = ProductVariant.objects.create(
            product=product, size='2-3Y', color='Peach', sku='TT-FROCK-23-PCH', stock_count=5
        )

    def place(self, method, quantity=2):
        result = create_order(CUSTOMER, method, [{'variant_id': self.variant.id, 'quantity': quantity}])
        self.assertTrue(result.success)
        return result.order

    def reload(self, order):
        return Order.objects.select_related('invoice').get(pk=order.pk)

    def stock(self):
        self.variant.refresh_from_db()
        return self.variant.stock_count


class EsewaGatewayTestCase(TestCase):

    def test_payload_is_signed(self):
        order_id = '3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6'

        payload = EsewaGateway().build_payload(order_id, Decimal('4294'), now_ms=1767225600000)
        fields = payload.fields

        self.assertEqual(fields['transaction_uuid'], 'TT-C3D4E5F6-1767225600000')
        self.assertEqual(fields['total_amount'], '4294.00')
        self.assertEqual(fields['amount'], '4294.00')
        self.assertEqual(fields['tax_amount'], '0')
        self.assertEqual(fields['signed_field_names'], 'total_amount,transaction_uuid,product_code')
        self.assertEqual(
            fields['signature'],
            sign('total_amount=4294.00,transaction_uuid=TT-C3D4E5F6-1767225600000,product_code=EPAYTEST')
        )
        self.assertEqual(payload.endpoint, settings.ESEWA_FORM_URL)
        self.assertIn(f'orderId={order_id}', fields['success_url'])
        self.assertIn('/api/payments/esewa/callback/', fields['success_url'])

    def test_transaction_uuid_format(self):
        payload = EsewaGateway().build_payload('3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6', Decimal('10'))

        self.assertRegex(payload.transaction_uuid, re.compile(r'^TT-[0-9A-F]{8}-\d{13}$'))

    def test_missing_secret_fails_before_signing(self):
        with self.assertRaises(GatewayConfigError):
            EsewaGateway(secret_key='').build_payload('3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6', Decimal('10'))


class KhaltiGatewayTestCase(TestCase):

    @patch('payments.gateways.httpx.post')
    def test_initiate(self, mock_post):
        mock_post.return_value = khalti_response(
            payment_url='https://test-pay.khalti.com/?pidx=HT6o6PEZRWFJ5ygavzHWd5', pidx='HT6o6PEZRWFJ5ygavzHWd5'
        )

        payment = KhaltiGateway().initiate(
            '3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6', 429400, {'name': 'Anita', 'phone': '9811111111'}
        )

        self.assertEqual(payment.pidx, 'HT6o6PEZRWFJ5ygavzHWd5')
        args, kwargs = mock_post.call_args
        self.assertTrue(args[0].endswith('/epayment/initiate/'))
        self.assertEqual(kwargs['headers']['Authorization'], 'Key test-khalti-secret')
        self.assertEqual(kwargs['json']['amount'], 429400)
        self.assertEqual(kwargs['json']['purchase_order_name'], 'Tiny Tales Order #C3D4E5F6')
        self.assertEqual(kwargs['json']['customer_info']['email'], settings.DEFAULT_FROM_EMAIL)
        self.assertEqual(kwargs['timeout'], settings.PAYMENT_GATEWAY_TIMEOUT)

    @patch('payments.gateways.httpx.post')
    def test_initiate_rejected(self, mock_post):
        mock_post.return_value = khalti_response(400, detail='Invalid token.')

        with self.assertRaises(GatewayInitiationFailed):
            KhaltiGateway().initiate('3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6', 1000, {})

    @patch('payments.gateways.httpx.post', side_effect=httpx.ConnectTimeout('timed out'))
    def test_initiate_network_error(self, mock_post):
        with self.assertRaises(GatewayInitiationFailed):
            KhaltiGateway().initiate('3f2c9a1e-7b4d-4c8e-9f10-a1b2c3d4e5f6', 1000, {})

    @patch('payments.gateways.httpx.post')
    def test_missing_secret_fails_before_network(self, mock_post):
        with self.assertRaises(GatewayConfigError):
            KhaltiGateway(secret_key='').lookup('abc')

        mock_post.assert_not_called()

    @patch('payments.gateways.httpx.post')
    def test_lookup_error(self, mock_post):
        mock_post.return_value = khalti_response(503, detail='down')

        with self.assertRaises(CallbackLookupFailed) as context:
            KhaltiGateway().lookup('abc')

        self.assertEqual(context.exception.reason, 'khalti_lookup_failed')

    def test_status_reason(self):
        self.assertEqual(khalti_status_reason('User canceled'), 'khalti_user_canceled')
        self.assertEqual(khalti_status_reason('Expired'), 'khalti_expired')
        self.assertEqual(khalti_status_reason(None), 'khalti_not_completed')


class StartPaymentTestCase(PaymentTestMixin, TestCase):

    def test_esewa_reference_stored(self):
        order = self.place('ESEWA')

        payload = start_payment(order.id, 'esewa')

        self.assertEqual(self.reload(order).payment_reference, payload.transaction_uuid)
        # Amount comes from the invoice: 2 x 1000 + 13% VAT
        self.assertEqual(payload.fields['total_amount'], '2260.00')

    @patch('payments.gateways.httpx.post')
    def test_khalti_reference_stored(self, mock_post):
        order = self.place('KHALTI')
        mock_post.return_value = khalti_response(payment_url='https://pay.khalti.com/?pidx=P1', pidx='P1')

        payment = start_payment(order.id, 'KHALTI', email='anita@example.com')

        self.assertEqual(payment.pidx, 'P1')
        self.assertEqual(self.reload(order).payment_reference, 'P1')
        body = mock_post.call_args.kwargs['json']
        self.assertEqual(body['amount'], 226000)
        self.assertEqual(body['customer_info']['email'], 'anita@example.com')

    def test_wrong_provider(self):
        order = self.place('COD')

        with self.assertRaises(PaymentNotAllowed):
            start_payment(order.id, 'ESEWA')

    def test_order_not_pending(self):
        order = self.place('ESEWA')
        Order.objects.filter(pk=order.pk).update(status=Order.Status.CANCELED)

        with self.assertRaises(PaymentNotAllowed):
            start_payment(order.id, 'ESEWA')

    def test_unknown_order(self):
        with self.assertRaises(PaymentNotAllowed):
            start_payment('not-a-uuid', 'ESEWA')


class EsewaReconcilerTestCase(PaymentTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.reload(self.place('ESEWA'))
        start_payment(self.order.id, 'ESEWA')
        self.order = self.reload(self.order)

    def test_verified_callback_confirms(self):
        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order))

        self.assertTrue(outcome.succeeded)
        order = self.reload(self.order)
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.invoice.status, Invoice.Status.PAID)
        self.assertEqual(order.invoice.amount_paid, Decimal('2260.00'))
        self.assertEqual(self.stock(), 3)

    def test_tampered_signature_cancels(self):
        """
        Test: A forged callback never confirms.

        Given: A payload whose signature does not match
        When: Reconciling
        Then: Order CANCELED, stock released, reason esewa_verification_failed
        """
        data = esewa_data(self.order, signature=sign('total_amount=1.00'))

        outcome = reconcile_esewa(str(self.order.id), data)

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)
        self.assertEqual(self.stock(), 5)

    def test_signed_but_not_complete_cancels(self):
        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order, status='PENDING'))

        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_amount_mismatch_cancels(self):
        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order, total_amount='10.0'))

        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_other_transaction_cancels(self):
        data = esewa_data(self.order, transaction_uuid='TT-00000000-1700000000000')

        outcome = reconcile_esewa(str(self.order.id), data)

        self.assertEqual(outcome.reason, 'esewa_verification_failed')

    def test_signed_fields_must_cover_amount(self):
        data = esewa_data(self.order, signed_field_names='transaction_code,status')

        outcome = reconcile_esewa(str(self.order.id), data)

        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_malformed_data_cancels(self):
        outcome = reconcile_esewa(str(self.order.id), 'not%base64!')

        self.assertEqual(outcome.reason, 'invalid_callback')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_missing_data_cancels(self):
        outcome = reconcile_esewa(str(self.order.id), '')

        self.assertEqual(outcome.reason, 'invalid_callback')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_unknown_order(self):
        outcome = reconcile_esewa('00000000-0000-0000-0000-000000000000', esewa_data(self.order))

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'invalid_callback')
        self.assertEqual(self.reload(self.order).status, Order.Status.PENDING)

    @override_settings(ESEWA_SECRET_KEY='')
    def test_missing_secret_cancels(self):
        outcome = reconcile_esewa(str(self.order.id), 'e30=')

        self.assertEqual(outcome.reason, 'server_config')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_replay_after_confirmation_is_noop(self):
        data = esewa_data(self.order)
        reconcile_esewa(str(self.order.id), data)

        outcome = reconcile_esewa(str(self.order.id), data)

        self.assertTrue(outcome.succeeded)
        self.assertEqual(self.reload(self.order).status, Order.Status.CONFIRMED)
        self.assertEqual(self.stock(), 3)

    def test_replay_after_cancellation_is_noop(self):
        reconcile_esewa(str(self.order.id), esewa_data(self.order, status='CANCELED'))

        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order))

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'order_closed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)
        self.assertEqual(self.stock(), 5)

    @patch('payments.reconciler.verify_esewa_payload', side_effect=RuntimeError('boom'))
    def test_unexpected_error_cancels(self, mock_verify):
        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order))

        self.assertEqual(outcome.reason, 'esewa_processing_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_failed_cancellation_is_logged_not_raised(self):
        data = esewa_data(self.order, signature='forged')

        with patch('payments.reconciler.transition_order', side_effect=DatabaseError('locked')):
            with self.assertLogs('payments.reconciler', level='ERROR'):
                outcome = reconcile_esewa(str(self.order.id), data)



    def test_non_ascii_signature_is_rejected(self):
        outcome = reconcile_esewa(str(self.order.id), esewa_data(self.order, signature='sïgnätüre=='))

        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    def test_payment_for_another_order_cannot_settle_unstarted_order(self):
        """
        Test: A signed payment only settles the order it was started for.

        Given: A second eSewa order for the same amount that never started a payment
        When: Replaying the first order's signed callback against it
        Then: Verification fails and the second order is not confirmed
        """
        other = self.reload(self.place('ESEWA', quantity=2))
        self.assertEqual(other.payment_reference, '')

        outcome = reconcile_esewa(str(other.id), esewa_data(self.order))

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        other = self.reload(other)
        self.assertNotEqual(other.status, Order.Status.CONFIRMED)
        self.assertNotEqual(other.invoice.status, Invoice.Status.PAID)

    def test_reference_cleared_by_method_correction(self):
        data = esewa_data(self.order)
        correct_payment_method(self.order.id, 'ESEWA', Role.SALES_ADMIN)

        outcome = reconcile_esewa(str(self.order.id), data)

        self.assertEqual(outcome.reason, 'esewa_verification_failed')
        self.assertNotEqual(self.reload(self.order).status, Order.Status.CONFIRMED)

    def test_cod_order_ignores_esewa_callback(self):
        """
        Test: An eSewa callback cannot touch a cash-on-delivery order.

        Given: A PENDING COD order
        When: Hitting the eSewa callback with junk data for it
        Then: invalid_callback, the order stays PENDING and its stock stays reserved
        """
        cod = self.place('COD', quantity=1)

        outcome = reconcile_esewa(str(cod.id), 'garbage')

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'invalid_callback')
        cod = self.reload(cod)
        self.assertEqual(cod.status, Order.Status.PENDING)
        self.assertEqual(cod.invoice.status, Invoice.Status.UNPAID)
        self.assertEqual(self.stock(), 2)

    def test_cod_order_ignores_valid_esewa_payment(self):
        cod = self.place('COD', quantity=2)
        Order.objects.filter(pk=cod.pk).update(payment_reference=self.order.payment_reference)

        outcome = reconcile_esewa(str(cod.id), esewa_data(self.order))

        self.assertEqual(outcome.reason, 'invalid_callback')
        self.assertEqual(self.reload(cod).status, Order.Status.PENDING)


class KhaltiReconcilerTestCase(PaymentTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.place('KHALTI')
        Order.objects.filter(pk=self.order.pk).update(payment_reference='PIDX123')
        self.order = self.reload(self.order)

    @patch('payments.gateways.httpx.post')
    def test_completed_lookup_confirms(self, mock_post):
        mock_post.return_value = khalti_response(pidx='PIDX123', status='Completed', total_amount=226000)

        outcome = reconcile_khalti(str(self.order.id), 'PIDX123')

        self.assertTrue(outcome.succeeded)
        order = self.reload(self.order)
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.invoice.status, Invoice.Status.PAID)
        self.assertTrue(mock_post.call_args.args[0].endswith('/epayment/lookup/'))

    @patch('payments.gateways.httpx.post')
    def test_user_canceled_cancels(self, mock_post):
        mock_post.return_value = khalti_response(pidx='PIDX123', status='User canceled', total_amount=226000)

        outcome = reconcile_khalti(str(self.order.id), 'PIDX123')

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'khalti_user_canceled')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)
        self.assertEqual(self.stock(), 5)

    @patch('payments.gateways.httpx.post')
    def test_lookup_failure_cancels(self, mock_post):
        mock_post.return_value = khalti_response(500, detail='error')

        outcome = reconcile_khalti(str(self.order.id), 'PIDX123')

        self.assertEqual(outcome.reason, 'khalti_lookup_failed')
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    @patch('payments.gateways.httpx.post')
    def test_amount_mismatch_cancels(self, mock_post):
        mock_post.return_value = khalti_response(pidx='PIDX123', status='Completed', total_amount=1000)

        outcome = reconcile_khalti(str(self.order.id), 'PIDX123')

        self.assertFalse(outcome.succeeded)
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    @patch('payments.gateways.httpx.post')
    def test_foreign_pidx_cancels(self, mock_post):
        mock_post.return_value = khalti_response(pidx='OTHER', status='Completed', total_amount=226000)

        outcome = reconcile_khalti(str(self.order.id), 'OTHER')

        self.assertFalse(outcome.succeeded)
        self.assertEqual(self.reload(self.order).status, Order.Status.CANCELED)

    @patch('payments.gateways.httpx.post')
    def test_missing_pidx_cancels(self, mock_post):
        outcome = reconcile_khalti(str(self.order.id), '')

        self.assertEqual(outcome.reason, 'invalid_callback')
        mock_post.assert_not_called()

    @patch('payments.gateways.httpx.post')
    def test_replay_after_confirmation_skips_lookup(self, mock_post):
        mock_post.return_value = khalti_response(pidx='PIDX123', status='Completed', total_amount=226000)
        reconcile_khalti(str(self.order.id), 'PIDX123')

        outcome = reconcile_khalti(str(self.order.id), 'PIDX123')

        self.assertTrue(outcome.succeeded)
        self.assertEqual(mock_post.call_count, 1)

    @patch('payments.gateways.httpx.post')
    def test_cod_order_ignores_completed_khalti_payment(self, mock_post):
        """
        Test: A completed Khalti payment never confirms a COD order.

        Given: A PENDING COD order for the same amount as the Khalti order
        When: Reconciling it with the Khalti order's pidx
        Then: invalid_callback, no lookup, COD order stays PENDING and UNPAID
        """
        cod = self.place('COD', quantity=2)
        mock_post.return_value = khalti_response(pidx='PIDX123', status='Completed', total_amount=226000)

        outcome = reconcile_khalti(str(cod.id), 'PIDX123')

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.reason, 'invalid_callback')
        mock_post.assert_not_called()
        cod = self.reload(cod)
        self.assertEqual(cod.status, Order.Status.PENDING)
        self.assertEqual(cod.invoice.status, Invoice.Status.UNPAID)

    @patch('payments.gateways.httpx.post')
    def test_order_without_reference_fails_verification(self, mock_post):
        unstarted = self.place('KHALTI', quantity=2)
        mock_post.return_value = khalti_response(pidx='PIDX123', status='Completed', total_amount=226000)

        outcome = reconcile_khalti(str(unstarted.id), 'PIDX123')

        self.assertEqual(outcome.reason, 'khalti_verification_failed')
        self.assertNotEqual(self.reload(unstarted).status, Order.Status.CONFIRMED)


class PaymentAPITestCase(PaymentTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_esewa_initiate(self):
        order = self.place('ESEWA')

        response = self.client.post('/api/payments/esewa/initiate/', {'order_id': str(order.id)}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['endpoint'], settings.ESEWA_FORM_URL)
        self.assertIn('signature', response.data['fields'])

    def test_initiate_for_cod_order_conflicts(self):
        order = self.place('COD')

        response = self.client.post('/api/payments/esewa/initiate/', {'order_id': str(order.id)}, format='json')

        self.assertEqual(response.status_code, 409)

    @override_settings(KHALTI_SECRET_KEY='')
    def test_khalti_initiate_unconfigured(self):
        order = self.place('KHALTI')

        response = self.client.post('/api/payments/khalti/initiate/', {'order_id': str(order.id)}, format='json')

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.data['reason'], 'server_config')

    @patch('payments.gateways.httpx.post')
    def test_khalti_initiate_bad_gateway(self, mock_post):
        order = self.place('KHALTI')
        mock_post.return_value = khalti_response(401, detail='Invalid token.')

        response = self.client.post('/api/payments/khalti/initiate/', {'order_id': str(order.id)}, format='json')

        self.assertEqual(response.status_code, 502)

    def test_initiate_validates_body(self):
        response = self.client.post('/api/payments/esewa/initiate/', {'order_id': 'nope'}, format='json')

        self.assertEqual(response.status_code, 400)

    def test_esewa_callback_success_redirect(self):
        order = self.place('ESEWA')
        start_payment(order.id, 'ESEWA')
        order = self.reload(order)

        response = self.client.get('/api/payments/esewa/callback/', {
            'orderId': str(order.id),
            'data': esewa_data(order),
        })

        self.assertEqual(response.status_code, 302)
        location = urlparse(response['Location'])
        self.assertEqual(location.path, '/checkout/success')
        self.assertEqual(parse_qs(location.query)['orderId'], [str(order.id)])

    @patch('payments.gateways.httpx.post')
    def test_khalti_callback_failure_redirect(self, mock_post):
        order = self.place('KHALTI')
        Order.objects.filter(pk=order.pk).update(payment_reference='P9')
        mock_post.return_value = khalti_response(pidx='P9', status='Expired', total_amount=226000)

        response = self.client.get('/api/payments/khalti/callback/', {
            'orderId': str(order.id),
            'pidx': 'P9',
            'status': 'Completed',
        })

        self.assertEqual(response.status_code, 302)
        location = urlparse(response['Location'])
        self.assertEqual(location.path, '/checkout/failed')
        self.assertEqual(parse_qs(location.query)['reason'], ['khalti_expired'])
        self.assertEqual(self.reload(order).status, Order.Status.CANCELED)
