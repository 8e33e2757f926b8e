"""
Tests for checkout, invoicing and order status logic.

Test Cases:
1. Checkout with sufficient stock prices lines, adds VAT and issues an invoice
2. Checkout rejected with insufficient stock leaves no trace
3. Unknown variants and malformed input are rejected
4. Invoice numbers increase per year and collisions are retried once
5. Concurrent checkouts never oversell
6. Status transitions, restocking and notifications
7. Role-guarded operator operations and API endpoints
"""
from decimal import Decimal
from datetime import datetime
from unittest import skipIf
from unittest.mock import patch
import threading

from django.contrib.auth.models import Group, User
from django.core import mail
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.roles import AccessDenied, Role
from inventory import ledger
from inventory.models import Product, ProductVariant
from orders.exceptions import InvalidStatusTransition, OrderNotFound, OrderValidationError
from orders.invoicing import format_invoice_number, next_invoice_number
from orders.models import Invoice, Order, OrderItem
from orders.pricing import compute_totals, format_npr, format_npr_compact, format_rs, format_usd, to_minor_units
from orders.services import create_order, get_order_summary, get_sales_analytics
from orders.state_machine import (
    can_transition,
    capture_invoice_payment,
    correct_payment_method,
    transition_order,
    update_order_status,
)

CUSTOMER = {
    'customer_name': 'Sita Sharma',
    'contact_phone': '9800000000',
    'shipping_address': 'Baneshwor, Kathmandu',
}


def make_variant(title, price, stock, sku, cogs='0.00'):
    product = Product.objects.create(
        title=title,
        description=f'{title} description',
        category=Product.Category.INFANT,
        base_price=Decimal(price),
        cogs=Decimal(cogs),
    )
    return ProductVariant.objects.create(
        product=product,
        size='3-6M',
        color='White',
        sku=sku,
        stock_count=stock,
    )


class CheckoutTestCase(TestCase):
    """Test cases for the checkout transaction."""

    def setUp(self):
        self.romper = make_variant('Romper', '1200.00', 10, 'TT-ROMPER-36-WHT', cogs='500.00')
        self.sleepsuit = make_variant('Sleepsuit', '1400.00', 5, 'TT-SLEEP-36-WHT', cogs='600.00')
        self.blanket = make_variant('Blanket', '900.00', 1, 'TT-BLANKET-ONE')

    def test_checkout_prices_lines_and_adds_vat(self):
        """
        Test: 2 x 1200 + 1 x 1400 gives subtotal 3800, VAT 494, total 4294.

        Given: Variants with enough stock
        When: A customer checks out with CASH
        Then: Stock deducted, order PENDING, invoice UNPAID until cash is collected
        """
        items = [
            {'variant_id': self.romper.id, 'quantity': 2},
            {'variant_id': self.sleepsuit.id, 'quantity': 1},
        ]

        result = create_order(CUSTOMER, 'cash', items)

        self.assertTrue(result.success)
        order = result.order
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.payment_method, 'CASH')
        self.assertEqual(order.total_amount, Decimal('3800.00'))
        self.assertEqual(order.tax_amount, Decimal('494.00'))
        self.assertEqual(order.grand_total, Decimal('4294.00'))
        self.assertEqual(order.items.count(), 2)

        invoice = result.invoice
        self.assertEqual(invoice.amount_due, Decimal('4294.00'))
        self.assertEqual(invoice.status, Invoice.Status.UNPAID)
        self.assertEqual(invoice.amount_paid, Decimal('0.00'))
        self.assertIsNone(invoice.paid_at)

        self.romper.refresh_from_db()
        self.sleepsuit.refresh_from_db()
        self.assertEqual(self.romper.stock_count, 8)
        self.assertEqual(self.sleepsuit.stock_count, 4)

    def test_counter_cash_sale_by_staff_is_settled(self):
        items = [{'variant_id': self.romper.id, 'quantity': 1}]

        result = create_order(CUSTOMER, 'CASH', items, acting_role=Role.SALES_ADMIN)

        self.assertTrue(result.success)
        self.assertEqual(result.order.status, Order.Status.CONFIRMED)
        self.assertEqual(result.invoice.status, Invoice.Status.PAID)
        self.assertEqual(result.invoice.amount_paid, Decimal('1356.00'))

    def test_customer_role_cannot_settle_cash(self):
        items = [{'variant_id': self.romper.id, 'quantity': 1}]

        result = create_order(CUSTOMER, 'CASH', items, acting_role=Role.CUSTOMER)

        self.assertEqual(result.order.status, Order.Status.PENDING)
        self.assertEqual(result.invoice.status, Invoice.Status.UNPAID)

    def test_staff_cod_sale_still_pending(self):
        result = create_order(
            CUSTOMER, 'COD', [{'variant_id': self.romper.id, 'quantity': 1}], acting_role=Role.SUPERADMIN
        )

        self.assertEqual(result.order.status, Order.Status.PENDING)

    def test_gateway_checkout_starts_pending_with_unpaid_invoice(self):
        result = create_order(CUSTOMER, 'ESEWA', [{'variant_id': self.romper.id, 'quantity': 1}])

        self.assertTrue(result.success)
        self.assertEqual(result.order.status, Order.Status.PENDING)
        self.assertEqual(result.invoice.status, Invoice.Status.UNPAID)
        self.assertEqual(result.invoice.amount_paid, Decimal('0.00'))

    def test_price_snapshot_survives_price_change(self):
        result = create_order(CUSTOMER, 'COD', [{'variant_id': self.romper.id, 'quantity': 1}])

        Product.objects.filter(pk=self.romper.product_id).update(base_price=Decimal('5000.00'))

        item = OrderItem.objects.get(order=result.order)
        self.assertEqual(item.price_at_purchase, Decimal('1200.00'))

    def test_insufficient_stock_leaves_no_trace(self):
        """
        Test: Nothing persists when any line lacks stock.

        Given: Blanket has 1 unit
        When: Requesting 2 blankets alongside an in-stock romper
        Then: No order, no invoice, no stock change
        """
        items = [
            {'variant_id': self.romper.id, 'quantity': 3},
            {'variant_id': self.blanket.id, 'quantity': 2},
        ]

        result = create_order(CUSTOMER, 'COD', items)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'insufficient_stock')
        self.assertIn('Insufficient stock for SKU: TT-BLANKET-ONE', result.error_message)
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(Invoice.objects.count(), 0)

        self.romper.refresh_from_db()
        self.blanket.refresh_from_db()
        self.assertEqual(self.romper.stock_count, 10)
        self.assertEqual(self.blanket.stock_count, 1)

    def test_last_unit_sold_once(self):
        """
        Test: Sequential checkouts for the last unit.

        Given: Blanket has 1 unit
        When: Two checkouts each ask for it
        Then: First succeeds, second is rejected, stock ends at 0
        """
        items = [{'variant_id': self.blanket.id, 'quantity': 1}]

        first = create_order(CUSTOMER, 'COD', items)
        second = create_order(CUSTOMER, 'COD', items)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error_code, 'insufficient_stock')
        self.blanket.refresh_from_db()
        self.assertEqual(self.blanket.stock_count, 0)

    def test_reservation_lost_to_concurrent_sale(self):
        """
        Test: The conditional UPDATE refuses stock taken after the pre-check.

        Given: Blanket has 1 unit when the checkout reads stock
        When: A competing sale takes that unit just before this checkout reserves it
        Then: insufficient_stock, the romper reservation is rolled back, no order or invoice remains
        """
        real_reserve = ledger.reserve

        def reserve_after_competing_sale(variant_id, quantity, sku=None):
            if variant_id == self.blanket.id:
                ProductVariant.objects.filter(pk=self.blanket.id).update(stock_count=0)
            return real_reserve(variant_id, quantity, sku=sku)

        items = [
            {'variant_id': self.romper.id, 'quantity': 2},
            {'variant_id': self.blanket.id, 'quantity': 1},
        ]

        with patch('orders.services.ledger.reserve', side_effect=reserve_after_competing_sale) as mock_reserve:
            result = create_order(CUSTOMER, 'COD', items)

        self.assertEqual(mock_reserve.call_count, 2)
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'insufficient_stock')
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)
        self.assertEqual(Invoice.objects.count(), 0)
        self.romper.refresh_from_db()
        self.assertEqual(self.romper.stock_count, 10)

    def test_unknown_variant(self):
        result = create_order(CUSTOMER, 'COD', [{'variant_id': 99999, 'quantity': 1}])

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'variant_not_found')
        self.assertIn('not found', result.error_message.lower())
        self.assertEqual(Order.objects.count(), 0)

    def test_inactive_product_is_not_sold(self):
        Product.objects.filter(pk=self.romper.product_id).update(is_active=False)

        result = create_order(CUSTOMER, 'COD', [{'variant_id': self.romper.id, 'quantity': 1}])

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'variant_not_found')

    def test_validation_error_empty_items(self):
        with self.assertRaises(OrderValidationError) as context:
            create_order(CUSTOMER, 'COD', [])

        self.assertIn('at least one item', str(context.exception))

    def test_validation_error_invalid_quantity(self):
        for quantity in (0, -1, '2', True):
            with self.assertRaises(OrderValidationError):
                create_order(CUSTOMER, 'COD', [{'variant_id': self.romper.id, 'quantity': quantity}])

    def test_validation_error_duplicate_variants(self):
        items = [
            {'variant_id': self.romper.id, 'quantity': 1},
            {'variant_id': self.romper.id, 'quantity': 2},
        ]

        with self.assertRaises(OrderValidationError) as context:
            create_order(CUSTOMER, 'COD', items)

        self.assertIn('duplicate', str(context.exception).lower())

    def test_validation_error_missing_customer_details(self):
        customer = dict(CUSTOMER, contact_phone='  ')

        with self.assertRaises(OrderValidationError) as context:
            create_order(customer, 'COD', [{'variant_id': self.romper.id, 'quantity': 1}])

        self.assertIn('contact_phone', str(context.exception))

    def test_order_summary(self):
        result = create_order(CUSTOMER, 'COD', [{'variant_id': self.romper.id, 'quantity': 2}])

        summary = get_order_summary(result.order.id)

        self.assertEqual(summary['grand_total'], '2712.00')
        self.assertEqual(summary['items'][0]['sku'], 'TT-ROMPER-36-WHT')
        self.assertEqual(summary['invoice']['status'], Invoice.Status.UNPAID)

    def test_order_summary_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            get_order_summary('not-a-uuid')


class InvoiceNumberingTestCase(TestCase):

    def setUp(self):
        self.variant = make_variant('Bodysuit', '1000.00', 50, 'TT-BODY-36-WHT')

    def test_first_invoice_of_year(self):
        self.assertEqual(next_invoice_number(2026), 'TT-2026-0001')

    def test_sequence_increments(self):
        year = timezone.localdate().year
        first = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 1}])
        second = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 1}])

        self.assertEqual(first.invoice.invoice_number, format_invoice_number(year, 1))
        self.assertEqual(second.invoice.invoice_number, format_invoice_number(year, 2))

    def test_sequence_is_year_scoped(self):
        order = Order.objects.create(customer_name='A', contact_phone='1', shipping_address='B',
                                     payment_method='COD')
        Invoice.objects.create(order=order, invoice_number='TT-2025-0041',
                               amount_due=Decimal('10.00'), tax_amount=Decimal('1.15'))

        self.assertEqual(next_invoice_number(2025), 'TT-2025-0042')
        self.assertEqual(next_invoice_number(2026), 'TT-2026-0001')

    def test_collision_is_retried_once(self):
        """
        Test: A lost invoice-number race retries the whole checkout.

        Given: The first computed number is already taken
        When: Checking out
        Then: The retry succeeds with a fresh number and stock is deducted once
        """
        existing = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 1}])
        taken = existing.invoice.invoice_number

        with patch('orders.services.next_invoice_number', side_effect=[taken, 'TT-2099-0001']):
            result = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 2}])

        self.assertTrue(result.success)
        self.assertEqual(result.invoice.invoice_number, 'TT-2099-0001')
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock_count, 47)

    def test_repeated_collision_reports_conflict(self):
        existing = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 1}])
        taken = existing.invoice.invoice_number

        with patch('orders.services.next_invoice_number', return_value=taken):
            result = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 2}])

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'transaction_conflict')
        self.assertEqual(Order.objects.count(), 1)
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock_count, 49)


class ConcurrentCheckoutTestCase(TransactionTestCase):
    """
    Test concurrent checkouts against the conditional stock UPDATE.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.variant = make_variant('Limited Frock', '2500.00', 10, 'TT-FROCK-LTD')

    @skipIf(connection.vendor == 'sqlite', 'SQLite locks the whole database instead of racing on the row')
    def test_concurrent_checkouts_no_overselling(self):
        """
        Test: Concurrent checkouts don't oversell.

        Given: 10 units in stock
        When: Two concurrent checkouts of 8 units each
        Then: Exactly one succeeds, the other is refused for stock, and 2 units remain
        """
        results = {}

        def place_order(key):
            try:
                results[key] = create_order(
                    CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 8}]
                )
            finally:
                connection.close()

        threads = [threading.Thread(target=place_order, args=(key,)) for key in ('order1', 'order2')]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.variant.refresh_from_db()
        succeeded = [result for result in results.values() if result.success]
        refused = [result for result in results.values() if not result.success]

        self.assertEqual(len(succeeded), 1)
        self.assertEqual(len(refused), 1)
        self.assertEqual(refused[0].error_code, 'insufficient_stock')
        self.assertEqual(self.variant.stock_count, 2)
        self.assertEqual(Order.objects.count(), 1)


class OrderStateMachineTestCase(TestCase):

    def setUp(self):
        self.variant = make_variant('Hoodie', '1500.00', 10, 'TT-HOODIE-12-MNT')
        self.user = User.objects.create_user('sita', 'sita@example.com', 'pass')
        result = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 3}],
                              user=self.user)
        self.order = result.order

    def _stock(self):
        self.variant.refresh_from_db()
        return self.variant.stock_count

    def test_allowed_transitions(self):
        self.assertTrue(can_transition('PENDING', 'CONFIRMED'))
        self.assertTrue(can_transition('DELIVERED', 'RETURNED'))
        self.assertTrue(can_transition('SHIPPED', 'CANCELED'))
        self.assertFalse(can_transition('PENDING', 'SHIPPED'))
        self.assertFalse(can_transition('CANCELED', 'CONFIRMED'))
        self.assertFalse(can_transition('RETURNED', 'DELIVERED'))

    def test_forward_progression(self):
        for status in ('CONFIRMED', 'PACKED', 'SHIPPED', 'OUT_FOR_DELIVERY', 'DELIVERED'):
            order = transition_order(self.order.id, status)
            self.assertEqual(order.status, status)

    def test_skipping_a_step_is_rejected(self):
        with self.assertRaises(InvalidStatusTransition):
            transition_order(self.order.id, 'SHIPPED')

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_cancel_pending_restocks_and_cancels_invoice(self):
        self.assertEqual(self._stock(), 7)

        transition_order(self.order.id, 'CANCELED')

        self.assertEqual(self._stock(), 10)
        self.assertEqual(Invoice.objects.get(order=self.order).status, Invoice.Status.CANCELLED)

    def test_cancel_twice_restocks_once(self):
        transition_order(self.order.id, 'CANCELED')
        transition_order(self.order.id, 'CANCELED')

        self.assertEqual(self._stock(), 10)

    def test_cancel_after_shipping_does_not_restock(self):
        for status in ('CONFIRMED', 'PACKED', 'SHIPPED'):
            transition_order(self.order.id, status)

        transition_order(self.order.id, 'CANCELED')

        self.assertEqual(self._stock(), 7)

    def test_return_restocks_once(self):
        for status in ('CONFIRMED', 'PACKED', 'SHIPPED', 'OUT_FOR_DELIVERY', 'DELIVERED'):
            transition_order(self.order.id, status)

        transition_order(self.order.id, 'RETURNED')
        transition_order(self.order.id, 'RETURNED')

        self.assertEqual(self._stock(), 10)

    def test_expected_status_guard(self):
        transition_order(self.order.id, 'CANCELED')

        with self.assertRaises(InvalidStatusTransition):
            transition_order(self.order.id, 'CONFIRMED', expected_status='PENDING')

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            transition_order('00000000-0000-0000-0000-000000000000', 'CONFIRMED')

    def test_confirmation_queues_notification_after_commit(self):
        with patch('orders.tasks.notify_order_status.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                transition_order(self.order.id, 'CONFIRMED')

        self.assertEqual(len(callbacks), 1)
        mock_delay.assert_called_once_with(str(self.order.id), 'CONFIRMED')

    def test_packing_does_not_notify(self):
        transition_order(self.order.id, 'CONFIRMED')

        with patch('orders.tasks.notify_order_status.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                transition_order(self.order.id, 'PACKED')

        mock_delay.assert_not_called()

    def test_notification_email_sent(self):
        with self.captureOnCommitCallbacks(execute=True):
            transition_order(self.order.id, 'CONFIRMED')

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('confirmed', mail.outbox[0].subject)
        self.assertIn(format_rs(self.order.grand_total), mail.outbox[0].body)
        self.assertEqual(mail.outbox[0].to, ['sita@example.com'])

    def test_broken_queue_does_not_undo_transition(self):
        with patch('orders.tasks.notify_order_status.delay', side_effect=ConnectionError('down')):
            with self.captureOnCommitCallbacks(execute=True):
                transition_order(self.order.id, 'CONFIRMED')

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CONFIRMED)


class OperatorOperationsTestCase(TestCase):

    def setUp(self):
        self.variant = make_variant('Dungarees', '2000.00', 10, 'TT-DUNG-23-SKY', cogs='800.00')
        self.order = create_order(CUSTOMER, 'COD', [{'variant_id': self.variant.id, 'quantity': 2}]).order

    def test_update_status_requires_operator(self):
        with self.assertRaises(AccessDenied):
            update_order_status(self.order.id, 'CONFIRMED', Role.ACCOUNTS_ADMIN)
        with self.assertRaises(AccessDenied):
            update_order_status(self.order.id, 'CONFIRMED', None)

        order = update_order_status(self.order.id, 'CONFIRMED', Role.SALES_ADMIN)
        self.assertEqual(order.status, Order.Status.CONFIRMED)

    def test_update_status_rejects_unknown_status(self):
        with self.assertRaises(OrderValidationError):
            update_order_status(self.order.id, 'LOST', Role.SUPERADMIN)

    def test_capture_invoice_payment(self):
        with self.assertRaises(AccessDenied):
            capture_invoice_payment(self.order.id, Role.CUSTOMER)

        invoice = capture_invoice_payment(self.order.id, Role.ACCOUNTS_ADMIN)
        self.assertEqual(invoice.status, Invoice.Status.PAID)
        self.assertEqual(invoice.amount_paid, Decimal('4520.00'))
        self.assertIsNotNone(invoice.paid_at)

        # Capturing again changes nothing
        paid_at = invoice.paid_at
        self.assertEqual(capture_invoice_payment(self.order.id, Role.SUPERADMIN).paid_at, paid_at)

    def test_capture_cancelled_invoice_is_rejected(self):
        transition_order(self.order.id, 'CANCELED')

        with self.assertRaises(InvalidStatusTransition):
            capture_invoice_payment(self.order.id, Role.SUPERADMIN)

    def test_correct_payment_method(self):
        Order.objects.filter(pk=self.order.pk).update(payment_reference='stale-ref')

        order = correct_payment_method(self.order.id, 'khalti', Role.SALES_ADMIN)

        self.assertEqual(order.payment_method, 'KHALTI')
        self.assertEqual(order.payment_reference, '')

    def test_correct_payment_method_only_while_pending(self):
        transition_order(self.order.id, 'CONFIRMED')

        with self.assertRaises(OrderValidationError):
            correct_payment_method(self.order.id, 'BANK', Role.SALES_ADMIN)

    def test_sales_analytics(self):
        other = create_order(CUSTOMER, 'CASH', [{'variant_id': self.variant.id, 'quantity': 1}]).order
        transition_order(other.id, 'CANCELED')

        with self.assertRaises(AccessDenied):
            get_sales_analytics(Role.SALES_ADMIN)

        stats = get_sales_analytics(Role.ACCOUNTS_ADMIN)

        self.assertEqual(stats['revenue'], '4000.00')
        self.assertEqual(stats['cogs'], '1600.00')
        self.assertEqual(stats['gross_profit'], '2400.00')
        self.assertEqual(stats['order_count'], 1)

    def test_sales_analytics_is_month_to_date(self):
        next_month = timezone.make_aware(datetime(2099, 1, 15))

        stats = get_sales_analytics(Role.SUPERADMIN, now=next_month)

        self.assertEqual(stats['order_count'], 0)
        self.assertEqual(stats['revenue'], '0.00')


class PricingTestCase(TestCase):

    def test_compute_totals(self):
        totals = compute_totals([(Decimal('1200.00'), 2), (Decimal('1400.00'), 1)])

        self.assertEqual(totals.subtotal, Decimal('3800.00'))
        self.assertEqual(totals.tax, Decimal('494.0000'))
        self.assertEqual(totals.total, Decimal('4294.0000'))

    def test_formatting(self):
        self.assertEqual(format_rs(Decimal('1200')), 'Rs. 1,200.00')
        self.assertEqual(format_npr(Decimal('4294')), 'रु 4,294.00')
        self.assertEqual(format_npr_compact(Decimal('1249.50')), 'रु 1,250')
        self.assertEqual(format_usd(Decimal('12.5')), '$12.50')
        self.assertEqual(to_minor_units(Decimal('4294.00')), 429400)
        self.assertEqual(to_minor_units(Decimal('10.005')), 1001)


class OrderAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.variant = make_variant('Jogger Set', '1200.00', 5, 'TT-JOG-12-CRM')

        self.operator = User.objects.create_user('ram', 'ram@example.com', 'pass', is_staff=True)
        self.operator.groups.add(Group.objects.create(name='SALES_ADMIN'))
        self.customer = User.objects.create_user('gita', 'gita@example.com', 'pass')

    def _checkout(self, quantity=1, method='COD'):
        return self.client.post('/api/checkout/', {
            **CUSTOMER,
            'payment_method': method,
            'items': [{'variant_id': self.variant.id, 'quantity': quantity}],
        }, format='json')

    def test_checkout_created(self):
        response = self._checkout(quantity=2)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['order']['status'], 'PENDING')
        self.assertEqual(response.data['invoice']['amount_due'], '2712.00')

    def test_anonymous_cash_checkout_is_not_settled(self):
        """
        Test: Choosing cash at the public checkout collects nothing.

        Given: An anonymous client
        When: Checking out with payment_method "cash"
        Then: 201 with a PENDING order and an UNPAID invoice
        """
        response = self._checkout(quantity=1, method='cash')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['order']['status'], 'PENDING')
        self.assertEqual(response.data['invoice']['status'], 'UNPAID')
        self.assertEqual(response.data['invoice']['amount_paid'], '0.00')
        order = Order.objects.get()
        self.assertEqual(order.invoice.status, Invoice.Status.UNPAID)

    def test_operator_cash_checkout_is_settled(self):
        self.client.force_authenticate(self.operator)

        response = self._checkout(quantity=1, method='CASH')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['order']['status'], 'CONFIRMED')
        self.assertEqual(response.data['invoice']['status'], 'PAID')

    def test_checkout_insufficient_stock_conflict(self):
        response = self._checkout(quantity=6)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'insufficient_stock')

    def test_checkout_unknown_variant_bad_request(self):
        response = self.client.post('/api/checkout/', {
            **CUSTOMER,
            'payment_method': 'COD',
            'items': [{'variant_id': 424242, 'quantity': 1}],
        }, format='json')

        self.assertEqual(response.status_code, 400)

    def test_checkout_empty_cart_bad_request(self):
        response = self.client.post('/api/checkout/', {**CUSTOMER, 'payment_method': 'COD', 'items': []},
                                    format='json')

        self.assertEqual(response.status_code, 400)

    def test_order_list_is_operator_only(self):
        self._checkout()

        self.client.force_authenticate(self.customer)
        self.assertEqual(self.client.get('/api/orders/').status_code, 403)

        self.client.force_authenticate(self.operator)
        response = self.client.get('/api/orders/?status=pending')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 1)

    def test_status_change_via_api(self):
        order_id = self._checkout().data['order']['id']
        url = f'/api/orders/{order_id}/status/'

        self.client.force_authenticate(self.customer)
        self.assertEqual(self.client.post(url, {'status': 'CONFIRMED'}, format='json').status_code, 403)

        self.client.force_authenticate(self.operator)
        response = self.client.post(url, {'status': 'CONFIRMED'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'CONFIRMED')

        response = self.client.post(url, {'status': 'DELIVERED'}, format='json')
        self.assertEqual(response.status_code, 409)

    def test_order_detail_not_found(self):
        response = self.client.get('/api/orders/00000000-0000-0000-0000-000000000000/')

        self.assertEqual(response.status_code, 404)

    def test_stats_requires_accounts_role(self):
        self.client.force_authenticate(self.operator)
        self.assertEqual(self.client.get('/api/orders/stats/').status_code, 403)

        accountant = User.objects.create_user('hari', 'hari@example.com', 'pass', is_staff=True)
        accountant.groups.add(Group.objects.create(name='ACCOUNTS_ADMIN'))
        self.client.force_authenticate(accountant)
        self.assertEqual(self.client.get('/api/orders/stats/').status_code, 200)
