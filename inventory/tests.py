"""
Tests for the stock ledger and catalog endpoints.
"""
from decimal import Decimal
from io import StringIO

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework.test import APIClient

from core.roles import AccessDenied, Role
from inventory import ledger
from inventory.models import Product, ProductVariant


class StockLedgerTestCase(TestCase):

    def setUp(self):
        self.product = Product.objects.create(
            title='Swaddle Wrap',
            category=Product.Category.NEWBORN,
            base_price=Decimal('950.00'),
            cogs=Decimal('400.00'),
        )
        self.variant = ProductVariant.objects.create(
            product=self.product, size='0-3M', color='Cream', sku='TT-SWAD-03-CRM', stock_count=4
        )

    def test_reserve_decrements(self):
        ledger.reserve(self.variant.id, 3)

        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock_count, 1)

    def test_reserve_exact_stock(self):
        ledger.reserve(self.variant.id, 4)

        self.variant.refresh_from_db()
        self.assertTrue(self.variant.is_out_of_stock)

    def test_reserve_refuses_to_go_negative(self):
        with self.assertRaises(ledger.InsufficientStock) as context:
            ledger.reserve(self.variant.id, 5)

        self.assertEqual(context.exception.sku, 'TT-SWAD-03-CRM')
        self.assertIn('Insufficient stock for SKU: TT-SWAD-03-CRM', str(context.exception))
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock_count, 4)

    def test_restock(self):
        ledger.restock(self.variant.id, 6)

        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock_count, 10)

    def test_database_rejects_negative_stock(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            ProductVariant.objects.filter(pk=self.variant.pk).update(stock_count=-1)

    def test_set_stock_requires_superadmin(self):
        with self.assertRaises(AccessDenied):
            ledger.set_stock(self.variant.id, 20, Role.SALES_ADMIN)

        variant = ledger.set_stock(self.variant.id, 20, Role.SUPERADMIN)
        self.assertEqual(variant.stock_count, 20)

    def test_set_stock_rejects_negative(self):
        with self.assertRaises(ledger.StockUpdateError):
            ledger.set_stock(self.variant.id, -3, Role.SUPERADMIN)

    def test_low_stock(self):
        healthy = ProductVariant.objects.create(
            product=self.product, size='0-3M', color='Sky', sku='TT-SWAD-03-SKY', stock_count=30
        )

        self.assertTrue(self.variant.is_low_stock)
        self.assertFalse(healthy.is_low_stock)
        self.assertEqual(list(ledger.low_stock_variants()), [self.variant])

    def test_threshold_is_inclusive(self):
        self.variant.stock_count = self.variant.low_stock_threshold
        self.assertTrue(self.variant.is_low_stock)

        self.variant.stock_count += 1
        self.assertFalse(self.variant.is_low_stock)


class CatalogAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.cheap = Product.objects.create(
            title='Organic Romper', category=Product.Category.INFANT, base_price=Decimal('800.00')
        )
        self.dear = Product.objects.create(
            title='Organic Hoodie', category=Product.Category.TODDLER, base_price=Decimal('2200.00')
        )
        self.hidden = Product.objects.create(
            title='Organic Bib', category=Product.Category.INFANT, base_price=Decimal('300.00'),
            is_active=False
        )
        self.variant = ProductVariant.objects.create(
            product=self.cheap, size='3-6M', color='Mint', sku='TT-ROMP-36-MNT', stock_count=2
        )
        ProductVariant.objects.create(
            product=self.dear, size='1-2Y', color='Sky', sku='TT-HOOD-12-SKY', stock_count=0
        )
        self.admin = User.objects.create_superuser('admin', 'admin@example.com', 'pass')

    def test_product_list_hides_inactive_and_cogs(self):
        response = self.client.get('/api/products/')

        self.assertEqual(response.status_code, 200)
        titles = [p['title'] for p in response.data['results']]
        self.assertNotIn('Organic Bib', titles)
        self.assertNotIn('cogs', response.data['results'][0])

    def test_product_list_sort_and_filter(self):
        response = self.client.get('/api/products/?sort=price_desc')
        self.assertEqual(response.data['results'][0]['title'], 'Organic Hoodie')

        response = self.client.get('/api/products/?category=infant')
        self.assertEqual([p['title'] for p in response.data['results']], ['Organic Romper'])

        response = self.client.get('/api/products/?in_stock=true')
        self.assertEqual([p['title'] for p in response.data['results']], ['Organic Romper'])

    def test_autocomplete(self):
        response = self.client.get('/api/products/autocomplete/?q=org')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 2)

    def test_autocomplete_requires_three_characters(self):
        response = self.client.get('/api/products/autocomplete/?q=or')

        self.assertEqual(response.status_code, 400)

    def test_low_stock_report_is_admin_only(self):
        self.assertEqual(self.client.get('/api/variants/low-stock/').status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.get('/api/variants/low-stock/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([v['sku'] for v in response.data], ['TT-HOOD-12-SKY', 'TT-ROMP-36-MNT'])

    def test_stock_update(self):
        url = f'/api/variants/{self.variant.id}/stock/'

        self.assertEqual(self.client.patch(url, {'stock_count': 9}, format='json').status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.patch(url, {'stock_count': 9}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['stock_count'], 9)

        self.assertEqual(self.client.patch(url, {'stock_count': -1}, format='json').status_code, 400)
        self.assertEqual(
            self.client.patch('/api/variants/99999/stock/', {'stock_count': 1}, format='json').status_code,
            404
        )


class SeedDataCommandTestCase(TestCase):

    def test_seed_creates_catalog(self):
        call_command('seed_data', products=4, colors=1, stdout=StringIO())

        self.assertEqual(Product.objects.count(), 4)
        self.assertTrue(ProductVariant.objects.exists())
