"""
Management command to seed the database with a sample catalog.

Generates:
- Products across every category
- Size x color variants per product with random stock

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing catalog first
"""
import random
from decimal import Decimal
from django.core.management.base import BaseCommand
from django.db import transaction

from inventory.models import Product, ProductVariant


PRODUCT_TEMPLATES = {
    Product.Category.NEWBORN: ['Cotton Onesie', 'Swaddle Wrap', 'Mittens Set', 'Knit Cap'],
    Product.Category.INFANT: ['Romper', 'Sleepsuit', 'Bodysuit Pack', 'Bib Set'],
    Product.Category.TODDLER: ['Dungarees', 'Hoodie', 'Jogger Set', 'Frock'],
    Product.Category.ACCESSORIES: ['Baby Blanket', 'Soft Shoes', 'Hair Clips', 'Diaper Bag'],
}

SIZES = {
    Product.Category.NEWBORN: ['0-3M'],
    Product.Category.INFANT: ['3-6M', '6-12M'],
    Product.Category.TODDLER: ['1-2Y', '2-3Y', '3-4Y'],
    Product.Category.ACCESSORIES: ['ONE'],
}

ADJECTIVES = ['Organic', 'Handmade', 'Classic', 'Everyday', 'Festive', 'Dhaka-Print']

COLORS = ['White', 'Cream', 'Sky', 'Peach', 'Mint', 'Mustard']


class Command(BaseCommand):
    help = 'Seed the database with sample products and variants'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing catalog before seeding (fails if orders reference it)',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=40,
            help='Number of products to create (default: 40)',
        )
        parser.add_argument(
            '--colors',
            type=int,
            default=2,
            help='Colors per product (default: 2)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing catalog...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            products = self._create_products(options['products'])
            self._create_variants(products, options['colors'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear catalog data. Orders are never deleted."""
        ProductVariant.objects.all().delete()
        Product.objects.all().delete()

        self.stdout.write(self.style.WARNING('Existing catalog cleared.'))

    def _create_products(self, count):
        products = []
        categories = list(PRODUCT_TEMPLATES)

        for i in range(count):
            category = categories[i % len(categories)]
            base_name = random.choice(PRODUCT_TEMPLATES[category])
            title = f"{random.choice(ADJECTIVES)} {base_name} #{i + 1}"

            # Prices in NPR, rounded to the nearest 50
            base_price = Decimal(random.randrange(600, 4000, 50))
            cogs = (base_price * Decimal(str(random.uniform(0.35, 0.6)))).quantize(Decimal('0.01'))

            products.append(Product(
                title=title,
                description=f"{base_name} in soft, breathable fabric.",
                category=category,
                base_price=base_price,
                cogs=cogs,
                is_non_returnable=category == Product.Category.NEWBORN and random.random() < 0.2,
            ))

        Product.objects.bulk_create(products)
        products = list(Product.objects.all())
        self.stdout.write(self.style.SUCCESS(f'Created {len(products)} products'))
        return products

    def _create_variants(self, products, colors_per_product):
        variants = []

        for product in products:
            for color in random.sample(COLORS, k=min(colors_per_product, len(COLORS))):
                for size in SIZES[product.category]:
                    variants.append(ProductVariant(
                        product=product,
                        size=size,
                        color=color,
                        sku=f"TT-{product.id:04d}-{size}-{color[:3]}".upper(),
                        stock_count=random.randint(0, 40),
                        low_stock_threshold=5,
                    ))

        ProductVariant.objects.bulk_create(variants, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {ProductVariant.objects.count()} variants'))
