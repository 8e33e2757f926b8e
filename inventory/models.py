"""
Inventory Models - Catalog entities and per-SKU stock counters.

Models:
    - Product: Catalog item with base price and cost of goods
    - ProductVariant: Purchasable SKU (size x color) holding the stock count
"""
from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal


class Product(models.Model):
    """
    Product entity representing items available for sale.
    """

    class Category(models.TextChoices):
        NEWBORN = 'NEWBORN', 'Newborn'
        INFANT = 'INFANT', 'Infant'
        TODDLER = 'TODDLER', 'Toddler'
        ACCESSORIES = 'ACCESSORIES', 'Accessories'

    title = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product title for display and search"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    category = models.CharField(
        max_length=20,
        choices=Category.choices,
        default=Category.NEWBORN,
        db_index=True
    )
    cogs = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Cost of goods sold per unit"
    )
    base_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Selling price per unit, before VAT"
    )
    is_non_returnable = models.BooleanField(default=False)
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['title']
        indexes = [
            models.Index(fields=['title', 'is_active'], name='product_title_active_idx'),
            models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
            models.Index(fields=['base_price'], name='product_base_price_idx'),
        ]

    def __str__(self):
        return f"{self.title} (Rs. {self.base_price})"


class ProductVariant(models.Model):
    """
    A purchasable SKU of a Product.

    stock_count never goes below zero: the check constraint backs the
    conditional decrement in inventory.ledger.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='variants',
        help_text="Owning product"
    )
    size = models.CharField(max_length=50)
    color = models.CharField(max_length=50)
    sku = models.CharField(max_length=64, unique=True)
    stock_count = models.PositiveIntegerField(
        default=0,
        help_text="Units available for sale"
    )
    low_stock_threshold = models.PositiveIntegerField(
        default=5,
        help_text="Threshold for low stock alerts"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product Variant'
        verbose_name_plural = 'Product Variants'
        ordering = ['product', 'sku']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_count__gte=0),
                name='variant_stock_count_non_negative'
            ),
        ]
        indexes = [
            models.Index(fields=['product', 'stock_count'], name='variant_product_stock_idx'),
        ]

    def __str__(self):
        return f"{self.sku} ({self.size}/{self.color}): {self.stock_count} units"

    @property
    def is_low_stock(self) -> bool:
        """Check if stock is at or below the low stock threshold."""
        return self.stock_count <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_count == 0
