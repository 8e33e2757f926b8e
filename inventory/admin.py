"""
Django Admin configuration for catalog models.
"""
from django.contrib import admin
from .models import Product, ProductVariant


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0
    fields = ['sku', 'size', 'color', 'stock_count', 'low_stock_threshold']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'category', 'base_price', 'cogs', 'is_active', 'variant_count', 'created_at']
    list_filter = ['category', 'is_active', 'is_non_returnable', 'created_at']
    search_fields = ['title', 'description']
    ordering = ['title']
    inlines = [ProductVariantInline]

    def variant_count(self, obj):
        return obj.variants.count()
    variant_count.short_description = 'Variants'


@admin.register(ProductVariant)
class ProductVariantAdmin(admin.ModelAdmin):
    list_display = ['id', 'sku', 'product', 'size', 'color', 'stock_count', 'is_low_stock', 'updated_at']
    list_filter = ['product__category', 'updated_at']
    search_fields = ['sku', 'product__title']
    ordering = ['product', 'sku']
    raw_id_fields = ['product']

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'
