"""
Serializers for catalog and stock models.
"""
from rest_framework import serializers
from .models import Product, ProductVariant


class VariantSerializer(serializers.ModelSerializer):
    """Serializer for a variant with stock flags."""
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = ProductVariant
        fields = [
            'id', 'sku', 'size', 'color', 'stock_count',
            'low_stock_threshold', 'is_low_stock', 'is_out_of_stock'
        ]
        read_only_fields = fields


class VariantMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested variant representation on order lines."""
    product_title = serializers.CharField(source='product.title', read_only=True)

    class Meta:
        model = ProductVariant
        fields = ['id', 'sku', 'size', 'color', 'product_title']


class ProductSerializer(serializers.ModelSerializer):
    """Storefront product with its variants. Cost of goods stays internal."""
    variants = VariantSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'title', 'description', 'category', 'base_price',
            'is_non_returnable', 'variants', 'created_at'
        ]
        read_only_fields = fields


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for autocomplete."""
    class Meta:
        model = Product
        fields = ['id', 'title', 'base_price']


class LowStockVariantSerializer(serializers.ModelSerializer):
    product_title = serializers.CharField(source='product.title', read_only=True)

    class Meta:
        model = ProductVariant
        fields = ['id', 'sku', 'product_title', 'size', 'color', 'stock_count', 'low_stock_threshold']


class StockUpdateSerializer(serializers.Serializer):
    stock_count = serializers.IntegerField(min_value=0)
