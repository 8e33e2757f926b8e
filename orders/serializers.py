"""
Serializers for order models.
"""
from rest_framework import serializers
from .models import Order, OrderItem, Invoice
from inventory.serializers import VariantMinimalSerializer


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with variant details."""
    variant = VariantMinimalSerializer(read_only=True)
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'variant', 'quantity', 'price_at_purchase', 'subtotal']


class OrderItemCreateSerializer(serializers.Serializer):
    """Serializer for cart lines in a checkout request."""
    variant_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = [
            'invoice_number', 'amount_due', 'tax_amount', 'amount_paid',
            'status', 'paid_at', 'created_at'
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items and invoice.
    Uses prefetch_related for optimized queries.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    invoice = InvoiceSerializer(read_only=True)
    grand_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'customer_name', 'contact_phone', 'shipping_address',
            'is_international', 'payment_method', 'status',
            'total_amount', 'tax_amount', 'grand_total',
            'items', 'invoice', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """
    Optimized serializer for the operator order pipeline.
    """
    item_count = serializers.SerializerMethodField()
    invoice_status = serializers.CharField(source='invoice.status', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'customer_name', 'payment_method', 'status',
            'total_amount', 'tax_amount', 'invoice_status', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class CheckoutSerializer(serializers.Serializer):
    """
    Serializer for POST /checkout/

    Request format:
    {
        "customer_name": "Sita Sharma",
        "contact_phone": "9800000000",
        "shipping_address": "Jhamsikhel, Lalitpur, Nepal",
        "is_international": false,
        "payment_method": "ESEWA",
        "items": [
            {"variant_id": 1, "quantity": 2},
            {"variant_id": 3, "quantity": 1}
        ]
    }
    """
    customer_name = serializers.CharField(max_length=200)
    contact_phone = serializers.CharField(max_length=32)
    shipping_address = serializers.CharField()
    is_international = serializers.BooleanField(default=False)
    payment_method = serializers.CharField(max_length=50)
    items = OrderItemCreateSerializer(many=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")

        variant_ids = [item['variant_id'] for item in value]
        if len(variant_ids) != len(set(variant_ids)):
            raise serializers.ValidationError("Duplicate variants in order items")

        return value

    def validate_payment_method(self, value):
        return value.strip().upper()


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class PaymentMethodUpdateSerializer(serializers.Serializer):
    payment_method = serializers.CharField(max_length=50)
