"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItem, Invoice


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['variant', 'quantity', 'price_at_purchase', 'subtotal']
    can_delete = False

    def subtotal(self, obj):
        return f"Rs. {obj.subtotal}"
    subtotal.short_description = 'Subtotal'


class InvoiceInline(admin.StackedInline):
    model = Invoice
    extra = 0
    can_delete = False
    readonly_fields = ['invoice_number', 'amount_due', 'tax_amount', 'amount_paid', 'status', 'paid_at']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['short_code', 'customer_name', 'payment_method', 'status', 'total_amount', 'tax_amount', 'created_at']
    list_filter = ['status', 'payment_method', 'is_international', 'created_at']
    search_fields = ['id', 'customer_name', 'contact_phone', 'invoice__invoice_number']
    ordering = ['-created_at']
    # Status changes go through the state machine so restock and notifications fire
    readonly_fields = ['status', 'total_amount', 'tax_amount', 'payment_reference', 'created_at', 'updated_at']
    inlines = [OrderItemInline, InvoiceInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'order', 'amount_due', 'amount_paid', 'status', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['invoice_number', 'order__customer_name']
    ordering = ['-created_at']
    readonly_fields = ['invoice_number', 'order', 'amount_due', 'tax_amount', 'amount_paid', 'paid_at', 'created_at']
