"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('checkout/', views.CheckoutView.as_view(), name='checkout'),
    path('orders/', views.OrderListView.as_view(), name='order-list'),
    path('orders/stats/', views.OrderStatsView.as_view(), name='order-stats'),
    path('orders/<uuid:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<uuid:pk>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<uuid:pk>/invoice/capture/', views.InvoiceCaptureView.as_view(), name='invoice-capture'),
    path('orders/<uuid:pk>/payment-method/', views.OrderPaymentMethodView.as_view(), name='order-payment-method'),
]
