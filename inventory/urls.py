"""
URL routing for catalog and stock API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Products
    path('products/', views.ProductListView.as_view(), name='product-list'),
    path('products/autocomplete/', views.ProductAutocompleteView.as_view(), name='product-autocomplete'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),

    # Stock
    path('variants/low-stock/', views.LowStockVariantListView.as_view(), name='variant-low-stock'),
    path('variants/<int:pk>/stock/', views.VariantStockView.as_view(), name='variant-stock'),
]
