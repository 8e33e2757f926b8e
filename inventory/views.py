"""
Catalog and stock API Views with optimized queries.

Implements:
- Storefront product listing with category filter and sorting
- Product autocomplete with rate limiting
- Low stock report and manual stock correction for inventory managers
"""
from django.db.models import Prefetch
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response

from core.rate_limiting import rate_limit
from core.roles import AccessDenied, INVENTORY_MANAGERS, role_for_user
from . import ledger
from .models import Product, ProductVariant
from .serializers import (
    ProductSerializer,
    ProductMinimalSerializer,
    LowStockVariantSerializer,
    StockUpdateSerializer,
    VariantSerializer,
)

SORT_OPTIONS = {
    'price_asc': 'base_price',
    'price_desc': '-base_price',
    'newest': '-created_at',
}


def _product_queryset():
    return Product.objects.filter(is_active=True).prefetch_related(
        Prefetch('variants', queryset=ProductVariant.objects.order_by('sku'))
    )


# =============================================================================
# Product Views
# =============================================================================

class ProductListView(generics.ListAPIView):
    """
    GET: List active products with their variants.

    Query Parameters:
        - category: NEWBORN, INFANT, TODDLER or ACCESSORIES
        - sort: price_asc, price_desc or newest
        - in_stock: only products with at least one variant in stock (true/false)

    Uses prefetch_related to eliminate N+1 queries.
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = _product_queryset()

        category = self.request.query_params.get('category', '').upper()
        if category in Product.Category.values:
            queryset = queryset.filter(category=category)

        if self.request.query_params.get('in_stock', '').lower() == 'true':
            queryset = queryset.filter(variants__stock_count__gt=0).distinct()

        sort = self.request.query_params.get('sort', '')
        return queryset.order_by(SORT_OPTIONS.get(sort, 'title'))


class ProductDetailView(generics.RetrieveAPIView):
    """GET: Retrieve a product with variants."""
    serializer_class = ProductSerializer

    def get_queryset(self):
        return _product_queryset()


class ProductAutocompleteView(APIView):
    """
    GET: Fast prefix-matching autocomplete for product titles.

    Query Parameters:
        - q: Search query (minimum 3 characters)

    Returns top 10 matching products.
    Rate limited to 20 requests per minute.
    """

    @rate_limit(max_requests=20, window_seconds=60)
    def get(self, request):
        query = request.query_params.get('q', '').strip()

        # Require minimum 3 characters
        if len(query) < 3:
            return Response(
                {'error': 'Query must be at least 3 characters'},
                status=status.HTTP_400_BAD_REQUEST
            )

        products = Product.objects.filter(
            title__istartswith=query,
            is_active=True
        ).order_by('title')[:10]

        return Response(ProductMinimalSerializer(products, many=True).data)


# =============================================================================
# Stock Views
# =============================================================================

class LowStockVariantListView(APIView):
    """GET: Variants at or below their low stock threshold (inventory managers)."""

    def get(self, request):
        if role_for_user(request.user) not in INVENTORY_MANAGERS:
            return Response(
                {'error': 'Forbidden', 'detail': 'Inventory managers only'},
                status=status.HTTP_403_FORBIDDEN
            )
        variants = ledger.low_stock_variants()
        return Response(LowStockVariantSerializer(variants, many=True).data)


class VariantStockView(APIView):
    """
    PATCH: Overwrite a variant's stock count after a stock take.

    Request Body:
        {"stock_count": 12}
    """

    def patch(self, request, pk):
        serializer = StockUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            variant = ledger.set_stock(
                pk, serializer.validated_data['stock_count'], role_for_user(request.user)
            )
        except AccessDenied as e:
            return Response({'error': 'Forbidden', 'detail': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except ProductVariant.DoesNotExist:
            return Response({'error': 'Not Found', 'detail': f'Variant {pk} not found'},
                            status=status.HTTP_404_NOT_FOUND)
        except ledger.StockUpdateError as e:
            return Response({'error': 'Validation Error', 'detail': str(e)},
                            status=status.HTTP_400_BAD_REQUEST)

        return Response(VariantSerializer(variant).data)
