"""
URL configuration for the Storefront & Back-Office API.
"""
import logging

from django.contrib import admin
from django.db import DatabaseError, connection
from django.urls import path, include
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """Health check endpoint for container orchestration; 503 when the database is unreachable."""
    try:
        connection.ensure_connection()
    except DatabaseError as e:
        logger.error(f"Health check failed: {e}")
        return JsonResponse({'status': 'unhealthy', 'service': 'storefront-api'}, status=503)
    return JsonResponse({'status': 'healthy', 'service': 'storefront-api'})


urlpatterns = [
    path('admin/', admin.site.urls),
    path('health/', health_check, name='health-check'),
    path('api/', include('inventory.urls')),
    path('api/', include('orders.urls')),
    path('api/', include('payments.urls')),
]
