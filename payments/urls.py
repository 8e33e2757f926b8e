"""
URL routing for payments.
"""
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('payments/esewa/initiate/', views.EsewaInitiateView.as_view(), name='esewa-initiate'),
    path('payments/khalti/initiate/', views.KhaltiInitiateView.as_view(), name='khalti-initiate'),
    path('payments/esewa/callback/', views.EsewaCallbackView.as_view(), name='esewa-callback'),
    path('payments/khalti/callback/', views.KhaltiCallbackView.as_view(), name='khalti-callback'),
]
