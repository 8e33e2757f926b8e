"""
Order API Views.

Implements:
- POST /checkout/ - Create order + invoice in one transaction
- GET /orders/ - Operator order pipeline
- GET /orders/{id}/ - Order detail with items and invoice
- POST /orders/{id}/status/ - Operator status change
- POST /orders/{id}/invoice/capture/ - Record payment collected
- PATCH /orders/{id}/payment-method/ - Correct payment method
- GET /orders/stats/ - Month-to-date sales analytics
"""
import logging
from functools import wraps

from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from core.roles import AccessDenied, ORDER_OPERATORS, role_for_user
from .exceptions import InvalidStatusTransition, OrderNotFound, OrderValidationError
from .models import Order
from .serializers import (
    CheckoutSerializer,
    InvoiceSerializer,
    OrderListSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PaymentMethodUpdateSerializer,
)
from .services import create_order, get_order, get_sales_analytics
from .state_machine import capture_invoice_payment, correct_payment_method, update_order_status

logger = logging.getLogger(__name__)

CHECKOUT_ERROR_STATUS = {
    'variant_not_found': status.HTTP_400_BAD_REQUEST,
    'insufficient_stock': status.HTTP_409_CONFLICT,
    'transaction_conflict': status.HTTP_409_CONFLICT,
}


def error_response(error, detail, status_code):
    return Response({'error': error, 'detail': str(detail)}, status=status_code)


def handle_order_errors(func):
    """Translate order-domain exceptions into API responses."""
    @wraps(func)
    def wrapper(self, request, *args, **kwargs):
        try:
            return func(self, request, *args, **kwargs)
        except AccessDenied as e:
            return error_response('Forbidden', e, status.HTTP_403_FORBIDDEN)
        except OrderNotFound as e:
            return error_response('Not Found', e, status.HTTP_404_NOT_FOUND)
        except OrderValidationError as e:
            logger.warning(f"Order validation failed: {e}")
            return error_response('Validation Error', e, status.HTTP_400_BAD_REQUEST)
        except InvalidStatusTransition as e:
            return error_response('Invalid Transition', e, status.HTTP_409_CONFLICT)
    return wrapper


class CheckoutView(APIView):
    """
    POST: Create an order from a cart.

    Returns:
        - 201: {order, invoice}
        - 400: Validation error or unknown variant
        - 409: Insufficient stock or invoice sequence conflict
    """

    @rate_limit(max_requests=10, window_seconds=60, scope='checkout')
    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        customer = {
            'customer_name': data['customer_name'],
            'contact_phone': data['contact_phone'],
            'shipping_address': data['shipping_address'],
            'is_international': data['is_international'],
        }
        items = [dict(item) for item in data['items']]

        try:
            result = create_order(
                customer, data['payment_method'], items,
                user=request.user, acting_role=role_for_user(request.user)
            )
        except OrderValidationError as e:
            logger.warning(f"Order validation failed: {e}")
            return error_response('Validation Error', e, status.HTTP_400_BAD_REQUEST)
        except Exception as e:
            logger.exception(f"Unexpected error creating order: {e}")
            return error_response(
                'Server Error', 'An unexpected error occurred',
                status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        if not result.success:
            return Response(
                {'error': result.error_code, 'detail': result.error_message},
                status=CHECKOUT_ERROR_STATUS.get(result.error_code, status.HTTP_503_SERVICE_UNAVAILABLE)
            )

        order = get_order(result.order.pk)
        return Response(
            {
                'order': OrderSerializer(order).data,
                'invoice': InvoiceSerializer(result.invoice).data,
            },
            status=status.HTTP_201_CREATED
        )


class OrderListView(generics.ListAPIView):
    """
    GET: Order pipeline for operators.

    Query Parameters:
        - status: Filter by status
        - payment_method: Filter by payment method
    """
    serializer_class = OrderListSerializer

    def list(self, request, *args, **kwargs):
        if role_for_user(request.user) not in ORDER_OPERATORS:
            return error_response('Forbidden', 'Order operators only', status.HTTP_403_FORBIDDEN)
        return super().list(request, *args, **kwargs)

    def get_queryset(self):
        queryset = Order.objects.select_related('invoice').prefetch_related('items')

        status_filter = self.request.query_params.get('status', '').upper()
        if status_filter in Order.Status.values:
            queryset = queryset.filter(status=status_filter)

        payment_method = self.request.query_params.get('payment_method', '').upper()
        if payment_method:
            queryset = queryset.filter(payment_method=payment_method)

        return queryset.order_by('-created_at')


class OrderDetailView(APIView):
    """
    GET: Retrieve order details with items and invoice.

    Order ids are random UUIDs; knowing one is what lets a guest see the
    order on the checkout success page.
    """

    @handle_order_errors
    def get(self, request, pk):
        return Response(OrderSerializer(get_order(pk)).data)


class OrderStatusView(APIView):
    """
    POST: Move an order to a new status (operators only).

    Request Body:
        {"status": "PACKED"}
    """

    @handle_order_errors
    def post(self, request, pk):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        update_order_status(pk, serializer.validated_data['status'], role_for_user(request.user))
        return Response(OrderSerializer(get_order(pk)).data)


class InvoiceCaptureView(APIView):
    """POST: Mark the order's invoice as paid in full."""

    @handle_order_errors
    def post(self, request, pk):
        invoice = capture_invoice_payment(pk, role_for_user(request.user))
        return Response(InvoiceSerializer(invoice).data)


class OrderPaymentMethodView(APIView):
    """PATCH: Correct the payment method of a pending order."""

    @handle_order_errors
    def patch(self, request, pk):
        serializer = PaymentMethodUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        correct_payment_method(
            pk, serializer.validated_data['payment_method'], role_for_user(request.user)
        )
        return Response(OrderSerializer(get_order(pk)).data)


class OrderStatsView(APIView):
    """
    GET: Month-to-date revenue, COGS, gross profit and order count.
    """

    @handle_order_errors
    def get(self, request):
        return Response(get_sales_analytics(role_for_user(request.user)))
