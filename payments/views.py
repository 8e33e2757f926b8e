"""
Payment API Views.

Implements:
- POST /payments/esewa/initiate/ - Signed eSewa form payload
- POST /payments/khalti/initiate/ - Khalti hosted payment URL
- GET /payments/esewa/callback/ - eSewa success redirect
- GET /payments/khalti/callback/ - Khalti return redirect

Callbacks always answer with a redirect to the storefront success or
failure page.
"""
import logging
from functools import wraps

from django.http import HttpResponseRedirect
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from .exceptions import GatewayConfigError, GatewayInitiationFailed, PaymentNotAllowed
from .gateways import failure_url, success_url
from .reconciler import reconcile_esewa, reconcile_khalti
from .serializers import EsewaInitiateSerializer, KhaltiInitiateSerializer
from .services import start_payment

logger = logging.getLogger(__name__)


def error_response(error, detail, status_code, reason=None):
    body = {'error': error, 'detail': str(detail)}
    if reason:
        body['reason'] = reason
    return Response(body, status=status_code)


def handle_payment_errors(func):
    """Translate payment initiation exceptions into API responses."""
    @wraps(func)
    def wrapper(self, request, *args, **kwargs):
        try:
            return func(self, request, *args, **kwargs)
        except PaymentNotAllowed as e:
            return error_response('Payment Not Allowed', e, status.HTTP_409_CONFLICT, e.reason)
        except GatewayConfigError as e:
            return error_response(
                'Payment Unavailable', 'Payment provider is not configured',
                status.HTTP_503_SERVICE_UNAVAILABLE, e.reason
            )
        except GatewayInitiationFailed as e:
            return error_response('Bad Gateway', e, status.HTTP_502_BAD_GATEWAY, e.reason)
        except APIException:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error initiating payment: {e}")
            return error_response(
                'Server Error', 'An unexpected error occurred',
                status.HTTP_500_INTERNAL_SERVER_ERROR
            )
    return wrapper


def outcome_redirect(outcome):
    if outcome.succeeded:
        return HttpResponseRedirect(success_url(outcome.order_id))
    return HttpResponseRedirect(failure_url(outcome.reason))


class EsewaInitiateView(APIView):
    """
    POST: Build the signed eSewa form for a pending order.

    Request Body:
        {"order_id": "<uuid>"}
    """

    @rate_limit(max_requests=10, window_seconds=60, scope='payments')
    @handle_payment_errors
    def post(self, request):
        serializer = EsewaInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payload = start_payment(serializer.validated_data['order_id'], 'ESEWA')
        return Response({'endpoint': payload.endpoint, 'fields': payload.fields})


class KhaltiInitiateView(APIView):
    """
    POST: Register a Khalti payment and return the hosted payment URL.

    Request Body:
        {"order_id": "<uuid>", "email": "optional@example.com"}
    """

    @rate_limit(max_requests=10, window_seconds=60, scope='payments')
    @handle_payment_errors
    def post(self, request):
        serializer = KhaltiInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = start_payment(data['order_id'], 'KHALTI', email=data.get('email'))
        return Response({'payment_url': payment.payment_url, 'pidx': payment.pidx})


class EsewaCallbackView(APIView):
    """GET: eSewa success redirect (?orderId=&data=)."""

    def get(self, request):
        outcome = reconcile_esewa(
            request.query_params.get('orderId'),
            request.query_params.get('data', '')
        )
        return outcome_redirect(outcome)


class KhaltiCallbackView(APIView):
    """GET: Khalti return redirect (?orderId=&pidx=)."""

    def get(self, request):
        order_id = request.query_params.get('orderId') or request.query_params.get('purchase_order_id')
        outcome = reconcile_khalti(order_id, request.query_params.get('pidx', ''))
        return outcome_redirect(outcome)
