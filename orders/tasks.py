"""
Celery tasks for order processing.

Tasks:
    - notify_order_status: Customer notification after a status change
"""
import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

SUBJECTS = {
    'CONFIRMED': "Your {store} order is confirmed",
    'SHIPPED': "Your {store} package is on the way",
    'DELIVERED': "Your {store} package was delivered",
}


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True
)
def notify_order_status(self, order_id: str, status: str):
    """
    Tell the customer their order moved to status.

    Runs after the transition has committed. A stale task (the order has
    moved on since it was queued) is skipped.

    Args:
        order_id: ID of the order
        status: Status the order entered

    Returns:
        Dict with notification details
    """
    from orders.models import Order
    from orders.pricing import format_rs

    try:
        order = Order.objects.select_related('user').get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order {order_id} not found for {status} notification")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if order.status != status:
        logger.warning(
            f"Order {order_id} is {order.status}, not {status}; "
            "skipping notification"
        )
        return {'status': 'skipped', 'message': f'Order {order_id} is no longer {status}'}

    email = order.user.email if order.user_id and order.user.email else None
    if not email:
        logger.info(f"Order {order_id} has no customer email; {status} notification skipped")
        return {'status': 'skipped', 'message': 'No customer email'}

    store = getattr(settings, 'STORE_NAME', 'Tiny Tales')
    subject = SUBJECTS.get(status, "Your {store} order was updated").format(store=store)
    first_name = order.customer_name.split(' ')[0] if order.customer_name else 'there'
    body = (
        f"Hi {first_name},\n\n"
        f"Order #{order.short_code} ({format_rs(order.grand_total)}) is now "
        f"{order.get_status_display().lower()}.\n\n"
        f"Warmly,\nThe {store} Team\n"
    )

    send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [email])
    logger.info(f"Sent {status} notification for order {order.short_code} to {email}")

    return {
        'status': 'success',
        'order_id': str(order.id),
        'message': f'{status} notification sent for order {order_id}'
    }
