"""
Out-of-band delivery of order codes to buyers.
"""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction

logger = logging.getLogger(__name__)


def send_delivery_otp(order, otp):
    """
    Email the plaintext delivery code for ``order`` to its buyer.

    The code is only ever placed in the message body; it is not logged.

    Args:
        order: Order the code belongs to
        otp: Plaintext delivery code

    Returns:
        bool: True if the message was handed to the mail backend
    """
    if not settings.ORDER_OTP_EMAIL_ENABLED:
        return False

    subject = f'Delivery code for order #{order.pk}'
    message = (
        f'Your delivery code for "{order.item.name}" (order #{order.pk}) is {otp}.\n\n'
        f'Share it with the seller only when you receive the item. '
        f'The code expires at {order.otp_expiry:%Y-%m-%d %H:%M} UTC; '
        f'you can request a new one from your orders page.'
    )

    try:
        send_mail(subject, message, settings.DEFAULT_FROM_EMAIL, [order.buyer.email])
    except OSError as e:
        # The order is already committed; the buyer can regenerate the code
        logger.error(
            f"Failed to email delivery code. Order ID: {order.pk}, "
            f"Buyer ID: {order.buyer_id}, Error: {e}"
        )
        return False

    logger.info(f"Delivery code emailed. Order ID: {order.pk}, Buyer ID: {order.buyer_id}")
    return True


def schedule_delivery_otp(order, otp):
    """Send the delivery code once the surrounding transaction commits."""
    transaction.on_commit(lambda: send_delivery_otp(order, otp))
