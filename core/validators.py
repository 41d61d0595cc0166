"""
Custom validators for marketplace models and serializers.
"""

import re

from django.conf import settings
from django.core.exceptions import ValidationError


def validate_phone_number(value):
    """
    Validate contact number format.

    Accepts international formats with optional country codes, spaces, dashes, and parentheses.
    Requires at least 10 digits.

    Valid formats:
    - +91-98765-43210
    - +1 (234) 567-8900
    - 9876543210

    Args:
        value: Phone number string to validate

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:  # Empty string is allowed (optional field)
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            'Contact number can only contain digits, spaces, dashes, parentheses, and plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)

    if len(digits) < 10:
        raise ValidationError(
            'Contact number must contain at least 10 digits.',
            code='phone_too_short'
        )

    if len(set(digits)) == 1:
        raise ValidationError(
            'Contact number cannot be all the same digit.',
            code='invalid_phone_pattern'
        )


def validate_otp_format(value):
    """
    Validate that a delivery code is made of exactly ORDER_OTP_LENGTH digits.

    Args:
        value: Candidate code as submitted by the seller

    Raises:
        ValidationError: If the code is not numeric or has the wrong length
    """
    length = settings.ORDER_OTP_LENGTH
    if not value or not value.isdigit() or len(value) != length:
        raise ValidationError(
            f'Delivery code must be exactly {length} digits.',
            code='invalid_otp_format'
        )
