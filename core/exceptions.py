"""
Error taxonomy for marketplace operations and the project-wide DRF exception handler.

Every error response has the shape::

    {"kind": "<machine readable kind>", "message": "<human readable text>", ...}

Marketplace errors add the ids of the order, item or cart line that caused
the failure so clients can correct and resubmit their request.
"""

import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler, set_rollback

logger = logging.getLogger(__name__)


class MarketplaceError(APIException):
    """
    Base class for errors raised by the order workflow services.

    Keyword arguments other than ``detail`` and ``code`` are kept as context
    and rendered next to the message (e.g. ``order_id=12``).
    """

    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'error'
    default_detail = 'The request could not be completed.'
    default_code = 'error'

    def __init__(self, detail=None, code=None, **context):
        super().__init__(detail, code)
        self.context = {key: value for key, value in context.items() if value is not None}


class NotFound(MarketplaceError):
    """Record is missing or does not belong to the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    kind = 'not_found'
    default_detail = 'Record not found.'
    default_code = 'not_found'


class Unavailable(MarketplaceError):
    """Item is withdrawn or does not have enough stock."""

    status_code = status.HTTP_409_CONFLICT
    kind = 'unavailable'
    default_detail = 'Item is not available in the requested quantity.'
    default_code = 'unavailable'


class Expired(MarketplaceError):
    """Delivery code is past its expiry."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'expired'
    default_detail = 'Delivery code has expired.'
    default_code = 'expired'


class InvalidSecret(MarketplaceError):
    """Delivery code does not match."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'invalid_secret'
    default_detail = 'Invalid delivery code.'
    default_code = 'invalid_secret'


class InvalidState(MarketplaceError):
    """Operation is not allowed in the record's current state."""

    status_code = status.HTTP_409_CONFLICT
    kind = 'invalid_state'
    default_detail = 'Operation not allowed in the current state.'
    default_code = 'invalid_state'


class InvalidRequest(MarketplaceError):
    """Malformed or inconsistent input."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'validation_error'
    default_detail = 'Invalid input.'
    default_code = 'invalid'


def _kind_for(exc):
    if isinstance(exc, MarketplaceError):
        return exc.kind
    if isinstance(exc, DRFValidationError):
        return 'validation_error'
    if isinstance(exc, Http404):
        return 'not_found'
    if isinstance(exc, DjangoPermissionDenied):
        return 'permission_denied'
    return getattr(exc, 'default_code', 'error')


def marketplace_exception_handler(exc, context):
    """
    Render every error as ``{kind, message, ...}``.

    DRF handles the exceptions it knows about (APIException, Http404,
    PermissionDenied); anything else is an unexpected server error that is
    logged with its traceback and reported without internal detail.
    """
    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            f"Unhandled error in {view.__class__.__name__ if view else 'unknown view'}: {exc!r}",
            exc_info=exc
        )
        set_rollback()
        return Response(
            {'kind': 'server_error', 'message': 'An unexpected error occurred.'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    data = {'kind': _kind_for(exc)}

    if isinstance(exc, MarketplaceError):
        data['message'] = str(exc.detail)
        data.update(exc.context)
    elif isinstance(response.data, dict) and 'detail' in response.data:
        data['message'] = str(response.data['detail'])
    else:
        data['message'] = 'Invalid input.'
        data['errors'] = response.data

    response.data = data
    return response
