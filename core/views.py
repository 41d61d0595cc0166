"""
API views for Campus Marketplace.

Views authenticate the caller, validate the request shape with a serializer,
and hand an explicit ``Identity`` to ``core.services``. Errors raised by the
services are rendered by ``core.exceptions.marketplace_exception_handler``.
"""

import logging

from django.db import IntegrityError
from django.db.models import Q
from rest_framework import generics, status
from rest_framework.generics import ListAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from . import services
from .exceptions import Expired, InvalidSecret, NotFound
from .models import CartLine, Item, Order
from .permissions import IsSellerOrReadOnly
from .serializers import (
    BargainProposalSerializer,
    BargainRequestSerializer,
    BargainSerializer,
    BargainResponseSerializer,
    CartLineCreateSerializer,
    CartLineSerializer,
    CartLineUpdateSerializer,
    ConfirmDeliverySerializer,
    ItemListQuerySerializer,
    ItemSerializer,
    ItemWriteSerializer,
    OrderListQuerySerializer,
    OrderSerializer,
    PlacedOrderSerializer,
    PlaceOrderSerializer,
    SellerStatsSerializer,
    UserRegistrationSerializer,
)

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip


# ============================================================================
# Authentication
# ============================================================================

class EmailTokenObtainPairView(TokenObtainPairView):
    """
    Exchange email and password for an access/refresh token pair.

    Rate limited with the ``login`` throttle scope.
    """
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'


class UserRegistrationView(generics.CreateAPIView):
    """
    API endpoint for user registration.

    Returns created user data (excluding password) on success.
    Handles concurrent registration attempts with database-level uniqueness.
    """
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.perform_create(serializer)
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            return Response(
                {
                    'kind': 'validation_error',
                    'message': 'Invalid input.',
                    'errors': {'email': ['A user with that email already exists.']}
                },
                status=status.HTTP_400_BAD_REQUEST
            )

        logger.info(
            f"User registered. User ID: {serializer.instance.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(serializer.data, status=status.HTTP_201_CREATED)


# ============================================================================
# Catalogue
# ============================================================================

class ItemListCreateView(generics.ListCreateAPIView):
    """
    List available items or create a new listing.

    GET /api/items/ (public)
    Query Parameters:
    - search (optional): Case-insensitive match on the item name
    - category (optional): Exact category
    - min_price / max_price (optional): Price range, inclusive
    - page (optional): Page number for pagination

    POST /api/items/ (authenticated)
    Request body: {"name", "description", "category", "price", "quantity"}
    """
    permission_classes = [IsAuthenticatedOrReadOnly]
    pagination_class = PageNumberPagination

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return ItemWriteSerializer
        return ItemSerializer

    def get_queryset(self):
        query = ItemListQuerySerializer(data=self.request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        queryset = Item.objects.filter(is_available=True).select_related('seller')

        if params.get('search'):
            queryset = queryset.filter(name__icontains=params['search'])
        if params.get('category'):
            queryset = queryset.filter(category=params['category'])
        if params.get('min_price') is not None:
            queryset = queryset.filter(price__gte=params['min_price'])
        if params.get('max_price') is not None:
            queryset = queryset.filter(price__lte=params['max_price'])

        return queryset.order_by('-created_at', '-id')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = serializer.save(seller=request.user)

        logger.info(
            f"Item listed. Item ID: {item.id}, Seller ID: {request.user.id}, "
            f"Quantity: {item.quantity}, IP: {get_client_ip(request)}"
        )
        return Response(ItemSerializer(item).data, status=status.HTTP_201_CREATED)


class ItemDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    Retrieve, update or withdraw a listing.

    GET is public; PATCH and DELETE are limited to the seller. DELETE does not
    remove the row: it withdraws the listing (quantity 0) and cancels the
    item's pending orders.
    """
    queryset = Item.objects.select_related('seller')
    permission_classes = [IsAuthenticatedOrReadOnly, IsSellerOrReadOnly]
    http_method_names = ['get', 'patch', 'delete', 'head', 'options']

    def get_serializer_class(self):
        if self.request.method == 'PATCH':
            return ItemWriteSerializer
        return ItemSerializer

    def update(self, request, *args, **kwargs):
        item = self.get_object()
        serializer = ItemWriteSerializer(item, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        item = serializer.save()

        logger.info(
            f"Item updated. Item ID: {item.id}, Seller ID: {request.user.id}, "
            f"Fields: {sorted(serializer.validated_data)}"
        )
        return Response(ItemSerializer(item).data, status=status.HTTP_200_OK)

    def destroy(self, request, *args, **kwargs):
        item = self.get_object()
        item, cancelled = services.withdraw_item(services.Identity.from_user(request.user), item.pk)

        logger.info(
            f"Item withdrawn. Item ID: {item.id}, Seller ID: {request.user.id}, "
            f"Pending orders cancelled: {cancelled}, IP: {get_client_ip(request)}"
        )
        return Response(
            {'item': ItemSerializer(item).data, 'cancelled_orders': cancelled},
            status=status.HTTP_200_OK
        )


# ============================================================================
# Cart
# ============================================================================

class CartListCreateView(APIView):
    """
    GET /api/cart/: the caller's cart lines, newest first.
    POST /api/cart/: add an item, or update the quantity of an existing line.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        lines = CartLine.objects.filter(buyer=request.user).select_related('item', 'item__seller')
        return Response(CartLineSerializer(lines, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = CartLineCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        line = services.add_to_cart(
            services.Identity.from_user(request.user),
            serializer.validated_data['item'],
            serializer.validated_data['quantity']
        )

        return Response(CartLineSerializer(line).data, status=status.HTTP_201_CREATED)


class CartLineDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    Retrieve, update (quantity, saved_for_later) or remove one of the caller's
    cart lines. Lines of other users are reported as not found.
    """
    permission_classes = [IsAuthenticated]
    http_method_names = ['get', 'patch', 'delete', 'head', 'options']

    def get_queryset(self):
        return CartLine.objects.filter(buyer=self.request.user).select_related('item', 'item__seller')

    def get_serializer_class(self):
        if self.request.method == 'PATCH':
            return CartLineUpdateSerializer
        return CartLineSerializer

    def update(self, request, *args, **kwargs):
        line = self.get_object()
        serializer = CartLineUpdateSerializer(line, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        line = serializer.save()
        return Response(CartLineSerializer(line).data, status=status.HTTP_200_OK)


class CartCountView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return Response({'count': CartLine.objects.filter(buyer=request.user).count()})


class CartCheckView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, item_id, *args, **kwargs):
        line = CartLine.objects.filter(buyer=request.user, item_id=item_id).first()
        return Response({
            'in_cart': line is not None,
            'cart_line_id': line.id if line else None,
        })


# ============================================================================
# Bargaining
# ============================================================================

class BargainProposalView(APIView):
    """
    Buyer proposes a price on a cart line.

    POST /api/cart/{id}/bargain/
    Request body: {"price": "80.00", "note": "Can you do 80?"}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = BargainProposalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        line = services.propose_bargain(
            services.Identity.from_user(request.user),
            pk,
            serializer.validated_data['price'],
            serializer.validated_data['note']
        )

        logger.info(f"Bargain proposed. Cart line ID: {line.id}, Buyer ID: {request.user.id}")
        return Response(CartLineSerializer(line).data, status=status.HTTP_200_OK)


class BargainResponseView(APIView):
    """
    Accept, reject or counter a pending bargain.

    POST /api/cart/{id}/bargain/respond/
    Request body: {"action": "accept" | "reject" | "counter", "counter_price": "90.00", "note": ""}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = BargainResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        line = services.respond_to_bargain(
            services.Identity.from_user(request.user),
            pk,
            data['action'],
            counter_price=data.get('counter_price'),
            note=data['note']
        )

        logger.info(
            f"Bargain {data['action']}. Cart line ID: {line.id}, "
            f"User ID: {request.user.id}, State: {line.bargain_state}"
        )
        return Response(
            {'id': line.id, 'bargain': BargainSerializer(line.bargain).data},
            status=status.HTTP_200_OK
        )


# ============================================================================
# Orders
# ============================================================================

class OrderListCreateView(ListAPIView):
    """
    List the caller's orders or check out cart lines.

    GET /api/orders/?type=bought|sold|all&status=PENDING|DELIVERED|CANCELLED
    Newest first, paginated.

    POST /api/orders/
    Request body: {"cart_line_ids": [1, 2]}
    Success response (201): {"orders": [{..., "otp": "493021"}]}
    Each delivery code is returned once here and emailed to the buyer.
    """
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination
    serializer_class = OrderSerializer

    def get_queryset(self):
        query = OrderListQuerySerializer(data=self.request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data
        user = self.request.user

        if params['type'] == 'bought':
            queryset = Order.objects.filter(buyer=user)
        elif params['type'] == 'sold':
            queryset = Order.objects.filter(seller=user)
        else:
            queryset = Order.objects.filter(Q(buyer=user) | Q(seller=user))

        if params.get('status'):
            queryset = queryset.filter(status=params['status'])

        return queryset.select_related('item', 'buyer', 'seller').order_by('-created_at', '-id')

    def post(self, request, *args, **kwargs):
        serializer = PlaceOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        placed = services.place_order(
            services.Identity.from_user(request.user),
            serializer.validated_data['cart_line_ids']
        )

        logger.info(
            f"Checkout completed. Buyer ID: {request.user.id}, "
            f"Orders: {len(placed)}, IP: {get_client_ip(request)}"
        )

        response_serializer = PlacedOrderSerializer(
            [p.order for p in placed],
            many=True,
            context={'otps': {p.order.pk: p.otp for p in placed}}
        )
        return Response({'orders': response_serializer.data}, status=status.HTTP_201_CREATED)


class OrderConfirmDeliveryView(APIView):
    """
    Seller confirms delivery with the buyer's code.

    POST /api/orders/{id}/confirm-delivery/
    Request body: {"otp": "493021"}

    Error responses:
    - 400 expired: Code is past its expiry (regenerate it)
    - 400 invalid_secret: Code does not match
    - 404 not_found: Not an order sold by the caller
    - 409 invalid_state: Order already delivered or cancelled
    - 429: Too many attempts
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp'

    def post(self, request, pk, *args, **kwargs):
        serializer = ConfirmDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = services.confirm_delivery(
                services.Identity.from_user(request.user),
                pk,
                serializer.validated_data['otp']
            )
        except (InvalidSecret, Expired, NotFound) as e:
            logger.warning(
                f"Delivery confirmation rejected ({e.kind}). Order ID: {pk}, "
                f"User ID: {request.user.id}, IP: {get_client_ip(request)}"
            )
            raise

        logger.info(
            f"Order delivered. Order ID: {order.id}, Seller ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response({'order': OrderSerializer(order).data}, status=status.HTTP_200_OK)


class OrderRegenerateOtpView(APIView):
    """
    Buyer replaces the delivery code of a pending order.

    POST /api/orders/{id}/regenerate-otp/
    Success response (200): {"otp": "128834", "otp_expiry": "..."}
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp'

    def post(self, request, pk, *args, **kwargs):
        placed = services.regenerate_otp(services.Identity.from_user(request.user), pk)

        logger.info(f"Delivery code regenerated. Order ID: {pk}, Buyer ID: {request.user.id}")
        return Response(
            {
                'otp': placed.otp,
                'otp_expiry': OrderSerializer(placed.order).data['otp_expiry'],
            },
            status=status.HTTP_200_OK
        )


class OrderCancelView(APIView):
    """
    Buyer or seller cancels a pending order; its units go back on the item.

    POST /api/orders/{id}/cancel/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        order = services.cancel_order(services.Identity.from_user(request.user), pk)

        logger.info(
            f"Order cancelled. Order ID: {order.id}, User ID: {request.user.id}, "
            f"Restored quantity: {order.quantity}, IP: {get_client_ip(request)}"
        )
        return Response({'order': OrderSerializer(order).data}, status=status.HTTP_200_OK)


# ============================================================================
# Seller dashboard
# ============================================================================

class SellerItemsView(ListAPIView):
    """The caller's listings, withdrawn ones included."""
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination
    serializer_class = ItemSerializer

    def get_queryset(self):
        return Item.objects.filter(seller=self.request.user).select_related('seller').order_by('-created_at', '-id')


class SellerBargainRequestsView(ListAPIView):
    """Pending bargains proposed by buyers on the caller's items."""
    permission_classes = [IsAuthenticated]
    serializer_class = BargainRequestSerializer

    def get_queryset(self):
        return CartLine.objects.filter(
            item__seller=self.request.user,
            bargain_state=CartLine.BARGAIN_PENDING,
            bargain_proposed_by=CartLine.PROPOSED_BY_BUYER
        ).select_related('item', 'buyer').order_by('-updated_at')


class SellerStatsView(APIView):
    """
    Sales statistics for the caller.

    GET /api/seller/stats/
    Success response (200):
    {
        "sales_data": [{"month": "2026-09", "revenue": "120.00", "settled_revenue": "100.00"}],
        "total_earnings": "100.00",
        "pending_orders_count": 1,
        "completed_orders_count": 2,
        "cancelled_orders_count": 0
    }
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        stats = services.seller_stats(services.Identity.from_user(request.user))
        return Response(SellerStatsSerializer(stats).data)
