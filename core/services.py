"""
Order workflow services.

Each operation receives the caller's ``Identity`` explicitly and runs as one
database transaction. Rows are locked with ``select_for_update()`` where the
backend supports it, and every read-check-write is additionally written as a
conditional UPDATE keyed on the state that was read, so concurrent requests
cannot oversell stock or close an order twice.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from .exceptions import Expired, InvalidRequest, InvalidSecret, InvalidState, NotFound, Unavailable
from .models import CartLine, Item, Order
from .notifications import schedule_delivery_otp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as supplied by the identity provider."""

    user_id: int
    email: str

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.pk, email=user.email)


@dataclass(frozen=True)
class PlacedOrder:
    """A newly created order and its plaintext delivery code."""

    order: Order
    otp: str


# ============================================================================
# Cart
# ============================================================================

def add_to_cart(identity, item_id, quantity=1):
    """
    Add an item to the caller's cart, or update the quantity of an existing line.

    Raises:
        NotFound: Item does not exist or is not available
        InvalidRequest: Caller is the seller, or quantity is below 1
        Unavailable: Quantity exceeds the item's stock
    """
    if quantity is None or quantity < 1:
        raise InvalidRequest('Quantity must be at least 1.', item_id=item_id)

    with transaction.atomic():
        item = Item.objects.filter(pk=item_id, is_available=True).first()
        if item is None:
            raise NotFound('Item not found or unavailable.', item_id=item_id)

        if item.seller_id == identity.user_id:
            raise InvalidRequest('Cannot buy your own item.', item_id=item_id)

        if quantity > item.quantity:
            raise Unavailable(
                f'Only {item.quantity} unit(s) of "{item.name}" are available.',
                item_id=item_id
            )

        line = _find_cart_line(identity, item_id)

        if line is None:
            try:
                with transaction.atomic():
                    line = CartLine.objects.create(buyer_id=identity.user_id, item=item, quantity=quantity)
            except (IntegrityError, DjangoValidationError):
                # A concurrent request created the line after the lookup above
                line = _find_cart_line(identity, item_id)
                if line is None:
                    raise
                line.quantity = quantity
                line.save()
        else:
            line.quantity = quantity
            line.save()

    return line


def _find_cart_line(identity, item_id):
    return CartLine.objects.select_for_update().filter(
        buyer_id=identity.user_id,
        item_id=item_id
    ).first()


def get_cart_line(identity, cart_line_id, lock=False):
    """Return the caller's cart line or raise NotFound."""
    queryset = CartLine.objects.select_related('item')
    if lock:
        queryset = queryset.select_for_update()
    line = queryset.filter(pk=cart_line_id, buyer_id=identity.user_id).first()
    if line is None:
        raise NotFound(f'Cart line {cart_line_id} not found.', cart_line_id=cart_line_id)
    return line


# ============================================================================
# Bargaining
# ============================================================================

def propose_bargain(identity, cart_line_id, price, note=''):
    """
    Buyer proposes an alternate unit price on one of their cart lines.

    Replaces any earlier bargain on the line with a new PENDING one.
    """
    if price is None or price <= Decimal('0'):
        raise InvalidRequest('Bargain price must be greater than 0.', cart_line_id=cart_line_id)

    with transaction.atomic():
        line = get_cart_line(identity, cart_line_id, lock=True)
        line.bargain_price = price
        line.bargain_note = note or ''
        line.bargain_state = CartLine.BARGAIN_PENDING
        line.bargain_proposed_by = CartLine.PROPOSED_BY_BUYER
        line.save()

    return line


def respond_to_bargain(identity, cart_line_id, action, counter_price=None, note=''):
    """
    Accept, reject or counter the pending bargain on a cart line.

    Only the counterparty of the current proposer may respond: the seller
    answers buyer proposals and the buyer answers seller counter-offers.

    Args:
        identity: Caller
        cart_line_id: Cart line carrying the bargain
        action: 'accept', 'reject' or 'counter'
        counter_price: New price when countering
        note: Optional message for a counter-offer

    Raises:
        NotFound: Caller is neither the buyer nor the seller
        InvalidState: No pending bargain, or caller made the pending proposal
        InvalidRequest: Unknown action or missing counter price
    """
    if action not in ('accept', 'reject', 'counter'):
        raise InvalidRequest(f'Unknown bargain action "{action}".', cart_line_id=cart_line_id)

    with transaction.atomic():
        line = CartLine.objects.select_for_update().select_related('item').filter(
            Q(buyer_id=identity.user_id) | Q(item__seller_id=identity.user_id),
            pk=cart_line_id
        ).first()
        if line is None:
            raise NotFound('Bargain request not found.', cart_line_id=cart_line_id)

        if line.bargain_state != CartLine.BARGAIN_PENDING:
            raise InvalidState('There is no pending bargain on this cart line.', cart_line_id=cart_line_id)

        role = CartLine.PROPOSED_BY_BUYER if line.buyer_id == identity.user_id else CartLine.PROPOSED_BY_SELLER
        if role == line.bargain_proposed_by:
            raise InvalidState(
                'Waiting for the other party to respond to this offer.',
                cart_line_id=cart_line_id
            )

        if action == 'accept':
            line.bargain_state = CartLine.BARGAIN_ACCEPTED
        elif action == 'reject':
            line.bargain_state = CartLine.BARGAIN_REJECTED
        else:
            if counter_price is None or counter_price <= Decimal('0'):
                raise InvalidRequest('Counter price is required.', cart_line_id=cart_line_id)
            line.bargain_price = counter_price
            line.bargain_note = note or f'Counter offer from {role}'
            line.bargain_state = CartLine.BARGAIN_PENDING
            line.bargain_proposed_by = role

        line.save()

    return line


# ============================================================================
# Order placement
# ============================================================================

def _decrement_stock(item, quantity):
    """Take ``quantity`` units of ``item`` off the shelf or raise Unavailable."""
    now = timezone.now()
    updated = Item.objects.filter(
        pk=item.pk,
        is_available=True,
        quantity__gte=quantity
    ).update(quantity=F('quantity') - quantity, updated_at=now)

    if not updated:
        raise Unavailable(
            f'Item "{item.name}" is not available in the requested quantity.',
            item_id=item.pk
        )

    Item.objects.filter(pk=item.pk, quantity=0).update(is_available=False, updated_at=now)


def place_order(identity, cart_line_ids):
    """
    Convert the caller's cart lines into PENDING orders, all or nothing.

    For each line, in input order: check stock, create the order with a
    hashed delivery code, take the units off the item, and delete the line.
    Any failure rolls back every line handled by this call.

    Args:
        identity: Buying user
        cart_line_ids: Ids of the caller's cart lines to check out

    Returns:
        list[PlacedOrder]: Orders with their one-time plaintext codes

    Raises:
        InvalidRequest: Empty or duplicated id list
        NotFound: A cart line is missing or belongs to someone else
        Unavailable: An item is withdrawn or short of stock
    """
    if not cart_line_ids:
        raise InvalidRequest('At least one cart line is required.')

    if len(set(cart_line_ids)) != len(cart_line_ids):
        raise InvalidRequest('Cart line ids must not repeat.')

    placed = []

    with transaction.atomic():
        for cart_line_id in cart_line_ids:
            line = get_cart_line(identity, cart_line_id, lock=True)

            item = Item.objects.select_for_update().filter(pk=line.item_id).first()
            if item is None:
                raise NotFound(
                    f'Item for cart line {cart_line_id} not found.',
                    cart_line_id=cart_line_id
                )

            if not item.is_available or item.quantity < line.quantity:
                raise Unavailable(
                    f'Item "{item.name}" is not available in the requested quantity.',
                    item_id=item.pk,
                    cart_line_id=cart_line_id
                )

            order = Order(
                item=item,
                buyer_id=identity.user_id,
                seller_id=item.seller_id,
                quantity=line.quantity,
                listed_price=item.price,
                settled_price=line.settled_price(),
                status=Order.STATUS_PENDING,
            )
            otp = order.issue_otp()
            order.save()

            try:
                _decrement_stock(item, line.quantity)
            except Unavailable as e:
                e.context['cart_line_id'] = cart_line_id
                raise

            line.delete()

            schedule_delivery_otp(order, otp)
            placed.append(PlacedOrder(order=order, otp=otp))

    logger.info(
        f"Orders placed. Buyer ID: {identity.user_id}, "
        f"Order IDs: {[p.order.pk for p in placed]}"
    )
    return placed


# ============================================================================
# Delivery confirmation and cancellation
# ============================================================================

def _transition(order, new_status, **extra):
    """
    Move a PENDING order to a terminal status.

    The UPDATE only matches while the row is still PENDING, so when two
    requests race for the same order exactly one of them succeeds.
    """
    if not order.can_transition_to(new_status):
        raise InvalidState(
            f'Order is already {order.status.lower()}.',
            order_id=order.pk
        )

    updated = Order.objects.filter(
        pk=order.pk,
        status=Order.STATUS_PENDING
    ).update(status=new_status, updated_at=timezone.now(), **extra)

    if not updated:
        raise InvalidState('Order is no longer pending.', order_id=order.pk)

    order.refresh_from_db()
    return order


def confirm_delivery(identity, order_id, otp):
    """
    Seller confirms handover by presenting the buyer's delivery code.

    Raises:
        NotFound: No such order sold by the caller
        InvalidState: Order is not PENDING
        Expired: Code is past its expiry
        InvalidSecret: Code does not match
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().filter(
            pk=order_id,
            seller_id=identity.user_id
        ).first()
        if order is None:
            raise NotFound('Order not found.', order_id=order_id)

        if order.status != Order.STATUS_PENDING:
            raise InvalidState(f'Order is already {order.status.lower()}.', order_id=order_id)

        now = timezone.now()
        if order.otp_expired(now):
            raise Expired('Delivery code has expired.', order_id=order_id)

        if not order.otp_matches(otp):
            raise InvalidSecret('Invalid delivery code.', order_id=order_id)

        return _transition(order, Order.STATUS_DELIVERED, delivered_at=now)


def regenerate_otp(identity, order_id):
    """
    Buyer replaces the delivery code of a PENDING order.

    Returns:
        PlacedOrder: The order and its new plaintext code

    Raises:
        NotFound: No such order bought by the caller
        InvalidState: Order is not PENDING
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().filter(
            pk=order_id,
            buyer_id=identity.user_id
        ).first()
        if order is None:
            raise NotFound('Order not found.', order_id=order_id)

        if order.status != Order.STATUS_PENDING:
            raise InvalidState(f'Order is already {order.status.lower()}.', order_id=order_id)

        otp = order.issue_otp()
        updated = Order.objects.filter(
            pk=order.pk,
            status=Order.STATUS_PENDING
        ).update(otp_hash=order.otp_hash, otp_expiry=order.otp_expiry, updated_at=timezone.now())
        if not updated:
            raise InvalidState('Order is no longer pending.', order_id=order_id)

        order.refresh_from_db()
        schedule_delivery_otp(order, otp)

    return PlacedOrder(order=order, otp=otp)


def cancel_order(identity, order_id):
    """
    Buyer or seller cancels a PENDING order and the stock goes back on the item.

    The item is available again afterwards since it has stock; withdrawn
    listings never reach this point because withdrawing cancels their
    pending orders.

    Raises:
        NotFound: No such order involving the caller
        InvalidState: Order is not PENDING
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().filter(
            Q(buyer_id=identity.user_id) | Q(seller_id=identity.user_id),
            pk=order_id
        ).first()
        if order is None:
            raise NotFound('Order not found.', order_id=order_id)

        if order.status != Order.STATUS_PENDING:
            raise InvalidState(f'Order is already {order.status.lower()}.', order_id=order_id)

        now = timezone.now()
        order = _transition(order, Order.STATUS_CANCELLED, cancelled_at=now)

        Item.objects.filter(pk=order.item_id).update(
            quantity=F('quantity') + order.quantity,
            is_available=True,
            updated_at=now
        )

    return order


# ============================================================================
# Listing withdrawal
# ============================================================================

def withdraw_item(identity, item_id):
    """
    Seller takes a listing off the market.

    The item is kept (orders reference it) with no stock, and its PENDING
    orders are cancelled without returning stock.

    Returns:
        tuple: (item, number of orders cancelled)
    """
    with transaction.atomic():
        item = Item.objects.select_for_update().filter(
            pk=item_id,
            seller_id=identity.user_id
        ).first()
        if item is None:
            raise NotFound('Item not found.', item_id=item_id)

        item.withdraw()

        now = timezone.now()
        cancelled = Order.objects.filter(
            item_id=item.pk,
            status=Order.STATUS_PENDING
        ).update(status=Order.STATUS_CANCELLED, cancelled_at=now, updated_at=now)

    return item, cancelled


# ============================================================================
# Seller dashboard
# ============================================================================

def seller_stats(identity):
    """
    Sales summary for the caller's items.

    Revenue is counted over DELIVERED orders only and grouped by the month the
    order was placed. ``revenue`` uses the listed price, ``settled_revenue``
    the price actually charged after bargaining.

    Returns:
        dict: sales_data, total_earnings and per-status order counts
    """
    orders = Order.objects.filter(seller_id=identity.user_id).only(
        'status', 'quantity', 'listed_price', 'settled_price', 'created_at'
    ).order_by('created_at')

    months = {}
    total_earnings = Decimal('0.00')
    counts = {
        Order.STATUS_PENDING: 0,
        Order.STATUS_DELIVERED: 0,
        Order.STATUS_CANCELLED: 0,
    }

    for order in orders:
        counts[order.status] += 1
        if order.status != Order.STATUS_DELIVERED:
            continue

        month = timezone.localtime(order.created_at).strftime('%Y-%m')
        bucket = months.setdefault(month, {
            'month': month,
            'revenue': Decimal('0.00'),
            'settled_revenue': Decimal('0.00'),
        })
        bucket['revenue'] += order.listed_price * order.quantity
        bucket['settled_revenue'] += order.settled_price * order.quantity
        total_earnings += order.settled_price * order.quantity

    return {
        'sales_data': list(months.values()),
        'total_earnings': total_earnings,
        'pending_orders_count': counts[Order.STATUS_PENDING],
        'completed_orders_count': counts[Order.STATUS_DELIVERED],
        'cancelled_orders_count': counts[Order.STATUS_CANCELLED],
    }
