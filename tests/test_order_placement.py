"""
Test suite for order placement.

Tests cover:
- Stock conservation and cart line consumption
- Settled price from accepted bargains
- Unavailable and withdrawn items
- All-or-nothing batches (missing, foreign and short lines)
- Input validation (empty and repeated ids)
- HTTP endpoint shape, one-time delivery codes and the buyer email
"""

from decimal import Decimal

import pytest
from django.core import mail
from rest_framework import status

from core import services
from core.exceptions import InvalidRequest, NotFound, Unavailable
from core.models import CartLine, Item, Order

ORDERS_URL = '/api/orders/'


@pytest.mark.django_db
class TestPlaceOrderService:

    def test_placement_conserves_stock_and_consumes_lines(self, make_item, make_line, buyer, identity):
        lamp = make_item(name='Lamp', quantity=5)
        chair = make_item(name='Chair', quantity=2)
        lines = [make_line(lamp, quantity=3), make_line(chair, quantity=2)]
        stock_before = lamp.quantity + chair.quantity

        placed = services.place_order(identity(buyer), [line.id for line in lines])

        lamp.refresh_from_db()
        chair.refresh_from_db()
        assert stock_before - (lamp.quantity + chair.quantity) == 5
        assert lamp.quantity == 2 and lamp.is_available
        assert chair.quantity == 0 and not chair.is_available
        assert not CartLine.objects.filter(pk__in=[line.id for line in lines]).exists()

        assert len(placed) == 2
        assert [p.order.item_id for p in placed] == [lamp.id, chair.id]
        for p in placed:
            assert p.order.status == Order.STATUS_PENDING
            assert p.order.buyer_id == buyer.id
            assert p.order.otp_matches(p.otp)
            assert p.otp not in p.order.otp_hash

    def test_order_records_listed_and_settled_price(self, make_item, make_line, buyer, seller, identity):
        item = make_item(price='50.00', quantity=1)
        line = make_line(
            item,
            bargain_price=Decimal('42.50'),
            bargain_state=CartLine.BARGAIN_ACCEPTED,
            bargain_proposed_by=CartLine.PROPOSED_BY_BUYER
        )

        order = services.place_order(identity(buyer), [line.id])[0].order

        assert order.seller_id == seller.id
        assert order.listed_price == Decimal('50.00')
        assert order.settled_price == Decimal('42.50')
        assert order.total_price == Decimal('42.50')

    def test_pending_bargain_is_ignored(self, make_item, make_line, buyer, identity):
        item = make_item(price='50.00')
        line = make_line(
            item,
            bargain_price=Decimal('10.00'),
            bargain_state=CartLine.BARGAIN_PENDING,
            bargain_proposed_by=CartLine.PROPOSED_BY_BUYER
        )

        order = services.place_order(identity(buyer), [line.id])[0].order
        assert order.settled_price == Decimal('50.00')

    def test_saved_for_later_line_can_be_checked_out(self, make_item, make_line, buyer, identity):
        line = make_line(make_item(), saved_for_later=True)
        placed = services.place_order(identity(buyer), [line.id])
        assert len(placed) == 1

    def test_item_without_stock_is_unavailable(self, make_item, make_line, buyer, identity):
        item = make_item(quantity=1)
        line = make_line(item)
        Item.objects.filter(pk=item.pk).update(quantity=0, is_available=False)

        with pytest.raises(Unavailable) as exc_info:
            services.place_order(identity(buyer), [line.id])

        assert exc_info.value.context == {'item_id': item.id, 'cart_line_id': line.id}
        item.refresh_from_db()
        assert item.quantity == 0
        assert CartLine.objects.filter(pk=line.id).exists()
        assert Order.objects.count() == 0

    def test_quantity_above_stock_is_unavailable(self, make_item, make_line, buyer, identity):
        item = make_item(quantity=3)
        line = make_line(item, quantity=3)
        Item.objects.filter(pk=item.pk).update(quantity=2)

        with pytest.raises(Unavailable):
            services.place_order(identity(buyer), [line.id])

        item.refresh_from_db()
        assert item.quantity == 2

    def test_batch_with_deleted_item_fails_entirely(self, make_item, make_line, buyer, identity):
        first = make_item(name='First', quantity=2)
        second = make_item(name='Second', quantity=2)
        third = make_item(name='Third', quantity=2)
        lines = [make_line(first), make_line(second), make_line(third)]

        third.delete()

        with pytest.raises(NotFound) as exc_info:
            services.place_order(identity(buyer), [line.id for line in lines])

        assert exc_info.value.context['cart_line_id'] == lines[2].id
        first.refresh_from_db()
        second.refresh_from_db()
        assert first.quantity == 2 and first.is_available
        assert second.quantity == 2 and second.is_available
        assert CartLine.objects.filter(pk__in=[lines[0].id, lines[1].id]).count() == 2
        assert Order.objects.count() == 0

    def test_batch_with_short_stock_rolls_back_earlier_lines(self, make_item, make_line, buyer, identity):
        first = make_item(name='First', quantity=1)
        second = make_item(name='Second', quantity=1)
        lines = [make_line(first), make_line(second)]
        Item.objects.filter(pk=second.pk).update(quantity=0, is_available=False)

        with pytest.raises(Unavailable):
            services.place_order(identity(buyer), [line.id for line in lines])

        first.refresh_from_db()
        assert first.quantity == 1 and first.is_available
        assert CartLine.objects.filter(pk=lines[0].id).exists()
        assert Order.objects.count() == 0

    def test_foreign_cart_line_is_not_found(self, make_item, make_line, other_buyer, buyer, identity):
        line = make_line(make_item(), owner=other_buyer)

        with pytest.raises(NotFound):
            services.place_order(identity(buyer), [line.id])

        assert CartLine.objects.filter(pk=line.id).exists()

    def test_empty_list_rejected(self, buyer, identity):
        with pytest.raises(InvalidRequest):
            services.place_order(identity(buyer), [])

    def test_repeated_ids_rejected(self, make_item, make_line, buyer, identity):
        line = make_line(make_item(quantity=5))
        with pytest.raises(InvalidRequest):
            services.place_order(identity(buyer), [line.id, line.id])

    def test_second_buyer_gets_unavailable_for_last_unit(
        self, make_item, make_line, buyer, other_buyer, identity
    ):
        item = make_item(quantity=1)
        first = make_line(item)
        second = make_line(item, owner=other_buyer)

        services.place_order(identity(buyer), [first.id])
        with pytest.raises(Unavailable):
            services.place_order(identity(other_buyer), [second.id])

        item.refresh_from_db()
        assert item.quantity == 0
        assert Order.objects.filter(item=item).count() == 1


@pytest.mark.django_db
class TestPlaceOrderEndpoint:

    def test_checkout_returns_orders_with_codes(self, auth_client, make_item, make_line, buyer):
        item = make_item(price='12.00', quantity=4)
        line = make_line(item, quantity=2)

        response = auth_client(buyer).post(ORDERS_URL, {'cart_line_ids': [line.id]}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        orders = response.data['orders']
        assert len(orders) == 1
        assert orders[0]['status'] == Order.STATUS_PENDING
        assert orders[0]['quantity'] == 2
        assert orders[0]['total_price'] == '24.00'
        assert len(orders[0]['otp']) == 6
        assert 'otp_hash' not in orders[0]

        order = Order.objects.get(pk=orders[0]['id'])
        assert order.otp_matches(orders[0]['otp'])

    def test_code_is_not_shown_again_in_listing(self, auth_client, make_item, make_line, buyer):
        line = make_line(make_item())
        client = auth_client(buyer)
        client.post(ORDERS_URL, {'cart_line_ids': [line.id]}, format='json')

        response = client.get(ORDERS_URL)
        assert response.status_code == status.HTTP_200_OK
        assert 'otp' not in response.data['results'][0]
        assert 'otp_hash' not in response.data['results'][0]

    def test_buyer_is_emailed_code_after_commit(
        self, auth_client, make_item, make_line, buyer, django_capture_on_commit_callbacks
    ):
        line = make_line(make_item(name='Bookshelf'))

        with django_capture_on_commit_callbacks(execute=True):
            response = auth_client(buyer).post(ORDERS_URL, {'cart_line_ids': [line.id]}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == [buyer.email]
        assert response.data['orders'][0]['otp'] in mail.outbox[0].body

    def test_unavailable_item_returns_409(self, auth_client, make_item, make_line, buyer):
        item = make_item()
        line = make_line(item)
        Item.objects.filter(pk=item.pk).update(quantity=0, is_available=False)

        response = auth_client(buyer).post(ORDERS_URL, {'cart_line_ids': [line.id]}, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['kind'] == 'unavailable'
        assert response.data['item_id'] == item.id
        assert response.data['cart_line_id'] == line.id

    def test_missing_line_returns_404(self, auth_client, buyer):
        response = auth_client(buyer).post(ORDERS_URL, {'cart_line_ids': [9999]}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['kind'] == 'not_found'
        assert response.data['cart_line_id'] == 9999

    @pytest.mark.parametrize('payload', [
        {},
        {'cart_line_ids': []},
        {'cart_line_ids': [0]},
        {'cart_line_ids': ['abc']},
        {'cart_line_ids': [3, 3]},
    ])
    def test_malformed_body_is_validation_error(self, auth_client, buyer, payload):
        response = auth_client(buyer).post(ORDERS_URL, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['kind'] == 'validation_error'
        assert 'cart_line_ids' in response.data['errors']

    def test_requires_authentication(self, api_client):
        response = api_client.post(ORDERS_URL, {'cart_line_ids': [1]}, format='json')
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
