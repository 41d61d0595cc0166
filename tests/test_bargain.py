"""
Test suite for bargaining on cart lines.
"""

from decimal import Decimal

import pytest
from rest_framework import status

from core import services
from core.exceptions import InvalidRequest, InvalidState, NotFound
from core.models import CartLine


@pytest.fixture
def line(make_item, make_line):
    return make_line(make_item(price='100.00', quantity=2))


@pytest.mark.django_db
class TestBargainService:

    def test_buyer_proposes(self, line, buyer, identity):
        line = services.propose_bargain(identity(buyer), line.id, Decimal('80.00'), 'Would you take 80?')

        assert line.bargain == {
            'proposed_price': Decimal('80.00'),
            'note': 'Would you take 80?',
            'state': CartLine.BARGAIN_PENDING,
            'proposed_by': CartLine.PROPOSED_BY_BUYER,
        }

    def test_only_line_owner_can_propose(self, line, other_buyer, seller, identity):
        with pytest.raises(NotFound):
            services.propose_bargain(identity(other_buyer), line.id, Decimal('80.00'))
        with pytest.raises(NotFound):
            services.propose_bargain(identity(seller), line.id, Decimal('80.00'))

    def test_price_must_be_positive(self, line, buyer, identity):
        with pytest.raises(InvalidRequest):
            services.propose_bargain(identity(buyer), line.id, Decimal('0'))

    def test_seller_accepts(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))

        line = services.respond_to_bargain(identity(seller), line.id, 'accept')

        assert line.bargain_state == CartLine.BARGAIN_ACCEPTED
        assert line.settled_price() == Decimal('80.00')

    def test_seller_rejects(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))

        line = services.respond_to_bargain(identity(seller), line.id, 'reject')

        assert line.bargain_state == CartLine.BARGAIN_REJECTED
        assert line.settled_price() == Decimal('100.00')

    def test_counter_flips_proposer(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('70.00'))

        line = services.respond_to_bargain(identity(seller), line.id, 'counter', Decimal('90.00'))
        assert line.bargain_state == CartLine.BARGAIN_PENDING
        assert line.bargain_proposed_by == CartLine.PROPOSED_BY_SELLER
        assert line.bargain_price == Decimal('90.00')

        # Now the seller waits and the buyer answers
        with pytest.raises(InvalidState):
            services.respond_to_bargain(identity(seller), line.id, 'accept')

        line = services.respond_to_bargain(identity(buyer), line.id, 'accept')
        assert line.bargain_state == CartLine.BARGAIN_ACCEPTED
        assert line.settled_price() == Decimal('90.00')

    def test_proposer_cannot_answer_own_offer(self, line, buyer, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))

        with pytest.raises(InvalidState):
            services.respond_to_bargain(identity(buyer), line.id, 'accept')

    def test_outsider_cannot_respond(self, line, buyer, other_buyer, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))

        with pytest.raises(NotFound):
            services.respond_to_bargain(identity(other_buyer), line.id, 'accept')

    def test_no_pending_bargain(self, line, seller, identity):
        with pytest.raises(InvalidState):
            services.respond_to_bargain(identity(seller), line.id, 'accept')

    def test_answered_bargain_cannot_be_answered_again(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))
        services.respond_to_bargain(identity(seller), line.id, 'reject')

        with pytest.raises(InvalidState):
            services.respond_to_bargain(identity(seller), line.id, 'accept')

    def test_counter_needs_price(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('80.00'))

        with pytest.raises(InvalidRequest):
            services.respond_to_bargain(identity(seller), line.id, 'counter')

    def test_new_proposal_replaces_answered_one(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('60.00'))
        services.respond_to_bargain(identity(seller), line.id, 'reject')

        line = services.propose_bargain(identity(buyer), line.id, Decimal('85.00'))

        assert line.bargain_state == CartLine.BARGAIN_PENDING
        assert line.bargain_price == Decimal('85.00')

    def test_accepted_price_is_charged_at_checkout(self, line, buyer, seller, identity):
        services.propose_bargain(identity(buyer), line.id, Decimal('75.00'))
        services.respond_to_bargain(identity(seller), line.id, 'accept')

        order = services.place_order(identity(buyer), [line.id])[0].order

        assert order.listed_price == Decimal('100.00')
        assert order.settled_price == Decimal('75.00')


@pytest.mark.django_db
class TestBargainEndpoints:

    def test_propose_and_accept(self, auth_client, line, buyer, seller):
        response = auth_client(buyer).post(
            f'/api/cart/{line.id}/bargain/', {'price': '85.00', 'note': 'Cash on pickup'}, format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['bargain']['state'] == CartLine.BARGAIN_PENDING
        assert response.data['bargain']['proposed_price'] == '85.00'

        response = auth_client(seller).post(
            f'/api/cart/{line.id}/bargain/respond/', {'action': 'accept'}, format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['bargain']['state'] == CartLine.BARGAIN_ACCEPTED

        response = auth_client(buyer).get(f'/api/cart/{line.id}/')
        assert response.data['unit_price'] == '85.00'

    def test_seller_sees_pending_requests(self, auth_client, line, buyer, seller, make_item, make_line):
        untouched = make_line(make_item(name='Untouched'))
        auth_client(buyer).post(f'/api/cart/{line.id}/bargain/', {'price': '85.00'}, format='json')

        response = auth_client(seller).get('/api/seller/bargain-requests/')

        assert response.status_code == status.HTTP_200_OK
        ids = [r['id'] for r in response.data]
        assert ids == [line.id]
        assert untouched.id not in ids
        assert response.data[0]['buyer']['email'] == buyer.email
        assert response.data[0]['bargain']['proposed_by'] == CartLine.PROPOSED_BY_BUYER

    def test_buyer_does_not_see_others_requests(self, auth_client, line, buyer):
        auth_client(buyer).post(f'/api/cart/{line.id}/bargain/', {'price': '85.00'}, format='json')

        response = auth_client(buyer).get('/api/seller/bargain-requests/')
        assert response.data == []

    def test_proposer_responding_conflicts(self, auth_client, line, buyer):
        client = auth_client(buyer)
        client.post(f'/api/cart/{line.id}/bargain/', {'price': '85.00'}, format='json')

        response = client.post(f'/api/cart/{line.id}/bargain/respond/', {'action': 'accept'}, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['kind'] == 'invalid_state'

    @pytest.mark.parametrize('payload', [
        {'action': 'haggle'},
        {'action': 'counter'},
        {'action': 'counter', 'counter_price': '-1.00'},
    ])
    def test_malformed_response(self, auth_client, line, seller, payload):
        response = auth_client(seller).post(f'/api/cart/{line.id}/bargain/respond/', payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['kind'] == 'validation_error'

    def test_invalid_proposal_price(self, auth_client, line, buyer):
        response = auth_client(buyer).post(f'/api/cart/{line.id}/bargain/', {'price': '0'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'price' in response.data['errors']
