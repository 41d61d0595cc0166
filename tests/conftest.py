"""
Shared fixtures for the Campus Marketplace test suite.
"""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from core.models import CartLine, Item
from core.services import Identity

User = get_user_model()


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    """Throttle counters live in the cache; start every test with none."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return API client for testing."""
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory creating users with a known password."""
    def _make_user(email, **extra):
        return User.objects.create_user(
            username=email,
            email=email,
            password='TestPass123!',
            **extra
        )
    return _make_user


@pytest.fixture
def seller(make_user):
    return make_user('seller@test.com', first_name='Sam', last_name='Seller')


@pytest.fixture
def buyer(make_user):
    return make_user('buyer@test.com', first_name='Bea', last_name='Buyer')


@pytest.fixture
def other_buyer(make_user):
    return make_user('other@test.com')


@pytest.fixture
def auth_client():
    """Factory returning an APIClient authenticated as the given user with a JWT."""
    def _auth_client(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return client
    return _auth_client


@pytest.fixture
def make_item(seller):
    """Factory creating items listed by ``seller`` unless told otherwise."""
    def _make_item(name='Desk Lamp', price='25.00', quantity=1, owner=None, **extra):
        return Item.objects.create(
            seller=owner or seller,
            name=name,
            description=extra.pop('description', f'A used {name.lower()}'),
            category=extra.pop('category', 'furniture'),
            price=Decimal(price),
            quantity=quantity,
            **extra
        )
    return _make_item


@pytest.fixture
def make_line(buyer):
    """Factory creating cart lines for ``buyer`` unless told otherwise."""
    def _make_line(item, quantity=1, owner=None, **extra):
        return CartLine.objects.create(
            buyer=owner or buyer,
            item=item,
            quantity=quantity,
            **extra
        )
    return _make_line


@pytest.fixture
def identity():
    """Build the explicit caller identity the services expect."""
    def _identity(user):
        return Identity.from_user(user)
    return _identity
