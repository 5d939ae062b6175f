from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from apps.shop.models import CartItem, Coupon, Product
from apps.shop.services.cart import get_or_create_cart

ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "555-0100",
    "address": "12 Analytical St",
    "city": "London",
    "state": "Greater London",
    "zip": "N1 9GU",
    "country": "UK",
}


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="buyer", email="buyer@test.com", password="pw")


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="other", email="other@test.com", password="pw")


@pytest.fixture
def staff(django_user_model):
    return django_user_model.objects.create_user(username="staff", email="staff@test.com", password="pw", is_staff=True)


@pytest.fixture
def api(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def staff_api(staff):
    client = APIClient()
    client.force_authenticate(user=staff)
    return client


@pytest.fixture
def make_product():
    def make(name="Tee", price="200.00", stock=10, is_active=True):
        return Product.objects.create(name=name, price=Decimal(price), stock=stock, is_active=is_active)
    return make


@pytest.fixture
def make_coupon():
    def make(code="SAVE20", discount_type=Coupon.PERCENTAGE, discount_value="20", **kwargs):
        return Coupon.objects.create(
            code=code, discount_type=discount_type, discount_value=Decimal(discount_value), **kwargs
        )
    return make


@pytest.fixture
def fill_cart():
    def fill(user, *lines):
        """lines = [(product, qty), (product, qty, size), ...]"""
        cart = get_or_create_cart(user)
        for product, qty, *variant in lines:
            CartItem.objects.create(cart=cart, product=product, quantity=qty, size=variant[0] if variant else "")
        return cart
    return fill
