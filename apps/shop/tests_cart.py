from decimal import Decimal

import pytest

from .exceptions import CartItemNotFoundError, InsufficientStockError, ProductUnavailableError
from .models import Cart, CartItem
from .services import cart as cart_service

pytestmark = pytest.mark.django_db


def test_cart_is_created_lazily_once(user):
    assert not Cart.objects.filter(user=user).exists()
    first = cart_service.get_or_create_cart(user)
    assert cart_service.get_or_create_cart(user).pk == first.pk


def test_same_variant_merges_into_one_line(user, make_product):
    p = make_product(stock=5)
    cart_service.add_item(user=user, product=p, quantity=2, size="M")
    item = cart_service.add_item(user=user, product=p, quantity=1, size="M")
    cart_service.add_item(user=user, product=p, quantity=1, size="L")

    assert item.quantity == 3
    assert CartItem.objects.filter(cart__user=user).count() == 2


def test_merge_rechecks_stock_on_combined_quantity(user, make_product):
    p = make_product(stock=3)
    cart_service.add_item(user=user, product=p, quantity=2)
    with pytest.raises(InsufficientStockError):
        cart_service.add_item(user=user, product=p, quantity=2)
    assert CartItem.objects.get(cart__user=user).quantity == 2


def test_inactive_product_cannot_be_added(user, make_product):
    with pytest.raises(ProductUnavailableError):
        cart_service.add_item(user=user, product=make_product(is_active=False), quantity=1)


def test_subtotal_uses_live_price(user, make_product, fill_cart):
    a = make_product(price="200.00")
    b = make_product(name="Cap", price="15.50")
    cart = fill_cart(user, (a, 2), (b, 1))
    a.price = Decimal("210.00")
    a.save()
    assert cart.subtotal == Decimal("435.50")
    assert cart.items_count == 3


def test_update_and_remove_are_scoped_to_owner(user, other_user, make_product, fill_cart):
    p = make_product(stock=4)
    cart = fill_cart(other_user, (p, 1))
    foreign_item = cart.items.get()

    with pytest.raises(CartItemNotFoundError):
        cart_service.update_item(user=user, item_id=foreign_item.pk, quantity=2)
    with pytest.raises(CartItemNotFoundError):
        cart_service.remove_item(user=user, item_id=foreign_item.pk)

    assert cart_service.update_item(user=other_user, item_id=foreign_item.pk, quantity=4).quantity == 4
    with pytest.raises(InsufficientStockError):
        cart_service.update_item(user=other_user, item_id=foreign_item.pk, quantity=5)


def test_clear_cart(user, make_product, fill_cart):
    fill_cart(user, (make_product(), 1), (make_product(name="Cap"), 2))
    cart_service.clear_cart(user)
    assert not CartItem.objects.filter(cart__user=user).exists()
