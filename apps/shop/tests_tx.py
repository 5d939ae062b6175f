from decimal import Decimal

import pytest
from django.db.models import QuerySet

from .exceptions import (
    EmptyCartError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderCreationFailedError,
    OrderNotCancellableError,
    OrderNotFoundError,
    ProductUnavailableError,
)
from .models import CartItem, Coupon, Order, Product
from .services import orders as order_service

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def checkout(address):
    def run(user, **extra):
        data = {"shipping_address": address, "payment_method": "card", **extra}
        return order_service.place_order(user=user, data=data)
    return run


def test_totals_example(user, make_product, fill_cart, checkout):
    a = make_product(price="200.00", stock=5)
    fill_cart(user, (a, 2))

    order = checkout(user)

    assert order.subtotal == Decimal("400.00")
    assert order.shipping == Decimal("15.00")
    assert order.tax == Decimal("32.00")
    assert order.total == Decimal("447.00")
    assert order.status == Order.PENDING
    assert order.order_number.startswith("ORD-") and len(order.order_number) == 12


def test_place_order_decrements_stock_and_empties_cart(user, make_product, fill_cart, checkout, address):
    a = make_product(name="Tee", stock=5)
    b = make_product(name="Cap", price="15.00", stock=3)
    fill_cart(user, (a, 2, "M"), (a, 1, "L"), (b, 3))

    order = checkout(user, notes="leave at door")

    assert Product.objects.get(pk=a.pk).stock == 2
    assert Product.objects.get(pk=b.pk).stock == 0
    assert not CartItem.objects.filter(cart__user=user).exists()
    assert order.items.count() == 3
    assert order.items_count == 6
    assert order.billing_address == address
    assert order.notes == "leave at door"


def test_items_snapshot_name_and_price(user, make_product, fill_cart, checkout):
    a = make_product(name="Tee", price="200.00")
    fill_cart(user, (a, 1))
    order = checkout(user)

    a.name, a.price = "Renamed", Decimal("999.00")
    a.save()
    item = order.items.get()
    assert (item.product_name, item.price) == ("Tee", Decimal("200.00"))


def test_empty_cart_is_rejected(user, checkout):
    with pytest.raises(EmptyCartError):
        checkout(user)
    assert Order.objects.count() == 0


def test_insufficient_stock_changes_nothing(user, make_product, fill_cart, checkout):
    a = make_product(name="Tee", stock=5)
    b = make_product(name="Cap", stock=1)
    fill_cart(user, (a, 2), (b, 2))

    with pytest.raises(InsufficientStockError) as exc:
        checkout(user)

    assert exc.value.extra == {"product_id": b.pk, "available": 1}
    assert "Cap" in exc.value.message
    assert Order.objects.count() == 0
    assert Product.objects.get(pk=a.pk).stock == 5
    assert CartItem.objects.filter(cart__user=user).count() == 2


def test_stock_is_checked_per_product_across_variants(user, make_product, fill_cart, checkout):
    a = make_product(stock=3)
    fill_cart(user, (a, 2, "M"), (a, 2, "L"))
    with pytest.raises(InsufficientStockError):
        checkout(user)
    assert Product.objects.get(pk=a.pk).stock == 3


def test_stock_is_rechecked_under_lock(user, make_product, fill_cart, checkout, monkeypatch):
    a = make_product(name="Tee", stock=5)
    fill_cart(user, (a, 3))
    commit = order_service._commit_order

    def concurrent_sale(**kwargs):
        # 사전 검사 통과 직후 다른 주문이 재고를 가져간 상황
        Product.objects.filter(pk=a.pk).update(stock=1)
        return commit(**kwargs)

    monkeypatch.setattr(order_service, "_commit_order", concurrent_sale)
    with pytest.raises(InsufficientStockError) as exc:
        checkout(user)

    assert exc.value.extra == {"product_id": a.pk, "available": 1}
    assert Order.objects.count() == 0
    assert Product.objects.get(pk=a.pk).stock == 1
    assert CartItem.objects.filter(cart__user=user).count() == 1


def test_inactive_product_is_rejected(user, make_product, fill_cart, checkout):
    fill_cart(user, (make_product(is_active=False), 1))
    with pytest.raises(ProductUnavailableError):
        checkout(user)


def test_failure_mid_transaction_rolls_back_everything(user, make_product, make_coupon, fill_cart, checkout, monkeypatch):
    a = make_product(stock=5)
    make_coupon(code="SAVE20")
    fill_cart(user, (a, 2))

    def boom(self, *args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(QuerySet, "bulk_create", boom)
    with pytest.raises(OrderCreationFailedError) as exc:
        checkout(user, coupon_code="SAVE20")

    assert exc.value.status_code == 500
    assert exc.value.extra == {"error": None}
    assert Order.objects.count() == 0
    assert Product.objects.get(pk=a.pk).stock == 5
    assert Coupon.objects.get(code="SAVE20").used_count == 0
    assert CartItem.objects.filter(cart__user=user).count() == 1


def test_failure_detail_is_exposed_in_debug(user, make_product, fill_cart, checkout, monkeypatch, settings):
    settings.DEBUG = True
    fill_cart(user, (make_product(), 1))

    def boom(self, *args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(QuerySet, "bulk_create", boom)
    with pytest.raises(OrderCreationFailedError) as exc:
        checkout(user)
    assert exc.value.extra == {"error": "disk full"}


def test_coupon_discount_is_applied_and_usage_counted(user, make_product, make_coupon, fill_cart, checkout):
    make_coupon(code="SAVE20", discount_value="20", max_discount=Decimal("50"))
    fill_cart(user, (make_product(price="200.00"), 2))

    order = checkout(user, coupon_code="save20")

    assert order.coupon_code == "SAVE20"
    assert order.discount_amount == Decimal("50.00")
    # (400 - 50) * 0.08 = 28, 350 + 15 + 28
    assert order.tax == Decimal("28.00")
    assert order.total == Decimal("393.00")
    assert Coupon.objects.get(code="SAVE20").used_count == 1


def test_coupon_below_minimum_is_silently_skipped(user, make_product, make_coupon, fill_cart, checkout):
    make_coupon(code="BIG", min_order_amount=Decimal("500"))
    fill_cart(user, (make_product(price="100.00"), 3))

    order = checkout(user, coupon_code="BIG")

    assert order.discount_amount == Decimal("0.00")
    assert order.coupon_code is None
    assert order.total == Decimal("339.00")
    assert Coupon.objects.get(code="BIG").used_count == 0


def test_exhausted_coupon_is_not_applied(user, make_product, make_coupon, fill_cart, checkout):
    make_coupon(code="ONCE", usage_limit=1, used_count=1)
    fill_cart(user, (make_product(), 1))
    order = checkout(user, coupon_code="ONCE")
    assert order.discount_amount == Decimal("0.00")
    assert Coupon.objects.get(code="ONCE").used_count == 1


def test_fixed_coupon_larger_than_subtotal_zeroes_tax(user, make_product, make_coupon, fill_cart, checkout):
    make_coupon(code="GIFT", discount_type=Coupon.FIXED, discount_value="500")
    fill_cart(user, (make_product(price="120.00"), 1))
    order = checkout(user, coupon_code="GIFT")
    assert order.discount_amount == Decimal("120.00")
    assert order.tax == Decimal("0.00")
    assert order.total == Decimal("15.00")


def test_order_placed_is_published_after_commit(user, make_product, fill_cart, checkout, monkeypatch):
    published = []
    monkeypatch.setattr(order_service, "publish_order_placed", lambda *args: published.append(args))
    fill_cart(user, (make_product(), 1))

    order = checkout(user)

    assert published == [(order.order_number, user.pk, order.total)]


def test_cancel_pending_order_restores_stock(user, make_product, fill_cart, checkout):
    a = make_product(stock=5)
    b = make_product(name="Cap", stock=2)
    fill_cart(user, (a, 2, "M"), (a, 1, "L"), (b, 2))
    order = checkout(user)

    cancelled = order_service.cancel_order(user=user, order_id=order.pk)

    assert cancelled.status == Order.CANCELLED
    assert Product.objects.get(pk=a.pk).stock == 5
    assert Product.objects.get(pk=b.pk).stock == 2


def test_cancel_rejects_non_pending_and_foreign_orders(user, other_user, make_product, fill_cart, checkout):
    a = make_product(stock=5)
    fill_cart(user, (a, 1))
    order = checkout(user)

    with pytest.raises(OrderNotFoundError):
        order_service.cancel_order(user=other_user, order_id=order.pk)

    order_service.update_order_status(order_id=order.pk, status=Order.SHIPPED)
    with pytest.raises(OrderNotCancellableError):
        order_service.cancel_order(user=user, order_id=order.pk)
    assert Product.objects.get(pk=a.pk).stock == 4


def test_admin_cancel_restores_stock_once(user, make_product, fill_cart, checkout):
    a = make_product(stock=5)
    fill_cart(user, (a, 3))
    order = checkout(user)
    order_service.update_order_status(order_id=order.pk, status=Order.PROCESSING)

    order_service.update_order_status(order_id=order.pk, status=Order.CANCELLED)
    order_service.update_order_status(order_id=order.pk, status=Order.CANCELLED)

    assert Product.objects.get(pk=a.pk).stock == 5
    with pytest.raises(InvalidStatusTransitionError):
        order_service.update_order_status(order_id=order.pk, status=Order.PENDING)


def test_cancel_survives_deleted_product(user, make_product, fill_cart, checkout):
    a = make_product(stock=5)
    b = make_product(name="Cap", stock=5)
    fill_cart(user, (a, 1), (b, 1))
    order = checkout(user)
    a.delete()

    order_service.cancel_order(user=user, order_id=order.pk)

    assert Product.objects.get(pk=b.pk).stock == 5
    assert order.items.count() == 2


def test_order_stats(user, make_product, fill_cart, checkout):
    fill_cart(user, (make_product(price="200.00", stock=10), 2))
    first = checkout(user)
    fill_cart(user, (make_product(name="Cap", price="10.00"), 1))
    checkout(user)
    order_service.update_order_status(order_id=first.pk, status=Order.DELIVERED)

    stats = order_service.order_stats()

    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 1
    assert stats["delivered_orders"] == 1
    assert stats["total_revenue"] == Decimal("447.00")
    assert stats["today_orders"] == 2
    assert stats["today_revenue"] == Decimal("447.00")
