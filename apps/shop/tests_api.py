from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from .models import CartItem, Coupon, Order, Product

pytestmark = pytest.mark.django_db


@pytest.fixture
def order_body(address):
    return {"shipping_address": address, "payment_method": "card"}


def test_requires_authentication():
    response = APIClient().get("/api/v1/cart/")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_bearer_token_authenticates(user):
    from rest_framework.authtoken.models import Token

    token = Token.objects.create(user=user)
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.key}")
    assert client.get("/api/v1/cart/").status_code == 200


def test_cart_endpoints(api, make_product):
    p = make_product(price="200.00", stock=5)

    response = api.post("/api/v1/cart/items/", {"product_id": p.pk, "quantity": 2, "size": "M"}, format="json")
    assert response.status_code == 201
    item_id = response.json()["data"]["id"]

    body = api.get("/api/v1/cart/").json()["data"]
    assert body["items_count"] == 2
    assert body["subtotal"] == "400.00"
    assert body["items"][0]["total"] == "400.00"

    response = api.put(f"/api/v1/cart/items/{item_id}/", {"quantity": 9}, format="json")
    assert response.status_code == 422
    assert "Only 5 available" in response.json()["message"]

    assert api.delete(f"/api/v1/cart/items/{item_id}/").status_code == 200
    assert api.delete(f"/api/v1/cart/items/{item_id}/").status_code == 404


def test_cart_add_validates_payload(api):
    response = api.post("/api/v1/cart/items/", {"product_id": 999, "quantity": 0}, format="json")
    assert response.status_code == 422
    assert set(response.json()["errors"]) == {"product_id", "quantity"}


def test_place_order(api, user, make_product, fill_cart, order_body):
    p = make_product(price="200.00", stock=5)
    fill_cart(user, (p, 2))

    response = api.post("/api/v1/orders/", order_body, format="json")

    assert response.status_code == 201
    data = response.json()["data"]
    assert (data["subtotal"], data["shipping"], data["tax"], data["total"]) == ("400.00", "15.00", "32.00", "447.00")
    assert data["status"] == "pending"
    assert data["billing_address"] == order_body["shipping_address"]
    assert data["items"][0]["product_name"] == "Tee"
    assert response["Location"] == f"/api/v1/orders/{data['id']}/"
    assert Product.objects.get(pk=p.pk).stock == 3


def test_place_order_with_empty_cart(api, order_body):
    response = api.post("/api/v1/orders/", order_body, format="json")
    assert response.status_code == 422
    assert response.json() == {"success": False, "message": "Your cart is empty."}


def test_place_order_validation(api, user, make_product, fill_cart, address):
    fill_cart(user, (make_product(), 1))
    del address["city"]
    address["email"] = "not-an-email"

    response = api.post(
        "/api/v1/orders/",
        {"shipping_address": address, "payment_method": "paypal", "coupon_code": "BOGUS"},
        format="json",
    )

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert set(errors) == {"shipping_address", "payment_method", "coupon_code"}
    assert set(errors["shipping_address"]) == {"city", "email"}
    assert Order.objects.count() == 0


def test_idempotent_replay(api, user, make_product, fill_cart, order_body):
    fill_cart(user, (make_product(stock=5), 1))

    first = api.post("/api/v1/orders/", order_body, format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    replay = api.post("/api/v1/orders/", order_body, format="json", HTTP_IDEMPOTENCY_KEY="k-1")

    assert first.status_code == replay.status_code == 201
    assert replay.json()["data"]["order_number"] == first.json()["data"]["order_number"]
    assert replay["Location"] == first["Location"] == f"/api/v1/orders/{first.json()['data']['id']}/"
    assert Order.objects.count() == 1

    order_body["notes"] = "changed"
    conflict = api.post("/api/v1/orders/", order_body, format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    assert conflict.status_code == 422


def test_failed_idempotent_request_can_be_retried(api, user, make_product, fill_cart, order_body):
    assert api.post("/api/v1/orders/", order_body, format="json", HTTP_IDEMPOTENCY_KEY="k-2").status_code == 422

    fill_cart(user, (make_product(), 1))
    assert api.post("/api/v1/orders/", order_body, format="json", HTTP_IDEMPOTENCY_KEY="k-2").status_code == 201


def test_order_list_and_detail_are_scoped(api, user, other_user, make_product, fill_cart, order_body):
    fill_cart(other_user, (make_product(), 1))
    other = APIClient()
    other.force_authenticate(user=other_user)
    foreign_id = other.post("/api/v1/orders/", order_body, format="json").json()["data"]["id"]

    assert api.get("/api/v1/orders/").json()["data"]["count"] == 0
    assert api.get(f"/api/v1/orders/{foreign_id}/").status_code == 404
    assert api.post(f"/api/v1/orders/{foreign_id}/cancel/").status_code == 404
    assert other.get("/api/v1/orders/").json()["data"]["count"] == 1


def test_cancel_endpoint(api, staff_api, user, make_product, fill_cart, order_body):
    p = make_product(stock=5)
    fill_cart(user, (p, 2))
    order_id = api.post("/api/v1/orders/", order_body, format="json").json()["data"]["id"]

    staff_api.put(f"/api/v1/admin/orders/{order_id}/status/", {"status": "shipped"}, format="json")
    response = api.post(f"/api/v1/orders/{order_id}/cancel/")
    assert response.status_code == 422
    assert response.json()["message"] == "Only pending orders can be cancelled."

    Order.objects.filter(pk=order_id).update(status="pending")
    response = api.post(f"/api/v1/orders/{order_id}/cancel/")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"
    assert Product.objects.get(pk=p.pk).stock == 5


def test_coupon_apply(api, make_coupon):
    make_coupon(code="SAVE20", discount_value="20", max_discount=Decimal("100"))
    make_coupon(code="BIG", discount_type=Coupon.FIXED, discount_value="50", min_order_amount=Decimal("500"))
    make_coupon(code="OFF", is_active=False)

    response = api.post("/api/v1/coupons/apply/", {"code": "save20", "order_amount": "1000"}, format="json")
    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["discount_amount"], data["final_amount"]) == ("100.00", "900.00")
    assert data["coupon"]["code"] == "SAVE20"

    assert api.post("/api/v1/coupons/apply/", {"code": "NOPE", "order_amount": "10"}, format="json").status_code == 404
    assert api.post("/api/v1/coupons/apply/", {"code": "OFF", "order_amount": "10"}, format="json").status_code == 400
    response = api.post("/api/v1/coupons/apply/", {"code": "BIG", "order_amount": "300"}, format="json")
    assert response.status_code == 400
    assert "Minimum order amount" in response.json()["message"]


def test_admin_endpoints_require_staff(api):
    assert api.get("/api/v1/admin/orders/").status_code == 403
    assert api.put("/api/v1/admin/orders/1/status/", {"status": "shipped"}, format="json").status_code == 403
    assert api.get("/api/v1/admin/coupons/").status_code == 403


def test_admin_orders_filters_and_stats(staff_api, user, make_product, fill_cart, address):
    for _ in range(2):
        fill_cart(user, (make_product(), 1))
        client = APIClient()
        client.force_authenticate(user=user)
        client.post("/api/v1/orders/", {"shipping_address": address, "payment_method": "card"}, format="json")
    first = Order.objects.order_by("id").first()

    response = staff_api.put(f"/api/v1/admin/orders/{first.pk}/status/", {"status": "delivered"}, format="json")
    assert response.status_code == 200

    listing = staff_api.get("/api/v1/admin/orders/", {"status": "delivered"}).json()["data"]
    assert [o["order_number"] for o in listing["results"]] == [first.order_number]
    search = staff_api.get("/api/v1/admin/orders/", {"search": first.order_number[4:].lower()}).json()["data"]
    assert search["count"] == 1
    assert staff_api.get("/api/v1/admin/orders/", {"from_date": "nope"}).status_code == 422

    stats = staff_api.get("/api/v1/admin/orders/stats/").json()["data"]
    assert stats["total_orders"] == 2
    assert stats["delivered_orders"] == 1
    assert stats["total_revenue"] == "231.00"

    bad = staff_api.put(f"/api/v1/admin/orders/{first.pk}/status/", {"status": "lost"}, format="json")
    assert bad.status_code == 422


def test_admin_coupon_crud(staff_api):
    payload = {"code": "spring10", "discount_type": "percentage", "discount_value": "10"}
    response = staff_api.post("/api/v1/admin/coupons/", payload, format="json")
    assert response.status_code == 201
    coupon_id = response.json()["data"]["id"]
    assert Coupon.objects.get(pk=coupon_id).code == "SPRING10"

    assert staff_api.post("/api/v1/admin/coupons/", payload, format="json").status_code == 422
    bad = dict(payload, code="HUGE", discount_value="150")
    assert staff_api.post("/api/v1/admin/coupons/", bad, format="json").status_code == 422

    response = staff_api.put(f"/api/v1/admin/coupons/{coupon_id}/", {"is_active": False}, format="json")
    assert response.status_code == 200
    assert staff_api.get("/api/v1/admin/coupons/", {"active": "false"}).json()["data"]["count"] == 1

    # 이미 사용된 횟수보다 낮은 한도는 거부
    Coupon.objects.filter(pk=coupon_id).update(usage_limit=10, used_count=5)
    response = staff_api.put(f"/api/v1/admin/coupons/{coupon_id}/", {"usage_limit": 2}, format="json")
    assert response.status_code == 422
    assert "usage_limit" in response.json()["errors"]
    assert Coupon.objects.get(pk=coupon_id).usage_limit == 10
    response = staff_api.put(f"/api/v1/admin/coupons/{coupon_id}/", {"usage_limit": 5}, format="json")
    assert response.status_code == 200

    assert staff_api.delete(f"/api/v1/admin/coupons/{coupon_id}/").status_code == 200
    assert staff_api.delete(f"/api/v1/admin/coupons/{coupon_id}/").status_code == 404


def test_admin_coupon_list_valid_filter(staff_api, make_coupon):
    from datetime import timedelta

    from django.utils import timezone

    make_coupon(code="LIVE")
    make_coupon(code="USEDUP", usage_limit=2, used_count=2)
    make_coupon(code="EXPIRED", expires_at=timezone.now() - timedelta(days=1))

    data = staff_api.get("/api/v1/admin/coupons/", {"valid": "true"}).json()["data"]
    assert [c["code"] for c in data["results"]] == ["LIVE"]
    assert staff_api.get("/api/v1/admin/coupons/").json()["data"]["count"] == 3


def test_cart_lines_survive_failed_checkout(api, user, make_product, fill_cart, order_body):
    fill_cart(user, (make_product(stock=1), 2))
    response = api.post("/api/v1/orders/", order_body, format="json")
    assert response.status_code == 422
    assert response.json()["available"] == 1
    assert CartItem.objects.filter(cart__user=user).count() == 1
