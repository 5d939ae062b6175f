import hashlib
import json

from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_date
from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from .exceptions import IdempotencyConflictError
from .models import Coupon, IdempotencyKey, Order
from .serializers import (
    CartItemIn,
    CartItemOut,
    CartItemUpdateIn,
    CartOut,
    CouponAdminSerializer,
    CouponApplyIn,
    CouponOut,
    OrderCreateIn,
    OrderOut,
    OrderStatusIn,
)
from .services import cart as cart_service
from .services import orders as order_service
from .services.coupons import preview_coupon


def ok(data=None, message=None, status_code=status.HTTP_200_OK, headers=None):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return Response(body, status=status_code, headers=headers)


def paginate(request, queryset, serializer_cls, page_size):
    paginator = PageNumberPagination()
    paginator.page_size = page_size
    page = paginator.paginate_queryset(queryset, request)
    return {
        "results": serializer_cls(page, many=True).data,
        "count": paginator.page.paginator.count,
        "page": paginator.page.number,
        "next": paginator.get_next_link(),
        "previous": paginator.get_previous_link(),
    }


# ---------------------------
# 장바구니
# ---------------------------
@api_view(["GET", "DELETE"])
@permission_classes([IsAuthenticated])
def cart_view(request):
    if request.method == "DELETE":
        cart_service.clear_cart(request.user)
        return ok(message="Cart cleared")
    cart = cart_service.get_or_create_cart(request.user)
    return ok(CartOut(cart).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def cart_items_view(request):
    ser = CartItemIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data
    item = cart_service.add_item(
        user=request.user,
        product=data["product"],
        quantity=data["quantity"],
        size=data.get("size") or "",
        color=data.get("color") or "",
    )
    return ok(CartItemOut(item).data, message="Item added to cart", status_code=status.HTTP_201_CREATED)


@api_view(["PUT", "DELETE"])
@permission_classes([IsAuthenticated])
def cart_item_detail_view(request, item_id):
    if request.method == "DELETE":
        cart_service.remove_item(user=request.user, item_id=item_id)
        return ok(message="Item removed from cart")

    ser = CartItemUpdateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    item = cart_service.update_item(user=request.user, item_id=item_id, quantity=ser.validated_data["quantity"])
    return ok(CartItemOut(item).data, message="Cart item updated")


# ---------------------------
# 주문
# ---------------------------
def _request_hash(validated_data) -> str:
    return hashlib.sha256(json.dumps(validated_data, sort_keys=True, default=str).encode()).hexdigest()


def _order_location(order_id) -> dict:
    return {"Location": f"/api/v1/orders/{order_id}/"}


def _placed_response(order):
    payload = {"success": True, "message": "Order placed successfully", "data": OrderOut(order).data}
    return payload, _order_location(order.pk)


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def orders_view(request):
    if request.method == "GET":
        qs = Order.objects.filter(user=request.user).prefetch_related("items").order_by("-created_at", "-id")
        return ok(paginate(request, qs, OrderOut, page_size=10))

    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)

    idem = request.headers.get("Idempotency-Key")
    if not idem:
        order = order_service.place_order(user=request.user, data=ser.validated_data)
        payload, headers = _placed_response(order)
        return Response(payload, status=status.HTTP_201_CREATED, headers=headers)

    body_hash = _request_hash(ser.validated_data)
    with transaction.atomic():
        rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
            key=idem, user=request.user,
            defaults={"request_hash": body_hash, "status_code": 0, "response_body": {}},
        )
        if not created and rec.status_code:
            if rec.request_hash != body_hash:
                raise IdempotencyConflictError()
            return Response(rec.response_body, status=rec.status_code,
                            headers=_order_location(rec.response_body["data"]["id"]))

        order = order_service.place_order(user=request.user, data=ser.validated_data)
        payload, headers = _placed_response(order)
        rec.request_hash, rec.response_body, rec.status_code = body_hash, payload, status.HTTP_201_CREATED
        rec.save(update_fields=["request_hash", "response_body", "status_code"])

    return Response(payload, status=status.HTTP_201_CREATED, headers=headers)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_detail_view(request, order_id):
    order = order_service.get_order_for(request.user, order_id)
    return ok(OrderOut(order).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def order_cancel_view(request, order_id):
    order = order_service.cancel_order(user=request.user, order_id=order_id)
    return ok(OrderOut(order).data, message="Order cancelled successfully")


# ---------------------------
# 쿠폰
# ---------------------------
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def coupon_apply_view(request):
    ser = CouponApplyIn(data=request.data)
    ser.is_valid(raise_exception=True)
    quote = preview_coupon(ser.validated_data["code"], ser.validated_data["order_amount"])
    return ok({
        "coupon": CouponOut(quote.coupon).data,
        "discount_amount": str(quote.discount_amount),
        "final_amount": str(quote.final_amount),
    })


# ---------------------------
# 관리자
# ---------------------------
def _date_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    value = parse_date(raw)
    if value is None:
        raise serializers.ValidationError({name: "Enter a valid date (YYYY-MM-DD)."})
    return value


@api_view(["GET"])
@permission_classes([IsAdminUser])
def admin_orders_view(request):
    qs = order_service.list_orders_for_admin(
        status=request.query_params.get("status"),
        from_date=_date_param(request, "from_date"),
        to_date=_date_param(request, "to_date"),
        search=request.query_params.get("search"),
    )
    return ok(paginate(request, qs, OrderOut, page_size=20))


@api_view(["PUT"])
@permission_classes([IsAdminUser])
def admin_order_status_view(request, order_id):
    ser = OrderStatusIn(data=request.data)
    ser.is_valid(raise_exception=True)
    order = order_service.update_order_status(order_id=order_id, status=ser.validated_data["status"])
    return ok(OrderOut(order).data, message="Order status updated")


@api_view(["GET"])
@permission_classes([IsAdminUser])
def admin_order_stats_view(request):
    stats = order_service.order_stats()
    return ok({k: str(v) if not isinstance(v, int) else v for k, v in stats.items()})


@api_view(["GET", "POST"])
@permission_classes([IsAdminUser])
def admin_coupons_view(request):
    if request.method == "POST":
        ser = CouponAdminSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        coupon = ser.save()
        return ok(CouponAdminSerializer(coupon).data, message="Coupon created successfully",
                  status_code=status.HTTP_201_CREATED)

    qs = Coupon.objects.all()
    active = request.query_params.get("active")
    if active is not None:
        qs = qs.filter(is_active=active.lower() in ("1", "true", "yes"))
    # valid=true: 지금 바로 적용 가능한 쿠폰만 (기간, 사용 한도 포함)
    if request.query_params.get("valid", "").lower() in ("1", "true", "yes"):
        qs = qs.valid()
    return ok(paginate(request, qs.order_by("-created_at", "-id"), CouponAdminSerializer, page_size=20))


@api_view(["PUT", "DELETE"])
@permission_classes([IsAdminUser])
def admin_coupon_detail_view(request, coupon_id):
    coupon = get_object_or_404(Coupon, pk=coupon_id)
    if request.method == "DELETE":
        coupon.delete()
        return ok(message="Coupon deleted successfully")

    ser = CouponAdminSerializer(coupon, data=request.data, partial=True)
    ser.is_valid(raise_exception=True)
    coupon = ser.save()
    return ok(CouponAdminSerializer(coupon).data, message="Coupon updated successfully")
