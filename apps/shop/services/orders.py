import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import wraps

from django.conf import settings
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from ..exceptions import (
    EmptyCartError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderCreationFailedError,
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderUpdateFailedError,
    ProductUnavailableError,
    ShopError,
)
from ..models import Cart, Coupon, Order, OrderItem, Product, money
from ..tx import retry_on_tx_failure
from .coupons import find_coupon

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def compute_totals(subtotal, discount=ZERO) -> OrderTotals:
    subtotal = money(subtotal)
    discount = money(discount)
    shipping = money(settings.SHOP_SHIPPING_FLAT)
    taxable = max(ZERO, subtotal - discount)
    tax = money(taxable * settings.SHOP_TAX_RATE)
    return OrderTotals(
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        tax=tax,
        total=money(taxable + shipping + tax),
    )


def translate_failures(error_cls):
    """도메인 오류는 그대로, 그 외 예외는 롤백 후 error_cls 로 감싼다."""
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ShopError:
                raise
            except Exception as e:
                logger.exception(f"{fn.__name__} failed: {e}")
                raise error_cls(str(e)) from e
        return wrapper
    return deco


def _quantities_by_product(lines):
    # 같은 상품이 사이즈/색상별로 여러 줄일 수 있으므로 합산, 잠금 순서 고정을 위해 pk 정렬
    totals = {}
    for line in lines:
        if line.product_id is None:
            continue
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return dict(sorted(totals.items()))


def _load_cart_lines(user):
    cart = Cart.objects.filter(user=user).first()
    if cart is None:
        raise EmptyCartError()
    lines = list(cart.items.select_related("product").order_by("id"))
    if not lines:
        raise EmptyCartError()
    return cart, lines


def _check_stock(required, products):
    for product_id, qty in required.items():
        product = products[product_id]
        if not product.is_active:
            raise ProductUnavailableError(product)
        if product.stock < qty:
            raise InsufficientStockError(product)


def _redeem_coupon(code, subtotal):
    """적용 가능하면 (할인액, 코드) 반환하고 사용 횟수 증가. 아니면 할인 없음."""
    if not code:
        return ZERO, None

    coupon = find_coupon(code, for_update=True)
    if coupon is None or not coupon.is_valid():
        logger.info(f"coupon {code!r} not applied: unknown or no longer valid")
        return ZERO, None
    if not coupon.meets_minimum(subtotal):
        logger.info(f"coupon {coupon.code} not applied: subtotal {subtotal} below {coupon.min_order_amount}")
        return ZERO, None

    discount = coupon.calculate_discount(subtotal)
    Coupon.objects.filter(pk=coupon.pk).update(used_count=F("used_count") + 1)
    logger.info(f"coupon {coupon.code} applied: -{discount}")
    return discount, coupon.code


def publish_order_placed(order_number: str, user_id, total):
    logger.info(f"order placed: {order_number} user={user_id} total={total}")


@translate_failures(OrderCreationFailedError)
@retry_on_tx_failure()
@transaction.atomic
def _commit_order(*, user, data) -> Order:
    cart, lines = _load_cart_lines(user)
    required = _quantities_by_product(lines)

    # 동시 체크아웃 대비: 상품 행을 pk 순서로 잠근 뒤 재고 재확인
    products = {p.pk: p for p in Product.objects.select_for_update().filter(pk__in=list(required)).order_by("pk")}
    _check_stock(required, products)

    subtotal = sum((products[line.product_id].price * line.quantity for line in lines), ZERO)
    discount, coupon_code = _redeem_coupon(data.get("coupon_code"), money(subtotal))
    totals = compute_totals(subtotal, discount)

    shipping_address = dict(data["shipping_address"])
    billing_address = data.get("billing_address")
    order = Order.objects.create(
        user=user,
        status=Order.PENDING,
        subtotal=totals.subtotal,
        shipping=totals.shipping,
        tax=totals.tax,
        discount_amount=totals.discount,
        total=totals.total,
        coupon_code=coupon_code,
        shipping_address=shipping_address,
        billing_address=dict(billing_address) if billing_address else shipping_address,
        payment_method=data["payment_method"],
        payment_status="pending",
        notes=data.get("notes"),
    )

    OrderItem.objects.bulk_create([
        OrderItem(
            order=order,
            product_id=line.product_id,
            product_name=products[line.product_id].name,
            price=products[line.product_id].price,
            quantity=line.quantity,
            size=line.size,
            color=line.color,
        )
        for line in lines
    ])
    for product_id, qty in required.items():
        Product.objects.filter(pk=product_id).update(stock=F("stock") - qty)

    cart.items.all().delete()

    transaction.on_commit(lambda: publish_order_placed(order.order_number, user.pk, order.total))
    return order


def place_order(*, user, data) -> Order:
    """장바구니 -> 주문. data 는 OrderCreateIn 으로 검증된 값."""
    # 트랜잭션 전 사전 검사: 빠른 실패용, 잠금 후 한 번 더 확인함
    _, lines = _load_cart_lines(user)
    _check_stock(_quantities_by_product(lines), {line.product_id: line.product for line in lines})
    return _commit_order(user=user, data=data)


def _restore_stock(order: Order):
    required = _quantities_by_product(order.items.all())
    list(Product.objects.select_for_update().filter(pk__in=list(required)).order_by("pk"))
    for product_id, qty in required.items():
        Product.objects.filter(pk=product_id).update(stock=F("stock") + qty)


@translate_failures(OrderUpdateFailedError)
@transaction.atomic
def cancel_order(*, user, order_id) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id, user=user).first()
    if order is None:
        raise OrderNotFoundError()
    if order.status != Order.PENDING:
        raise OrderNotCancellableError()

    _restore_stock(order)
    order.status = Order.CANCELLED
    order.save(update_fields=["status", "updated_at"])
    logger.info(f"order cancelled by owner: {order.order_number}")
    return order


@translate_failures(OrderUpdateFailedError)
@transaction.atomic
def update_order_status(*, order_id, status: str) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise OrderNotFoundError()

    old_status = order.status
    if status == old_status:
        return order
    # 취소 시 재고를 이미 돌려놨으므로 되살릴 수 없음
    if old_status == Order.CANCELLED:
        raise InvalidStatusTransitionError()
    if status == Order.CANCELLED:
        _restore_stock(order)

    order.status = status
    order.save(update_fields=["status", "updated_at"])
    logger.info(f"order status changed: {order.order_number} {old_status} -> {status}")
    return order


def get_order_for(user, order_id) -> Order:
    qs = Order.objects.prefetch_related("items")
    if not user.is_staff:
        qs = qs.filter(user=user)
    order = qs.filter(pk=order_id).first()
    if order is None:
        raise OrderNotFoundError()
    return order


def list_orders_for_admin(*, status=None, from_date=None, to_date=None, search=None):
    qs = Order.objects.select_related("user").prefetch_related("items")
    if status:
        qs = qs.filter(status=status)
    if from_date:
        qs = qs.filter(created_at__date__gte=from_date)
    if to_date:
        qs = qs.filter(created_at__date__lte=to_date)
    if search:
        qs = qs.filter(order_number__icontains=search)
    return qs.order_by("-created_at", "-id")


def order_stats() -> dict:
    today = timezone.localdate()
    delivered = Order.objects.filter(status=Order.DELIVERED)
    stats = {"total_orders": Order.objects.count()}
    for status, _ in Order.STATUS_CHOICES:
        stats[f"{status}_orders"] = Order.objects.filter(status=status).count()
    stats["total_revenue"] = money(delivered.aggregate(s=Sum("total"))["s"] or ZERO)
    stats["today_orders"] = Order.objects.filter(created_at__date=today).count()
    stats["today_revenue"] = money(delivered.filter(created_at__date=today).aggregate(s=Sum("total"))["s"] or ZERO)
    return stats
