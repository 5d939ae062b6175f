from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..exceptions import CouponInvalidError, CouponMinimumNotMetError, CouponNotFoundError
from ..models import Coupon, money


@dataclass(frozen=True)
class CouponQuote:
    coupon: Coupon
    discount_amount: Decimal
    final_amount: Decimal


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def find_coupon(code: str, *, for_update: bool = False) -> Optional[Coupon]:
    qs = Coupon.objects.all()
    if for_update:
        qs = qs.select_for_update()
    return qs.filter(code=normalize_code(code)).first()


def preview_coupon(code: str, order_amount) -> CouponQuote:
    """미리보기 전용: 사용 횟수는 올리지 않는다."""
    coupon = find_coupon(code)
    if coupon is None:
        raise CouponNotFoundError()
    if not coupon.is_valid():
        raise CouponInvalidError()

    amount = money(order_amount)
    if not coupon.meets_minimum(amount):
        raise CouponMinimumNotMetError(coupon.min_order_amount)

    discount = coupon.calculate_discount(amount)
    return CouponQuote(coupon=coupon, discount_amount=discount, final_amount=money(amount - discount))
