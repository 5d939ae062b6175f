from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from .exceptions import CouponInvalidError, CouponMinimumNotMetError, CouponNotFoundError
from .models import Coupon
from .services.coupons import preview_coupon

pytestmark = pytest.mark.django_db


def test_percentage_discount_is_capped_by_max_discount(make_coupon):
    coupon = make_coupon(discount_value="20", max_discount=Decimal("100"))
    assert coupon.calculate_discount(Decimal("1000")) == Decimal("100.00")


def test_percentage_discount_without_cap(make_coupon):
    coupon = make_coupon(discount_value="15")
    assert coupon.calculate_discount(Decimal("80")) == Decimal("12.00")


def test_fixed_discount_never_exceeds_order_amount(make_coupon):
    coupon = make_coupon(code="FLAT50", discount_type=Coupon.FIXED, discount_value="50")
    assert coupon.calculate_discount(Decimal("30")) == Decimal("30.00")
    assert coupon.calculate_discount(Decimal("120")) == Decimal("50.00")


def test_minimum_not_met_gives_zero(make_coupon):
    coupon = make_coupon(min_order_amount=Decimal("500"))
    assert coupon.calculate_discount(Decimal("300")) == Decimal("0")
    assert coupon.calculate_discount(Decimal("500")) == Decimal("100.00")


def test_code_is_stored_upper_cased(make_coupon):
    coupon = make_coupon(code=" welcome10 ")
    coupon.refresh_from_db()
    assert coupon.code == "WELCOME10"


def test_is_valid_checks_window_usage_and_flag(make_coupon):
    now = timezone.now()
    assert make_coupon(code="A").is_valid()
    assert not make_coupon(code="B", is_active=False).is_valid()
    assert not make_coupon(code="C", starts_at=now + timedelta(days=1)).is_valid()
    assert not make_coupon(code="D", expires_at=now - timedelta(seconds=1)).is_valid()
    assert not make_coupon(code="E", usage_limit=3, used_count=3).is_valid()
    assert make_coupon(code="F", usage_limit=3, used_count=2).is_valid()


def test_valid_queryset_matches_is_valid(make_coupon):
    now = timezone.now()
    make_coupon(code="OK", starts_at=now - timedelta(days=1), expires_at=now + timedelta(days=1))
    make_coupon(code="USEDUP", usage_limit=1, used_count=1)
    make_coupon(code="OFF", is_active=False)
    assert list(Coupon.objects.valid().values_list("code", flat=True)) == ["OK"]


def test_preview_is_case_insensitive_and_read_only(make_coupon):
    make_coupon(discount_value="10")
    quote = preview_coupon("save20", Decimal("250"))
    assert quote.discount_amount == Decimal("25.00")
    assert quote.final_amount == Decimal("225.00")
    assert Coupon.objects.get(code="SAVE20").used_count == 0


def test_preview_distinguishes_failures(make_coupon):
    with pytest.raises(CouponNotFoundError):
        preview_coupon("NOPE", Decimal("100"))

    make_coupon(code="OLD", expires_at=timezone.now() - timedelta(days=1))
    with pytest.raises(CouponInvalidError):
        preview_coupon("OLD", Decimal("100"))

    make_coupon(code="BIG", min_order_amount=Decimal("500"))
    with pytest.raises(CouponMinimumNotMetError) as exc:
        preview_coupon("BIG", Decimal("300"))
    assert exc.value.status_code == 400
    assert "500" in exc.value.message
