from rest_framework import serializers

from .models import Cart, CartItem, Coupon, Order, OrderItem, Product
from .services.coupons import normalize_code


# ---------------------------
# 입력 스키마
# ---------------------------
class AddressIn(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=20)
    address = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    zip = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100)


class OrderCreateIn(serializers.Serializer):
    shipping_address = AddressIn()
    billing_address = AddressIn(required=False, allow_null=True)
    payment_method = serializers.ChoiceField(choices=Order.PAYMENT_METHODS)
    notes = serializers.CharField(max_length=500, required=False, allow_null=True, allow_blank=True)
    coupon_code = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)

    def validate_coupon_code(self, value):
        if not value:
            return None
        code = normalize_code(value)
        if not Coupon.objects.filter(code=code).exists():
            raise serializers.ValidationError("The selected coupon code is invalid.")
        return code


class CouponApplyIn(serializers.Serializer):
    code = serializers.CharField(max_length=64)
    order_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class CartItemIn(serializers.Serializer):
    product_id = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all(), source="product")
    quantity = serializers.IntegerField(min_value=1)
    size = serializers.CharField(max_length=50, required=False, allow_null=True, allow_blank=True)
    color = serializers.CharField(max_length=50, required=False, allow_null=True, allow_blank=True)


class CartItemUpdateIn(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class OrderStatusIn(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)


# ---------------------------
# 출력
# ---------------------------
class ProductBrief(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "name", "slug", "price", "stock", "is_active"]


class CartItemOut(serializers.ModelSerializer):
    product = ProductBrief(read_only=True)
    total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = ["id", "product", "quantity", "size", "color", "total"]


class CartOut(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()
    items_count = serializers.IntegerField(read_only=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Cart
        fields = ["id", "items", "items_count", "subtotal"]

    def get_items(self, cart):
        return CartItemOut(cart.items.select_related("product").order_by("id"), many=True).data


class OrderItemOut(serializers.ModelSerializer):
    total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ["id", "product_id", "product_name", "price", "quantity", "size", "color", "total"]


class OrderOut(serializers.ModelSerializer):
    items = OrderItemOut(many=True, read_only=True)
    items_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "order_number", "user_id", "status",
            "subtotal", "shipping", "tax", "discount_amount", "total", "coupon_code",
            "shipping_address", "billing_address", "payment_method", "payment_status", "notes",
            "items", "items_count", "created_at", "updated_at",
        ]


class CouponOut(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = ["code", "description", "discount_type", "discount_value"]


class CouponAdminSerializer(serializers.ModelSerializer):
    code = serializers.CharField(max_length=64)
    usage_limit = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    class Meta:
        model = Coupon
        fields = [
            "id", "code", "description", "discount_type", "discount_value",
            "min_order_amount", "max_discount", "usage_limit", "used_count",
            "starts_at", "expires_at", "is_active", "created_at", "updated_at",
        ]
        read_only_fields = ["used_count", "created_at", "updated_at"]
        extra_kwargs = {
            "discount_value": {"min_value": 0},
            "min_order_amount": {"min_value": 0},
            "max_discount": {"min_value": 0},
        }

    def validate_code(self, value):
        code = normalize_code(value)
        qs = Coupon.objects.filter(code=code)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("The code has already been taken.")
        return code

    def validate(self, attrs):
        def current(name):
            if name in attrs:
                return attrs[name]
            return getattr(self.instance, name, None)

        starts_at, expires_at = current("starts_at"), current("expires_at")
        if starts_at and expires_at and expires_at < starts_at:
            raise serializers.ValidationError({"expires_at": "Must be after or equal to starts_at."})
        if current("discount_type") == Coupon.PERCENTAGE and (current("discount_value") or 0) > 100:
            raise serializers.ValidationError({"discount_value": "Percentage discount cannot exceed 100."})
        usage_limit = current("usage_limit")
        used_count = self.instance.used_count if self.instance is not None else 0
        if usage_limit is not None and usage_limit < used_count:
            raise serializers.ValidationError(
                {"usage_limit": f"Cannot be lower than the {used_count} uses already recorded."}
            )
        return attrs
