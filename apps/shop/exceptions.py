from django.conf import settings
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler


class ShopError(Exception):
    """도메인 오류 기본형: 뷰 밖 핸들러가 {"success": false, "message": ...} 로 변환"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Request could not be processed."

    def __init__(self, message=None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)


class EmptyCartError(ShopError):
    default_message = "Your cart is empty."


class ProductUnavailableError(ShopError):
    def __init__(self, product):
        super().__init__(f"Product '{product.name}' is no longer available.", product_id=product.pk)


class InsufficientStockError(ShopError):
    def __init__(self, product):
        super().__init__(
            f"Not enough stock for '{product.name}'. Only {product.stock} available.",
            product_id=product.pk,
            available=product.stock,
        )


class CouponNotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid coupon code"


class CouponInvalidError(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "This coupon has expired or is no longer valid"


class CouponMinimumNotMetError(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, minimum):
        super().__init__(f"Minimum order amount of {minimum} required", min_order_amount=str(minimum))


class OrderNotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Order not found."


class CartItemNotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Cart item not found."


class OrderNotCancellableError(ShopError):
    default_message = "Only pending orders can be cancelled."


class InvalidStatusTransitionError(ShopError):
    default_message = "Cancelled orders cannot change status."


class IdempotencyConflictError(ShopError):
    default_message = "Idempotency-Key was already used with a different request body."


class TransactionFailedError(ShopError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail=None):
        # 내부 메시지는 DEBUG 에서만 노출
        super().__init__(None, error=detail if settings.DEBUG else None)


class OrderCreationFailedError(TransactionFailedError):
    default_message = "Failed to place order. Please try again."


class OrderUpdateFailedError(TransactionFailedError):
    default_message = "Failed to update order."


def shop_exception_handler(exc, context):
    if isinstance(exc, ShopError):
        body = {"success": False, "message": exc.message, **exc.extra}
        return Response(body, status=exc.status_code)

    if isinstance(exc, exceptions.ValidationError):
        body = {"success": False, "message": "The given data was invalid.", "errors": exc.detail}
        return Response(body, status=status.HTTP_422_UNPROCESSABLE_ENTITY)

    response = exception_handler(exc, context)
    if response is not None:
        detail = response.data.get("detail") if isinstance(response.data, dict) else response.data
        response.data = {"success": False, "message": str(detail)}
    return response
