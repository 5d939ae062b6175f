from ..exceptions import CartItemNotFoundError, InsufficientStockError, ProductUnavailableError
from ..models import Cart, CartItem, Product


def get_or_create_cart(user) -> Cart:
    cart, _ = Cart.objects.get_or_create(user=user)
    return cart


def _check_available(product: Product, quantity: int):
    if not product.is_active:
        raise ProductUnavailableError(product)
    if product.stock < quantity:
        raise InsufficientStockError(product)


def add_item(*, user, product: Product, quantity: int, size: str = "", color: str = "") -> CartItem:
    _check_available(product, quantity)
    cart = get_or_create_cart(user)

    item = cart.items.filter(product=product, size=size or "", color=color or "").first()
    if item is not None:
        # 같은 옵션 조합은 한 줄로 합침
        new_quantity = item.quantity + quantity
        _check_available(product, new_quantity)
        item.quantity = new_quantity
        item.save(update_fields=["quantity"])
        return item

    return CartItem.objects.create(cart=cart, product=product, quantity=quantity, size=size or "", color=color or "")


def _owned_item(user, item_id) -> CartItem:
    cart = get_or_create_cart(user)
    item = CartItem.objects.select_related("product").filter(pk=item_id, cart=cart).first()
    if item is None:
        raise CartItemNotFoundError()
    return item


def update_item(*, user, item_id, quantity: int) -> CartItem:
    item = _owned_item(user, item_id)
    if item.product.stock < quantity:
        raise InsufficientStockError(item.product)
    item.quantity = quantity
    item.save(update_fields=["quantity"])
    return item


def remove_item(*, user, item_id) -> None:
    _owned_item(user, item_id).delete()


def clear_cart(user) -> None:
    get_or_create_cart(user).items.all().delete()
