# atelier/services/cart_service.py
from ..extensions import db
from ..model import Cart, CartItem, Product
from ..utils.money import round_money
from .errors import ValidationError
from .scoping import parse_opt_int


def get_or_create_cart(user_id: int) -> Cart:
    cart = Cart.query.filter_by(user_id=user_id).first()
    if not cart:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.commit()
    return cart

def _find_item(cart: Cart, product_id: int) -> CartItem | None:
    return next((i for i in cart.items if i.product_id == product_id), None)

def _quantity(raw, default=None) -> int:
    if raw is None and default is not None:
        return default
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError("quantity must be a whole number")
    qty = parse_opt_int(raw)
    if qty is None or qty < 1:
        raise ValidationError("quantity must be >= 1")
    return qty


def add_item(cart: Cart, product_id, quantity=None) -> CartItem:
    """Upsert a line; the price snapshot is taken when the product is first added."""
    pid = parse_opt_int(product_id)
    if pid is None:
        raise ValidationError("product_id is required")
    qty = _quantity(quantity, default=1)

    product = db.session.get(Product, pid)
    if not product:
        raise ValidationError(f"Product {pid} not found")

    item = _find_item(cart, pid)
    if item:
        item.quantity += qty
    else:
        item = CartItem(
            product_id=product.id,
            quantity=qty,
            price_snapshot=round_money(product.effective_price()),
        )
        cart.items.append(item)
    db.session.commit()
    return item


def set_quantity(cart: Cart, product_id: int, quantity) -> CartItem | None:
    item = _find_item(cart, product_id)
    if not item:
        return None
    item.quantity = _quantity(quantity)
    db.session.commit()
    return item


def remove_item(cart: Cart, product_id: int) -> bool:
    item = _find_item(cart, product_id)
    if not item:
        return False
    cart.items.remove(item)
    db.session.commit()
    return True


def clear_cart(cart: Cart):
    cart.items.clear()
    db.session.commit()


def remove_products(user_id: int, product_ids) -> int:
    """Drop ordered products from the user's cart after checkout."""
    cart = Cart.query.filter_by(user_id=user_id).first()
    if not cart:
        return 0
    doomed = [i for i in cart.items if i.product_id in set(product_ids)]
    for item in doomed:
        cart.items.remove(item)
    if doomed:
        db.session.commit()
    return len(doomed)
