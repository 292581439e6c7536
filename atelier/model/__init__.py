# ------ atelier/model/__init__.py ------

from .user import User, RefreshToken
from .category import Category
from .product import Product
from .currency import Currency
from .offer import Offer, SCOPES
from .coupon import Coupon, COUPON_TYPES
from .cart import Cart, CartItem
from .order import Order, OrderItem, ORDER_STATUSES, ImmutableOrderError

__all__ = [
    "User",
    "RefreshToken",
    "Category",
    "Product",
    "Currency",
    "Offer",
    "SCOPES",
    "Coupon",
    "COUPON_TYPES",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "ORDER_STATUSES",
    "ImmutableOrderError",
]
