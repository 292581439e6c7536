# atelier/cart/routes.py
from flask import request
from flask_jwt_extended import jwt_required

from ..services import cart_service
from ..utils.api import ok, err
from ..utils.decorators import current_user_id
from . import bp


# ---- endpoints -------------------------------------------------------------

@bp.get("")
@jwt_required()
def get_cart():
    cart = cart_service.get_or_create_cart(current_user_id())
    return ok("cart", {"cart": cart.as_api()})

@bp.post("/items")
@jwt_required()
def add_item():
    """
    Body: { "product_id": int, "quantity": int (default 1) }
    The unit price is snapshotted on first add.
    """
    cart = cart_service.get_or_create_cart(current_user_id())
    data = request.get_json(silent=True) or {}
    cart_service.add_item(cart, data.get("product_id"), data.get("quantity"))
    return ok("item added", {"cart": cart.as_api()}, status=201)

@bp.put("/items/<int:product_id>")
@jwt_required()
def update_item(product_id: int):
    """
    Body: { "quantity": int >= 1 }
    """
    cart = cart_service.get_or_create_cart(current_user_id())
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        return err("quantity is required", 400)
    if not cart_service.set_quantity(cart, product_id, data.get("quantity")):
        return err("item not found in this cart", 404)
    return ok("item updated", {"cart": cart.as_api()})

@bp.delete("/items/<int:product_id>")
@jwt_required()
def remove_item(product_id: int):
    cart = cart_service.get_or_create_cart(current_user_id())
    if not cart_service.remove_item(cart, product_id):
        return err("item not found in this cart", 404)
    return ok("item removed", {"cart": cart.as_api()})

@bp.delete("")
@jwt_required()
def clear_cart():
    cart = cart_service.get_or_create_cart(current_user_id())
    cart_service.clear_cart(cart)
    return ok("cart cleared", {"cart": cart.as_api()})
