# atelier/order/routes.py
from flask import request
from flask_jwt_extended import jwt_required
from ..extensions import db
from ..model import Order
from ..currency.routes import resolve_currency
from ..services.cart_service import remove_products
from ..services.errors import ValidationError
from ..services.order_service import change_status, compose_order
from ..services.scoping import parse_opt_int
from ..utils.api import ok, err, paginate
from ..utils.decorators import _current_user, current_user_id, is_admin, role_required
from . import bp


@bp.post("")
@jwt_required()
def create_order():
    """
    Body:
      items            -> [{product_id, quantity}]
      currency_id      -> optional; defaults to the active currency
      applied_coupon   -> optional {coupon_id, code, discount, type} from /api/coupons/validate
      shipping_address -> {street, state, city, zip_code, country}
      phone, notes
    Header Idempotency-Key (or body idempotency_key) makes retries safe.
    """
    data = request.get_json(silent=True) or {}
    uid = current_user_id()

    currency_id = None
    if data.get("currency_id") is not None:
        currency_id = parse_opt_int(data.get("currency_id"))
        if currency_id is None:
            raise ValidationError("currency_id must be an integer")
    currency = resolve_currency(currency_id)
    if currency is None:
        raise ValidationError("Currency not found")

    result = compose_order(
        uid,
        data.get("items"),
        currency,
        applied_coupon=data.get("applied_coupon"),
        shipping_address=data.get("shipping_address"),
        phone=data.get("phone"),
        notes=data.get("notes"),
        idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
    )
    order = result.order
    if not result.created:
        return ok("Order already placed", {"order": order.as_api(), "replayed": True})

    remove_products(uid, [i.product_id for i in order.items])
    payload = {"order": order.as_api()}
    if result.warnings:
        payload["warnings"] = result.warnings
    return ok("Order placed successfully", payload, status=201)


@bp.get("/my")
@jwt_required()
def my_orders():
    q = Order.query.filter_by(user_id=current_user_id()).order_by(Order.created_at.desc(), Order.id.desc())
    page = paginate(q, request.args.get("page"), request.args.get("per_page"))
    return ok("orders", {"orders": [o.as_api() for o in page["items"]], "meta": page["meta"]})


@bp.get("/<int:order_id>")
@jwt_required()
def get_order(order_id: int):
    user = _current_user()
    o = db.session.get(Order, order_id)
    # other users' orders are indistinguishable from missing ones
    if not o or not user or (o.user_id != user.id and not is_admin(user)):
        return err("Order not found", 404)
    return ok("order", {"order": o.as_api()})


@bp.post("/<int:order_id>/cancel")
@jwt_required()
def cancel_order(order_id: int):
    o = db.session.get(Order, order_id)
    if not o or o.user_id != current_user_id():
        return err("Order not found", 404)
    change_status(o, "cancelled", actor="customer")
    return ok("Order cancelled", {"order": o.as_api()})


@bp.get("")
@role_required("admin")
def list_orders():
    """
    Query params:
      - page, per_page
      - status=pending|confirmed|shipped|delivered|completed|cancelled
      - user_id
    """
    q = Order.query
    status = request.args.get("status")
    if status:
        q = q.filter(Order.status == status)
    user_id = parse_opt_int(request.args.get("user_id"))
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)

    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    page = paginate(q, request.args.get("page"), request.args.get("per_page"))
    return ok("orders", {"orders": [o.as_api() for o in page["items"]], "meta": page["meta"]})


@bp.put("/<int:order_id>/status")
@role_required("admin")
def update_status(order_id: int):
    o = db.session.get(Order, order_id)
    if not o:
        return err("Order not found", 404)
    data = request.get_json(silent=True) or {}
    change_status(o, data.get("status"), actor="admin")
    return ok("Order status updated", {"order": o.as_api()})
