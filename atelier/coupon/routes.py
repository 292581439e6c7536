# atelier/coupon/routes.py
from flask import request, current_app
from flask_jwt_extended import jwt_required
from ..extensions import db
from ..model import Coupon
from ..services.coupon_service import (
    coupon_from_payload,
    parse_validation_request,
    redeem_coupon,
    update_coupon_from_payload,
    validate_coupon,
)
from ..services.errors import CouponNotFoundError
from ..services.scoping import parse_bool
from ..utils.api import ok, err
from ..utils.decorators import role_required
from . import bp


def _get_or_404(coupon_id):
    c = db.session.get(Coupon, coupon_id)
    if not c:
        return None, err("Coupon not found", 404)
    return c, None


@bp.get("")
@role_required("admin")
def list_coupons():
    q = Coupon.query
    active = request.args.get("active")
    if active is not None:
        q = q.filter(Coupon.is_active.is_(parse_bool(active)))
    items = q.order_by(Coupon.id.desc()).all()
    return ok("Coupons fetched", {"coupons": [c.as_api() for c in items]})


@bp.get("/active")
def list_active_coupons():
    items = Coupon.query.filter(*Coupon.current_filter()).order_by(Coupon.id.desc()).all()
    return ok("Active coupons fetched", {
        "coupons": [c.as_public() for c in items if not c.is_exhausted()],
    })


@bp.post("/validate")
def validate():
    """
    Body: { "code": str, "order_amount": number, "product_ids": [int] }
    """
    data = request.get_json(silent=True) or {}
    code, amount, product_ids = parse_validation_request(data)
    result = validate_coupon(code, amount, product_ids)
    return ok(result.message, result.as_api())


@bp.post("")
@role_required("admin")
def create_coupon():
    data = request.get_json(silent=True) or {}
    c = coupon_from_payload(data)
    db.session.add(c)
    db.session.commit()
    current_app.logger.info("coupon %s created (%s)", c.id, c.code)
    return ok("Coupon created", {"coupon": c.as_api()}, status=201)


@bp.put("/<int:coupon_id>")
@role_required("admin")
def update_coupon(coupon_id):
    c, missing = _get_or_404(coupon_id)
    if missing:
        return missing
    update_coupon_from_payload(c, request.get_json(silent=True) or {})
    db.session.commit()
    return ok("Coupon updated", {"coupon": c.as_api()})


@bp.delete("/<int:coupon_id>")
@role_required("admin")
def delete_coupon(coupon_id):
    c, missing = _get_or_404(coupon_id)
    if missing:
        return missing
    db.session.delete(c)
    db.session.commit()
    current_app.logger.info("coupon %s deleted", coupon_id)
    return ok("Coupon deleted")


@bp.patch("/<int:coupon_id>/toggle")
@role_required("admin")
def toggle_coupon(coupon_id):
    c, missing = _get_or_404(coupon_id)
    if missing:
        return missing
    c.is_active = not c.is_active
    db.session.commit()
    return ok(f"Coupon {'activated' if c.is_active else 'deactivated'}", {"coupon": c.as_api()})


@bp.post("/<int:coupon_id>/apply")
@jwt_required()
def apply_coupon(coupon_id):
    """Consume one use of the coupon outside of checkout."""
    c = db.session.get(Coupon, coupon_id)
    if not c or not c.in_window():
        raise CouponNotFoundError()
    used = redeem_coupon(coupon_id)
    return ok("Coupon applied", {"coupon_id": coupon_id, "used_count": used})
