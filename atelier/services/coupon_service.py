# atelier/services/coupon_service.py
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_, select, update

from ..extensions import db
from ..model import Coupon, Product, COUPON_TYPES
from ..utils.money import D, ZERO, round_money, parse_money, Money
from .errors import (
    AllProductsExcludedError,
    CouponNotFoundError,
    MinimumNotMetError,
    ScopeMismatchError,
    UsageLimitExceededError,
    ValidationError,
)
from .scoping import parse_bool, parse_id_list, parse_opt_int, parse_scope, parse_window


@dataclass
class CouponValidation:
    coupon: Coupon
    discount: Money
    applicable_products: list = field(default_factory=list)
    excluded_products: list = field(default_factory=list)

    @property
    def message(self):
        if self.excluded_products:
            return f"Coupon applied to products without existing offers. Total discount: {self.discount:.2f}"
        return f"Coupon applied successfully. Total discount: {self.discount:.2f}"

    def as_api(self):
        return {
            "coupon": self.coupon.as_public(),
            "discount": float(self.discount),
            "is_valid": True,
            "applicable_products": [p.as_brief() for p in self.applicable_products],
            "excluded_products": [p.as_brief() for p in self.excluded_products],
            "message": self.message,
        }


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def find_valid_coupon(code: str, now=None) -> Coupon:
    """Active, in-window and not exhausted; anything else is 'not found'."""
    code = normalize_code(code)
    if not code:
        raise CouponNotFoundError()
    coupon = Coupon.query.filter(Coupon.code == code, *Coupon.current_filter(now)).first()
    if coupon is None or coupon.is_exhausted():
        raise CouponNotFoundError()
    return coupon


def compute_discount(coupon: Coupon, order_amount) -> Money:
    amount = D(order_amount)
    if amount <= ZERO:
        return round_money(ZERO)
    value = D(coupon.value)
    if coupon.ctype == "percentage":
        raw = amount * value / Decimal("100")
        if coupon.max_discount is not None:
            raw = min(raw, D(coupon.max_discount))
    else:
        raw = value
    return round_money(max(ZERO, min(raw, amount)))


def can_apply_to_products(coupon: Coupon, product_ids) -> bool:
    if coupon.scope == "all":
        return True
    if coupon.scope == "category":
        ids = list(product_ids or [])
        if not ids:
            return True
        return Product.query.filter(
            Product.id.in_(ids), Product.category_id == coupon.category_id
        ).first() is not None
    if coupon.scope == "products":
        wanted = set(coupon.product_ids)
        return any(pid in wanted for pid in product_ids)
    return False


def validate_coupon(code: str, order_amount, product_ids=None, now=None) -> CouponValidation:
    """Check a code against a cart; discount is computed on the whole order."""
    coupon = find_valid_coupon(code, now)

    amount = D(order_amount)
    if amount < D(coupon.min_order_amount):
        raise MinimumNotMetError(coupon.min_order_amount)

    ids = list(product_ids or [])
    excluded = []
    if ids:
        # no stacking on top of an item-level offer
        excluded = (
            Product.query.filter(Product.id.in_(ids), Product.offer_price.is_not(None))
            .order_by(Product.id.asc())
            .all()
        )
        if excluded:
            excluded_ids = {p.id for p in excluded}
            ids = [pid for pid in ids if pid not in excluded_ids]
            if not ids:
                raise AllProductsExcludedError(excluded)
            current_app.logger.debug(
                "coupon %s narrowed to products without offers: %s", coupon.code, ids
            )

    if not can_apply_to_products(coupon, ids):
        raise ScopeMismatchError()

    discount = compute_discount(coupon, amount)
    applicable = []
    if ids:
        q = Product.query.filter(Product.id.in_(ids))
        if coupon.scope == "category":
            q = q.filter(Product.category_id == coupon.category_id)
        applicable = q.order_by(Product.id.asc()).all()
    current_app.logger.info("coupon %s validated: amount=%s discount=%s", coupon.code, amount, discount)
    return CouponValidation(
        coupon=coupon,
        discount=discount,
        applicable_products=applicable,
        excluded_products=excluded,
    )


def ensure_coupon_redeemable(coupon_id: int, code: str | None = None, now=None) -> Coupon:
    """Pre-persist re-check for checkout: still live and budget left."""
    coupon = db.session.get(Coupon, coupon_id) if coupon_id else None
    if coupon is None or not coupon.is_valid(now):
        raise CouponNotFoundError()
    if code and normalize_code(code) != coupon.code:
        raise CouponNotFoundError()
    return coupon


def redeem_coupon(coupon_id: int) -> int:
    """Consume one use of the coupon; returns the new used_count.

    The limit check and the increment are one conditional UPDATE, so two
    concurrent checkouts can never both take the last use.
    """
    t = Coupon.__table__
    result = db.session.execute(
        update(t)
        .where(t.c.id == coupon_id)
        .where(or_(t.c.usage_limit.is_(None), t.c.used_count < t.c.usage_limit))
        .values(used_count=t.c.used_count + 1)
    )
    if result.rowcount != 1:
        db.session.rollback()
        if db.session.get(Coupon, coupon_id) is None:
            raise CouponNotFoundError()
        raise UsageLimitExceededError(coupon_id)
    used = db.session.execute(select(t.c.used_count).where(t.c.id == coupon_id)).scalar_one()
    db.session.commit()
    current_app.logger.info("coupon %s redeemed, used_count=%s", coupon_id, used)
    return used


# ---------- admin payloads ----------
def _check_code_free(code: str, exclude_id=None):
    q = Coupon.query.filter(func.upper(Coupon.code) == code)
    if exclude_id is not None:
        q = q.filter(Coupon.id != exclude_id)
    if q.first():
        raise ValidationError("Coupon code already exists")

def _money_field(data, key, *, allow_none=False):
    try:
        return parse_money(data.get(key), key, allow_none=allow_none)
    except ValueError as e:
        raise ValidationError(str(e))

def _check_value(ctype: str, value: Money):
    if ctype == "percentage" and (value < 1 or value > 100):
        raise ValidationError("Percentage value must be between 1 and 100")
    if ctype == "fixed" and value < 0:
        raise ValidationError("Fixed value cannot be negative")

def _usage_limit(data):
    raw = data.get("usage_limit")
    if raw in (None, "", 0, "0"):
        return None
    limit = parse_opt_int(raw)
    if limit is None or limit < 1:
        raise ValidationError("usage_limit must be a positive integer")
    return limit

def _non_negative(data, key, *, allow_none):
    amount = _money_field(data, key, allow_none=allow_none)
    if amount is not None and amount < 0:
        raise ValidationError(f"{key} cannot be negative")
    return amount


def coupon_from_payload(data: dict) -> Coupon:
    code = normalize_code(data.get("code"))
    name = (data.get("name") or "").strip()
    ctype = (data.get("type") or "").strip().lower()
    if not code or not name or not ctype or data.get("value") is None:
        raise ValidationError("Code, name, type, and value are required")
    if ctype not in COUPON_TYPES:
        raise ValidationError("type must be 'percentage' or 'fixed'")
    value = _money_field(data, "value")
    _check_value(ctype, value)
    _check_code_free(code)

    scope, category_id, products = parse_scope({"scope": "all", **{k: v for k, v in data.items() if v is not None}})
    start, end = parse_window(data)
    max_discount = _non_negative(data, "max_discount", allow_none=True)
    return Coupon(
        code=code,
        name=name,
        description=data.get("description"),
        ctype=ctype,
        value=value,
        min_order_amount=_non_negative(data, "min_order_amount", allow_none=True) or ZERO,
        max_discount=max_discount or None,
        usage_limit=_usage_limit(data),
        used_count=0,
        scope=scope,
        category_id=category_id,
        products=products,
        is_active=parse_bool(data.get("is_active"), True),
        start_date=start,
        end_date=end,
    )


def update_coupon_from_payload(coupon: Coupon, data: dict) -> Coupon:
    """Partial edit. used_count is not editable here."""
    if data.get("code"):
        code = normalize_code(data.get("code"))
        if code != coupon.code:
            _check_code_free(code, exclude_id=coupon.id)
            coupon.code = code
    if data.get("name"):
        coupon.name = data["name"].strip()
    if "description" in data:
        coupon.description = data.get("description")

    ctype = (data.get("type") or coupon.ctype).strip().lower()
    if ctype not in COUPON_TYPES:
        raise ValidationError("type must be 'percentage' or 'fixed'")
    value = _money_field(data, "value") if data.get("value") is not None else D(coupon.value)
    _check_value(ctype, value)
    coupon.ctype = ctype
    coupon.value = value

    if "min_order_amount" in data:
        coupon.min_order_amount = _non_negative(data, "min_order_amount", allow_none=True) or ZERO
    if "max_discount" in data:
        coupon.max_discount = _non_negative(data, "max_discount", allow_none=True) or None
    if "usage_limit" in data:
        limit = _usage_limit(data)
        if limit is not None and limit < (coupon.used_count or 0):
            raise ValidationError(f"usage_limit cannot be lower than used_count ({coupon.used_count})")
        coupon.usage_limit = limit

    if data.get("scope") or "category_id" in data or "product_ids" in data:
        coupon.scope, coupon.category_id, coupon.products = parse_scope(data, current=coupon)
    coupon.start_date, coupon.end_date = parse_window(data, current=coupon)
    if "is_active" in data:
        coupon.is_active = parse_bool(data.get("is_active"), coupon.is_active)
    return coupon


def parse_validation_request(data: dict):
    """Returns (code, order_amount, product_ids) from a /validate body."""
    code = (data.get("code") or "").strip()
    if not code:
        raise ValidationError("Coupon code is required")
    try:
        amount = parse_money(data.get("order_amount"), "order_amount")
    except ValueError as e:
        raise ValidationError(str(e))
    if amount < 0:
        raise ValidationError("order_amount cannot be negative")
    return code, amount, parse_id_list(data.get("product_ids"))
