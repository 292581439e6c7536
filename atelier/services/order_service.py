# atelier/services/order_service.py
"""Checkout: turns cart lines plus an optional applied coupon into an Order.

Prices are re-read from the catalog at order time. The order is committed
first and the coupon is redeemed afterwards; a lost redemption race keeps
the order and is reported as a warning.
"""
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..model import Order, OrderItem, Product, ORDER_STATUSES
from ..utils.dates import utc_now
from ..utils.money import D, ZERO, round_money, parse_money
from .coupon_service import compute_discount, ensure_coupon_redeemable, redeem_coupon
from .errors import (
    CouponNotFoundError,
    InvalidTransitionError,
    MinimumNotMetError,
    UsageLimitExceededError,
    ValidationError,
)
from .scoping import parse_opt_int

REDEMPTION_WARNING = "Order placed, but the coupon could not be redeemed"

TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": {"completed"},
    "completed": set(),
    "cancelled": set(),
}
CUSTOMER_CANCELLABLE = {"pending", "confirmed"}


@dataclass
class OrderResult:
    order: Order
    created: bool = True
    warnings: list = field(default_factory=list)


# ---------- input ----------
def parse_lines(raw) -> list[tuple[int, int]]:
    """[{product_id, quantity}, ...] -> [(product_id, quantity)], merged per product."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Order must contain at least one item")
    merged = {}
    for line in raw:
        if not isinstance(line, dict):
            raise ValidationError("Each item must be an object with product_id and quantity")
        pid = parse_opt_int(line.get("product_id"))
        if pid is None:
            raise ValidationError("Each item needs a valid product_id")
        qty = line.get("quantity")
        if isinstance(qty, bool) or (isinstance(qty, float) and not qty.is_integer()):
            raise ValidationError(f"Quantity for product {pid} must be a whole number")
        qty = parse_opt_int(qty)
        if qty is None or qty < 1:
            raise ValidationError(f"Quantity for product {pid} must be at least 1")
        merged[pid] = merged.get(pid, 0) + qty
    return list(merged.items())


def _check_address(address) -> dict:
    if not isinstance(address, dict):
        raise ValidationError("Shipping address is required")
    cleaned = {k: (str(address.get(k) or "").strip()) for k in ("street", "state", "city", "zip_code", "country")}
    if not cleaned["street"] or not cleaned["state"]:
        raise ValidationError("Shipping address needs at least street and state")
    return cleaned


def _check_phone(phone) -> str:
    phone = (phone or "").strip() if isinstance(phone, str) else ""
    if len(phone) < 6:
        raise ValidationError("A valid phone number is required")
    return phone


def _check_key(key):
    if key is None:
        return None
    key = str(key).strip()
    if not key:
        return None
    if len(key) > 128:
        raise ValidationError("Idempotency key is too long")
    return key


def _coupon_discount(applied_coupon):
    if not applied_coupon:
        return None, ZERO
    if not isinstance(applied_coupon, dict):
        raise ValidationError("applied_coupon must be an object")
    try:
        discount = parse_money(applied_coupon.get("discount"), "applied_coupon.discount", allow_none=True)
    except ValueError as e:
        raise ValidationError(str(e))
    discount = discount or ZERO
    if discount < 0:
        raise ValidationError("Coupon discount cannot be negative")
    return applied_coupon, discount


# ---------- idempotency ----------
def _existing_for_key(user_id: int, key: str):
    return Order.query.filter_by(user_id=user_id, idempotency_key=key).first()


def _replay(order: Order, now) -> OrderResult:
    window = current_app.config["ORDER_IDEMPOTENCY_WINDOW"]
    if order.created_at and now - order.created_at > window:
        raise ValidationError("Idempotency key has already been used for an earlier order")
    current_app.logger.info("order %s replayed for idempotency key", order.id)
    return OrderResult(order=order, created=False)


# ---------- compose ----------
def compose_order(
    user_id: int,
    lines,
    currency,
    applied_coupon=None,
    shipping_address=None,
    phone=None,
    notes=None,
    idempotency_key=None,
    now=None,
) -> OrderResult:
    now = now or utc_now()
    key = _check_key(idempotency_key)
    if key:
        existing = _existing_for_key(user_id, key)
        if existing is not None:
            return _replay(existing, now)

    parsed = parse_lines(lines)
    address = _check_address(shipping_address)
    phone = _check_phone(phone)
    if currency is None:
        raise ValidationError("Currency is required")
    applied, requested_discount = _coupon_discount(applied_coupon)

    ids = [pid for pid, _ in parsed]
    products = {p.id: p for p in Product.query.filter(Product.id.in_(ids)).all()}
    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise ValidationError(f"Product {missing[0]} not found")

    items = []
    subtotal = ZERO
    for pid, qty in parsed:
        product = products[pid]
        unit = D(product.effective_price())
        line_total = round_money(unit * qty)
        subtotal += line_total
        items.append(OrderItem(
            product_id=pid,
            name=product.name,
            quantity=qty,
            unit_price=round_money(unit),
            line_total=line_total,
        ))
    subtotal = round_money(subtotal)

    coupon = None
    discount = ZERO
    if applied is not None and requested_discount > 0:
        coupon = ensure_coupon_redeemable(parse_opt_int(applied.get("coupon_id")), applied.get("code"), now)
        if subtotal < D(coupon.min_order_amount):
            raise MinimumNotMetError(coupon.min_order_amount)
        # the shown figure is honoured, never more than the coupon yields today
        discount = round_money(min(requested_discount, compute_discount(coupon, subtotal), subtotal))

    order = Order(
        user_id=user_id,
        status="pending",
        subtotal=subtotal,
        coupon_discount=discount,
        final_total=round_money(max(ZERO, subtotal - discount)),
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        coupon_type=coupon.ctype if coupon else None,
        coupon_applied_discount=discount if coupon else None,
        currency_id=currency.id,
        currency_code=currency.code,
        currency_symbol=currency.symbol,
        phone=phone,
        shipping_address=address,
        notes=(notes or None),
        idempotency_key=key,
        created_at=now,
        updated_at=now,
        items=items,
    )
    db.session.add(order)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = _existing_for_key(user_id, key) if key else None
        if existing is None:
            raise
        return _replay(existing, now)

    current_app.logger.info(
        "order %s created: user=%s subtotal=%s discount=%s total=%s",
        order.id, user_id, order.subtotal, order.coupon_discount, order.final_total,
    )
    result = OrderResult(order=order)
    if coupon is not None:
        _redeem_for_order(order, coupon.id, result)
    return result


def _redeem_for_order(order: Order, coupon_id: int, result: OrderResult):
    attempts = max(1, current_app.config.get("COUPON_REDEEM_ATTEMPTS", 2))
    for attempt in range(1, attempts + 1):
        try:
            redeem_coupon(coupon_id)
            return
        except (UsageLimitExceededError, OperationalError) as e:
            db.session.rollback()
            current_app.logger.warning(
                "coupon %s redemption attempt %s/%s for order %s failed: %s",
                coupon_id, attempt, attempts, order.id, e,
            )
        except CouponNotFoundError:
            break
    current_app.logger.error(
        "coupon %s not redeemed for order %s; discount honoured", coupon_id, order.id
    )
    result.warnings.append(REDEMPTION_WARNING)


# ---------- status ----------
def reachable(current: str) -> set:
    seen, stack = set(), [current]
    while stack:
        for nxt in TRANSITIONS.get(stack.pop(), ()):
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return seen


def can_transition(current: str, target: str, actor: str = "admin") -> bool:
    if actor == "admin":
        return target in reachable(current)
    return target == "cancelled" and current in CUSTOMER_CANCELLABLE


def change_status(order: Order, target: str, actor: str = "admin") -> Order:
    target = (target or "").strip().lower()
    if target not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    current = order.status
    if not can_transition(current, target, actor):
        raise InvalidTransitionError(current, target)
    order.status = target
    db.session.commit()
    current_app.logger.info("order %s: %s -> %s by %s", order.id, current, target, actor)
    return order
