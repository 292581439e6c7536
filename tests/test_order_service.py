from datetime import timedelta
from decimal import Decimal

import pytest

from atelier.extensions import db
from atelier.model import Coupon, ImmutableOrderError, Order
from atelier.services import order_service
from atelier.services.coupon_service import redeem_coupon, validate_coupon
from atelier.services.errors import (
    CouponNotFoundError,
    InvalidTransitionError,
    MinimumNotMetError,
    UsageLimitExceededError,
    ValidationError,
)
from atelier.services.order_service import (
    REDEMPTION_WARNING,
    can_transition,
    change_status,
    compose_order,
)
from atelier.utils.dates import utc_now


@pytest.fixture
def checkout(customer, currency, address):
    def _checkout(lines, **kw):
        kw.setdefault("shipping_address", address)
        kw.setdefault("phone", "+33 6 12 34 56 78")
        return compose_order(customer.id, lines, currency, **kw)
    return _checkout


def _applied(validation):
    c = validation.coupon
    return {"coupon_id": c.id, "code": c.code, "discount": float(validation.discount), "type": c.ctype}


def test_totals_use_current_prices_and_round_trip(checkout, make_product):
    band = make_product("Silver band", "49.99")
    pearl = make_product("Pearl strand", "210.00", offer_price="168.00")

    result = checkout([{"product_id": band.id, "quantity": 3},
                       {"product_id": pearl.id, "quantity": 1}])
    order = result.order

    assert result.created and result.warnings == []
    assert order.subtotal == Decimal("317.97")
    assert order.coupon_discount == Decimal("0.00")
    assert order.final_total == order.subtotal - order.coupon_discount
    assert order.subtotal == sum(i.unit_price * i.quantity for i in order.items)
    assert [i.unit_price for i in order.items] == [Decimal("49.99"), Decimal("168.00")]
    assert order.applied_coupon() is None
    assert order.currency_code == "USD"


def test_coupon_flow_redeems_exactly_once(checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    coupon = make_coupon("SAVE10", "percentage", "10", max_discount="5", usage_limit=10)
    validation = validate_coupon("SAVE10", Decimal("100"), [band.id])

    order = checkout([{"product_id": band.id, "quantity": 1}], applied_coupon=_applied(validation)).order

    assert order.coupon_discount == Decimal("5.00")
    assert order.final_total == Decimal("95.00")
    assert order.applied_coupon() == {"coupon_id": coupon.id, "code": "SAVE10",
                                      "discount": 5.0, "type": "percentage"}
    assert db.session.get(Coupon, coupon.id).used_count == 1


def test_fixed_coupon_larger_than_order_floors_at_zero(checkout, make_product, make_coupon):
    pin = make_product("Pin", "15.00")
    make_coupon("TWENTY", "fixed", "20")
    validation = validate_coupon("TWENTY", Decimal("15"), [pin.id])
    assert validation.discount == Decimal("15.00")

    order = checkout([{"product_id": pin.id, "quantity": 1}], applied_coupon=_applied(validation)).order

    assert order.final_total == Decimal("0.00")


def test_trusted_discount_is_capped_at_subtotal(checkout, make_product, make_coupon):
    pin = make_product("Pin", "15.00")
    c = make_coupon("TWENTY", "fixed", "20")
    order = checkout([{"product_id": pin.id, "quantity": 1}],
                     applied_coupon={"coupon_id": c.id, "code": c.code, "discount": 40}).order
    assert order.coupon_discount == Decimal("15.00")
    assert order.final_total == order.subtotal - order.coupon_discount


def test_trusted_discount_never_exceeds_what_the_coupon_yields(checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    c = make_coupon("SAVE10", "percentage", "10", max_discount="5")
    order = checkout([{"product_id": band.id, "quantity": 1}],
                     applied_coupon={"coupon_id": c.id, "code": c.code, "discount": 100}).order
    assert order.coupon_discount == Decimal("5.00")
    assert order.final_total == Decimal("95.00")

    # a smaller figure shown to the customer is kept
    order = checkout([{"product_id": band.id, "quantity": 1}],
                     applied_coupon={"coupon_id": c.id, "code": c.code, "discount": 3}).order
    assert order.coupon_discount == Decimal("3.00")


def test_minimum_order_is_rechecked_at_checkout(checkout, make_product, make_coupon):
    pin = make_product("Pin", "10.00")
    c = make_coupon("BIG", "fixed", "5", min_order_amount="50")
    with pytest.raises(MinimumNotMetError):
        checkout([{"product_id": pin.id, "quantity": 1}],
                 applied_coupon={"coupon_id": c.id, "code": c.code, "discount": 5})
    assert Order.query.count() == 0
    assert db.session.get(Coupon, c.id).used_count == 0


def test_coupon_that_expired_since_validation_blocks_checkout(checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    c = make_coupon("BRIEF", end_date=utc_now() + timedelta(minutes=5))
    validation = validate_coupon("BRIEF", Decimal("100"), [band.id])

    with pytest.raises(CouponNotFoundError):
        checkout([{"product_id": band.id, "quantity": 1}], applied_coupon=_applied(validation),
                 now=utc_now() + timedelta(minutes=10))
    assert Order.query.count() == 0
    assert db.session.get(Coupon, c.id).used_count == 0


def test_coupon_exhausted_since_validation_blocks_checkout(checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    c = make_coupon("LAST", usage_limit=1)
    validation = validate_coupon("LAST", Decimal("100"), [band.id])
    redeem_coupon(c.id)

    with pytest.raises(CouponNotFoundError):
        checkout([{"product_id": band.id, "quantity": 1}], applied_coupon=_applied(validation))
    assert Order.query.count() == 0


def test_lost_redemption_race_keeps_order(monkeypatch, checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    make_coupon("RACE", usage_limit=1)
    validation = validate_coupon("RACE", Decimal("100"), [band.id])
    calls = []

    def lose(coupon_id):
        calls.append(coupon_id)
        raise UsageLimitExceededError(coupon_id)

    monkeypatch.setattr(order_service, "redeem_coupon", lose)
    result = checkout([{"product_id": band.id, "quantity": 1}], applied_coupon=_applied(validation))

    assert len(calls) == 2
    assert result.warnings == [REDEMPTION_WARNING]
    assert db.session.get(Order, result.order.id).coupon_discount == Decimal("10.00")


def test_idempotent_replay_returns_original(checkout, make_product, make_coupon):
    band = make_product("Silver band", "100.00")
    c = make_coupon("ONCE")
    applied = _applied(validate_coupon("ONCE", Decimal("100"), [band.id]))
    lines = [{"product_id": band.id, "quantity": 1}]

    first = checkout(lines, applied_coupon=applied, idempotency_key="abc-123")
    second = checkout(lines, applied_coupon=applied, idempotency_key="abc-123")

    assert first.created and not second.created
    assert second.order.id == first.order.id
    assert Order.query.count() == 1
    assert db.session.get(Coupon, c.id).used_count == 1


def test_idempotency_key_reused_after_window(checkout, make_product):
    band = make_product()
    lines = [{"product_id": band.id, "quantity": 1}]
    start = utc_now()
    checkout(lines, idempotency_key="k1", now=start)

    with pytest.raises(ValidationError, match="already been used"):
        checkout(lines, idempotency_key="k1", now=start + timedelta(minutes=11))


def test_idempotency_race_loser_gets_winner(monkeypatch, checkout, make_product):
    band = make_product()
    lines = [{"product_id": band.id, "quantity": 1}]
    winner = checkout(lines, idempotency_key="dup").order

    real_lookup = order_service._existing_for_key
    seen = []

    def miss_first(user_id, key):
        seen.append(key)
        return None if len(seen) == 1 else real_lookup(user_id, key)

    monkeypatch.setattr(order_service, "_existing_for_key", miss_first)
    loser = checkout(lines, idempotency_key="dup")

    assert not loser.created
    assert loser.order.id == winner.id
    assert Order.query.count() == 1


def test_same_key_for_different_users(currency, address, customer, other_customer, make_product):
    band = make_product()
    lines = [{"product_id": band.id, "quantity": 1}]
    a = compose_order(customer.id, lines, currency, shipping_address=address,
                      phone="0612345678", idempotency_key="shared")
    b = compose_order(other_customer.id, lines, currency, shipping_address=address,
                      phone="0612345678", idempotency_key="shared")
    assert a.order.id != b.order.id


@pytest.mark.parametrize("lines, kw, message", [
    ([], {}, "at least one item"),
    ([{"product_id": 1, "quantity": 0}], {}, "at least 1"),
    ([{"product_id": 1, "quantity": 1.5}], {}, "whole number"),
    ([{"product_id": 999, "quantity": 1}], {}, "Product 999 not found"),
    ([{"product_id": 1, "quantity": 1}], {"phone": "123"}, "phone"),
    ([{"product_id": 1, "quantity": 1}], {"shipping_address": {"city": "Paris"}}, "street and state"),
    ([{"product_id": 1, "quantity": 1}], {"applied_coupon": {"coupon_id": 1, "discount": -5}}, "negative"),
])
def test_input_validation(checkout, make_product, lines, kw, message):
    make_product()
    with pytest.raises(ValidationError, match=message):
        checkout(lines, **kw)
    assert Order.query.count() == 0


# ---------- immutability ----------
def test_pricing_columns_refuse_changes(checkout, make_product):
    band = make_product()
    order = checkout([{"product_id": band.id, "quantity": 2}]).order

    order.final_total = Decimal("1.00")
    with pytest.raises(ImmutableOrderError):
        db.session.commit()
    db.session.rollback()

    order.items[0].quantity = 5
    with pytest.raises(ImmutableOrderError):
        db.session.commit()
    db.session.rollback()

    assert db.session.get(Order, order.id).final_total == Decimal("200.00")


def test_status_is_still_mutable(checkout, make_product):
    order = checkout([{"product_id": make_product().id, "quantity": 1}]).order
    change_status(order, "confirmed")
    assert db.session.get(Order, order.id).status == "confirmed"


# ---------- state machine ----------
@pytest.mark.parametrize("current, target, admin_ok, customer_ok", [
    ("pending", "confirmed", True, False),
    ("pending", "cancelled", True, True),
    ("confirmed", "shipped", True, False),
    ("confirmed", "cancelled", True, True),
    ("shipped", "delivered", True, False),
    ("shipped", "cancelled", False, False),
    ("delivered", "completed", True, False),
    ("pending", "completed", True, False),
    ("shipped", "pending", False, False),
    ("completed", "cancelled", False, False),
    ("cancelled", "pending", False, False),
    ("pending", "pending", False, False),
])
def test_transition_table(current, target, admin_ok, customer_ok):
    assert can_transition(current, target, "admin") is admin_ok
    assert can_transition(current, target, "customer") is customer_ok


def test_invalid_transition_raises(checkout, make_product):
    order = checkout([{"product_id": make_product().id, "quantity": 1}]).order
    change_status(order, "shipped")
    with pytest.raises(InvalidTransitionError) as exc:
        change_status(order, "cancelled", actor="customer")
    assert exc.value.context() == {"current_status": "shipped", "requested_status": "cancelled"}


def test_unknown_status_is_a_validation_error(checkout, make_product):
    order = checkout([{"product_id": make_product().id, "quantity": 1}]).order
    with pytest.raises(ValidationError):
        change_status(order, "teleported")


def test_cancel_does_not_give_coupon_back(checkout, make_product, make_coupon):
    band = make_product()
    c = make_coupon("KEEP", usage_limit=5)
    order = checkout([{"product_id": band.id, "quantity": 1}],
                     applied_coupon=_applied(validate_coupon("KEEP", Decimal("100"), [band.id]))).order
    change_status(order, "cancelled", actor="customer")
    assert db.session.get(Coupon, c.id).used_count == 1
