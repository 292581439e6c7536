from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from atelier.extensions import db
from atelier.model import Product
from atelier.services import offer_service
from atelier.services.coupon_service import validate_coupon
from atelier.services.errors import ValidationError
from atelier.services.offer_service import (
    PROPAGATION_WARNING,
    offer_from_payload,
    offer_price_for,
    reprice_catalog,
    sync_offers,
    update_offer_from_payload,
)
from atelier.utils.dates import utc_now


def _price(product_id):
    return db.session.get(Product, product_id).offer_price


@pytest.mark.parametrize("price, pct, expected", [
    ("200.00", 30, "140.00"),
    ("19.99", 15, "16.99"),
    ("0.05", 50, "0.03"),
    ("80.00", 100, "0.00"),
])
def test_offer_price_rounds_half_up(price, pct, expected):
    assert offer_price_for(Decimal(price), pct) == Decimal(expected)


def test_category_offer_only_touches_its_category(make_category, make_product, make_offer):
    rings, earrings = make_category("Rings"), make_category("Earrings")
    ring = make_product("Gold signet", "200.00", rings)
    hoop = make_product("Hoop pair", "40.00", earrings)
    make_offer(30, scope="category", category=rings)

    report = sync_offers()

    assert report.ok and report.written == 1
    assert _price(ring.id) == Decimal("140.00")
    assert _price(hoop.id) is None


def test_offer_price_stays_below_price(make_product, make_offer):
    products = [make_product(f"p{i}", price) for i, price in enumerate(["9.99", "1234.56"])]
    make_offer(1)
    sync_offers()
    for p in products:
        db.session.refresh(p)
        assert p.offer_price is not None
        assert p.offer_price < p.price


def test_offer_rounding_to_full_price_is_not_written(make_product, make_offer, make_coupon):
    penny = make_product("Penny charm", "0.01")
    make_offer(1)
    sync_offers()
    assert _price(penny.id) is None

    # still eligible for coupons
    make_coupon("CHARM")
    result = validate_coupon("CHARM", Decimal("0.01"), [penny.id])
    assert [p.id for p in result.applicable_products] == [penny.id]


@pytest.mark.parametrize("order", [("all", "category"), ("category", "all")])
def test_highest_percentage_wins_regardless_of_order(order, make_category, make_product, make_offer):
    rings = make_category("Rings")
    ring = make_product("Opal solitaire", "100.00", rings)
    loose = make_product("Pearl strand", "100.00")

    for which in order:
        if which == "all":
            make_offer(20)
        else:
            make_offer(35, scope="category", category=rings)
        sync_offers()

    assert _price(ring.id) == Decimal("65.00")
    assert _price(loose.id) == Decimal("80.00")


def test_delete_reverses_and_falls_back_to_next_best(make_product, make_offer):
    band = make_product("Silver band", "50.00")
    make_offer(10)
    targeted = make_offer(40, scope="products", products=[band])
    sync_offers()
    assert _price(band.id) == Decimal("30.00")

    stale = targeted.scope_key()
    db.session.delete(targeted)
    db.session.commit()
    sync_offers(stale)

    assert _price(band.id) == Decimal("45.00")


def test_toggle_off_clears_offer_price(make_product, make_offer):
    band = make_product("Silver band", "50.00")
    offer = make_offer(25, scope="products", products=[band])
    sync_offers()
    assert _price(band.id) == Decimal("37.50")

    offer.is_active = False
    db.session.commit()
    sync_offers(offer.scope_key())

    assert _price(band.id) is None


def test_update_moving_scope_clears_old_set(make_category, make_product, make_offer):
    rings, earrings = make_category("Rings"), make_category("Earrings")
    ring = make_product("Gold signet", "100.00", rings)
    stud = make_product("Diamond studs", "100.00", earrings)
    offer = make_offer(20, scope="category", category=rings)
    sync_offers()

    previous = update_offer_from_payload(offer, {"category_id": earrings.id})
    db.session.commit()
    sync_offers(previous, offer.scope_key())

    assert _price(ring.id) is None
    assert _price(stud.id) == Decimal("80.00")


def test_future_and_expired_offers_are_not_applied(make_product, make_offer):
    band = make_product("Silver band", "100.00")
    now = utc_now()
    make_offer(50, start_date=now + timedelta(days=1))
    make_offer(60, start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))
    sync_offers()
    assert _price(band.id) is None


def test_reprice_clears_offers_that_ran_out(make_product, make_offer):
    band = make_product("Silver band", "100.00")
    now = utc_now()
    make_offer(10, end_date=now + timedelta(hours=1))
    sync_offers()
    assert _price(band.id) == Decimal("90.00")

    report = reprice_catalog(now=now + timedelta(hours=2))

    assert report.ok
    assert _price(band.id) is None


def test_propagation_failure_is_reported_not_raised(monkeypatch, make_product, make_offer):
    band = make_product("Silver band", "100.00")
    make_offer(10)
    sync_offers()

    def boom(offer, now=None):
        raise OperationalError("UPDATE product", {}, Exception("disk I/O error"))

    monkeypatch.setattr(offer_service, "apply_offer", boom)
    report = sync_offers(("all", None, None))

    assert report.ok is False
    assert report.warning == PROPAGATION_WARNING
    # the reverse step was rolled back with the rest
    assert _price(band.id) == Decimal("90.00")


def test_offer_payload_requires_core_fields(app):
    with pytest.raises(ValidationError, match="Name, percentage, and scope are required"):
        offer_from_payload({"name": "Spring", "percentage": 10})


@pytest.mark.parametrize("payload, message", [
    ({"name": "x", "percentage": 0, "scope": "all"}, "between 1 and 100"),
    ({"name": "x", "percentage": 101, "scope": "all"}, "between 1 and 100"),
    ({"name": "x", "percentage": 10, "scope": "category"}, "Category is required"),
    ({"name": "x", "percentage": 10, "scope": "products", "product_ids": []}, "Products are required"),
    ({"name": "x", "percentage": 10, "scope": "everything"}, "scope must be one of"),
    ({"name": "x", "percentage": 10, "scope": "all", "start_date": "yesterday"}, "Invalid datetime"),
    ({"name": "x", "percentage": 10, "scope": "all",
      "start_date": "2030-01-02T00:00:00Z", "end_date": "2030-01-01T00:00:00Z"}, "end_date must be after"),
])
def test_offer_payload_validation(app, payload, message):
    with pytest.raises(ValidationError, match=message):
        offer_from_payload(payload)


def test_offer_payload_rejects_unknown_products(make_product):
    band = make_product()
    with pytest.raises(ValidationError, match="Unknown products: 999"):
        offer_from_payload({"name": "x", "percentage": 10, "scope": "products",
                            "product_ids": [band.id, 999]})
