# atelier/services/offer_service.py
"""Keeps ``Product.offer_price`` in line with the currently active offers.

offer_price is a cached value: for every product it equals the price under
the highest-percentage current offer that covers it, or NULL. It is never
patched incrementally; a change to any offer reverses the stale scopes and
re-applies every current offer, all in one transaction.
"""
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import bindparam, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..model import Offer, Product
from ..utils.dates import utc_now
from ..utils.money import D, round_money, Money
from .errors import ValidationError
from .scoping import parse_bool, parse_scope, parse_window, scope_clause

PROPAGATION_WARNING = "Offer saved, but catalog prices could not be updated; run `flask reprice-offers` to retry"


@dataclass
class PropagationReport:
    ok: bool = True
    written: int = 0
    cleared: int = 0
    warning: str | None = None

    def as_api(self):
        return {"ok": self.ok, "written": self.written, "cleared": self.cleared, "warning": self.warning}


def offer_price_for(price, percentage: int) -> Money:
    price = D(price)
    return round_money(price - price * D(percentage) / D(100))


def current_offers(now=None) -> list[Offer]:
    return (
        Offer.query.filter(*Offer.current_filter(now))
        .order_by(Offer.percentage.desc(), Offer.id.asc())
        .all()
    )


def apply_offer(offer: Offer, now=None) -> int:
    """Write this offer's price onto its matching products.

    Rows that already hold the same or a lower offer price are left alone,
    so a weaker overlapping offer never overrides a stronger one. A price
    that rounding leaves unchanged is not an offer and is skipped. All writes
    go out as one executemany batch. Returns the number of rows written.
    """
    if not offer.is_current(now):
        return 0
    t = Product.__table__
    rows = db.session.execute(
        select(t.c.id, t.c.price, t.c.offer_price).where(
            scope_clause(offer.scope, offer.category_id, offer.product_ids)
        )
    ).all()

    params = []
    for pid, price, existing in rows:
        new_price = offer_price_for(price, offer.percentage)
        if new_price >= D(price):
            continue
        if existing is not None and D(existing) <= new_price:
            continue
        params.append({"pid": pid, "new_price": new_price})
    if not params:
        return 0

    new_price = bindparam("new_price", type_=t.c.offer_price.type)
    stmt = (
        update(t)
        .where(t.c.id == bindparam("pid"))
        .where(or_(t.c.offer_price.is_(None), t.c.offer_price > new_price))
        .values(offer_price=new_price)
    )
    db.session.execute(stmt, params)
    return len(params)


def reverse_offer(scope: str, category_id=None, product_ids=None) -> int:
    """Unset offer_price across a matching set; one UPDATE statement."""
    t = Product.__table__
    result = db.session.execute(
        update(t)
        .where(scope_clause(scope, category_id, product_ids))
        .where(t.c.offer_price.is_not(None))
        .values(offer_price=None)
    )
    return result.rowcount or 0


def sync_offers(*stale_scopes, now=None) -> PropagationReport:
    """Reverse each (scope, category_id, product_ids) then re-apply current offers.

    Failures are logged and reported, never raised: the offer row that
    triggered the sync has already been committed by the caller.
    """
    now = now or utc_now()
    report = PropagationReport()
    try:
        for scope, category_id, product_ids in stale_scopes:
            report.cleared += reverse_offer(scope, category_id, product_ids)
        for offer in current_offers(now):
            report.written += apply_offer(offer, now)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("offer propagation failed (stale scopes: %r)", stale_scopes)
        return PropagationReport(ok=False, warning=PROPAGATION_WARNING)

    current_app.logger.info(
        "offer propagation done: cleared=%s written=%s", report.cleared, report.written
    )
    return report


def reprice_catalog(now=None) -> PropagationReport:
    """Full recompute; also clears prices left behind by offers that ran out."""
    return sync_offers(("all", None, None), now=now)


def sync_product(product_id: int) -> PropagationReport:
    return sync_offers(("products", None, [product_id]))


# ---------- admin payloads ----------
def _parse_percentage(v):
    try:
        pct = int(v)
    except (TypeError, ValueError):
        raise ValidationError("Percentage must be between 1 and 100")
    if isinstance(v, float) and v != pct:
        raise ValidationError("Percentage must be a whole number")
    if pct < 1 or pct > 100:
        raise ValidationError("Percentage must be between 1 and 100")
    return pct


def offer_from_payload(data: dict) -> Offer:
    name = (data.get("name") or "").strip()
    if not name or data.get("percentage") in (None, "") or not data.get("scope"):
        raise ValidationError("Name, percentage, and scope are required")
    percentage = _parse_percentage(data.get("percentage"))
    scope, category_id, products = parse_scope(data)
    start, end = parse_window(data)
    return Offer(
        name=name,
        percentage=percentage,
        scope=scope,
        category_id=category_id,
        products=products,
        is_active=parse_bool(data.get("is_active"), True),
        start_date=start,
        end_date=end,
    )


def update_offer_from_payload(offer: Offer, data: dict):
    """Apply a partial edit; returns the scope key the offer had before."""
    previous = offer.scope_key()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        offer.name = name
    if data.get("percentage") not in (None, ""):
        offer.percentage = _parse_percentage(data.get("percentage"))
    scope, category_id, products = parse_scope(data, current=offer)
    start, end = parse_window(data, current=offer)
    offer.scope = scope
    offer.category_id = category_id
    offer.products = products
    offer.start_date = start
    offer.end_date = end
    if "is_active" in data:
        offer.is_active = parse_bool(data.get("is_active"), offer.is_active)
    return previous
