# --- currency/routes.py ---
from flask import request, current_app
from sqlalchemy import or_, update
from ..model import Currency, Order
from ..extensions import db
from ..utils.api import ok, err
from ..utils.decorators import role_required
from ..utils.money import parse_money
from . import bp


def resolve_currency(currency_id=None):
    """Currency stamped on a new order.

    An explicit id wins; otherwise the configured ACTIVE_CURRENCY_CODE, then
    the single row flagged active.
    """
    if currency_id is not None:
        return db.session.get(Currency, currency_id)
    code = (current_app.config.get("ACTIVE_CURRENCY_CODE") or "").strip().upper()
    if code:
        found = Currency.query.filter_by(code=code).first()
        if found:
            return found
    return Currency.query.filter_by(is_active=True).order_by(Currency.id.asc()).first()


@bp.get("")
def list_currencies():
    items = Currency.query.order_by(Currency.id.asc()).all()
    active = resolve_currency()
    return ok("Currencies fetched", {
        "currencies": [c.as_dict() for c in items],
        "active": active.as_dict() if active else None,
    })


@bp.post("")
@role_required("admin")
def create_currency():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    symbol = (data.get("symbol") or "").strip()
    code = (data.get("code") or "").strip().upper()
    if not name or not symbol or not code:
        return err("Name, symbol, and code are required", 400)
    if Currency.query.filter(
        (Currency.code == code) | (Currency.name == name) | (Currency.symbol == symbol)
    ).first():
        return err("Currency already exists", 409)
    try:
        rate = parse_money(data.get("exchange_rate"), "exchange_rate", allow_none=True)
    except ValueError as e:
        return err(str(e), 400)
    if rate is not None and rate <= 0:
        return err("exchange_rate must be greater than 0", 400)

    c = Currency(name=name, symbol=symbol, code=code, exchange_rate=rate or 1, is_active=False)
    db.session.add(c)
    db.session.commit()
    return ok("Currency created", {"currency": c.as_dict()}, status=201)


@bp.patch("/<int:cid>/activate")
@role_required("admin")
def activate_currency(cid):
    c = db.session.get(Currency, cid)
    if not c:
        return err("Currency not found", 404)
    # exactly one active row
    db.session.execute(update(Currency.__table__).where(Currency.__table__.c.id != cid).values(is_active=False))
    c.is_active = True
    db.session.commit()
    current_app.logger.info("currency %s (%s) activated", c.id, c.code)
    return ok("Currency activated", {"currency": c.as_dict()})


@bp.put("/<int:cid>")
@role_required("admin")
def update_currency(cid):
    c = db.session.get(Currency, cid)
    if not c:
        return err("Currency not found", 404)
    data = request.get_json(silent=True) or {}
    changes = {}
    for key in ("name", "symbol", "code"):
        if data.get(key) is not None:
            value = str(data[key]).strip()
            if not value:
                return err(f"{key} cannot be empty", 400)
            changes[key] = value.upper() if key == "code" else value
    if "exchange_rate" in data:
        try:
            rate = parse_money(data.get("exchange_rate"), "exchange_rate", allow_none=True)
        except ValueError as e:
            return err(str(e), 400)
        if rate is not None and rate <= 0:
            return err("exchange_rate must be greater than 0", 400)
        changes["exchange_rate"] = rate or 1

    clash = [getattr(Currency, k) == v for k, v in changes.items() if k in ("name", "symbol", "code")]
    if clash and Currency.query.filter(Currency.id != cid).filter(or_(*clash)).first():
        return err("Currency already exists", 409)

    for key, value in changes.items():
        setattr(c, key, value)
    db.session.commit()
    return ok("Currency updated", {"currency": c.as_dict()})


@bp.delete("/<int:cid>")
@role_required("admin")
def delete_currency(cid):
    c = db.session.get(Currency, cid)
    if not c:
        return err("Currency not found", 404)
    if c.is_active:
        return err("Activate another currency before deleting this one", 409)
    if Order.query.filter_by(currency_id=cid).first():
        return err("Currency is used by existing orders", 409)
    db.session.delete(c)
    db.session.commit()
    current_app.logger.info("currency %s (%s) deleted", cid, c.code)
    return ok("Currency deleted", {"id": cid})
