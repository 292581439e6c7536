# atelier/offer/routes.py
from flask import request, current_app
from ..extensions import db
from ..model import Offer
from ..services.offer_service import (
    current_offers,
    offer_from_payload,
    sync_offers,
    update_offer_from_payload,
)
from ..services.scoping import parse_bool
from ..utils.api import ok, err
from ..utils.decorators import role_required
from . import bp


def _saved(message, offer, report, status=200):
    """Admin write response; propagation trouble rides along as a warning."""
    data = {"propagation": report.as_api()}
    if offer is not None:
        data["offer"] = offer.as_api()
    if report.warning:
        data["warning"] = report.warning
    return ok(message, data, status=status)


@bp.get("")
@role_required("admin")
def list_offers():
    q = Offer.query
    active = request.args.get("active")
    if active is not None:
        q = q.filter(Offer.is_active.is_(parse_bool(active)))
    scope = (request.args.get("scope") or "").strip().lower()
    if scope:
        q = q.filter(Offer.scope == scope)
    items = q.order_by(Offer.created_at.desc(), Offer.id.desc()).all()
    return ok("Offers fetched", {"offers": [o.as_api() for o in items]})


@bp.get("/active")
def list_active_offers():
    return ok("Active offers fetched", {"offers": [o.as_api() for o in current_offers()]})


@bp.post("")
@role_required("admin")
def create_offer():
    offer = offer_from_payload(request.get_json(silent=True) or {})
    db.session.add(offer)
    db.session.commit()
    current_app.logger.info("offer %s created: %s%% on %s", offer.id, offer.percentage, offer.scope)
    report = sync_offers()
    return _saved("Offer created", offer, report, status=201)


@bp.put("/<int:offer_id>")
@role_required("admin")
def update_offer(offer_id):
    offer = db.session.get(Offer, offer_id)
    if not offer:
        return err("Offer not found", 404)
    previous = update_offer_from_payload(offer, request.get_json(silent=True) or {})
    db.session.commit()
    # both the old and the new matching sets may be stale
    report = sync_offers(previous, offer.scope_key())
    return _saved("Offer updated", offer, report)


@bp.delete("/<int:offer_id>")
@role_required("admin")
def delete_offer(offer_id):
    offer = db.session.get(Offer, offer_id)
    if not offer:
        return err("Offer not found", 404)
    stale = offer.scope_key()
    db.session.delete(offer)
    db.session.commit()
    current_app.logger.info("offer %s deleted", offer_id)
    report = sync_offers(stale)
    return _saved("Offer deleted", None, report)


@bp.patch("/<int:offer_id>/toggle")
@role_required("admin")
def toggle_offer(offer_id):
    offer = db.session.get(Offer, offer_id)
    if not offer:
        return err("Offer not found", 404)
    offer.is_active = not offer.is_active
    db.session.commit()
    report = sync_offers(offer.scope_key())
    return _saved(f"Offer {'activated' if offer.is_active else 'deactivated'}", offer, report)
