# --- category/routes.py ---
from flask import request
from sqlalchemy import desc
from ..model import Category, Product, Offer, Coupon
from ..extensions import db
from ..services.scoping import parse_bool
from ..utils.api import ok, err, paginate
from ..utils.decorators import role_required
from . import bp

# ------------------------ CATEGORY ROUTES ------------------------

@bp.post("")
@role_required("admin")
def create_category():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return err("name required", 400)
    if Category.query.filter(Category.name.ilike(name)).first():
        return err("category name already exists", 409)
    c = Category(name=name, is_active=parse_bool(data.get("is_active"), True))
    db.session.add(c)
    db.session.commit()
    return ok("Category created", {"category": c.as_dict()}, status=201)


@bp.get("")
def list_categories():
    """
    q        -> substring match on name
    sort     -> name, -name, id, -id
    page     -> default 1
    per_page -> default 20 (cap 100)
    """
    q = (request.args.get("q") or "").strip()
    sort = (request.args.get("sort") or "name").strip()

    qry = Category.query
    if q:
        qry = qry.filter(Category.name.ilike(f"%{q}%"))

    sort_map = {
        "id": Category.id,
        "-id": desc(Category.id),
        "name": Category.name,
        "-name": desc(Category.name),
    }
    qry = qry.order_by(sort_map.get(sort, Category.name))
    page_data = paginate(qry, request.args.get("page"), request.args.get("per_page"))

    return ok("Categories fetched", {
        "meta": page_data["meta"],
        "categories": [c.as_dict() for c in page_data["items"]],
    })


@bp.put("/<int:cid>")
@role_required("admin")
def update_category(cid):
    c = db.session.get(Category, cid)
    if not c:
        return err("Category not found", 404)
    data = request.get_json(silent=True) or {}
    if "name" in data:
        new_name = (data.get("name") or "").strip()
        if not new_name:
            return err("name cannot be empty", 400)
        exists = Category.query.filter(
            Category.name.ilike(new_name), Category.id != c.id
        ).first()
        if exists:
            return err("category name already exists", 409)
        c.name = new_name
    if "is_active" in data:
        c.is_active = parse_bool(data.get("is_active"), c.is_active)
    db.session.commit()
    return ok("Category updated", {"category": c.as_dict()})


@bp.delete("/<int:cid>")
@role_required("admin")
def delete_category(cid):
    c = db.session.get(Category, cid)
    if not c:
        return err("Category not found", 404)
    if Product.query.filter_by(category_id=cid).first():
        return err("cannot delete: category has products", 409)
    if Offer.query.filter_by(category_id=cid).first() or Coupon.query.filter_by(category_id=cid).first():
        return err("cannot delete: category is targeted by an offer or coupon", 409)
    db.session.delete(c)
    db.session.commit()
    return ok("Category deleted")
