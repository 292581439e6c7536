from io import BytesIO
from flask import request, url_for, send_file, current_app
from sqlalchemy import or_, desc, asc
import pandas as pd
from ..extensions import db
from ..model import Product, Category, CartItem
from ..model.offer import offer_products
from ..model.coupon import coupon_products
from ..services.offer_service import sync_product
from ..services.scoping import parse_bool, parse_opt_int
from ..utils.api import ok, err, paginate
from ..utils.decorators import role_required
from ..utils.money import parse_money
from . import bp

# ---------- helpers ----------
def _ep(name: str) -> str:
    return f"{bp.name}.{name}"

def _sort_products(query, sort):
    sort = (sort or "").strip()
    mapping = {
        "id": asc(Product.id),   "-id": desc(Product.id),
        "name": asc(Product.name), "-name": desc(Product.name),
        "price": asc(Product.price), "-price": desc(Product.price),
    }
    return query.order_by(mapping.get(sort, desc(Product.id)))  # newest first

def _parse_price(v, *, allow_none=False):
    try:
        price = parse_money(v, "price", allow_none=allow_none)
    except ValueError as e:
        return None, str(e)
    if price is not None and price <= 0:
        return None, "price must be greater than 0"
    return price, None

def _parse_category(v):
    cid = parse_opt_int(v)
    if cid is not None and db.session.get(Category, cid) is None:
        return None, f"Category {cid} not found"
    return cid, None

def _with_offer_warning(message, report):
    return f"{message}. {report.warning}" if report.warning else message


# ---------- routes ----------
# GET /api/products
@bp.get("")
def list_products():
    """
    Query params:
      q            -> substring match on name
      category_id  -> int
      best_seller  -> bool
      on_offer     -> bool (products currently carrying an offer price)
      min_price    -> number (effective price)
      max_price    -> number
      sort         -> id, -id, name, -name, price, -price
      page         -> int, default 1
      per_page     -> int, default 20 (cap 100)
    """
    query = Product.query

    q = (request.args.get("q") or "").strip()
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Product.name.ilike(like), Product.description.ilike(like)))

    category_id = parse_opt_int(request.args.get("category_id"))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)

    if request.args.get("best_seller") is not None:
        query = query.filter(Product.is_best_seller.is_(parse_bool(request.args.get("best_seller"))))

    if request.args.get("on_offer") is not None:
        if parse_bool(request.args.get("on_offer")):
            query = query.filter(Product.offer_price.is_not(None))
        else:
            query = query.filter(Product.offer_price.is_(None))

    effective = db.func.coalesce(Product.offer_price, Product.price)
    try:
        min_price = parse_money(request.args.get("min_price"), "min_price", allow_none=True)
        max_price = parse_money(request.args.get("max_price"), "max_price", allow_none=True)
    except ValueError as e:
        return err(str(e), 400)
    if min_price is not None:
        query = query.filter(effective >= min_price)
    if max_price is not None:
        query = query.filter(effective <= max_price)

    query = _sort_products(query, request.args.get("sort"))
    page = paginate(query, request.args.get("page"), request.args.get("per_page"))
    return ok("Products fetched", {
        "items": [p.as_api() for p in page["items"]],
        "meta": page["meta"],
    })

# GET /api/products/<id>
@bp.get("/<int:pid>")
def get_product(pid):
    product = db.session.get(Product, pid)
    if not product:
        return err("Product not found", 404)
    return ok("Product fetched", {"product": product.as_api()})

# POST /api/products
@bp.post("")
@role_required("admin")
def create_product():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return err("name is required", 400)
    price, problem = _parse_price(data.get("price"))
    if problem:
        return err(problem, 400)
    category_id, problem = _parse_category(data.get("category_id"))
    if problem:
        return err(problem, 400)

    product = Product(
        name=name,
        description=data.get("description") or "",
        price=price,
        image_url=data.get("image_url"),
        in_stock=parse_bool(data.get("in_stock"), True),
        is_best_seller=parse_bool(data.get("is_best_seller")),
        category_id=category_id,
    )
    db.session.add(product)
    db.session.commit()

    # a new product may already fall under an "all" or category offer
    report = sync_product(product.id)
    db.session.refresh(product)

    resp = ok(_with_offer_warning("Product created", report), {"product": product.as_api()}, status=201)
    resp.headers["Location"] = url_for(_ep("get_product"), pid=product.id, _external=True)
    return resp

# PUT /api/products/<id>
@bp.put("/<int:pid>")
@role_required("admin")
def update_product(pid):
    product = db.session.get(Product, pid)
    if not product:
        return err("Product not found", 404)
    data = request.get_json(silent=True) or {}
    reprice = False

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return err("name cannot be empty", 400)
        product.name = name
    if "description" in data:
        product.description = data.get("description") or ""
    if "price" in data:
        price, problem = _parse_price(data.get("price"))
        if problem:
            return err(problem, 400)
        reprice = reprice or price != product.price
        product.price = price
    if "category_id" in data:
        category_id, problem = _parse_category(data.get("category_id"))
        if problem:
            return err(problem, 400)
        reprice = reprice or category_id != product.category_id
        product.category_id = category_id
    if "image_url" in data:
        product.image_url = data.get("image_url")
    if "in_stock" in data:
        product.in_stock = parse_bool(data.get("in_stock"), product.in_stock)
    if "is_best_seller" in data:
        product.is_best_seller = parse_bool(data.get("is_best_seller"), product.is_best_seller)

    db.session.commit()

    message = "Product updated"
    if reprice:
        report = sync_product(product.id)
        db.session.refresh(product)
        message = _with_offer_warning(message, report)
    return ok(message, {"product": product.as_api()})

# DELETE /api/products/<id>
@bp.delete("/<int:pid>")
@role_required("admin")
def delete_product(pid):
    product = db.session.get(Product, pid)
    if not product:
        return err("Product not found", 404)
    # orders keep their own item snapshots; carts and promotion targets do not
    CartItem.query.filter_by(product_id=pid).delete(synchronize_session=False)
    db.session.execute(offer_products.delete().where(offer_products.c.product_id == pid))
    db.session.execute(coupon_products.delete().where(coupon_products.c.product_id == pid))
    db.session.delete(product)
    db.session.commit()
    current_app.logger.info("product %s deleted", pid)
    return ok("Product deleted")

# GET /api/products/export
@bp.get("/export")
@role_required("admin")
def export_products():
    """
    Export the catalog, with current offer prices, as an Excel file.
    """
    products = Product.query.order_by(Product.id.asc()).all()
    product_data = [{
        "ID": p.id,
        "Name": p.name,
        "Category": p.category.name if p.category else None,
        "Price": float(p.price),
        "Offer Price": float(p.offer_price) if p.offer_price is not None else None,
        "In Stock": p.in_stock,
        "Best Seller": p.is_best_seller,
    } for p in products]
    df = pd.DataFrame(product_data, columns=[
        "ID", "Name", "Category", "Price", "Offer Price", "In Stock", "Best Seller",
    ])

    # Create an in-memory buffer
    output = BytesIO()
    df.to_excel(output, index=False)
    output.seek(0)

    return send_file(
        output,
        as_attachment=True,
        download_name="products_export.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
