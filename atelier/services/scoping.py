# atelier/services/scoping.py
"""Targeting rules shared by offers and coupons, plus admin payload parsing."""
from sqlalchemy import false, true

from ..extensions import db
from ..model import Category, Product, SCOPES
from ..utils.dates import parse_iso8601, utc_now
from .errors import ValidationError


def scope_clause(scope: str, category_id: int | None, product_ids):
    """SQL filter over the product table selecting the matching set."""
    t = Product.__table__
    if scope == "all":
        return true()
    if scope == "category":
        return t.c.category_id == category_id if category_id is not None else false()
    if scope == "products":
        ids = list(product_ids or [])
        return t.c.id.in_(ids) if ids else false()
    return false()


# ---------- payload helpers ----------
def parse_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}

def parse_opt_int(v):
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, str) and v.strip().lower() in {"", "null"}:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None

def parse_id_list(raw) -> list[int]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [x for x in raw.split(",") if x.strip()]
    ids = []
    for x in raw:
        pid = parse_opt_int(x)
        if pid is None:
            raise ValidationError(f"Invalid product id: {x!r}")
        if pid not in ids:
            ids.append(pid)
    return ids


def parse_scope(data: dict, *, current=None):
    """Return (scope, category_id, products) for an offer or coupon payload.

    ``current`` is the record being edited; fields missing from ``data``
    fall back to its values as long as the scope itself is unchanged.
    """
    scope = (data.get("scope") or (current.scope if current else "") or "").strip().lower()
    if scope not in SCOPES:
        raise ValidationError("scope must be one of: all, category, products")
    same_scope = current is not None and current.scope == scope

    category_id = None
    products = []
    if scope == "category":
        raw = data["category_id"] if "category_id" in data else (current.category_id if same_scope else None)
        category_id = parse_opt_int(raw)
        if category_id is None:
            raise ValidationError("Category is required when scope is 'category'")
        if db.session.get(Category, category_id) is None:
            raise ValidationError(f"Category {category_id} not found")
    elif scope == "products":
        if "product_ids" in data:
            ids = parse_id_list(data.get("product_ids"))
        else:
            ids = current.product_ids if same_scope else []
        if not ids:
            raise ValidationError("Products are required when scope is 'products'")
        products = Product.query.filter(Product.id.in_(ids)).all()
        missing = sorted(set(ids) - {p.id for p in products})
        if missing:
            raise ValidationError(f"Unknown products: {', '.join(str(m) for m in missing)}")
    return scope, category_id, products


def parse_window(data: dict, *, current=None):
    """Return (start_date, end_date) as naive UTC datetimes."""
    if data.get("start_date"):
        start = parse_iso8601(data.get("start_date"))
        if start is None:
            raise ValidationError("Invalid datetime format for start_date")
    else:
        start = current.start_date if current else utc_now()

    if "end_date" in data:
        end = parse_iso8601(data.get("end_date"))
        if data.get("end_date") and end is None:
            raise ValidationError("Invalid datetime format for end_date")
    else:
        end = current.end_date if current else None

    if end is not None and end <= start:
        raise ValidationError("end_date must be after start_date")
    return start, end
