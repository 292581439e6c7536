# --- atelier/model/coupon.py ---

from sqlalchemy import or_
from ..extensions import db
from ..utils.dates import utc_now, iso
from ..utils.money import as_float

COUPON_TYPES = ("percentage", "fixed")

coupon_products = db.Table(
    "coupon_products",
    db.Column("coupon_id", db.Integer, db.ForeignKey("coupon.id", ondelete="CASCADE"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), primary_key=True),
)

class Coupon(db.Model):
    __tablename__ = "coupon"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)  # stored upper-cased
    name = db.Column(db.String(180), nullable=False)
    description = db.Column(db.Text)

    # "percentage" or "fixed"
    ctype = db.Column(db.String(16), nullable=False, default="percentage")
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Optional constraints
    min_order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)   # cap for percentage coupons
    usage_limit = db.Column(db.Integer, nullable=True)           # NULL = unlimited
    # only ever changed by services.coupon_service.redeem_coupon
    used_count = db.Column(db.Integer, nullable=False, default=0)

    scope = db.Column(db.String(16), nullable=False, default="all")
    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=True, index=True)
    products = db.relationship("Product", secondary=coupon_products, lazy="selectin")

    is_active = db.Column(db.Boolean, default=True, index=True)
    start_date = db.Column(db.DateTime, nullable=False, default=utc_now)
    end_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    category = db.relationship("Category", lazy="joined")

    __table_args__ = (
        db.CheckConstraint("used_count >= 0", name="ck_coupon_used_count_nonneg"),
        db.Index("ix_coupon_active_window", "is_active", "start_date", "end_date"),
    )

    @property
    def product_ids(self) -> list[int]:
        return [p.id for p in self.products]

    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and (self.used_count or 0) >= self.usage_limit

    def in_window(self, now=None) -> bool:
        now = now or utc_now()
        if not self.is_active:
            return False
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date <= now:
            return False
        return True

    def is_valid(self, now=None) -> bool:
        return self.in_window(now) and not self.is_exhausted()

    @classmethod
    def current_filter(cls, now=None):
        now = now or utc_now()
        return (
            cls.is_active.is_(True),
            cls.start_date <= now,
            or_(cls.end_date.is_(None), cls.end_date > now),
        )

    def as_public(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.ctype,
            "value": as_float(self.value),
            "min_order_amount": as_float(self.min_order_amount),
            "max_discount": as_float(self.max_discount),
        }

    def as_api(self):
        return {
            **self.as_public(),
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "scope": self.scope,
            "category": self.category.as_dict() if self.category else None,
            "products": [p.as_brief() for p in self.products],
            "is_active": self.is_active,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "created_at": iso(self.created_at),
        }
