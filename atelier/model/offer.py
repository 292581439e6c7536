# --- atelier/model/offer.py ---
from sqlalchemy import or_
from ..extensions import db
from ..utils.dates import utc_now, iso

SCOPES = ("all", "category", "products")

offer_products = db.Table(
    "offer_products",
    db.Column("offer_id", db.Integer, db.ForeignKey("offer.id", ondelete="CASCADE"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), primary_key=True),
)

class Offer(db.Model):
    """Time-bounded percentage markdown over all products, one category, or a product set."""
    __tablename__ = "offer"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(180), nullable=False)
    percentage = db.Column(db.Integer, nullable=False)

    scope = db.Column(db.String(16), nullable=False)  # "all" | "category" | "products"
    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=True, index=True)
    products = db.relationship("Product", secondary=offer_products, lazy="selectin")

    is_active = db.Column(db.Boolean, default=True, index=True)
    start_date = db.Column(db.DateTime, nullable=False, default=utc_now)
    end_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    category = db.relationship("Category", lazy="joined")

    __table_args__ = (
        db.Index("ix_offer_active_scope", "is_active", "scope", "category_id"),
    )

    @property
    def product_ids(self) -> list[int]:
        return [p.id for p in self.products]

    def scope_key(self):
        return (self.scope, self.category_id, self.product_ids)

    def is_current(self, now=None) -> bool:
        now = now or utc_now()
        if not self.is_active:
            return False
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date <= now:
            return False
        return True

    @classmethod
    def current_filter(cls, now=None):
        now = now or utc_now()
        return (
            cls.is_active.is_(True),
            cls.start_date <= now,
            or_(cls.end_date.is_(None), cls.end_date > now),
        )

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "percentage": self.percentage,
            "scope": self.scope,
            "category": self.category.as_dict() if self.category else None,
            "products": [p.as_brief() for p in self.products],
            "is_active": self.is_active,
            "is_current": self.is_current(),
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "created_at": iso(self.created_at),
        }
