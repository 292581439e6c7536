# atelier/model/cart.py
from __future__ import annotations
from decimal import Decimal
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import round_money, as_float


class Cart(db.Model):
    __tablename__ = "cart"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()"
    )

    # --------- money helpers / totals ----------
    def snapshot_subtotal_dec(self) -> Decimal:
        # what the customer saw when adding items
        return round_money(sum((i.price_snapshot * i.quantity for i in self.items), Decimal("0")))

    def current_subtotal_dec(self) -> Decimal:
        # what checkout would charge right now
        return round_money(sum((i.current_unit_price() * i.quantity for i in self.items), Decimal("0")))

    def as_api(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [i.as_api() for i in self.items],
            "totals": {
                "snapshot_subtotal": float(self.snapshot_subtotal_dec()),
                "subtotal": float(self.current_subtotal_dec()),
                "shipping": 0.0,
            },
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # unit price at add time; checkout re-reads the live price
    price_snapshot = db.Column(db.Numeric(12, 2), nullable=False)

    product = db.relationship("Product", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_item_product"),
    )

    def current_unit_price(self) -> Decimal:
        if self.product is None:
            return self.price_snapshot
        return self.product.effective_price()

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.product.name if self.product else None,
            "image_url": self.product.image_url if self.product else None,
            "quantity": self.quantity,
            "price_snapshot": as_float(self.price_snapshot),
            "price": as_float(self.product.price) if self.product else None,
            "offer_price": as_float(self.product.offer_price) if self.product else None,
            "line_total": float(round_money(self.current_unit_price() * self.quantity)),
        }
