# atelier/model/order.py
from sqlalchemy import event, inspect
from ..extensions import db
from ..utils.dates import utc_now, iso
from ..utils.money import as_float

ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "completed", "cancelled")

# frozen at insert; only status (and bookkeeping) may change afterwards
PRICING_FIELDS = (
    "subtotal", "coupon_discount", "final_total",
    "coupon_id", "coupon_code", "coupon_type", "coupon_applied_discount",
    "currency_id", "currency_code", "currency_symbol",
)

class ImmutableOrderError(RuntimeError):
    pass

class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    # Money snapshot
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    coupon_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_total = db.Column(db.Numeric(12, 2), nullable=False)

    # Applied coupon snapshot (not a live view of the coupon row)
    coupon_id = db.Column(db.Integer, index=True)
    coupon_code = db.Column(db.String(64))
    coupon_type = db.Column(db.String(16))
    coupon_applied_discount = db.Column(db.Numeric(12, 2))

    currency_id = db.Column(db.Integer, db.ForeignKey("currency.id"), nullable=False)
    currency_code = db.Column(db.String(8))
    currency_symbol = db.Column(db.String(16))

    # Customer snapshot
    phone = db.Column(db.String(50), nullable=False)
    shipping_address = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text)

    payment_method = db.Column(db.String(32), default="cash_on_delivery")
    payment_status = db.Column(db.String(16), default="pending")  # pending | paid | failed

    idempotency_key = db.Column(db.String(128))

    created_at = db.Column(db.DateTime, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_idempotency_key"),
    )

    def applied_coupon(self):
        if not self.coupon_id:
            return None
        return {
            "coupon_id": self.coupon_id,
            "code": self.coupon_code,
            "discount": as_float(self.coupon_applied_discount),
            "type": self.coupon_type,
        }

    def as_api(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "items": [i.as_api() for i in self.items],
            "subtotal": as_float(self.subtotal),
            "coupon_discount": as_float(self.coupon_discount),
            "final_total": as_float(self.final_total),
            "shipping_cost": 0.0,
            "applied_coupon": self.applied_coupon(),
            "currency": {
                "id": self.currency_id,
                "code": self.currency_code,
                "symbol": self.currency_symbol,
            },
            "phone": self.phone,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, index=True, nullable=False)
    name = db.Column(db.String(255))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": as_float(self.unit_price),
            "line_total": as_float(self.line_total),
        }


@event.listens_for(Order, "before_update")
def _freeze_pricing(mapper, connection, target):
    state = inspect(target)
    changed = [f for f in PRICING_FIELDS if state.attrs[f].history.has_changes()]
    if changed:
        raise ImmutableOrderError(f"order pricing is immutable: {', '.join(changed)}")


@event.listens_for(OrderItem, "before_update")
def _freeze_items(mapper, connection, target):
    raise ImmutableOrderError("order items are immutable")
