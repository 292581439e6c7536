# atelier/model/product.py
from decimal import Decimal
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import as_float

class Product(db.Model):
    __tablename__ = "product"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default="")

    price = db.Column(db.Numeric(12, 2), nullable=False)
    # written only by services.offer_service; NULL when no current offer applies
    offer_price = db.Column(db.Numeric(12, 2), nullable=True, index=True)

    image_url = db.Column(db.String(1024))
    in_stock = db.Column(db.Boolean, default=True)
    is_best_seller = db.Column(db.Boolean, default=False, index=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("category.id"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def effective_price(self) -> Decimal:
        return self.offer_price if self.offer_price is not None else self.price

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": as_float(self.price),
            "offer_price": as_float(self.offer_price),
            "image_url": self.image_url,
            "in_stock": self.in_stock,
            "is_best_seller": self.is_best_seller,
            "category": self.category.as_dict() if self.category else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def as_brief(self):
        return {"id": self.id, "name": self.name, "price": as_float(self.price)}
