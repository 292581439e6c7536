# --- atelier/model/currency.py ---
from ..utils.dates import utc_now
from ..extensions import db

class Currency(db.Model):
    __tablename__ = "currency"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    symbol = db.Column(db.String(16), nullable=False, unique=True)
    code = db.Column(db.String(8), nullable=False, unique=True)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False, default=1)  # display only
    is_active = db.Column(db.Boolean, default=False, index=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "code": self.code,
            "exchange_rate": float(self.exchange_rate or 1),
            "is_active": self.is_active,
        }
