# atelier/services/errors.py
"""Typed failures raised by the pricing services.

Every error knows the HTTP status it maps to and the extra context the
client gets in the response body; ``create_app`` registers one handler for
the whole family.
"""


class PromotionError(Exception):
    """Base class for pricing, coupon and order failures."""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def context(self) -> dict:
        return {}


class ValidationError(PromotionError):
    """Malformed input, rejected before anything is written."""


class CouponNotFoundError(PromotionError):
    """Unknown, inactive, out-of-window or exhausted coupon.

    These cases share one message so that an exhausted budget cannot be told
    apart from a bad code.
    """

    status_code = 404
    default_message = "Invalid or expired coupon code"


class MinimumNotMetError(PromotionError):
    def __init__(self, min_order_amount):
        self.min_order_amount = min_order_amount
        super().__init__(f"Minimum order amount required: {float(min_order_amount):.2f}")

    def context(self):
        return {"min_order_amount": float(self.min_order_amount)}


class AllProductsExcludedError(PromotionError):
    """Every requested product already carries an offer price."""

    def __init__(self, products):
        self.products = list(products)
        names = ", ".join(p.name for p in self.products)
        super().__init__(f"Cannot apply coupon - all products have existing offers: {names}")

    def context(self):
        return {"products_with_offers": [{"id": p.id, "name": p.name} for p in self.products]}


class ScopeMismatchError(PromotionError):
    default_message = "Coupon cannot be applied to the selected products"


class UsageLimitExceededError(PromotionError):
    """Lost the race for the last redemption of a coupon."""

    status_code = 409
    default_message = "Coupon usage limit reached"

    def __init__(self, coupon_id=None, message=None):
        self.coupon_id = coupon_id
        super().__init__(message)

    def context(self):
        return {"coupon_id": self.coupon_id} if self.coupon_id is not None else {}


class InvalidTransitionError(PromotionError):
    status_code = 409

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")

    def context(self):
        return {"current_status": self.current, "requested_status": self.target}
