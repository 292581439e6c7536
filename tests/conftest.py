from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from atelier import create_app
from atelier.extensions import db
from atelier.model import Category, Coupon, Currency, Offer, Product, User
from atelier.utils.dates import utc_now
from atelier.utils.money import D


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'atelier-test.db'}",
        "JWT_SECRET_KEY": "test-secret-key-long-enough-for-hs256-signing",
        "ACTIVE_CURRENCY_CODE": None,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


def _user(email, role):
    u = User(email=email, name=email.split("@")[0], role=role,
             password_hash=generate_password_hash("secret123"))
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def admin(app):
    return _user("admin@example.com", "admin")


@pytest.fixture
def customer(app):
    return _user("jane@example.com", "user")


@pytest.fixture
def other_customer(app):
    return _user("sam@example.com", "user")


@pytest.fixture
def headers_for(app):
    def _headers(user, **extra):
        token = create_access_token(identity=str(user.id))
        return {"Authorization": f"Bearer {token}", **extra}
    return _headers


@pytest.fixture
def currency(app):
    c = Currency(name="US Dollar", symbol="$", code="USD", exchange_rate=1, is_active=True)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def make_category(app):
    def _make(name="Rings"):
        c = Category(name=name)
        db.session.add(c)
        db.session.commit()
        return c
    return _make


@pytest.fixture
def make_product(app):
    def _make(name="Silver band", price="100.00", category=None, offer_price=None):
        p = Product(
            name=name,
            price=D(price),
            offer_price=D(offer_price) if offer_price is not None else None,
            category_id=category.id if category else None,
        )
        db.session.add(p)
        db.session.commit()
        return p
    return _make


@pytest.fixture
def make_offer(app):
    def _make(percentage, scope="all", category=None, products=(), is_active=True,
              start_date=None, end_date=None, name=None):
        o = Offer(
            name=name or f"{percentage}% off",
            percentage=percentage,
            scope=scope,
            category_id=category.id if category else None,
            products=list(products),
            is_active=is_active,
            start_date=start_date or utc_now() - timedelta(hours=1),
            end_date=end_date,
        )
        db.session.add(o)
        db.session.commit()
        return o
    return _make


@pytest.fixture
def make_coupon(app):
    def _make(code="SAVE10", ctype="percentage", value="10", *, min_order_amount="0",
              max_discount=None, usage_limit=None, used_count=0, scope="all",
              category=None, products=(), is_active=True, start_date=None, end_date=None):
        c = Coupon(
            code=code.upper(),
            name=f"Coupon {code}",
            ctype=ctype,
            value=D(value),
            min_order_amount=D(min_order_amount),
            max_discount=D(max_discount) if max_discount is not None else None,
            usage_limit=usage_limit,
            used_count=used_count,
            scope=scope,
            category_id=category.id if category else None,
            products=list(products),
            is_active=is_active,
            start_date=start_date or utc_now() - timedelta(hours=1),
            end_date=end_date,
        )
        db.session.add(c)
        db.session.commit()
        return c
    return _make


@pytest.fixture
def address():
    return {"street": "12 Rue des Lilas", "state": "Ile-de-France", "city": "Paris",
            "zip_code": "75011", "country": "FR"}
