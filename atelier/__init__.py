# --- atelier/__init__.py ---
import logging
from flask import Flask, jsonify
from .config import Config
from .extensions import db, jwt, cors, migrate
from .utils.api import err


def create_app(overrides=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config)
    Config.init_app(app)
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/api/*": {"origins": "*"}})
    migrate.init_app(app, db)

    # Register blueprints
    from .auth import bp as auth_bp; app.register_blueprint(auth_bp)
    from .product import bp as product_bp; app.register_blueprint(product_bp)
    from .category import bp as category_bp; app.register_blueprint(category_bp)
    from .currency import bp as currency_bp; app.register_blueprint(currency_bp)
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .offer import bp as offer_bp; app.register_blueprint(offer_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)

    register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(ok=True, msg="API running")

    with app.app_context():
        from . import model  # noqa: F401  (tables must be registered before create_all)
        db.create_all()

    return app


def register_error_handlers(app):
    from .services.errors import PromotionError
    from .model import ImmutableOrderError

    @app.errorhandler(PromotionError)
    def handle_promotion_error(e):
        db.session.rollback()
        return err(e.message, e.status_code, e.context())

    @app.errorhandler(ImmutableOrderError)
    def handle_immutable_order(e):
        db.session.rollback()
        app.logger.error("blocked write to order pricing: %s", e)
        return err("Order pricing cannot be changed", 409)

    @app.errorhandler(404)
    def handle_not_found(e):
        return err("Not found", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return err("Method not allowed", 405)
