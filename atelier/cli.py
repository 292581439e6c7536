# atelier/cli.py
import click
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash
from .extensions import db
from .model import User, Category, Product, Currency
from .services.offer_service import reprice_catalog
from .utils.money import D

SEED_CATALOG = {
    "Rings": [("Silver band", "49.00"), ("Gold signet", "320.00"), ("Opal solitaire", "185.50")],
    "Necklaces": [("Pearl strand", "210.00"), ("Chain pendant", "75.00")],
    "Earrings": [("Hoop pair", "39.90"), ("Diamond studs", "640.00")],
}


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", required=True)
@with_appcontext
def create_admin(email, password, name):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        click.echo("Email already exists"); return
    u = User(email=email, name=name, password_hash=generate_password_hash(password), role="admin")
    db.session.add(u); db.session.commit()
    click.echo(f"Admin created: {u.id} {u.email}")


@click.command("reprice-offers")
@with_appcontext
def reprice_offers():
    """Recompute every offer price; clears prices of offers that have ended."""
    report = reprice_catalog()
    if not report.ok:
        raise click.ClickException(report.warning)
    click.echo(f"Offer prices cleared: {report.cleared}, written: {report.written}")


@click.command("seed-catalog")
@with_appcontext
def seed_catalog():
    """Insert demo categories, products and a default currency (skips existing names)."""
    created = 0
    for cat_name, items in SEED_CATALOG.items():
        cat = Category.query.filter_by(name=cat_name).first()
        if not cat:
            cat = Category(name=cat_name)
            db.session.add(cat); db.session.flush()
        for name, price in items:
            if Product.query.filter_by(name=name).first():
                continue
            db.session.add(Product(name=name, price=D(price), category_id=cat.id))
            created += 1
    if not Currency.query.filter_by(code="USD").first():
        db.session.add(Currency(name="US Dollar", symbol="$", code="USD", exchange_rate=1,
                                is_active=not Currency.query.filter_by(is_active=True).first()))
    db.session.commit()
    reprice_catalog()
    click.echo(f"Seeded {created} products")


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(reprice_offers)
    app.cli.add_command(seed_catalog)
