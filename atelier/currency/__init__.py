from flask import Blueprint

bp = Blueprint("currency", __name__, url_prefix="/api/currencies")

from . import routes  # noqa: E402,F401
