# ------- atelier/utils/decorators.py -------
from functools import wraps
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from ..extensions import db
from ..utils.api import err
from ..model.user import User

ROLE_LEVEL = {"user": 1, "manager": 2, "admin": 3}

def current_user_id() -> int | None:
    uid = get_jwt_identity()
    try:
        return int(uid)
    except (TypeError, ValueError):
        return None

def _current_user():
    verify_jwt_in_request()
    uid = current_user_id()
    return db.session.get(User, uid) if uid else None

def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            u = _current_user()
            if not u:
                return err("Unauthorized", 401)
            if u.role not in roles:
                return err(message or "Access denied. Admin only.", 403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def role_at_least(min_role: str, message: str | None = None):  # admin > manager > user
    min_level = ROLE_LEVEL[min_role]
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            u = _current_user()
            if not u:
                return err("Unauthorized", 401)
            if ROLE_LEVEL.get(u.role, 0) < min_level:
                return err(message or "Forbidden", 403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def is_admin(user: User | None) -> bool:
    return bool(user) and user.role == "admin"
