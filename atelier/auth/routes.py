# --- atelier/auth/routes.py ---
import uuid
from datetime import timedelta
from flask import request, current_app
from werkzeug.security import generate_password_hash, check_password_hash
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from . import bp
from ..model import User, RefreshToken, Cart, Order
from ..extensions import db
from ..utils.api import ok, err
from ..utils.dates import utc_now
from ..utils.decorators import _current_user, current_user_id, role_at_least, role_required

ROLES = {"user", "manager", "admin"}


# --- helper: create & persist a token pair ---
def _issue_tokens(user_id: int):
    access_token = create_access_token(identity=str(user_id))
    refresh_token_str = str(uuid.uuid4())
    db.session.add(RefreshToken(
        user_id=user_id,
        token=refresh_token_str,
        expires_at=utc_now() + timedelta(days=current_app.config["REFRESH_TOKEN_TTL_DAYS"]),
    ))
    return access_token, refresh_token_str


def _is_last_admin(user: User) -> bool:
    return user.role == "admin" and User.query.filter_by(role="admin").count() <= 1


def _email_taken(email: str, exclude_id=None) -> bool:
    q = User.query.filter_by(email=email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


@bp.post("/register")
@jwt_required(optional=True)   # public signups; a role is honoured only for an admin caller
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()

    if not email:
        return err("Email required", 400)
    if not password or len(password) < 6:
        return err("Password required, min 6 chars", 400)
    if not name:
        return err("Name required", 400)
    if User.query.filter_by(email=email).first():
        return err("Email already registered", 409)

    # Bootstrap: very first account becomes admin
    is_first_user = db.session.query(User.id).count() == 0
    role = "admin" if is_first_user else "user"

    requested_role = (data.get("role") or "user").strip().lower()
    caller_id = current_user_id() if get_jwt_identity() else None
    if not is_first_user and caller_id:
        caller = db.session.get(User, caller_id)
        if caller and caller.role == "admin" and requested_role in ROLES:
            role = requested_role

    user = User(email=email, password_hash=generate_password_hash(password), name=name, role=role)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("user %s registered with role %s", user.id, role)

    return ok("Account created successfully", {"user": user.as_dict()}, status=201)


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return err("Email and password are required", 400)
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        return err("Invalid email or password", 401)

    access_token, token_str = _issue_tokens(user.id)
    db.session.commit()

    return ok("You've logged in successfully", {
        "user": user.as_dict(),
        "token": access_token,
        "refresh_token": token_str,
    })


@bp.get("/me")
@jwt_required()
def me():
    user = _current_user()
    if not user:
        return err("User not found", 404)
    return ok("OK", {"user": user.as_dict()})


@bp.post("/refresh")
def refresh():
    data = request.get_json(silent=True) or {}
    token_str = data.get("refresh_token")
    if not token_str:
        return err("refresh_token is required", 400)

    refresh_row = RefreshToken.query.filter_by(token=token_str).first()
    if not refresh_row or refresh_row.expires_at < utc_now():
        return err("Invalid or expired refresh token", 401)

    user_id = refresh_row.user_id

    # rotate: the presented refresh token is single-use
    db.session.delete(refresh_row)
    db.session.flush()

    new_access, new_refresh = _issue_tokens(user_id)
    db.session.commit()

    return ok("Token refreshed", {"token": new_access, "refresh_token": new_refresh})


@bp.get("/users")
@role_at_least("manager", message="Only managers and admins can list users")
def list_users():
    actor = _current_user()
    q = User.query
    if actor.role == "manager":
        q = q.filter(User.role == "user")
    return ok("OK", {"users": [u.as_dict() for u in q.order_by(User.id.asc()).all()]})


@bp.patch("/users/<int:user_id>/role")
@role_required("admin")
def update_user_role(user_id):
    body = request.get_json(silent=True) or {}
    new_role = (body.get("role") or "").strip().lower()
    if new_role not in ROLES:
        return err("Invalid role", 400)

    target = db.session.get(User, user_id)
    if not target:
        return err("User not found", 404)

    if _is_last_admin(target) and new_role != "admin":
        return err("Cannot demote the last admin", 400)

    target.role = new_role
    db.session.commit()
    return ok("Role updated", {"user": target.as_dict()})


@bp.put("/profile")
@jwt_required()
def update_profile():
    user = _current_user()
    if not user:
        return err("User not found", 404)
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if email and email != user.email:
        if _email_taken(email, exclude_id=user.id):
            return err("Email already registered", 409)
        user.email = email
    if name:
        user.name = name
    db.session.commit()
    return ok("Profile updated", {"user": user.as_dict()})


@bp.post("/users")
@role_required("admin")
def create_user():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()
    role = (data.get("role") or "").strip().lower()

    if not email or not name or not role or not password:
        return err("Name, email, password, and role are required", 400)
    if len(password) < 6:
        return err("Password required, min 6 chars", 400)
    if role not in ROLES:
        return err("Invalid role", 400)
    if _email_taken(email):
        return err("Email already registered", 409)

    user = User(email=email, password_hash=generate_password_hash(password), name=name, role=role)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("user %s created by admin with role %s", user.id, role)
    return ok("User created", {"user": user.as_dict()}, status=201)


@bp.put("/users/<int:user_id>")
@role_required("admin")
def update_user(user_id):
    target = db.session.get(User, user_id)
    if not target:
        return err("User not found", 404)
    data = request.get_json(silent=True) or {}
    password = data.get("password") or ""
    if password and len(password) < 6:
        return err("Password required, min 6 chars", 400)
    email = (data.get("email") or "").strip().lower()
    if email and email != target.email and _email_taken(email, exclude_id=target.id):
        return err("Email already registered", 409)

    if "role" in data:
        new_role = (data.get("role") or "").strip().lower()
        if new_role not in ROLES:
            return err("Invalid role", 400)
        if _is_last_admin(target) and new_role != "admin":
            return err("Cannot demote the last admin", 400)
        target.role = new_role
    name = (data.get("name") or "").strip()
    if name:
        target.name = name
    if email:
        target.email = email
    if password:
        target.password_hash = generate_password_hash(password)

    db.session.commit()
    return ok("User updated", {"user": target.as_dict()})


@bp.delete("/users/<int:user_id>")
@role_required("admin")
def delete_user(user_id):
    target = db.session.get(User, user_id)
    if not target:
        return err("User not found", 404)
    if target.id == current_user_id():
        return err("You cannot delete your own account", 400)
    if _is_last_admin(target):
        return err("Cannot delete the last admin", 400)
    # orders keep their user for the pricing record
    if Order.query.filter_by(user_id=target.id).first():
        return err("User has orders and cannot be deleted", 409)

    RefreshToken.query.filter_by(user_id=target.id).delete()
    cart = Cart.query.filter_by(user_id=target.id).first()
    if cart:
        db.session.delete(cart)
    db.session.delete(target)
    db.session.commit()
    current_app.logger.info("user %s deleted", user_id)
    return ok("User deleted", {"id": user_id})
