"""
Authentication Routes

Provides:
- /auth/login
- /auth/logout
- /auth/me
- /auth/csrf-token
- /auth/seed-admin (first system bootstrap)

Rules:
- Only active users may log in.
- seed-admin works only while the users table is empty.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...errors import ConflictError, ValidationError
from ...extensions import db
from ...models import User
from ...utils import json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a user with a JSON {username, password} body."""
    data = json_body(request)
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")

    user = User.query.filter_by(username=username).first()

    if not user or not user.check_password(password):
        return jsonify({"success": False, "error": {"code": "INVALID_CREDENTIALS", "message": "Invalid username or password."}}), 401

    if not user.is_active:
        return jsonify({"success": False, "error": {"code": "ACCOUNT_DISABLED", "message": "This account is disabled."}}), 403

    login_user(user)
    return jsonify({"success": True, "user": user.to_dict()})


# ============================================================
# LOGOUT / SESSION
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": current_user.to_dict()})


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token to send back in the X-CSRFToken header on mutating requests."""
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# SEED FIRST ADMIN (BOOTSTRAP)
# ============================================================

@auth_bp.route("/seed-admin", methods=["POST"])
def seed_admin():
    """
    Bootstrap the FIRST admin of the system.

    If ANY user already exists the request is refused.
    """
    if User.query.count() > 0:
        raise ConflictError("A user already exists.", code="ALREADY_SEEDED")

    data = json_body(request)
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")

    if not username or not password:
        raise ValidationError("Username and password are required.")

    user = User(
        username=username,
        display_name=data.get("display_name") or "Administrator",
        email=data.get("email"),
        is_admin=True,
        is_active=True,
        role=User.ROLE_PRODUCER,
    )
    user.set_password(password)

    db.session.add(user)
    db.session.commit()

    return jsonify({"success": True, "user": user.to_dict()}), 201
