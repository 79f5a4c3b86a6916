"""Auth blueprint: /api/auth/*

Username + password session login for the JSON API. Registration is open;
every new account starts with the "user" role.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from bugflow.errors import AuthenticationError, StorageError, ValidationError
from bugflow.extensions import db, limiter
from bugflow.services import ticket_store
from bugflow.services.settings_service import EMAIL_RE

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

USERNAME_MIN = 3
PASSWORD_MIN = 6


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


# ──────────────────────────────────────────────
# POST /api/auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    data = _json_body()
    username = str(data.get("username") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    name = str(data.get("name") or "").strip() or None

    if len(username) < USERNAME_MIN:
        raise ValidationError(f"Username must be at least {USERNAME_MIN} characters.")
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required.")
    if len(password) < PASSWORD_MIN:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN} characters.")

    if ticket_store.get_user_by_username(username):
        raise ValidationError("Username already exists.")
    if ticket_store.get_user_by_email(email):
        raise ValidationError("An account with this email already exists.")

    try:
        user = ticket_store.create_user(
            username, email, generate_password_hash(password), name=name
        )
        db.session.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent registration
        db.session.rollback()
        raise ValidationError("Username or email already exists.") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Registration failed for {username}: {e}")
        raise StorageError() from e

    login_user(user)
    logger.info(f"User registered: {username}")
    return jsonify(user.to_dict()), 201


# ──────────────────────────────────────────────
# POST /api/auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    data = _json_body()
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")

    if not username or not password:
        raise ValidationError("Username and password are required.")

    user = ticket_store.get_user_by_username(username)
    if user is None or not check_password_hash(user.password_hash, password):
        raise AuthenticationError("Invalid username or password.")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated.")

    login_user(user, remember=bool(data.get("remember")))
    logger.info(f"User logged in: {username}")
    return jsonify(user.to_dict())


# ──────────────────────────────────────────────
# POST /api/auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    if current_user.is_authenticated:
        logger.info(f"User logged out: {current_user.username}")
    logout_user()
    return jsonify(message="Logged out")


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(current_user.to_dict())


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify(csrfToken=generate_csrf())
