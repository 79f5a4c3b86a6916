"""Admin blueprint: /api/admin/*

All routes require an admin. Covers the all-tickets view, user roles,
application settings (SMTP override + admin recipients) and the email log.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from bugflow.decorators import admin_required
from bugflow.errors import NotFoundError, StorageError, ValidationError
from bugflow.extensions import db
from bugflow.models.email_log import EmailLog
from bugflow.roles import Role
from bugflow.services import email_service, settings_service, ticket_service, ticket_store
from bugflow.services.settings_service import EMAIL_RE

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _commit(action):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"{action} failed to commit: {e}")
        raise StorageError() from e


# ──────────────────────────────────────────────
# Tickets
# ──────────────────────────────────────────────

@admin_bp.route("/tickets", methods=["GET"])
@admin_required
def list_tickets():
    args = request.args
    tickets = ticket_service.list_all_tickets(
        current_user,
        status=args.get("status") or None,
        type_=args.get("type") or None,
        app=args.get("app") or None,
        priority=args.get("priority") or None,
        search=args.get("q") or None,
    )
    return jsonify([t.to_dict(include_submitter=True) for t in tickets])


# ──────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────

@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    return jsonify([u.to_dict() for u in ticket_store.list_users()])


@admin_bp.route("/devs", methods=["GET"])
@admin_required
def list_devs():
    """Active devs and admins, for the assignment picker."""
    return jsonify([u.to_dict() for u in ticket_store.list_assignable_users()])


@admin_bp.route("/users/<user_id>/role", methods=["PATCH"])
@admin_required
def update_role(user_id):
    data = _json_body()
    role = data.get("role")
    if role not in Role.values():
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(Role.values())}")

    user = ticket_store.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == current_user.id:
        raise ValidationError("You cannot change your own role.")

    old_role = Role(user.role).value
    ticket_store.update_user_role(user, Role(role))
    _commit("Role change")

    logger.info(f"Role of {user.username} changed {old_role} -> {role} by {current_user.username}")
    return jsonify(user.to_dict())


# ──────────────────────────────────────────────
# Settings
# ──────────────────────────────────────────────

@admin_bp.route("/settings", methods=["GET"])
@admin_required
def get_settings():
    settings = settings_service.get_settings()
    _commit("Settings bootstrap")
    return jsonify(settings.to_dict())


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
def update_settings():
    settings = settings_service.update_settings(_json_body())
    _commit("Settings update")
    return jsonify(settings.to_dict())


@admin_bp.route("/settings/test-email", methods=["POST"])
@admin_required
def send_test_email():
    """Send a test message through the current SMTP settings and wait for it."""
    data = _json_body()
    to = str(data.get("to") or current_user.email or "").strip()
    if not EMAIL_RE.match(to):
        raise ValidationError("A valid recipient address is required.")

    log = email_service.send_email_sync(
        to,
        "[BugFlow] Test email",
        "test_email",
        context={"actor": current_user},
        event="test",
    )
    if log.status != EmailLog.SENT:
        return jsonify(message=f"Test email failed: {log.error}", log=log.to_dict()), 502
    return jsonify(message=f"Test email sent to {to}", log=log.to_dict())


# ──────────────────────────────────────────────
# Email log
# ──────────────────────────────────────────────

@admin_bp.route("/email-logs", methods=["GET"])
@admin_required
def list_email_logs():
    limit = request.args.get("limit", 200, type=int)
    limit = max(1, min(limit, 1000))
    return jsonify([log.to_dict() for log in ticket_store.list_email_logs(limit)])
