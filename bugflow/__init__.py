import os
import logging

import click
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from bugflow.config import config_by_name
from bugflow.errors import BugflowError, StorageError
from bugflow.extensions import db, migrate, login_manager, csrf, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from bugflow import models  # noqa: F401

    # --- Register blueprints ---
    from bugflow.blueprints.auth import auth_bp
    from bugflow.blueprints.tickets import tickets_bp
    from bugflow.blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(admin_bp)

    # --- Health check ---
    @app.route("/api/health")
    def health():
        return jsonify(status="ok")

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=()"
        )
        # JSON API: nothing here should ever load scripts or be framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        if response.mimetype == "application/json":
            response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Every error leaves the API as {"message": ...} JSON."""

    @app.errorhandler(BugflowError)
    def handle_bugflow_error(e):
        return jsonify(message=e.message), e.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify(message=e.description), 400

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        logger.exception("Unhandled database error")
        return jsonify(message=StorageError.default_message), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        messages = {
            404: "Not found",
            405: "Method not allowed",
            413: "Upload too large",
            429: "Too many requests. Please slow down.",
        }
        return jsonify(message=messages.get(e.code, e.description)), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(message="Internal server error"), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed")
    def seed():
        """Create demo accounts (admin, dev, user) and three sample tickets.

        Usage:
            flask seed
        """
        from bugflow.models.history import TicketHistory
        from bugflow.roles import Role
        from bugflow.services import ticket_store

        if ticket_store.get_user_by_username("admin"):
            click.echo("Database already seeded.")
            return

        admin = ticket_store.create_user(
            "admin", "admin@bugflow.app", generate_password_hash("admin123"),
            name="Admin", role=Role.ADMIN,
        )
        dev = ticket_store.create_user(
            "sarah_dev", "sarah@example.com", generate_password_hash("dev123"),
            name="Sarah Developer", role=Role.DEV,
        )
        user = ticket_store.create_user(
            "mike_tester", "mike@example.com", generate_password_hash("user123"),
            name="Mike Tester", role=Role.USER,
        )

        samples = [
            (
                "Login button unresponsive on mobile Safari",
                "When using Safari on iPhone 14, the login button does not respond to taps.",
                "bug", "driver_app", "high",
            ),
            (
                "Add dark mode support across the application",
                "As a user who works late at night, I would love to have a dark mode option.",
                "feature_request", "dispatch", "medium",
            ),
            (
                "Dashboard charts not rendering with large datasets",
                "When loading the analytics dashboard with more than 10,000 data points, "
                "the charts fail to render.",
                "bug", "admin_panel", "critical",
            ),
        ]
        tickets = []
        for title, description, type_, app_tag, priority in samples:
            ticket = ticket_store.create_ticket(
                user.id, title, description, type_, app_tag, priority
            )
            ticket_store.create_history(
                ticket.id, user, TicketHistory.CREATED,
                f"Ticket created by {user.display_name}", new_value="open",
            )
            tickets.append(ticket)

        first, _, third = tickets
        ticket_store.create_comment(
            first.id, admin.id,
            "Thanks for reporting this. We'll investigate the Safari compatibility issue.",
        )
        ticket_store.create_comment(
            first.id, user.id,
            "I'm on iOS 17.2.1. Same issue on colleague's iPhone 13.",
        )
        ticket_store.create_history(
            first.id, admin, TicketHistory.PUBLIC_NOTE, f"{admin.display_name} added a comment",
        )
        ticket_store.create_history(
            first.id, user, TicketHistory.PUBLIC_NOTE, f"{user.display_name} added a comment",
        )

        ticket_store.update_ticket_assignment(third, dev.id, dev.display_name)
        ticket_store.create_history(
            third.id, admin, TicketHistory.ASSIGNED, f"Assigned to {dev.display_name}",
            old_value="Unassigned", new_value=dev.display_name,
        )
        ticket_store.update_ticket_status(third, "in_progress")
        ticket_store.create_history(
            third.id, admin, TicketHistory.STATUS_CHANGED,
            "Status changed from Open to In Progress",
            old_value="open", new_value="in_progress",
        )

        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo("  Admin:  admin / admin123")
        click.echo("  Dev:    sarah_dev / dev123")
        click.echo("  User:   mike_tester / user123")
        click.echo(f"  Tickets: {len(tickets)}")
        click.echo("=" * 60)

    @app.cli.command("create-admin")
    @click.option("--username", required=True, help="Admin username")
    @click.option("--email", required=True, help="Admin email")
    @click.option("--password", required=True, help="Admin password")
    @click.option("--name", default=None, help="Display name")
    def create_admin(username, email, password, name):
        """Create an admin account, or promote an existing user to admin.

        Usage:
            flask create-admin --username ops --email ops@example.com --password s3cret
        """
        from bugflow.roles import Role
        from bugflow.services import ticket_store

        existing = ticket_store.get_user_by_username(username)
        if existing:
            ticket_store.update_user_role(existing, Role.ADMIN)
            db.session.commit()
            click.echo(f"Promoted {username} to admin.")
            return

        if ticket_store.get_user_by_email(email):
            click.echo(f"ERROR: {email} is already used by another account.")
            return

        ticket_store.create_user(
            username, email.strip().lower(), generate_password_hash(password),
            name=name, role=Role.ADMIN,
        )
        db.session.commit()
        click.echo(f"Created admin user: {username}")
