"""Shared test fixtures for the BugFlow test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off, mail inline)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- smtp: autouse patch of smtplib.SMTP so no test touches the network
- uploads: autouse per-test UPLOAD_FOLDER under tmp_path
- users: admin, two devs, two plain users
- make_ticket: factory that opens a ticket through the workflow engine
"""

import io
from unittest.mock import patch

import pytest
from werkzeug.datastructures import FileStorage
from werkzeug.security import generate_password_hash

from bugflow import create_app
from bugflow.extensions import db as _db
from bugflow.models.user import User
from bugflow.roles import Role
from bugflow.services import ticket_service

PASSWORD = "secret123"  # every seeded account

# Smallest valid PNG header + padding; content is never decoded.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def smtp():
    """Replace the SMTP transport. Tests set side effects on it to simulate failures."""
    with patch("bugflow.services.email_service.smtplib.SMTP") as mock_smtp:
        yield mock_smtp


@pytest.fixture(autouse=True)
def uploads(app, tmp_path, monkeypatch):
    """Point the local blob store at a per-test directory."""
    folder = tmp_path / "uploads"
    monkeypatch.setitem(app.config, "UPLOAD_FOLDER", str(folder))
    return folder


def _make_user(username, name, role, email=None, is_active=True):
    user = User(
        username=username,
        email=email or f"{username}@bugflow.test",
        name=name,
        password_hash=generate_password_hash(PASSWORD),
        role=role,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


@pytest.fixture
def users(db_session):
    """Seed one admin, two devs and two plain users."""
    seeded = {
        "admin": _make_user("admin", "Admin", Role.ADMIN),
        "dev": _make_user("sarah_dev", "Sarah Developer", Role.DEV),
        "dev2": _make_user("tom_dev", "Tom Developer", Role.DEV),
        "user": _make_user("mike_tester", "Mike Tester", Role.USER),
        "user2": _make_user("jane_user", "Jane User", Role.USER),
    }
    _db.session.commit()
    return seeded


@pytest.fixture
def make_ticket(users):
    """Factory: open a ticket through the engine (defaults to Mike as submitter)."""

    def _make(submitter=None, **overrides):
        fields = {
            "title": "Login button unresponsive",
            "description": "Tapping the login button on Safari does nothing at all.",
            "type_": "bug",
            "app": "driver_app",
            "priority": "high",
        }
        fields.update(overrides)
        return ticket_service.create_ticket(submitter or users["user"], **fields)

    return _make


@pytest.fixture
def make_upload():
    """Factory: an uploaded file the way Werkzeug hands it to a view."""

    def _make(name="screenshot.png", data=PNG_BYTES, mimetype="image/png"):
        return FileStorage(stream=io.BytesIO(data), filename=name, content_type=mimetype)

    return _make
