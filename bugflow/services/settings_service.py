"""Settings service: get/update for the AppSettings singleton.

No in-process cache: every read goes to the row, so an admin's change is
picked up by the next email without any invalidation step.

Functions flush but do NOT commit: the caller commits.
"""

import logging
import re

from bugflow.errors import ValidationError
from bugflow.extensions import db
from bugflow.models.settings import AppSettings

logger = logging.getLogger(__name__)

# Simple email regex: not exhaustive, just sanity-check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# camelCase request keys -> model attributes
_FIELDS = {
    "smtpEnabled": "smtp_enabled",
    "smtpHost": "smtp_host",
    "smtpPort": "smtp_port",
    "smtpSecure": "smtp_secure",
    "smtpUser": "smtp_user",
    "smtpPass": "smtp_pass",
    "smtpFromName": "smtp_from_name",
    "smtpFromEmail": "smtp_from_email",
    "adminRecipients": "admin_recipients",
}

_BOOL_FIELDS = {"smtp_enabled", "smtp_secure"}


def get_settings():
    """Return the settings row, creating it with defaults on first access."""
    settings = db.session.get(AppSettings, AppSettings.SINGLETON_ID)
    if settings is None:
        settings = AppSettings(
            id=AppSettings.SINGLETON_ID,
            smtp_enabled=False,
            smtp_secure=True,
            admin_recipients="",
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def update_settings(data):
    """Apply a partial update from the admin settings form.

    Args:
        data: dict keyed by the camelCase field names the API exposes.

    Returns:
        The updated AppSettings.

    Raises:
        ValidationError: On a bad port, sender address or recipient address.
    """
    if not isinstance(data, dict):
        raise ValidationError("Settings payload must be an object.")

    settings = get_settings()
    changes = {}

    for key, attr in _FIELDS.items():
        if key not in data:
            continue
        value = data[key]

        if attr in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"{key} must be true or false.")
            changes[attr] = value

        elif attr == "smtp_port":
            if value in (None, ""):
                changes[attr] = None
                continue
            try:
                port = int(value)
            except (TypeError, ValueError):
                raise ValidationError("smtpPort must be a number.")
            if not 1 <= port <= 65535:
                raise ValidationError("smtpPort must be between 1 and 65535.")
            changes[attr] = port

        elif attr == "smtp_pass":
            # The masked placeholder round-trips from the UI unchanged.
            if value == AppSettings.PASSWORD_MASK:
                continue
            changes[attr] = _clean_text(value)

        elif attr == "smtp_from_email":
            email = _clean_text(value)
            if email and not EMAIL_RE.match(email):
                raise ValidationError("smtpFromEmail must be a valid email address.")
            changes[attr] = email

        elif attr == "admin_recipients":
            raw = "" if value is None else str(value)
            for address in re.split(r"[,\n;]", raw):
                address = address.strip()
                if address and not EMAIL_RE.match(address):
                    raise ValidationError(f"Invalid admin recipient: {address}")
            changes[attr] = raw.strip()

        else:
            changes[attr] = _clean_text(value)

    for attr, value in changes.items():
        setattr(settings, attr, value)

    db.session.flush()
    logger.info(f"App settings updated: {', '.join(sorted(changes)) or 'no changes'}")
    return settings
