"""App settings model.

Single-row configuration (id is pinned to 1): optional SMTP overrides and
the admin notification recipient list. Read through settings_service.
"""

import re

from bugflow.extensions import db
from bugflow.utils import isoformat, utcnow


class AppSettings(db.Model):
    __tablename__ = "app_settings"

    SINGLETON_ID = 1
    PASSWORD_MASK = "********"

    id = db.Column(db.Integer, primary_key=True, default=SINGLETON_ID)
    smtp_enabled = db.Column(db.Boolean, default=False, nullable=False)
    smtp_host = db.Column(db.String(255), nullable=True)
    smtp_port = db.Column(db.Integer, nullable=True)
    smtp_secure = db.Column(db.Boolean, default=True, nullable=False)
    smtp_user = db.Column(db.String(255), nullable=True)
    smtp_pass = db.Column(db.String(255), nullable=True)
    smtp_from_name = db.Column(db.String(255), nullable=True)
    smtp_from_email = db.Column(db.String(255), nullable=True)
    admin_recipients = db.Column(
        db.Text, default="", nullable=False
    )  # comma/newline separated, e.g. "ops@bugflow.app, lead@bugflow.app"
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    __table_args__ = (
        db.CheckConstraint("id = 1", name="ck_app_settings_singleton"),
    )

    def get_recipient_list(self):
        """Return admin_recipients as a cleaned list."""
        if not self.admin_recipients:
            return []
        return [
            e.strip() for e in re.split(r"[,\n;]", self.admin_recipients) if e.strip()
        ]

    def to_dict(self):
        """Settings for the admin UI. The SMTP password is masked."""
        return {
            "id": self.id,
            "smtpEnabled": bool(self.smtp_enabled),
            "smtpHost": self.smtp_host,
            "smtpPort": self.smtp_port,
            "smtpSecure": bool(self.smtp_secure),
            "smtpUser": self.smtp_user,
            "smtpPass": self.PASSWORD_MASK if self.smtp_pass else "",
            "smtpFromName": self.smtp_from_name,
            "smtpFromEmail": self.smtp_from_email,
            "adminRecipients": self.admin_recipients or "",
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<AppSettings smtp_enabled={self.smtp_enabled}>"
